#!/usr/bin/env python3
"""
Intermediate Representation Model and LLVM IR Parser

This module provides the read-only IR structures the CDFG builder walks:
modules, functions, basic blocks, instructions and their operands. It also
parses textual LLVM IR (.ll) into that model and persists it as JSON.

The graph builder never touches these classes directly. It goes through two
capability interfaces, FunctionBlocks and BlockFlow, so any IR with the same
shape can be analyzed by providing another implementation of them.

Usage:
    from cdfg_ir import LLVMIRParser, load_module
    module = LLVMIRParser().parse_file("prog.ll")
    module = load_module("prog.json")
"""

import re
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Any, Iterable, Union
from pathlib import Path


# =============================================================================
# Opcode Classification
# =============================================================================

# Instructions that end a basic block
TERMINATOR_OPCODES = {
    'ret',
    'br',
    'switch',
    'indirectbr',
    'invoke',
    'callbr',
    'resume',
    'catchswitch',
    'catchret',
    'cleanupret',
    'unreachable',
}

# Call markers printed in front of the opcode (e.g. "%r = tail call ...")
CALL_PREFIXES = {'tail', 'musttail', 'notail'}

# Kinds of non-instruction operand values
ARGUMENT = 'argument'
GLOBAL = 'global'
CONSTANT = 'constant'


def is_terminator_opcode(opcode: str) -> bool:
    """Check whether an opcode ends a basic block."""
    return opcode.lower() in TERMINATOR_OPCODES


# =============================================================================
# Data Structures
# =============================================================================

@dataclass(frozen=True)
class ValueRef:
    """An operand that is not produced by an instruction (argument, global, constant)."""
    name: str
    kind: str = ARGUMENT

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'name': self.name}


@dataclass(eq=False)
class Instruction:
    """
    A single IR instruction.

    Instructions compare and hash by identity. `name` is the result name
    ('' for instructions without a named result) and `parent` is the owning
    basic block, set when the instruction is appended to a block.
    """
    opcode: str
    name: str = ""
    operands: List['Operand'] = field(default_factory=list)
    raw_line: str = ""
    address: int = 0       # Line number in source (0 when built in memory)
    parent: Optional['BasicBlock'] = None

    @property
    def is_terminator(self) -> bool:
        return is_terminator_opcode(self.opcode)

    def block_operands(self) -> List['BasicBlock']:
        """Basic blocks referenced by this instruction, in operand order."""
        return [op for op in self.operands if isinstance(op, BasicBlock)]

    def __repr__(self):
        result = f"%{self.name} = " if self.name else ""
        return f"Instruction({result}{self.opcode}, addr={self.address})"


@dataclass(eq=False)
class BasicBlock:
    """
    A basic block. Blocks compare and hash by identity, which is what makes
    them usable as the block identity key of the graph builder.
    """
    name: str = ""
    instructions: List[Instruction] = field(default_factory=list)
    parent: Optional['Function'] = None

    def append(self, instr: Instruction) -> Instruction:
        """Add an instruction to the end of this block and take ownership of it."""
        instr.parent = self
        self.instructions.append(instr)
        return instr

    def is_empty(self) -> bool:
        return len(self.instructions) == 0

    def get_terminator(self) -> Optional[Instruction]:
        """Get the terminating instruction of this block, if the block has one."""
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None

    def successors(self) -> List['BasicBlock']:
        """
        Successor blocks of this block's terminator, in terminator operand order.
        A block listed twice (e.g. two switch cases) appears twice.
        """
        terminator = self.get_terminator()
        if terminator is None:
            return []
        return terminator.block_operands()

    def __repr__(self):
        name = self.name or "<anonymous>"
        return f"BasicBlock({name}, {len(self.instructions)} instructions)"


Operand = Union[Instruction, BasicBlock, ValueRef]


@dataclass(eq=False)
class Function:
    """A function. Functions without blocks are declarations."""
    name: str
    blocks: List[BasicBlock] = field(default_factory=list)
    arguments: List[str] = field(default_factory=list)

    @property
    def is_declaration(self) -> bool:
        return len(self.blocks) == 0

    def add_block(self, block: BasicBlock) -> BasicBlock:
        block.parent = self
        self.blocks.append(block)
        return block

    def get_block(self, name: str) -> Optional[BasicBlock]:
        """Find a named block. Anonymous blocks cannot be looked up by name."""
        for block in self.blocks:
            if name and block.name == name:
                return block
        return None

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize function to dictionary.

        Blocks may be anonymous and instruction results may be unnamed, so
        operands point at their target by position: an instruction operand is
        (block index, instruction index) and a block operand is a block index.
        """
        block_index: Dict[BasicBlock, int] = {}
        instr_index: Dict[Instruction, Tuple[int, int]] = {}
        for bi, block in enumerate(self.blocks):
            block_index[block] = bi
            for ii, instr in enumerate(block.instructions):
                instr_index[instr] = (bi, ii)

        def encode(op: Operand) -> Dict[str, Any]:
            if isinstance(op, Instruction):
                bi, ii = instr_index[op]
                return {'kind': 'instruction', 'block': bi, 'index': ii}
            if isinstance(op, BasicBlock):
                return {'kind': 'block', 'block': block_index[op]}
            return op.to_dict()

        blocks = []
        for block in self.blocks:
            blocks.append({
                'name': block.name,
                'instructions': [
                    {
                        'opcode': instr.opcode,
                        'name': instr.name,
                        'address': instr.address,
                        'raw_line': instr.raw_line,
                        'operands': [encode(op) for op in instr.operands],
                    }
                    for instr in block.instructions
                ],
            })

        return {
            'name': self.name,
            'arguments': list(self.arguments),
            'blocks': blocks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Function':
        """Deserialize function from dictionary."""
        func = cls(name=data['name'], arguments=list(data.get('arguments', [])))
        blocks_data = data.get('blocks', [])

        # First pass: create blocks and instructions so forward references resolve
        for block_data in blocks_data:
            block = func.add_block(BasicBlock(name=block_data.get('name', '')))
            for instr_data in block_data.get('instructions', []):
                block.append(Instruction(
                    opcode=instr_data['opcode'],
                    name=instr_data.get('name', ''),
                    raw_line=instr_data.get('raw_line', ''),
                    address=instr_data.get('address', 0),
                ))

        # Second pass: operands
        for block, block_data in zip(func.blocks, blocks_data):
            for instr, instr_data in zip(block.instructions, block_data.get('instructions', [])):
                for op_data in instr_data.get('operands', []):
                    kind = op_data['kind']
                    if kind == 'instruction':
                        target = func.blocks[op_data['block']]
                        instr.operands.append(target.instructions[op_data['index']])
                    elif kind == 'block':
                        instr.operands.append(func.blocks[op_data['block']])
                    else:
                        instr.operands.append(ValueRef(name=op_data['name'], kind=kind))
        return func


@dataclass
class Module:
    """A translation unit: an ordered list of functions."""
    name: str
    functions: List[Function] = field(default_factory=list)

    def add_function(self, func: Function) -> Function:
        self.functions.append(func)
        return func

    def get_function(self, name: str) -> Optional[Function]:
        for func in self.functions:
            if func.name == name:
                return func
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'functions': [func.to_dict() for func in self.functions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Module':
        module = cls(name=data.get('name', 'module'))
        for func_data in data.get('functions', []):
            module.add_function(Function.from_dict(func_data))
        return module

    def to_json(self, filepath: str, indent: int = 2):
        """Save module to JSON file."""
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls, filepath: str) -> 'Module':
        """Load module from JSON file."""
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)


# =============================================================================
# Capability Interfaces
# =============================================================================

class FunctionBlocks(ABC):
    """Provides the functions of a module and the ordered blocks of a function."""

    @abstractmethod
    def functions(self, module: Any) -> Iterable[Any]:
        pass

    @abstractmethod
    def is_declaration(self, function: Any) -> bool:
        pass

    @abstractmethod
    def function_name(self, function: Any) -> str:
        pass

    @abstractmethod
    def blocks(self, function: Any) -> Iterable[Any]:
        pass


class BlockFlow(ABC):
    """Provides instructions and operands of a block and successors of a block."""

    @abstractmethod
    def block_name(self, block: Any) -> str:
        """The block's own name, or '' for an anonymous block."""
        pass

    @abstractmethod
    def instructions(self, block: Any) -> Iterable[Any]:
        pass

    @abstractmethod
    def operands(self, instruction: Any) -> Iterable[Any]:
        pass

    @abstractmethod
    def defining_block(self, value: Any) -> Optional[Any]:
        """Owning block if `value` is produced by an instruction, else None."""
        pass

    @abstractmethod
    def successors(self, block: Any) -> Iterable[Any]:
        pass


class IRView(FunctionBlocks, BlockFlow):
    """Capability provider over the in-memory model of this module."""

    def functions(self, module: Module) -> Iterable[Function]:
        return module.functions

    def is_declaration(self, function: Function) -> bool:
        return function.is_declaration

    def function_name(self, function: Function) -> str:
        return function.name

    def blocks(self, function: Function) -> Iterable[BasicBlock]:
        return function.blocks

    def block_name(self, block: BasicBlock) -> str:
        return block.name

    def instructions(self, block: BasicBlock) -> Iterable[Instruction]:
        return block.instructions

    def operands(self, instruction: Instruction) -> Iterable[Operand]:
        return instruction.operands

    def defining_block(self, value: Operand) -> Optional[BasicBlock]:
        if isinstance(value, Instruction):
            return value.parent
        return None

    def successors(self, block: BasicBlock) -> Iterable[BasicBlock]:
        return block.successors()


# =============================================================================
# Parser
# =============================================================================

def _strip_comment(line: str) -> str:
    """Remove a trailing ';' comment that is not inside a quoted string."""
    in_quote = False
    for i, ch in enumerate(line):
        if ch == '"':
            in_quote = not in_quote
        elif ch == ';' and not in_quote:
            return line[:i]
    return line


def _unquote(name: str) -> str:
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1]
    return name


class LLVMIRParser:
    """Parser for textual LLVM IR (.ll) files."""

    # Identifier body shared by local (%x) and global (@x) names
    NAME = r'("[^"]*"|[-a-zA-Z$._0-9]+)'

    DEFINE_PATTERN = re.compile(r'^define\b[^@]*@' + NAME + r'\s*\(')
    DECLARE_PATTERN = re.compile(r'^declare\b[^@]*@' + NAME + r'\s*\(')
    TYPE_PATTERN = re.compile(r'^%' + NAME + r'\s*=\s*type\b')
    LABEL_PATTERN = re.compile(r'^' + NAME + r':(?:\s|$)')
    # Older LLVM prints numbered blocks as a comment: "; <label>:3:"
    COMMENT_LABEL_PATTERN = re.compile(r'^;\s*<label>:(\d+)')
    # Lines printed under the instruction they belong to:
    #   %r = invoke i32 @g()
    #           to label %cont unwind label %lpad
    # and landingpad clauses (cleanup, catch ..., filter ...)
    CONTINUATION_PATTERN = re.compile(r'^(to\s+label|unwind|cleanup|catch|filter)\b')
    RESULT_PATTERN = re.compile(r'^%' + NAME + r'\s*=\s*(.*)$')
    OPCODE_PATTERN = re.compile(r'^([a-z_][a-z0-9_.]*)\b\s*(.*)$', re.IGNORECASE)
    REFERENCE_PATTERN = re.compile(r'([%@])' + NAME)
    # Quoted names (kept) or string literals (c"...", !"...", asm strings; blanked)
    STRING_PATTERN = re.compile(r'([%@]"[^"]*")|("[^"]*")')
    MODULE_ID_PATTERN = re.compile(r'^;\s*ModuleID\s*=\s*\'([^\']*)\'')
    SOURCE_FILENAME_PATTERN = re.compile(r'^source_filename\s*=\s*"([^"]*)"')

    def __init__(self):
        self.type_names: Set[str] = set()
        self.current_function: Optional[Function] = None
        self.current_block: Optional[BasicBlock] = None
        # Per-function symbol table: local name -> Instruction/BasicBlock/ValueRef
        self.symbols: Dict[str, Operand] = {}
        # Instructions waiting for operand resolution: (instr, operand text)
        self.pending: List[Tuple[Instruction, str]] = []

    def parse_file(self, filepath: str) -> Module:
        """Parse an LLVM IR file into a Module."""
        with open(filepath, 'r', encoding='utf-8') as f:
            text = f.read()
        return self.parse_text(text, name=Path(filepath).stem)

    def parse_text(self, text: str, name: str = "module") -> Module:
        """
        Parse LLVM IR source text into a Module.

        The module is named after its ModuleID (or source_filename) when the
        text has one, otherwise after `name`.
        """
        module = Module(name=name)
        lines = text.splitlines()
        self.type_names = set()
        self.current_function = None

        # First pass: module name and named struct types
        named = False
        for raw in lines:
            stripped = raw.strip()
            match = (self.MODULE_ID_PATTERN.match(stripped)
                     or self.SOURCE_FILENAME_PATTERN.match(stripped))
            if match:
                if not named:
                    module.name = match.group(1)
                    named = True
                continue
            match = self.TYPE_PATTERN.match(stripped)
            if match:
                self.type_names.add(_unquote(match.group(1)))

        # Second pass: functions
        header: List[str] = []
        statement: List[str] = []
        statement_line = 0

        for line_num, raw in enumerate(lines, 1):
            stripped = raw.strip()

            if self.current_function is None:
                if header:
                    # Function header continued over several lines
                    header.append(_strip_comment(stripped))
                    if '{' in header[-1]:
                        self.start_function(module, ' '.join(header))
                        header = []
                    continue

                code = _strip_comment(stripped).strip()
                if self.DECLARE_PATTERN.match(code):
                    match = self.DECLARE_PATTERN.match(code)
                    module.add_function(Function(name=_unquote(match.group(1))))
                elif self.DEFINE_PATTERN.match(code):
                    if '{' in code:
                        self.start_function(module, code)
                    else:
                        header = [code]
                continue

            # Inside a function body
            if statement:
                statement.append(self._prepare(stripped))
                if self._balanced(' '.join(statement)):
                    self.add_instruction(' '.join(statement), statement_line)
                    statement = []
                continue

            comment_label = self.COMMENT_LABEL_PATTERN.match(stripped)
            if comment_label:
                self.start_block(comment_label.group(1))
                continue

            code = _strip_comment(stripped).strip()
            if not code:
                continue

            if code == '}':
                self.finish_function()
                continue

            label = self.LABEL_PATTERN.match(code)
            if label:
                self.start_block(_unquote(label.group(1)))
                continue

            prepared = self._prepare(code)
            if self.pending and self.CONTINUATION_PATTERN.match(prepared):
                self.extend_instruction(prepared)
                continue

            if self._balanced(prepared):
                self.add_instruction(prepared, line_num, raw_line=raw.rstrip())
            else:
                statement = [prepared]
                statement_line = line_num

        if self.current_function is not None:
            # Unterminated body at end of input
            self.finish_function()

        return module

    def _prepare(self, code: str) -> str:
        """Drop comments and string literals that could hide '%' or brackets."""
        return self.STRING_PATTERN.sub(
            lambda m: m.group(1) or '""', _strip_comment(code).strip()
        )

    @staticmethod
    def _balanced(code: str) -> bool:
        return code.count('[') <= code.count(']')

    def start_function(self, module: Module, header: str):
        """Begin a function body from its 'define ... {' header."""
        match = self.DEFINE_PATTERN.match(header)
        func = Function(name=_unquote(match.group(1)))

        # Parameter names live between the first '(' after the name and the body
        params = header[match.end():header.rfind('{')]
        self.symbols = {}
        self.pending = []
        for sigil, token in self.REFERENCE_PATTERN.findall(params):
            name = _unquote(token)
            if sigil == '%' and name not in self.type_names:
                func.arguments.append(name)
                self.symbols[name] = ValueRef(name=name, kind=ARGUMENT)

        module.add_function(func)
        self.current_function = func
        self.current_block = None

    def start_block(self, label: str):
        """Start a new basic block. Numbered labels produce anonymous blocks."""
        name = "" if label.isdigit() else label
        block = self.current_function.add_block(BasicBlock(name=name))
        self.symbols[label] = block
        self.current_block = block

    def add_instruction(self, code: str, line_num: int, raw_line: str = ""):
        """Parse one (possibly joined multi-line) instruction into the current block."""
        result_name = ""
        match = self.RESULT_PATTERN.match(code)
        if match:
            result_name = _unquote(match.group(1))
            code = match.group(2)

        words = code.split(None, 1)
        while words and words[0] in CALL_PREFIXES:
            words = words[1].split(None, 1) if len(words) > 1 else []
        match = self.OPCODE_PATTERN.match(' '.join(words))
        if not match:
            return

        if self.current_block is None:
            # Unlabeled entry block
            self.current_block = self.current_function.add_block(BasicBlock())

        instr = self.current_block.append(Instruction(
            opcode=match.group(1).lower(),
            name=result_name,
            raw_line=raw_line or code,
            address=line_num,
        ))
        if result_name:
            self.symbols[result_name] = instr
        self.pending.append((instr, match.group(2)))

    def extend_instruction(self, code: str):
        """Append a continuation line to the operands of the last instruction."""
        instr, operand_text = self.pending[-1]
        self.pending[-1] = (instr, f"{operand_text} {code}")

    def finish_function(self):
        """Resolve operand references once every local name of the function is known."""
        for instr, operand_text in self.pending:
            for sigil, token in self.REFERENCE_PATTERN.findall(operand_text):
                name = _unquote(token)
                if sigil == '@':
                    instr.operands.append(ValueRef(name=name, kind=GLOBAL))
                elif name in self.symbols:
                    instr.operands.append(self.symbols[name])
                # Anything else is a type name (%struct.S) and not an operand

        self.current_function = None
        self.current_block = None
        self.symbols = {}
        self.pending = []


# =============================================================================
# Loading
# =============================================================================

def load_module(filepath: str) -> Module:
    """
    Load a module from a .json IR dump or a textual .ll file.

    Raises:
        FileNotFoundError: If the input file doesn't exist.
        ValueError: If a .json input is not valid JSON or not a module dump.
    """
    if not Path(filepath).exists():
        raise FileNotFoundError(f"Input file not found: {filepath}")
    if Path(filepath).suffix.lower() == '.json':
        try:
            return Module.from_json(filepath)
        except (KeyError, TypeError, IndexError, AttributeError) as e:
            raise ValueError(f"Invalid module dump '{filepath}': {e!r}") from e
    return LLVMIRParser().parse_file(filepath)
