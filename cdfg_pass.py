#!/usr/bin/env python3
"""
CDFG Module Pass and Command Line Entry Point

The CDFG pass builds the basic-block control/data flow graph of a module and
writes it to a DOT file (CDFG_BB.dot by default). It is an analysis: the
module is never modified.

Usage:
    python cdfg_pass.py prog.ll
    python cdfg_pass.py prog.ll -o prog_cdfg.dot --cluster-order name --stats
    python cdfg_pass.py prog.json --config cdfg.json --render svg

Programmatic use:
    from cdfg_pass import CDFGPass, PassManager
    pm = PassManager()
    pm.add_pass(CDFGPass())
    pm.run_all(module)
"""

import sys
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from cdfg_ir import FunctionBlocks, BlockFlow, IRView, Module, load_module
from cdfg_labels import BlockLabelResolver
from cdfg_builder import CDFG, CDFGBuilder, print_cdfg_stats, save_cdfg_to_json
from cdfg_config import CDFGConfig, CLUSTER_ORDERS, load_cdfg_config
from cdfg_dot import CDFGOutputError, generate_cdfg_dot, write_cdfg_dot, render_dot


# =============================================================================
# Pass Base Class and Manager
# =============================================================================

class ModulePass(ABC):
    """
    Abstract base class for passes over a whole module.

    Each pass returns whether it modified the module.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this pass."""
        pass

    @property
    def description(self) -> str:
        """Return a description of what this pass does."""
        return ""

    @abstractmethod
    def run_on_module(self, module: Module) -> bool:
        """
        Run the pass on a module.

        Returns:
            True if the pass modified the module, False otherwise.
        """
        pass


class PassManager:
    """
    Pipeline of module passes, run in insertion order over one module.

    With `verbose` set, each pass is announced ("Running pass: cdfg") and
    followed by its outcome ("  -> no changes"). A pass that raises stops the
    pipeline; the exception reaches the caller.
    """

    def __init__(self, verbose: bool = False):
        self.passes: List[ModulePass] = []
        self.verbose = verbose

    def add_pass(self, pass_: ModulePass) -> None:
        self.passes.append(pass_)

    def clear(self) -> None:
        self.passes.clear()

    def run_all(self, module: Module) -> bool:
        """Run the pipeline. Returns True if at least one pass modified the module."""
        results = [self._run_one(pass_, module) for pass_ in self.passes]
        return any(results)

    def _run_one(self, pass_: ModulePass, module: Module) -> bool:
        if self.verbose:
            print(f"Running pass: {pass_.name}")
        changed = bool(pass_.run_on_module(module))
        if self.verbose:
            print(f"  -> {'modified' if changed else 'no changes'}")
        return changed


# =============================================================================
# Pass Registry
# =============================================================================

PASS_REGISTRY: Dict[str, Type[ModulePass]] = {}


def register_pass(name: str):
    """Class decorator making a pass available by name through create_pass()."""
    def decorator(cls: Type[ModulePass]) -> Type[ModulePass]:
        if name in PASS_REGISTRY:
            raise ValueError(f"Pass '{name}' is already registered")
        PASS_REGISTRY[name] = cls
        return cls
    return decorator


def create_pass(name: str, **kwargs) -> ModulePass:
    """Instantiate a registered pass by name."""
    if name not in PASS_REGISTRY:
        raise ValueError(
            f"Unknown pass '{name}'. Available: {sorted(PASS_REGISTRY)}"
        )
    return PASS_REGISTRY[name](**kwargs)


# =============================================================================
# CDFG Pass
# =============================================================================

@register_pass("cdfg")
class CDFGPass(ModulePass):
    """
    Builds the basic-block CDFG of a module and writes it as DOT.

    Every run starts from an empty graph and a fresh label resolver. After a
    run, `graph` holds the built CDFG and `output_path` the file written.

    Raises (from run_on_module):
        CDFGOutputError: If the DOT file cannot be written.
    """

    def __init__(self, config: Optional[CDFGConfig] = None,
                 functions: Optional[FunctionBlocks] = None,
                 flow: Optional[BlockFlow] = None,
                 verbose: bool = False):
        self.config = config or CDFGConfig()
        view = IRView()
        self.functions = functions or view
        self.flow = flow or view
        self.verbose = verbose
        self.graph: Optional[CDFG] = None
        self.output_path: Optional[str] = None

    @property
    def name(self) -> str:
        return "cdfg"

    @property
    def description(self) -> str:
        return "CDFG Pass Analyze"

    def build(self, module: Module) -> CDFG:
        """Build the graph without writing it."""
        resolver = BlockLabelResolver(
            flow=self.flow,
            prefix=self.config.synthetic_label_prefix,
            start=self.config.synthetic_label_start,
        )
        builder = CDFGBuilder(functions=self.functions, flow=self.flow, resolver=resolver)
        return builder.build(module, title=self.config.graph_title)

    def run_on_module(self, module: Module) -> bool:
        self.graph = None
        self.output_path = None

        graph = self.build(module)
        if self.verbose:
            print(f"Built CDFG: {len(graph.clusters)} functions, {graph.node_count()} blocks, "
                  f"{len(graph.control_flow_edges)} control flow edges, "
                  f"{len(graph.data_flow_edges)} data flow edges")

        dot_content = generate_cdfg_dot(graph, self.config)
        self.output_path = write_cdfg_dot(dot_content, self.config.output_file)
        self.graph = graph

        if self.verbose:
            print(f"CDFG written to: {self.output_path}")

        if self.config.render_format:
            render_dot(self.output_path, self.config.render_format, verbose=self.verbose)

        return False


# =============================================================================
# Main Entry Point
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description='Generate the basic-block control/data flow graph (DOT) of an LLVM IR module'
    )
    parser.add_argument('input', help='Input .ll file or .json IR dump')
    parser.add_argument('--output', '-o', default=None,
                        help='Output .dot file (default: CDFG_BB.dot)')
    parser.add_argument('--config', '-c', default=None,
                        help='JSON settings file')
    parser.add_argument('--title', default=None,
                        help='Graph title (default: "CDFG for Module")')
    parser.add_argument('--cluster-order', choices=CLUSTER_ORDERS, default=None,
                        help='Order of function clusters (default: module)')
    parser.add_argument('--stats', action='store_true',
                        help='Print CDFG statistics')
    parser.add_argument('--json', default=None, metavar='PATH',
                        help='Also save the graph as JSON')
    parser.add_argument('--render', default=None, metavar='FORMAT',
                        help='Render the DOT file with graphviz (e.g. svg, png)')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Quiet mode - only print errors')

    args = parser.parse_args(argv)

    try:
        config = load_cdfg_config(args.config).with_overrides(
            output_file=args.output,
            graph_title=args.title,
            cluster_order=args.cluster_order,
            render_format=args.render,
        )
        module = load_module(args.input)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    cdfg_pass = CDFGPass(config=config, verbose=not args.quiet)
    pm = PassManager(verbose=not args.quiet)
    pm.add_pass(cdfg_pass)

    try:
        pm.run_all(module)
    except CDFGOutputError as e:
        print(f"Error: {e}")
        return 1

    if args.stats:
        print_cdfg_stats(cdfg_pass.graph)

    if args.json:
        try:
            save_cdfg_to_json(cdfg_pass.graph, args.json)
        except OSError as e:
            print(f"Error: Could not save JSON to '{args.json}': {e}")
            return 1
        if not args.quiet:
            print(f"Graph JSON saved to: {args.json}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
