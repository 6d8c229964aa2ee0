#!/usr/bin/env python3
"""
Basic Block Control/Data Flow Graph (CDFG) Builder

Walks every defined function of a module once and collects:
- one node per basic block, grouped per function
- control flow edges from each block to the successors of its terminator
- data flow edges from the block defining a value to each other block using it

Edges are kept as ordered lists, not sets: two successor links or two operand
references between the same blocks are two edges.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Any, Iterator

from cdfg_ir import FunctionBlocks, BlockFlow, IRView
from cdfg_labels import BlockLabelResolver
from cdfg_config import DEFAULT_GRAPH_TITLE


# =============================================================================
# Data Structures
# =============================================================================

class EdgeKind(Enum):
    CONTROL_FLOW = "control-flow"
    DATA_FLOW = "data-flow"


@dataclass(frozen=True)
class Node:
    """A basic block in the graph: its id, display label and the block itself."""
    block_id: int
    label: str
    block: Any = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.block_id, 'label': self.label}


@dataclass(frozen=True)
class Edge:
    """A directed edge between two block nodes."""
    source: Node
    target: Node
    kind: EdgeKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source.block_id,
            'target': self.target.block_id,
            'kind': self.kind.value,
        }


@dataclass
class FunctionCluster:
    """
    The nodes of one function. Nodes are keyed by block, so adding the same
    block twice keeps a single node; iteration follows insertion order.
    """
    name: str
    function: Any = field(default=None, repr=False)
    nodes: Dict[Any, Node] = field(default_factory=dict)

    def add_node(self, node: Node) -> bool:
        """Add a node. Returns False if its block was already present."""
        if node.block in self.nodes:
            return False
        self.nodes[node.block] = node
        return True

    def __len__(self):
        return len(self.nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'nodes': [node.to_dict() for node in self.nodes.values()],
        }


@dataclass
class CDFG:
    """Per-function block nodes plus control flow and data flow edge lists."""
    title: str = DEFAULT_GRAPH_TITLE
    clusters: List[FunctionCluster] = field(default_factory=list)
    control_flow_edges: List[Edge] = field(default_factory=list)
    data_flow_edges: List[Edge] = field(default_factory=list)

    def add_cluster(self, cluster: FunctionCluster) -> FunctionCluster:
        self.clusters.append(cluster)
        return cluster

    def get_cluster(self, name: str) -> Optional[FunctionCluster]:
        for cluster in self.clusters:
            if cluster.name == name:
                return cluster
        return None

    def add_edge(self, edge: Edge):
        if edge.kind is EdgeKind.CONTROL_FLOW:
            self.control_flow_edges.append(edge)
        else:
            self.data_flow_edges.append(edge)

    def edges(self, kind: Optional[EdgeKind] = None) -> List[Edge]:
        """All edges, or only those of one kind. Control flow edges come first."""
        if kind is EdgeKind.CONTROL_FLOW:
            return list(self.control_flow_edges)
        if kind is EdgeKind.DATA_FLOW:
            return list(self.data_flow_edges)
        return self.control_flow_edges + self.data_flow_edges

    def nodes(self) -> Iterator[Node]:
        for cluster in self.clusters:
            yield from cluster

    def node_count(self) -> int:
        return sum(len(cluster) for cluster in self.clusters)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'clusters': [cluster.to_dict() for cluster in self.clusters],
            'control_flow_edges': [edge.to_dict() for edge in self.control_flow_edges],
            'data_flow_edges': [edge.to_dict() for edge in self.data_flow_edges],
        }


# =============================================================================
# Builder
# =============================================================================

class CDFGBuilder:
    """
    Builds a CDFG from any IR exposed through the FunctionBlocks and BlockFlow
    interfaces.

    Args:
        functions: Provider of functions and their ordered blocks
        flow: Provider of instructions, operands and successors
        resolver: Label resolver shared by the whole run. A new one is
                  created when omitted.
    """

    def __init__(self, functions: Optional[FunctionBlocks] = None,
                 flow: Optional[BlockFlow] = None,
                 resolver: Optional[BlockLabelResolver] = None):
        view = IRView()
        self.functions = functions or view
        self.flow = flow or view
        if resolver is None:
            resolver = BlockLabelResolver(flow=self.flow)
        self.resolver = resolver

    def node(self, block: Any) -> Node:
        """The node of a block, with its memoized id and label."""
        return Node(
            block_id=self.resolver.block_id(block),
            label=self.resolver.resolve(block),
            block=block,
        )

    def build(self, module: Any, title: str = DEFAULT_GRAPH_TITLE) -> CDFG:
        """Build the graph for every function of the module that has a body."""
        graph = CDFG(title=title)
        functions = [f for f in self.functions.functions(module)
                     if not self.functions.is_declaration(f)]

        # Named blocks keep their names, so synthetic labels must avoid them
        self.resolver.reserve(
            self.flow.block_name(block)
            for func in functions
            for block in self.functions.blocks(func)
        )

        for func in functions:
            cluster = graph.add_cluster(
                FunctionCluster(name=self.functions.function_name(func), function=func)
            )
            blocks = list(self.functions.blocks(func))

            for block in blocks:
                cluster.add_node(self.node(block))
                self._add_data_flow_edges(graph, block)

            for block in blocks:
                self._add_control_flow_edges(graph, block)

        return graph

    def _add_data_flow_edges(self, graph: CDFG, block: Any):
        """One edge per operand defined by an instruction in another block."""
        for instr in self.flow.instructions(block):
            for operand in self.flow.operands(instr):
                owner = self.flow.defining_block(operand)
                if owner is None or owner == block:
                    continue
                graph.add_edge(Edge(self.node(owner), self.node(block), EdgeKind.DATA_FLOW))

    def _add_control_flow_edges(self, graph: CDFG, block: Any):
        """One edge per successor link of the block's terminator."""
        for succ in self.flow.successors(block):
            graph.add_edge(Edge(self.node(block), self.node(succ), EdgeKind.CONTROL_FLOW))


def build_cdfg(module: Any, title: str = DEFAULT_GRAPH_TITLE,
               resolver: Optional[BlockLabelResolver] = None) -> CDFG:
    """Build a CDFG for a module of the in-memory IR model."""
    return CDFGBuilder(resolver=resolver).build(module, title=title)


# =============================================================================
# Statistics and Export
# =============================================================================

def print_cdfg_stats(graph: CDFG):
    """Print statistics about the CDFG."""
    print(f"\n{'='*60}")
    print(f"CDFG Statistics for: {graph.title}")
    print(f"{'='*60}")

    print(f"Functions: {len(graph.clusters)}")
    print(f"Basic blocks: {graph.node_count()}")
    print(f"Control flow edges: {len(graph.control_flow_edges)}")
    print(f"Data flow edges: {len(graph.data_flow_edges)}")

    if graph.clusters:
        print(f"\nPer function:")
        for cluster in graph.clusters:
            blocks = set(cluster.nodes)
            cf = sum(1 for e in graph.control_flow_edges if e.source.block in blocks)
            df = sum(1 for e in graph.data_flow_edges if e.target.block in blocks)
            print(f"  {cluster.name}: {len(cluster)} blocks, {cf} control flow, {df} data flow")

    # Blocks consuming values from the most other blocks
    consumers: Dict[int, set] = {}
    labels: Dict[int, str] = {}
    for edge in graph.data_flow_edges:
        consumers.setdefault(edge.target.block_id, set()).add(edge.source.block_id)
        labels[edge.target.block_id] = edge.target.label
    if consumers:
        ranked = sorted(consumers.items(), key=lambda x: (-len(x[1]), x[0]))[:5]
        print(f"\nTop data flow consumers:")
        for block_id, sources in ranked:
            print(f"  {labels[block_id]}: uses values from {len(sources)} blocks")

    print(f"{'='*60}\n")


def save_cdfg_to_json(graph: CDFG, filepath: str, indent: int = 2):
    """Save the graph (nodes by id, edges by kind) to a JSON file."""
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(graph.to_dict(), f, indent=indent, ensure_ascii=False)
