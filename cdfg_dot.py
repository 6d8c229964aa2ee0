#!/usr/bin/env python3
"""
CDFG DOT Output Generation

Renders a CDFG as a Graphviz digraph with one cluster per function:

    digraph "CDFG for Module" {
    subgraph cluster_main {
    label = "main";
    	Node0 [shape=record, label="entry"];
    	Node1 [shape=record, label="exit"];
    }
    edge [color=black]
    	Node0 -> Node1
    edge [color=red]
    	Node0 -> Node1
    }

Control flow edges are listed first under one edge color, data flow edges
after them under another. The file is written atomically: either the complete
graph replaces the destination, or CDFGOutputError is raised and the
destination is left untouched.
"""

import os
import re
import subprocess
import tempfile
from typing import List, Optional

from cdfg_builder import CDFG, Edge, FunctionCluster
from cdfg_config import CDFGConfig


# =============================================================================
# Exceptions
# =============================================================================

class CDFGOutputError(Exception):
    """
    Exception raised when the DOT artifact cannot be created or written.
    """
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not write CDFG to '{path}': {reason}")


# =============================================================================
# DOT Output Generation
# =============================================================================

PLAIN_ID_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


# Quotes and backslashes would end or break the quoted string; <>{}| are
# field syntax inside record-shaped nodes
DOT_ESCAPES = str.maketrans({
    '\\': '\\\\',
    '"': '\\"',
    '\n': '\\n',
    '<': '\\<',
    '>': '\\>',
    '{': '\\{',
    '}': '\\}',
    '|': '\\|',
})


def escape_dot_string(s: str) -> str:
    """Make a block or function name safe inside a quoted record label."""
    return s.translate(DOT_ESCAPES)


def cluster_id(function_name: str) -> str:
    """
    Subgraph name for a function. Names that are not plain DOT identifiers
    (e.g. "foo.bar") are quoted; the "cluster" prefix stays inside the quotes
    so Graphviz still draws a box around the nodes.
    """
    if PLAIN_ID_PATTERN.match(function_name):
        return f"cluster_{function_name}"
    return f'"cluster_{escape_dot_string(function_name)}"'


def node_id(block_id: int) -> str:
    return f"Node{block_id}"


def ordered_clusters(graph: CDFG, order: str = "module") -> List[FunctionCluster]:
    """Clusters in module order, or sorted by function name."""
    if order == "name":
        return sorted(graph.clusters, key=lambda c: c.name)
    return list(graph.clusters)


def _edge_lines(edges: List[Edge]) -> List[str]:
    return [f"\t{node_id(e.source.block_id)} -> {node_id(e.target.block_id)}" for e in edges]


def generate_cdfg_dot(graph: CDFG, config: Optional[CDFGConfig] = None) -> str:
    """
    Generate DOT format representation of the CDFG.

    Args:
        graph: The graph built by CDFGBuilder
        config: Title override, colors, node shape and cluster order

    Returns:
        DOT format string
    """
    config = config or CDFGConfig(graph_title=graph.title)
    lines = []
    lines.append(f'digraph "{escape_dot_string(config.graph_title)}" {{')

    for cluster in ordered_clusters(graph, config.cluster_order):
        lines.append(f"subgraph {cluster_id(cluster.name)} {{")
        lines.append(f'label = "{escape_dot_string(cluster.name)}";')
        for node in cluster:
            lines.append(
                f'\t{node_id(node.block_id)} [shape={config.node_shape}, '
                f'label="{escape_dot_string(node.label)}"];'
            )
        lines.append("}")

    lines.append(f"edge [color={config.control_flow_color}]")
    lines.extend(_edge_lines(graph.control_flow_edges))

    lines.append(f"edge [color={config.data_flow_color}]")
    lines.extend(_edge_lines(graph.data_flow_edges))

    lines.append("}")
    return '\n'.join(lines) + '\n'


# =============================================================================
# File Output
# =============================================================================

def write_cdfg_dot(dot_content: str, filepath: str) -> str:
    """
    Write DOT content to a file, replacing any previous content.

    The content goes to a temporary file in the destination directory first
    and is then moved over the destination, so readers never see a partial
    graph.

    Returns:
        The path written.

    Raises:
        CDFGOutputError: If the file cannot be created or written.
    """
    directory = os.path.dirname(os.path.abspath(filepath))
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix='.cdfg_', suffix='.tmp', dir=directory)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(dot_content)
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, filepath)
    except OSError as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise CDFGOutputError(filepath, e.strerror or str(e)) from e
    return filepath


def render_dot(dot_file: str, fmt: str = "svg", verbose: bool = True) -> Optional[str]:
    """
    Render a DOT file with Graphviz next to the source file.

    Rendering is optional: problems are reported as warnings and None is
    returned, the DOT file itself stays valid.
    """
    out_file = os.path.splitext(dot_file)[0] + f".{fmt}"
    try:
        subprocess.run(['dot', f'-T{fmt}', dot_file, '-o', out_file],
                       check=True, capture_output=True)
    except subprocess.CalledProcessError as e:
        print(f"Warning: Failed to render {dot_file}: {e}")
        return None
    except FileNotFoundError:
        print("Warning: 'dot' command not found. Install graphviz to render images.")
        return None
    if verbose:
        print(f"Rendered {fmt.upper()} saved to: {out_file}")
    return out_file
