#!/usr/bin/env python3
"""
Unit tests for CDFG DOT generation and file output.

Tests cover:
- DOT escaping and cluster naming
- Exact output for a small graph
- Cluster ordering and style settings
- Atomic writes and output failure reporting
- Optional graphviz rendering
"""

import pytest
import os
import subprocess
import tempfile

from cdfg_ir import Instruction, BasicBlock, Function, Module, ValueRef
from cdfg_builder import build_cdfg
from cdfg_config import CDFGConfig
from cdfg_dot import (
    CDFGOutputError,
    escape_dot_string,
    cluster_id,
    node_id,
    ordered_clusters,
    generate_cdfg_dot,
    write_cdfg_dot,
    render_dot,
)


# =============================================================================
# Helpers
# =============================================================================

def entry_exit_module(name="main"):
    func = Function(name=name)
    entry = func.add_block(BasicBlock(name="entry"))
    exit_bb = func.add_block(BasicBlock(name="exit"))
    x = entry.append(Instruction(opcode="add", name="x", operands=[ValueRef("a")]))
    entry.append(Instruction(opcode="br", operands=[exit_bb]))
    exit_bb.append(Instruction(opcode="ret", operands=[x]))
    return Module(name="m", functions=[func])


def single_block_function(name, block_name=""):
    func = Function(name=name)
    func.add_block(BasicBlock(name=block_name)).append(Instruction(opcode="ret"))
    return func


EXPECTED_ENTRY_EXIT = (
    'digraph "CDFG for Module" {\n'
    'subgraph cluster_main {\n'
    'label = "main";\n'
    '\tNode0 [shape=record, label="entry"];\n'
    '\tNode1 [shape=record, label="exit"];\n'
    '}\n'
    'edge [color=black]\n'
    '\tNode0 -> Node1\n'
    'edge [color=red]\n'
    '\tNode0 -> Node1\n'
    '}\n'
)


# =============================================================================
# DOT Generation Tests
# =============================================================================

class TestDOTGeneration:
    """Tests for DOT format generation."""

    def test_escape_dot_string(self):
        """Test DOT string escaping."""
        assert escape_dot_string('test') == 'test'
        assert escape_dot_string('test"quote') == 'test\\"quote'
        assert escape_dot_string('test<bracket>') == 'test\\<bracket\\>'
        assert escape_dot_string('a|b{c}') == 'a\\|b\\{c\\}'
        # Backslashes are escaped once, not again after other replacements
        assert escape_dot_string('a\\"b') == 'a\\\\\\"b'
        assert escape_dot_string('two\nlines') == 'two\\nlines'

    def test_cluster_id(self):
        """Test plain and quoted cluster names."""
        assert cluster_id("main") == "cluster_main"
        assert cluster_id("_Z3fooi") == "cluster__Z3fooi"
        assert cluster_id("llvm.memcpy") == '"cluster_llvm.memcpy"'
        assert cluster_id("odd fn") == '"cluster_odd fn"'

    def test_node_id(self):
        assert node_id(0) == "Node0"
        assert node_id(42) == "Node42"

    def test_entry_exit_output(self):
        """Test the full output for two blocks with one edge of each kind."""
        dot = generate_cdfg_dot(build_cdfg(entry_exit_module()))
        assert dot == EXPECTED_ENTRY_EXIT

    def test_edge_sections_order(self):
        """Test that control flow edges precede data flow edges."""
        dot = generate_cdfg_dot(build_cdfg(entry_exit_module()))
        lines = dot.splitlines()
        black = lines.index("edge [color=black]")
        red = lines.index("edge [color=red]")
        assert black < red
        assert lines[black + 1:red] == ["\tNode0 -> Node1"]
        assert lines[red + 1:-1] == ["\tNode0 -> Node1"]

    def test_empty_graph(self):
        """Test output for a module with only declarations."""
        dot = generate_cdfg_dot(build_cdfg(Module(name="m", functions=[Function(name="d")])))
        assert dot == (
            'digraph "CDFG for Module" {\n'
            'edge [color=black]\n'
            'edge [color=red]\n'
            '}\n'
        )

    def test_labels_escaped(self):
        """Test that record-special characters in labels are escaped."""
        module = Module(name="m", functions=[single_block_function("f", "a|b")])
        dot = generate_cdfg_dot(build_cdfg(module))
        assert 'label="a\\|b"' in dot

    def test_cluster_order_module(self):
        """Test that clusters follow module order by default."""
        module = Module(name="m", functions=[
            single_block_function("zeta"), single_block_function("alpha"),
        ])
        dot = generate_cdfg_dot(build_cdfg(module))
        assert dot.index("cluster_zeta") < dot.index("cluster_alpha")

    def test_cluster_order_name(self):
        """Test lexicographic cluster order."""
        module = Module(name="m", functions=[
            single_block_function("zeta"), single_block_function("alpha"),
        ])
        graph = build_cdfg(module)
        assert [c.name for c in ordered_clusters(graph, "name")] == ["alpha", "zeta"]
        dot = generate_cdfg_dot(graph, CDFGConfig(cluster_order="name"))
        assert dot.index("cluster_alpha") < dot.index("cluster_zeta")
        # Node ids are unchanged by the cluster order
        assert 'Node1 [shape=record, label="BB_1"]' in dot.split("cluster_zeta")[0]

    def test_style_settings(self):
        """Test title, shape and color settings."""
        config = CDFGConfig(
            graph_title="My Graph",
            node_shape="box",
            control_flow_color="blue",
            data_flow_color="green",
        )
        dot = generate_cdfg_dot(build_cdfg(entry_exit_module()), config)
        assert dot.startswith('digraph "My Graph" {\n')
        assert '[shape=box, label="entry"]' in dot
        assert "edge [color=blue]" in dot
        assert "edge [color=green]" in dot

    def test_deterministic(self):
        """Test that generating twice gives the same text."""
        module = entry_exit_module()
        assert generate_cdfg_dot(build_cdfg(module)) == generate_cdfg_dot(build_cdfg(module))


# =============================================================================
# File Output Tests
# =============================================================================

class TestWriteCDFGDot:
    """Tests for write_cdfg_dot."""

    def test_write_creates_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "CDFG_BB.dot")
            assert write_cdfg_dot(EXPECTED_ENTRY_EXIT, path) == path
            with open(path, encoding='utf-8') as f:
                assert f.read() == EXPECTED_ENTRY_EXIT
            assert os.listdir(tmp) == ["CDFG_BB.dot"]

    def test_write_overwrites(self):
        """Test that previous content is replaced, not appended to."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "out.dot")
            with open(path, 'w') as f:
                f.write("old content that is much longer than the new one\n" * 10)
            write_cdfg_dot("digraph {}\n", path)
            with open(path) as f:
                assert f.read() == "digraph {}\n"

    def test_missing_directory_raises(self):
        """Test that an unwritable destination is reported to the caller."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "missing", "out.dot")
            with pytest.raises(CDFGOutputError) as exc_info:
                write_cdfg_dot(EXPECTED_ENTRY_EXIT, path)
            assert exc_info.value.path == path
            assert path in str(exc_info.value)
            assert isinstance(exc_info.value.__cause__, OSError)
            assert not os.path.exists(path)

    def test_directory_destination_leaves_nothing(self):
        """Test that a failed move leaves no partial or temporary file."""
        with tempfile.TemporaryDirectory() as tmp:
            target = os.path.join(tmp, "out.dot")
            os.mkdir(target)
            with pytest.raises(CDFGOutputError):
                write_cdfg_dot(EXPECTED_ENTRY_EXIT, target)
            assert os.listdir(tmp) == ["out.dot"]
            assert os.path.isdir(target)
            assert os.listdir(target) == []


# =============================================================================
# Rendering Tests
# =============================================================================

class TestRenderDot:
    """Tests for render_dot."""

    def test_dot_missing(self, monkeypatch, capsys):
        def fake_run(*args, **kwargs):
            raise FileNotFoundError("dot")
        monkeypatch.setattr(subprocess, "run", fake_run)
        assert render_dot("graph.dot", "svg") is None
        assert "'dot' command not found" in capsys.readouterr().out

    def test_dot_fails(self, monkeypatch, capsys):
        def fake_run(cmd, **kwargs):
            raise subprocess.CalledProcessError(1, cmd)
        monkeypatch.setattr(subprocess, "run", fake_run)
        assert render_dot("graph.dot", "png") is None
        assert "Warning: Failed to render graph.dot" in capsys.readouterr().out

    def test_render_command(self, monkeypatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, 0)
        monkeypatch.setattr(subprocess, "run", fake_run)
        assert render_dot("out/graph.dot", "svg", verbose=False) == "out/graph.svg"
        assert calls == [['dot', '-Tsvg', 'out/graph.dot', '-o', 'out/graph.svg']]
