"""Bipartite test-source dependency graph built on NetworkX.

Edges point from a source file to each test file that loaded it during its most
recent run (data-flow direction: source -> consumer).
"""

from __future__ import annotations

import logging
import pathlib
from typing import TYPE_CHECKING

import networkx as nx

from vigil.engine.types import NodeType

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = [
    "DependencyGraph",
    "parse_node",
    "node_for_source",
    "node_for_test",
]

_logger = logging.getLogger(__name__)


def node_for_test(path: pathlib.Path) -> str:
    """Create test node ID from path."""
    return f"test:{path}"


def node_for_source(path: pathlib.Path) -> str:
    """Create source node ID from path."""
    return f"source:{path}"


def parse_node(node: str) -> tuple[NodeType, pathlib.Path]:
    """Extract NodeType and path from node ID.

    Handles colons in paths by only splitting on the first colon.
    """
    prefix, value = node.split(":", 1)
    return NodeType(prefix), pathlib.Path(value)


class DependencyGraph:
    """Maps each test file to the source files it currently exercises."""

    _graph: nx.DiGraph[str]

    def __init__(self) -> None:
        self._graph = nx.DiGraph()

    @property
    def graph(self) -> nx.DiGraph[str]:
        """Underlying graph (read-only use)."""
        return self._graph

    @property
    def tests(self) -> list[pathlib.Path]:
        """Test files with at least one recorded dependency."""
        return [
            parse_node(node)[1]
            for node, data in self._graph.nodes(data=True)
            if data["type"] == NodeType.TEST
        ]

    def __contains__(self, test_file: object) -> bool:
        if not isinstance(test_file, pathlib.Path):
            return False
        return self._graph.has_node(node_for_test(test_file))

    def __len__(self) -> int:
        return len(self.tests)

    def replace(self, test_file: pathlib.Path, sources: Iterable[pathlib.Path]) -> None:
        """Replace the test's edges wholesale. An empty source list drops the test."""
        self.remove_test(test_file)
        source_list = list(dict.fromkeys(sources))
        if not source_list:
            return

        t_node = node_for_test(test_file)
        self._graph.add_node(t_node, type=NodeType.TEST)
        for source in source_list:
            s_node = node_for_source(source)
            if not self._graph.has_node(s_node):
                self._graph.add_node(s_node, type=NodeType.SOURCE)
            self._graph.add_edge(s_node, t_node)
        _logger.debug("%s depends on %d source files", test_file, len(source_list))

    def remove_test(self, test_file: pathlib.Path) -> bool:
        """Delete a test and its edges, pruning sources no other test depends on.

        Returns:
            True if the test had recorded dependencies.
        """
        t_node = node_for_test(test_file)
        if not self._graph.has_node(t_node):
            return False

        sources = list(self._graph.predecessors(t_node))
        self._graph.remove_node(t_node)
        orphans = [node for node in sources if self._graph.out_degree(node) == 0]
        self._graph.remove_nodes_from(orphans)
        return True

    def get_dependents(self, source: pathlib.Path) -> list[pathlib.Path]:
        """Test files with an edge from the source, in insertion order."""
        s_node = node_for_source(source)
        if not self._graph.has_node(s_node):
            return []
        return [parse_node(node)[1] for node in self._graph.successors(s_node)]

    def get_dependencies(self, test_file: pathlib.Path) -> list[pathlib.Path]:
        """Source files the test depended on during its latest run."""
        t_node = node_for_test(test_file)
        if not self._graph.has_node(t_node):
            return []
        return [parse_node(node)[1] for node in self._graph.predecessors(t_node)]
