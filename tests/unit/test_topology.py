"""
Tests for topological ordering and batching.
"""

import pytest

from pixelflow.core.errors import CycleDetectedError
from pixelflow.core.graph import Connection, InputSocket
from pixelflow.core.topology import TopologyAnalyzer, connected_subgraphs, parallel_batches, topological_order


def _diamond(graph):
    a = graph.add_node("integer_constant")
    b = graph.add_node("add")
    c = graph.add_node("multiply")
    d = graph.add_node("passthrough")
    graph.connect(a, "value", b, "value")
    graph.connect(a, "value", c, "value")
    graph.connect(c, "result", d, "value")
    return a, b, c, d


class TestTopologicalOrder:

    def test_edges_point_forward(self, graph):
        _diamond(graph)
        order = topological_order(graph)
        position = {nid: i for i, nid in enumerate(order)}
        for conn in graph.connections:
            assert position[conn.source.node_id] < position[conn.target.node_id]

    def test_ties_broken_by_insertion_order(self, graph):
        first = graph.add_node("integer_constant")
        second = graph.add_node("float_constant")
        third = graph.add_node("string_constant")
        assert topological_order(graph) == [first, second, third]

    def test_deterministic(self, graph):
        _diamond(graph)
        assert topological_order(graph) == topological_order(graph)

    def test_empty_graph(self, graph):
        assert topological_order(graph) == []
        assert parallel_batches(graph) == []

    def test_cycle_detected(self, graph):
        # Bypass connect() to build a graph it would never allow
        a = graph.add_node("passthrough")
        b = graph.add_node("passthrough")
        graph.connect(a, "value", b, "value")
        back = Connection.create(b, "value", a, "value")
        graph._connections[back.id] = back
        graph._inputs[InputSocket(a, "value")] = back.id

        analyzer = TopologyAnalyzer(graph)
        assert analyzer.has_cycle()
        with pytest.raises(CycleDetectedError):
            analyzer.topological_order()


class TestBatches:

    def test_independent_sources_share_a_batch(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("integer_constant")
        c = graph.add_node("preview")
        d = graph.add_node("preview")
        graph.connect(a, "value", c, "value")
        graph.connect(b, "value", d, "value")
        assert parallel_batches(graph) == [[a, b], [c, d]]

    def test_depth_is_longest_path(self, graph):
        a, b, c, d = _diamond(graph)
        assert parallel_batches(graph) == [[a], [b, c], [d]]
        assert TopologyAnalyzer(graph).critical_path_length() == 3

    def test_every_node_in_exactly_one_batch(self, graph):
        _diamond(graph)
        graph.add_node("string_constant")
        batches = parallel_batches(graph)
        flat = [nid for batch in batches for nid in batch]
        assert sorted(flat, key=str) == sorted(graph.node_ids(), key=str)

    def test_ready_nodes(self, graph):
        a, b, c, d = _diamond(graph)
        analyzer = TopologyAnalyzer(graph)
        assert analyzer.ready_nodes([]) == [a]
        assert analyzer.ready_nodes([a]) == [b, c]
        assert analyzer.ready_nodes([a, c]) == [b, d]


class TestSubgraphs:

    def test_islands(self, graph):
        a, b, c, d = _diamond(graph)
        e = graph.add_node("integer_constant")
        islands = connected_subgraphs(graph)
        assert islands == [{a, b, c, d}, {e}]
