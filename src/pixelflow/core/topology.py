"""
Topology - Deterministic ordering and batching of graph nodes.

Ties are always broken by node insertion order, so repeated calls on an
unchanged graph return identical results.
"""

from __future__ import annotations

import heapq
from collections import deque
from typing import Iterable

from pixelflow.core.errors import CycleDetectedError
from pixelflow.core.graph import NodeId, ProcessingGraph


class TopologyAnalyzer:
    """Read-only analysis of a ProcessingGraph's structure."""

    def __init__(self, graph: ProcessingGraph):
        self.graph = graph
        self._order = {nid: i for i, nid in enumerate(graph.node_ids())}
        self._adj = graph.adjacency()

    def _in_degrees(self) -> dict[NodeId, int]:
        degrees = {nid: 0 for nid in self._adj}
        for targets in self._adj.values():
            for nid in targets:
                degrees[nid] += 1
        return degrees

    def topological_order(self) -> list[NodeId]:
        """
        Nodes in execution order (Kahn's algorithm).

        Among nodes that are ready at the same time, the one added to the
        graph first comes first.

        Raises:
            CycleDetectedError: If the graph contains a cycle.
        """
        degrees = self._in_degrees()
        ready = [(self._order[nid], nid) for nid, d in degrees.items() if d == 0]
        heapq.heapify(ready)

        result: list[NodeId] = []
        while ready:
            _, node_id = heapq.heappop(ready)
            result.append(node_id)
            for nid in self._adj[node_id]:
                degrees[nid] -= 1
                if degrees[nid] == 0:
                    heapq.heappush(ready, (self._order[nid], nid))

        if len(result) != len(self._adj):
            remaining = [nid for nid in self._adj if degrees[nid] > 0]
            raise CycleDetectedError(remaining)
        return result

    def node_depths(self) -> dict[NodeId, int]:
        """0 for sources, otherwise 1 + the deepest predecessor."""
        depths: dict[NodeId, int] = {}
        for node_id in self.topological_order():
            depths.setdefault(node_id, 0)
            for nid in self._adj[node_id]:
                depths[nid] = max(depths.get(nid, 0), depths[node_id] + 1)
        return depths

    def parallel_batches(self) -> list[list[NodeId]]:
        """
        Group nodes by depth.

        Every edge goes from a lower batch to a higher one, so all nodes
        in a batch may run concurrently once earlier batches are done.
        Within a batch, nodes keep insertion order.
        """
        depths = self.node_depths()
        if not depths:
            return []
        batches: list[list[NodeId]] = [[] for _ in range(max(depths.values()) + 1)]
        for node_id in self._adj:
            batches[depths[node_id]].append(node_id)
        return batches

    def connected_subgraphs(self) -> list[set[NodeId]]:
        """Partition nodes into islands, ignoring edge direction."""
        undirected: dict[NodeId, set[NodeId]] = {nid: set() for nid in self._adj}
        for source, targets in self._adj.items():
            for target in targets:
                undirected[source].add(target)
                undirected[target].add(source)

        seen: set[NodeId] = set()
        islands: list[set[NodeId]] = []
        for start in self._adj:
            if start in seen:
                continue
            island = {start}
            queue = deque([start])
            while queue:
                for nid in undirected[queue.popleft()]:
                    if nid not in island:
                        island.add(nid)
                        queue.append(nid)
            seen |= island
            islands.append(island)
        return islands

    def has_cycle(self) -> bool:
        try:
            self.topological_order()
        except CycleDetectedError:
            return True
        return False

    def critical_path_length(self) -> int:
        """Number of nodes on the longest dependency chain."""
        depths = self.node_depths()
        return max(depths.values()) + 1 if depths else 0

    def ready_nodes(self, completed: Iterable[NodeId]) -> list[NodeId]:
        """Nodes not yet completed whose predecessors all are."""
        done = set(completed)
        blocked: set[NodeId] = set()
        for source, targets in self._adj.items():
            if source not in done:
                blocked.update(targets)
        return [nid for nid in self._adj if nid not in done and nid not in blocked]


def topological_order(graph: ProcessingGraph) -> list[NodeId]:
    return TopologyAnalyzer(graph).topological_order()


def parallel_batches(graph: ProcessingGraph) -> list[list[NodeId]]:
    return TopologyAnalyzer(graph).parallel_batches()


def connected_subgraphs(graph: ProcessingGraph) -> list[set[NodeId]]:
    return TopologyAnalyzer(graph).connected_subgraphs()
