from itertools import islice
from typing import Iterable, List, Optional, Set

import networkx as nx

from .model import Edge, EdgeKind, Entity


class GraphAnalyzer:
    """Cycle analysis over the waits-on subgraph of a snapshot"""

    def __init__(self, edges: Iterable[Edge], entity_ids: Optional[Iterable[str]] = None):
        self.edges = list(edges)
        self.nx_graph = self._build_networkx_graph(entity_ids)

    def _build_networkx_graph(self, entity_ids: Optional[Iterable[str]]) -> nx.DiGraph:
        """Build NetworkX directed graph from the waits-on edges"""
        G = nx.DiGraph()

        if entity_ids is not None:
            G.add_nodes_from(entity_ids)

        for edge in self.edges:
            if edge.kind is EdgeKind.WAITS_ON:
                G.add_edge(edge.source, edge.target, edge_id=edge.id)

        return G

    def find_strongly_connected_components(self) -> List[Set[str]]:
        """Find strongly connected components that contain at least one cycle"""
        components = []
        for scc in nx.strongly_connected_components(self.nx_graph):
            if len(scc) > 1:
                components.append(set(scc))
                continue
            node = next(iter(scc))
            if self.nx_graph.has_edge(node, node):
                components.append({node})
        return components

    def cycle_nodes(self) -> Set[str]:
        """Ids of every node that participates in at least one waits-on cycle"""
        nodes: Set[str] = set()
        for component in self.find_strongly_connected_components():
            nodes.update(component)
        return nodes

    def find_cycles(self, limit: Optional[int] = None) -> List[List[str]]:
        """
        Enumerate simple waits-on cycles.

        Each cycle is rotated to start at its smallest id so the same cycle
        always has the same path, and cycles are returned shortest first.

        Args:
            limit: Maximum number of cycles to enumerate

        Returns:
            List of cycle paths (each without the repeated closing node)
        """
        cycles = nx.simple_cycles(self.nx_graph)
        if limit is not None:
            cycles = islice(cycles, limit)
        canonical = [_canonical_rotation(cycle) for cycle in cycles]
        return sorted(canonical, key=lambda path: (len(path), path))


def _canonical_rotation(cycle: List[str]) -> List[str]:
    start = cycle.index(min(cycle))
    return list(cycle[start:]) + list(cycle[:start])


def detect_cycle_nodes(entities: List[Entity], edges: List[Edge]) -> Set[str]:
    """
    Find every entity that sits on a waits-on cycle.

    Args:
        entities: Entities of the graph
        edges: Edges of the graph; only waits-on edges are considered

    Returns:
        Set of entity ids in at least one cycle (self-loops included)
    """
    return GraphAnalyzer(edges, (entity.id for entity in entities)).cycle_nodes()


def mark_cycles(entities: List[Entity], edges: List[Edge]) -> Set[str]:
    """Set ``in_cycle`` on every entity according to waits-on cycle membership"""
    cycle_ids = detect_cycle_nodes(entities, edges)
    for entity in entities:
        entity.in_cycle = entity.id in cycle_ids
    return cycle_ids


def find_cycles(edges: List[Edge], limit: Optional[int] = None) -> List[List[str]]:
    return GraphAnalyzer(edges).find_cycles(limit)
