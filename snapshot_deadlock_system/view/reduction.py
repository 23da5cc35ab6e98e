"""
Graph reduction for a filtered view of a snapshot graph.

Hiding nodes must not hide relationships: a path from one visible node to
another through hidden nodes is shown as a single synthetic edge, unless the
two visible nodes are already joined by a direct edge.
"""

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from ..core.model import Edge, EdgeKind, Entity, pair_key


def _adjacency(edges: List[Edge]) -> Tuple[Dict[str, List[Edge]], Dict[str, List[Edge]]]:
    outgoing: Dict[str, List[Edge]] = {}
    incoming: Dict[str, List[Edge]] = {}
    for edge in edges:
        outgoing.setdefault(edge.source, []).append(edge)
        incoming.setdefault(edge.target, []).append(edge)
    return outgoing, incoming


def collapse_edges_through_hidden_nodes(edges: List[Edge], visible_ids: Iterable[str]) -> List[Edge]:
    """
    Keep direct edges between visible nodes and replace hidden multi-hop
    paths with synthetic ``collapsed-{a}-{b}`` edges.

    Hidden nodes are walked breadth-first ignoring edge direction. At most
    one synthetic edge is produced per unordered visible pair, and none for
    a pair that already has a direct visible edge.

    Args:
        edges: All edges of the graph
        visible_ids: Ids of the nodes that stay visible

    Returns:
        Direct visible edges followed by synthetic collapsed edges
    """
    visible: Set[str] = set(visible_ids)
    outgoing, incoming = _adjacency(edges)

    direct_edges = [edge for edge in edges if edge.source in visible and edge.target in visible]
    result: Dict[str, Edge] = {edge.id: edge for edge in direct_edges}
    direct_pairs = {pair_key(edge.source, edge.target) for edge in direct_edges}

    # Sorted so synthetic edges come out in the same order on every run
    for source_id in sorted(visible):
        queue = deque()
        for edge in outgoing.get(source_id, []):
            if edge.target not in visible:
                queue.append(edge.target)
        for edge in incoming.get(source_id, []):
            if edge.source not in visible:
                queue.append(edge.source)

        visited_hidden: Set[str] = set()
        while queue:
            hidden_id = queue.popleft()
            if hidden_id in visited_hidden:
                continue
            visited_hidden.add(hidden_id)

            neighbors = [edge.target for edge in outgoing.get(hidden_id, [])]
            neighbors += [edge.source for edge in incoming.get(hidden_id, [])]
            for neighbor_id in neighbors:
                if neighbor_id == source_id:
                    continue
                if neighbor_id not in visible:
                    if neighbor_id not in visited_hidden:
                        queue.append(neighbor_id)
                    continue
                if pair_key(source_id, neighbor_id) in direct_pairs:
                    continue
                left, right = sorted((source_id, neighbor_id))
                collapsed_id = f"collapsed-{left}-{right}"
                if collapsed_id not in result:
                    result[collapsed_id] = Edge(
                        id=collapsed_id,
                        source=left,
                        target=right,
                        kind=EdgeKind.TOUCHES,
                    )

    return list(result.values())


def filter_loners(entities: List[Entity], edges: List[Edge]) -> Tuple[List[Entity], List[Edge]]:
    """Drop entities with no edge to any other entity in the set; self-loops do not count"""
    entity_ids = {entity.id for entity in entities}
    in_scope = [edge for edge in edges if edge.source in entity_ids and edge.target in entity_ids]

    connected: Set[str] = set()
    for edge in in_scope:
        if edge.is_self_loop:
            continue
        connected.add(edge.source)
        connected.add(edge.target)

    return (
        [entity for entity in entities if entity.id in connected],
        [edge for edge in in_scope if edge.source in connected and edge.target in connected],
    )


def connected_subgraph(entity_id: str, entities: List[Entity],
                       edges: List[Edge]) -> Tuple[List[Entity], List[Edge]]:
    """Everything reachable from ``entity_id`` when edge direction is ignored"""
    outgoing, incoming = _adjacency(edges)
    connected: Set[str] = set()
    queue = deque([entity_id])
    while queue:
        current = queue.popleft()
        if current in connected:
            continue
        connected.add(current)
        for edge in outgoing.get(current, []):
            if edge.target not in connected:
                queue.append(edge.target)
        for edge in incoming.get(current, []):
            if edge.source not in connected:
                queue.append(edge.source)

    return (
        [entity for entity in entities if entity.id in connected],
        [edge for edge in edges if edge.source in connected and edge.target in connected],
    )
