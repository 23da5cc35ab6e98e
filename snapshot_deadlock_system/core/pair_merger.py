"""
Merging of paired wire-level primitives into single logical nodes.

A channel is observed as a TX endpoint and an RX endpoint joined by a
``channel_link`` edge; an RPC call as a request and a response joined by an
``rpc_link`` edge. Both pairs collapse into one node whose id is derived from
the two original ids, and every other edge touching either original is
remapped onto the merged node with a port tag naming the side it touched.
"""

from dataclasses import replace
from typing import Dict, List, Optional, Set, Tuple

from .model import Edge, EdgeKind, Entity, EntityKind, Status, Tone, response_status
from ..utils.logger import get_logger

logger = get_logger("pair_merger")

GROUP_MODES = ('none', 'process', 'crate')

CHANNEL_LINK_KINDS = {EdgeKind.CHANNEL_LINK, EdgeKind.PAIRED_WITH}
RPC_LINK_KINDS = {EdgeKind.RPC_LINK, EdgeKind.PAIRED_WITH}


def _strip_suffix(name: str, suffix: str) -> str:
    return name[:-len(suffix)] if name.endswith(suffix) else name


def _channel_protocol(entity: Entity) -> Optional[str]:
    protocol = entity.body.get('protocol')
    if protocol:
        return protocol
    details = entity.body.get('details') or {}
    if isinstance(details, dict) and len(details) == 1:
        return next(iter(details))
    return None


def group_key_for_entity(entity: Entity, group_mode: str) -> str:
    """Grouping key used to decide whether two halves of a pair may be merged"""
    if group_mode == 'process':
        return f"process:{entity.process_id}"
    if group_mode == 'crate':
        return f"crate:{entity.crate_name}"
    return "all"


def _remap_edges(edges: List[Edge], consumed_ids: Set[str],
                 merged_id_for: Dict[str, str], port_id_for: Dict[str, str]) -> List[Edge]:
    remapped = []
    for edge in edges:
        if edge.id in consumed_ids:
            continue
        new_source = merged_id_for.get(edge.source, edge.source)
        new_target = merged_id_for.get(edge.target, edge.target)
        if new_source == edge.source and new_target == edge.target:
            remapped.append(edge)
            continue
        remapped.append(replace(
            edge,
            source=new_source,
            target=new_target,
            source_port=port_id_for.get(edge.source, edge.source_port),
            target_port=port_id_for.get(edge.target, edge.target_port),
        ))
    return remapped


def merge_channel_pairs(entities: List[Entity], edges: List[Edge]) -> Tuple[List[Entity], List[Edge]]:
    """
    Merge TX/RX channel endpoints joined by a link edge into channel pair nodes.

    Args:
        entities: Entities, possibly containing channel endpoints
        edges: Edges, possibly containing channel link edges

    Returns:
        Tuple of (entities, edges) with every linked endpoint pair merged
    """
    entity_by_id = {entity.id: entity for entity in entities}
    channel_links = []
    for edge in edges:
        if edge.kind not in CHANNEL_LINK_KINDS:
            continue
        src = entity_by_id.get(edge.source)
        dst = entity_by_id.get(edge.target)
        if src and dst and src.kind is EntityKind.CHANNEL_TX and dst.kind is EntityKind.CHANNEL_RX:
            channel_links.append(edge)
    channel_link_ids = {edge.id for edge in channel_links}

    merged_id_for: Dict[str, str] = {}
    port_id_for: Dict[str, str] = {}
    merged_entities: List[Entity] = []

    for link in channel_links:
        tx = entity_by_id[link.source]
        rx = entity_by_id[link.target]
        # A TX or RX taking part in more than one link is malformed input
        if link.source in merged_id_for or link.target in merged_id_for:
            logger.logger.debug(f"Skipping channel link {link.id}: endpoint already merged")
            continue

        merged_id = f"pair:{tx.id}:{rx.id}"
        merged_id_for[tx.id] = merged_id
        merged_id_for[rx.id] = merged_id
        port_id_for[tx.id] = f"{merged_id}:tx"
        port_id_for[rx.id] = f"{merged_id}:rx"

        if tx.status.tone is Tone.OK and rx.status.tone is Tone.OK:
            status = Status("open", Tone.OK)
        else:
            status = Status("closed", Tone.NEUTRAL)

        merged_entities.append(replace(
            tx,
            id=merged_id,
            name=_strip_suffix(tx.name, ":tx"),
            kind=EntityKind.CHANNEL_PAIR,
            body={'protocol': _channel_protocol(tx), 'tx': tx.body, 'rx': rx.body},
            status=status,
            in_cycle=False,
            merged_from=(tx.id, rx.id),
            channel_pair={'tx': tx, 'rx': rx},
        ))

    kept = [entity for entity in entities if entity.id not in merged_id_for]
    new_edges = _remap_edges(edges, channel_link_ids, merged_id_for, port_id_for)

    if merged_entities:
        logger.logger.debug(f"Merged {len(merged_entities)} channel pair(s)")
    return kept + merged_entities, new_edges


def merge_rpc_pairs(entities: List[Entity], edges: List[Edge],
                    group_mode: str = 'none') -> Tuple[List[Entity], List[Edge]]:
    """
    Merge request/response entities joined by a link edge into RPC pair nodes.

    Pairs whose halves fall into different groups under ``group_mode`` are
    left unmerged so each half stays with the group that owns it.
    """
    entity_by_id = {entity.id: entity for entity in entities}
    rpc_links = []
    for edge in edges:
        if edge.kind not in RPC_LINK_KINDS:
            continue
        src = entity_by_id.get(edge.source)
        dst = entity_by_id.get(edge.target)
        if not src or not dst:
            continue
        kinds = {src.kind, dst.kind}
        if kinds == {EntityKind.REQUEST, EntityKind.RESPONSE}:
            rpc_links.append(edge)

    merged_id_for: Dict[str, str] = {}
    port_id_for: Dict[str, str] = {}
    merged_link_ids: Set[str] = set()
    merged_entities: List[Entity] = []

    for link in rpc_links:
        src = entity_by_id[link.source]
        dst = entity_by_id[link.target]
        # Producers emit the link in either direction
        if src.kind is EntityKind.REQUEST:
            req, resp = src, dst
        else:
            req, resp = dst, src

        if group_key_for_entity(req, group_mode) != group_key_for_entity(resp, group_mode):
            continue
        if req.id in merged_id_for or resp.id in merged_id_for:
            continue

        merged_id = f"rpc_pair:{req.id}:{resp.id}"
        merged_id_for[req.id] = merged_id
        merged_id_for[resp.id] = merged_id
        port_id_for[req.id] = f"{merged_id}:req"
        port_id_for[resp.id] = f"{merged_id}:resp"
        merged_link_ids.add(link.id)

        merged_entities.append(replace(
            req,
            id=merged_id,
            name=_strip_suffix(req.name, ":req"),
            kind=EntityKind.RPC_PAIR,
            body={'method': req.body.get('method'), 'request': req.body, 'response': resp.body},
            status=response_status(resp.body),
            in_cycle=False,
            merged_from=(req.id, resp.id),
            rpc_pair={'req': req, 'resp': resp},
        ))

    kept = [entity for entity in entities if entity.id not in merged_id_for]
    new_edges = _remap_edges(edges, merged_link_ids, merged_id_for, port_id_for)

    if merged_entities:
        logger.logger.debug(f"Merged {len(merged_entities)} RPC pair(s) (group mode: {group_mode})")
    return kept + merged_entities, new_edges


def coalesce_context_edges(edges: List[Edge]) -> List[Edge]:
    """Drop ``polls`` edges for any (source, target) pair that already has a richer edge"""
    has_non_polls = {
        (edge.source, edge.target) for edge in edges if edge.kind is not EdgeKind.POLLS
    }
    return [
        edge for edge in edges
        if edge.kind is not EdgeKind.POLLS or (edge.source, edge.target) not in has_non_polls
    ]


def merge_pairs(entities: List[Entity], edges: List[Edge],
                group_mode: str = 'none') -> Tuple[List[Entity], List[Edge]]:
    """Run channel merging, then RPC merging"""
    entities, edges = merge_channel_pairs(entities, edges)
    return merge_rpc_pairs(entities, edges, group_mode)
