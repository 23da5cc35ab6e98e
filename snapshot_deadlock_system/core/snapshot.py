"""
Conversion of raw multi-process snapshots into the merged entity/edge graph.

The raw form is the decoded JSON a capture service hands out::

    {
        "snapshot_id": ..., "captured_at_unix_ms": ...,
        "frames": [{"frame_id": 1, "frame": {"resolved": {...}}}],
        "backtraces": [{"backtrace_id": 7, "frame_ids": [1, 2]}],
        "processes": [{
            "process_id": ..., "process_name": ..., "pid": ..., "ptime_now_ms": ...,
            "snapshot": {"entities": [...], "edges": [...], "scopes": [...]},
            "scope_entity_links": [{"scope_id": ..., "entity_id": ...}],
        }],
    }

Entity bodies are single-key dicts naming the kind (``{"lock": {"kind": "mutex"}}``).
"""

from typing import Dict, List, Any, Optional, Tuple

from .model import (
    Edge,
    EdgeKind,
    Entity,
    EntityKind,
    LEGACY_CHANNEL_KINDS,
    RenderFrame,
    RenderSource,
    ScopeDef,
    SnapshotGraph,
    Status,
    Tone,
)
from .kind_registry import register_custom_kind
from .pair_merger import merge_channel_pairs, merge_rpc_pairs, coalesce_context_edges
from .graph_analyzer import mark_cycles
from ..utils.logger import get_logger
from ..utils.validator import SnapshotIntegrityError, is_valid_id

logger = get_logger("snapshot")

SYSTEM_CRATES = {
    "std",
    "core",
    "alloc",
    "tokio",
    "tokio_util",
    "futures",
    "futures_core",
    "futures_util",
    "moire",
    "moire_trace_capture",
    "moire_runtime",
    "moire_tokio",
}

_WIRE_KINDS = {kind.value: kind for kind in EntityKind if kind not in (
    EntityKind.CHANNEL_PAIR, EntityKind.RPC_PAIR, EntityKind.CUSTOM)}


def is_system_crate(krate: str) -> bool:
    return krate in SYSTEM_CRATES


def crate_from_function_name(function_name: str) -> str:
    crate = function_name.split("::")[0].strip()
    return crate or "~no-crate"


def _process_header(proc: Dict[str, Any]) -> Tuple[str, str, int, float]:
    process_id = str(proc['process_id'])
    return (
        process_id,
        proc.get('process_name') or process_id,
        proc.get('pid', 0),
        proc.get('ptime_now_ms', 0),
    )


def _process_body(proc: Dict[str, Any]) -> Dict[str, Any]:
    return proc.get('snapshot', proc)


def _has_backtrace_catalog(snapshot: Dict[str, Any]) -> bool:
    return 'backtraces' in snapshot


# ── Backtraces ─────────────────────────────────────────────────


def build_backtrace_index(snapshot: Dict[str, Any]) -> Dict[int, Dict[str, Any]]:
    """
    Index the snapshot's backtrace catalog, resolving every frame reference.

    Args:
        snapshot: Raw snapshot dictionary

    Returns:
        Mapping of backtrace id to ``{backtrace_id, frame_ids, frames}``

    Raises:
        SnapshotIntegrityError: On invalid or duplicate ids, or a missing frame
    """
    snapshot_id = snapshot.get('snapshot_id')
    frame_catalog: Dict[int, Dict[str, Any]] = {}
    for record in snapshot.get('frames') or []:
        frame_id = record.get('frame_id')
        if not is_valid_id(frame_id):
            raise SnapshotIntegrityError(f"invalid frame id {frame_id!r} in snapshot frames",
                                         snapshot_id=snapshot_id)
        if frame_id in frame_catalog:
            raise SnapshotIntegrityError(f"duplicate frame id {frame_id} in snapshot frames",
                                         snapshot_id=snapshot_id)
        frame_catalog[frame_id] = record.get('frame') or {}

    index: Dict[int, Dict[str, Any]] = {}
    for record in snapshot.get('backtraces') or []:
        backtrace_id = record.get('backtrace_id')
        if not is_valid_id(backtrace_id):
            raise SnapshotIntegrityError(f"invalid backtrace id {backtrace_id!r} in snapshot backtraces",
                                         snapshot_id=snapshot_id)
        if backtrace_id in index:
            raise SnapshotIntegrityError("duplicate backtrace in snapshot backtraces",
                                         snapshot_id=snapshot_id, backtrace_id=backtrace_id)
        frame_ids = list(record.get('frame_ids') or [])
        frames = []
        for frame_id in frame_ids:
            if frame_id not in frame_catalog:
                raise SnapshotIntegrityError(f"backtrace references missing frame id {frame_id}",
                                             snapshot_id=snapshot_id, backtrace_id=backtrace_id)
            frames.append(frame_catalog[frame_id])
        index[backtrace_id] = {
            'backtrace_id': backtrace_id,
            'frame_ids': frame_ids,
            'frames': frames,
        }
    return index


def _render_frame(resolved: Dict[str, Any], frame_id: int) -> RenderFrame:
    return RenderFrame(
        function_name=resolved.get('function_name', ''),
        crate_name=crate_from_function_name(resolved.get('function_name', '')),
        module_path=resolved.get('module_path', ''),
        source_file=resolved.get('source_file', ''),
        line=resolved.get('line'),
        frame_id=frame_id,
    )


def resolve_backtrace_display(index: Dict[int, Dict[str, Any]],
                              backtrace_id: int) -> Tuple[RenderSource, Optional[RenderFrame], List[RenderFrame]]:
    """
    Pick the display source location for a backtrace.

    Prefers the first resolved frame outside the runtime/system crates, then
    the first resolved frame, then the first unresolved module path.

    Returns:
        Tuple of (source, top frame or None, non-system resolved frames)
    """
    record = index.get(backtrace_id)
    fallback = RenderSource(path=f"backtrace:{backtrace_id}", line=0, krate="~no-crate")
    if record is None:
        return fallback, None, []

    resolved = [
        (position, _render_frame(frame['resolved'], record['frame_ids'][position]))
        for position, frame in enumerate(record['frames'])
        if 'resolved' in frame
    ]
    frames = [frame for _, frame in resolved if not is_system_crate(frame.crate_name)]

    top_frame = frames[0] if frames else (resolved[0][1] if resolved else None)
    if top_frame is not None:
        source = RenderSource(path=top_frame.source_file, line=top_frame.line or 0,
                              krate=top_frame.crate_name)
        return source, top_frame, frames

    for frame in record['frames']:
        if 'unresolved' in frame:
            module_path = frame['unresolved'].get('module_path', '')
            return RenderSource(path=module_path, line=0, krate="~unresolved"), None, frames

    return fallback, None, frames


def _require_backtrace_id(owner: Dict[str, Any], required: bool, snapshot_id: Any,
                          process_id: str, entity_id: Optional[str] = None) -> Optional[int]:
    value = owner.get('backtrace')
    if is_valid_id(value):
        return value
    if required:
        raise SnapshotIntegrityError("missing/invalid backtrace id", snapshot_id=snapshot_id,
                                     process_id=process_id, entity_id=entity_id, backtrace_id=value)
    return None


# ── Entities ───────────────────────────────────────────────────


def parse_entity_body(body: Any) -> Tuple[EntityKind, Dict[str, Any]]:
    """
    Split a wire entity body into its kind and payload.

    Unknown kinds degrade to ``CUSTOM`` and are added to the custom kind
    registry with the display name and icon the producer supplied.
    """
    if isinstance(body, str):
        key, payload = body, {}
    elif isinstance(body, dict) and body:
        key = next(iter(body))
        payload = body[key]
    else:
        return EntityKind.CUSTOM, {'kind': EntityKind.CUSTOM.value}

    if not isinstance(payload, dict):
        payload = {'value': payload} if payload is not None else {}

    if key in LEGACY_CHANNEL_KINDS:
        kind, protocol = LEGACY_CHANNEL_KINDS[key]
        return kind, dict(payload, protocol=protocol)

    if key == EntityKind.CUSTOM.value:
        spec = dict(payload)
        spec.setdefault('kind', EntityKind.CUSTOM.value)
        register_custom_kind(spec['kind'], spec.get('display_name'), spec.get('category'), spec.get('icon'))
        return EntityKind.CUSTOM, spec

    if key in _WIRE_KINDS:
        return _WIRE_KINDS[key], payload

    logger.logger.debug(f"Unknown entity kind '{key}', treating as custom")
    spec = dict(payload)
    spec['kind'] = key
    spec.setdefault('display_name', key)
    register_custom_kind(key, spec.get('display_name'), spec.get('category'), spec.get('icon'))
    return EntityKind.CUSTOM, spec


def _build_entities(snapshot: Dict[str, Any], index: Dict[int, Dict[str, Any]],
                    compose_ids: bool, require_backtraces: bool) -> Tuple[List[Entity], Dict[str, Dict[str, str]]]:
    snapshot_id = snapshot.get('snapshot_id')
    captured_at = snapshot.get('captured_at_unix_ms')
    entities: List[Entity] = []
    seen_ids = set()
    local_ids: Dict[str, Dict[str, str]] = {}

    for proc in snapshot.get('processes', []):
        process_id, process_name, pid, ptime_now_ms = _process_header(proc)
        process_ids = local_ids.setdefault(process_id, {})

        for raw in _process_body(proc).get('entities', []):
            raw_id = str(raw['id'])
            entity_id = f"{process_id}/{raw_id}" if compose_ids else raw_id
            if entity_id in seen_ids:
                raise SnapshotIntegrityError("duplicate entity id", snapshot_id=snapshot_id,
                                             process_id=process_id, entity_id=entity_id)
            seen_ids.add(entity_id)
            process_ids[raw_id] = entity_id

            backtrace_id = _require_backtrace_id(raw, require_backtraces, snapshot_id, process_id, entity_id)
            source, top_frame, frames = None, None, []
            if backtrace_id is not None:
                source, top_frame, frames = resolve_backtrace_display(index, backtrace_id)

            kind, payload = parse_entity_body(raw.get('body'))
            birth = raw.get('birth', 0)
            entities.append(Entity(
                id=entity_id,
                process_id=process_id,
                process_name=process_name,
                pid=pid,
                name=raw.get('name') or raw_id,
                kind=kind,
                body=payload,
                birth=birth,
                age_ms=max(0, ptime_now_ms - birth),
                birth_approx_unix_ms=(captured_at - ptime_now_ms + birth) if captured_at is not None else None,
                backtrace_id=backtrace_id,
                source=source,
                krate=source.krate if source else None,
                top_frame=top_frame,
                frames=frames,
                meta=dict(raw.get('meta') or {}),
                removed_at=raw.get('removed_at'),
            ))

    return entities, local_ids


# ── Edges ──────────────────────────────────────────────────────


def _resolve_endpoint(raw_id: str, process_id: str, local_ids: Dict[str, Dict[str, str]],
                      global_ids: Dict[str, str]) -> Optional[str]:
    resolved = local_ids.get(process_id, {}).get(raw_id)
    if resolved is not None:
        return resolved
    return global_ids.get(raw_id)


def _resolve_edge_kind(wire_kind: Any, src: Entity, dst: Entity) -> EdgeKind:
    try:
        kind = EdgeKind.from_wire(wire_kind)
    except ValueError:
        logger.log_warning(f"Unknown edge kind '{wire_kind}', treating as '{EdgeKind.TOUCHES.value}'")
        return EdgeKind.TOUCHES

    if kind is EdgeKind.PAIRED_WITH:
        kinds = {src.kind, dst.kind}
        if kinds == {EntityKind.CHANNEL_TX, EntityKind.CHANNEL_RX}:
            return EdgeKind.CHANNEL_LINK
        if kinds == {EntityKind.REQUEST, EntityKind.RESPONSE}:
            return EdgeKind.RPC_LINK
    return kind


def _build_edges(snapshot: Dict[str, Any], index: Dict[int, Dict[str, Any]],
                 entity_by_id: Dict[str, Entity], local_ids: Dict[str, Dict[str, str]]) -> List[Edge]:
    snapshot_id = snapshot.get('snapshot_id')
    has_catalog = _has_backtrace_catalog(snapshot)
    global_ids: Dict[str, str] = {}
    for process_ids in local_ids.values():
        for raw_id, entity_id in process_ids.items():
            global_ids.setdefault(raw_id, entity_id)

    edges: List[Edge] = []
    for proc in snapshot.get('processes', []):
        process_id = str(proc['process_id'])
        for position, raw in enumerate(_process_body(proc).get('edges', [])):
            source = _resolve_endpoint(str(raw['src']), process_id, local_ids, global_ids)
            target = _resolve_endpoint(str(raw['dst']), process_id, local_ids, global_ids)
            if source is None or target is None:
                logger.logger.debug(
                    f"Dropping edge {raw['src']} -> {raw['dst']} in process {process_id}: unresolved endpoint"
                )
                continue

            backtrace_id = raw.get('backtrace')
            if backtrace_id is not None and has_catalog and backtrace_id not in index:
                raise SnapshotIntegrityError("edge references unknown backtrace", snapshot_id=snapshot_id,
                                             process_id=process_id,
                                             edge_id=f"{raw['src']}->{raw['dst']}",
                                             backtrace_id=backtrace_id)

            kind = _resolve_edge_kind(raw.get('kind'), entity_by_id[source], entity_by_id[target])
            edges.append(Edge(
                id=f"e{process_id}.{position}-{source}-{target}-{kind.value}",
                source=source,
                target=target,
                kind=kind,
                meta=dict(raw.get('meta') or {}),
            ))
    return edges


def apply_holds_rule(entities: List[Entity], edges: List[Edge]):
    """Mark every lock that is the source of a ``holds`` edge as locked by the edge target"""
    entity_by_id = {entity.id: entity for entity in entities}
    for edge in edges:
        if edge.kind is not EdgeKind.HOLDS:
            continue
        lock = entity_by_id.get(edge.source)
        if lock is None or lock.kind is not EntityKind.LOCK:
            continue
        lock.status = Status("locked", Tone.WARN)
        holder = entity_by_id.get(edge.target)
        if holder is not None:
            lock.holder_name = holder.name


# ── Conversion ─────────────────────────────────────────────────


def convert_snapshot(snapshot: Dict[str, Any], group_mode: str = 'none', compose_ids: bool = False,
                     require_backtraces: Optional[bool] = None) -> SnapshotGraph:
    """
    Convert a raw snapshot into the merged, cycle-marked graph.

    Args:
        snapshot: Raw snapshot dictionary
        group_mode: Grouping used to decide which RPC pairs may merge
        compose_ids: Prefix entity ids with their process id
        require_backtraces: Require a backtrace id on every entity; None
            enables the check when the snapshot carries a backtrace catalog

    Returns:
        SnapshotGraph with channel/RPC pairs merged and cycles marked

    Raises:
        SnapshotIntegrityError: If the snapshot violates an integrity rule
    """
    if require_backtraces is None:
        require_backtraces = _has_backtrace_catalog(snapshot)

    index = build_backtrace_index(snapshot)
    entities, local_ids = _build_entities(snapshot, index, compose_ids, require_backtraces)
    entity_by_id = {entity.id: entity for entity in entities}
    edges = _build_edges(snapshot, index, entity_by_id, local_ids)
    apply_holds_rule(entities, edges)

    entities, edges = merge_channel_pairs(entities, edges)
    entities, edges = merge_rpc_pairs(entities, edges, group_mode)
    edges = coalesce_context_edges(edges)
    mark_cycles(entities, edges)

    logger.logger.debug(
        f"Converted snapshot {snapshot.get('snapshot_id')}: {len(entities)} entities, {len(edges)} edges"
    )
    return SnapshotGraph(entities=entities, edges=edges)


def _scope_kind(body: Any) -> str:
    if isinstance(body, str):
        return body.lower()
    if isinstance(body, dict) and body:
        return str(next(iter(body))).lower()
    return "unknown"


def extract_scopes(snapshot: Dict[str, Any], require_backtraces: Optional[bool] = None) -> List[ScopeDef]:
    """Collect display scopes (process, thread, task, connection, ...) with their member entity ids"""
    if require_backtraces is None:
        require_backtraces = _has_backtrace_catalog(snapshot)
    snapshot_id = snapshot.get('snapshot_id')
    index = build_backtrace_index(snapshot)

    scopes: List[ScopeDef] = []
    for proc in snapshot.get('processes', []):
        process_id, process_name, pid, ptime_now_ms = _process_header(proc)

        members_by_scope: Dict[str, List[str]] = {}
        for link in proc.get('scope_entity_links') or []:
            members_by_scope.setdefault(str(link['scope_id']), []).append(str(link['entity_id']))

        for raw in _process_body(proc).get('scopes', []):
            scope_id = str(raw['id'])
            backtrace_id = _require_backtrace_id(raw, require_backtraces, snapshot_id, process_id)
            source = None
            if backtrace_id is not None:
                source, _, _ = resolve_backtrace_display(index, backtrace_id)
            birth = raw.get('birth', 0)
            scopes.append(ScopeDef(
                key=f"{process_id}:{scope_id}",
                process_id=process_id,
                process_name=process_name,
                pid=pid,
                scope_id=scope_id,
                scope_name=raw.get('name') or scope_id,
                scope_kind=_scope_kind(raw.get('body')),
                birth=birth,
                age_ms=max(0, ptime_now_ms - birth),
                member_entity_ids=members_by_scope.get(scope_id, []),
                backtrace_id=backtrace_id,
                source=source,
            ))
    return scopes
