from dataclasses import dataclass, field
from typing import List, Optional, Set

from ..core.model import Entity, SnapshotGraph
from .reduction import collapse_edges_through_hidden_nodes, filter_loners

LONERS_ON = ('on', 'true', 'yes')
LONERS_OFF = ('off', 'false', 'no')
COLOR_MODES = ('process', 'crate')
GROUP_MODES = ('process', 'crate', 'none')


@dataclass
class FilterToken:
    raw: str
    key: Optional[str]
    value: Optional[str]
    valid: bool


@dataclass
class GraphFilter:
    """Parsed graph filter query"""
    tokens: List[FilterToken] = field(default_factory=list)
    include_node_ids: Set[str] = field(default_factory=set)
    exclude_node_ids: Set[str] = field(default_factory=set)
    include_locations: Set[str] = field(default_factory=set)
    exclude_locations: Set[str] = field(default_factory=set)
    include_crates: Set[str] = field(default_factory=set)
    exclude_crates: Set[str] = field(default_factory=set)
    include_processes: Set[str] = field(default_factory=set)
    exclude_processes: Set[str] = field(default_factory=set)
    include_kinds: Set[str] = field(default_factory=set)
    exclude_kinds: Set[str] = field(default_factory=set)
    show_loners: Optional[bool] = None
    color_by: Optional[str] = None
    group_by: Optional[str] = None


def tokenize_filter_query(text: str) -> List[str]:
    """Split on whitespace outside double quotes; backslash escapes the next character"""
    tokens = []
    current = ""
    in_quotes = False
    escaped = False

    for ch in text:
        if escaped:
            current += ch
            escaped = False
            continue
        if ch == "\\":
            current += ch
            escaped = True
            continue
        if ch == '"':
            current += ch
            in_quotes = not in_quotes
            continue
        if ch.isspace() and not in_quotes:
            if current.strip():
                tokens.append(current.strip())
            current = ""
            continue
        current += ch

    if current.strip():
        tokens.append(current.strip())
    return tokens


def strip_filter_quotes(value: str) -> str:
    trimmed = value.strip()
    if len(trimmed) >= 2 and trimmed.startswith('"') and trimmed.endswith('"'):
        return trimmed[1:-1].replace('\\"', '"').replace('\\\\', '\\')
    return trimmed


def parse_graph_filter_query(text: str) -> GraphFilter:
    """
    Parse a filter query such as ``+kind:lock -process:web loners:off``.

    Signed tokens (``+`` include, ``-`` exclude) take a ``node``/``id``,
    ``location``/``source``, ``crate``, ``process`` or ``kind`` key. Unsigned
    settings are ``loners:on|off``, ``colorBy:process|crate`` and
    ``groupBy:process|crate|none``. Anything else is kept as an invalid token.
    """
    parsed = GraphFilter()
    signed_targets = {
        'node': (parsed.include_node_ids, parsed.exclude_node_ids),
        'id': (parsed.include_node_ids, parsed.exclude_node_ids),
        'location': (parsed.include_locations, parsed.exclude_locations),
        'source': (parsed.include_locations, parsed.exclude_locations),
        'crate': (parsed.include_crates, parsed.exclude_crates),
        'process': (parsed.include_processes, parsed.exclude_processes),
        'kind': (parsed.include_kinds, parsed.exclude_kinds),
    }

    for raw in tokenize_filter_query(text):
        if raw.find(':') < 1:
            parsed.tokens.append(FilterToken(raw, None, None, False))
            continue

        sign = raw[0] if raw[0] in '+-' else ''
        unsigned = raw[1:] if sign else raw
        key, _, value_raw = unsigned.partition(':')
        value_raw = strip_filter_quotes(value_raw)
        value = value_raw.strip()
        key_lower = key.lower()
        if not value:
            parsed.tokens.append(FilterToken(raw, key, value_raw, False))
            continue

        valid = False
        if sign and key_lower in signed_targets:
            include, exclude = signed_targets[key_lower]
            (include if sign == '+' else exclude).add(value)
            valid = True
        elif key_lower == 'loners':
            if value in LONERS_ON:
                parsed.show_loners = True
                valid = True
            elif value in LONERS_OFF:
                parsed.show_loners = False
                valid = True
        elif key_lower == 'colorby' and value in COLOR_MODES:
            parsed.color_by = value
            valid = True
        elif key_lower == 'groupby' and value in GROUP_MODES:
            parsed.group_by = value
            valid = True

        parsed.tokens.append(FilterToken(raw, key, value_raw, valid))

    return parsed


def _location_keys(entity: Entity) -> Set[str]:
    if not entity.source:
        return set()
    return {entity.source.path, f"{entity.source.path}:{entity.source.line}"}


def _matches(values: Set[str], candidates: Set[str]) -> bool:
    return bool(values & candidates)


def entity_visible(entity: Entity, parsed: GraphFilter) -> bool:
    """Whether an entity passes every include and exclude set of the filter"""
    checks = [
        (parsed.include_node_ids, parsed.exclude_node_ids, {entity.id}),
        (parsed.include_locations, parsed.exclude_locations, _location_keys(entity)),
        (parsed.include_crates, parsed.exclude_crates, {entity.crate_name}),
        (parsed.include_processes, parsed.exclude_processes, {entity.process_id, entity.process_name}),
        (parsed.include_kinds, parsed.exclude_kinds, {entity.kind_name}),
    ]
    for include, exclude, candidates in checks:
        if include and not _matches(include, candidates):
            return False
        if _matches(exclude, candidates):
            return False
    return True


def apply_graph_filter(graph: SnapshotGraph, parsed: GraphFilter, show_loners: bool = True) -> SnapshotGraph:
    """
    Reduce a graph to the entities a filter keeps.

    Paths through filtered-out entities are collapsed into synthetic edges,
    and unconnected entities are dropped when loners are hidden (by the
    filter's ``loners:`` setting, else by ``show_loners``).
    """
    visible = [entity for entity in graph.entities if entity_visible(entity, parsed)]
    edges = collapse_edges_through_hidden_nodes(graph.edges, (entity.id for entity in visible))

    keep_loners = parsed.show_loners if parsed.show_loners is not None else show_loners
    if not keep_loners:
        visible, edges = filter_loners(visible, edges)
    return SnapshotGraph(entities=visible, edges=edges)
