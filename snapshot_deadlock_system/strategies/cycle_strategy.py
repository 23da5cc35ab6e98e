from typing import Dict, List, Optional, Set, Tuple

from ..core.base_detector import (
    BaseDeadlockStrategy,
    CycleEdge,
    CycleNode,
    DeadlockCandidate,
    DeadlockSeverity,
)
from ..core.graph_analyzer import find_cycles
from ..core.model import Edge, EdgeKind, Entity, EntityKind, SnapshotGraph

DEFAULT_HIGH_WAIT_SECS = 5.0
DEFAULT_MAX_CYCLES = 256

# Score weights
BASE_SCORE = 10.0
WAIT_WEIGHT = 2.0
BLOCKED_TASK_WEIGHT = 5.0
PATH_LENGTH_WEIGHT = 2.0
CROSS_PROCESS_BONUS = 15.0

TASK_KINDS = {EntityKind.FUTURE.value}


class CycleCandidateStrategy(BaseDeadlockStrategy):
    """Strategy that promotes waits-on cycles to scored deadlock candidates"""

    def __init__(self):
        super().__init__(
            name="cycle_candidates",
            description="Ranks every simple waits-on cycle as a deadlock candidate"
        )

    def detect(self, graph: SnapshotGraph, config: Dict = None) -> List[DeadlockCandidate]:
        """Build one candidate per simple cycle, ranked worst first"""
        config = config or {}
        return build_deadlock_candidates(
            graph,
            high_wait_secs=config.get('high_wait_secs', DEFAULT_HIGH_WAIT_SECS),
            max_cycles=config.get('max_cycles', DEFAULT_MAX_CYCLES),
        )


def edge_wait_secs(edge: Edge, source: Optional[Entity]) -> float:
    """How long the source of a waits-on edge has been waiting"""
    if 'wait_secs' in edge.meta:
        return float(edge.meta['wait_secs'])
    if 'wait_ms' in edge.meta:
        return float(edge.meta['wait_ms']) / 1000.0
    return source.age_secs if source else 0.0


def _port_side(port: Optional[str]) -> Optional[str]:
    if not port:
        return None
    return port.rsplit(':', 1)[-1]


def default_wait_reason(edge: Edge, target: Optional[Entity]) -> str:
    if target is None:
        return "waiting"
    kind = target.kind
    if kind is EntityKind.LOCK:
        return "blocked acquiring lock"
    if kind in (EntityKind.CHANNEL_TX, EntityKind.CHANNEL_RX, EntityKind.CHANNEL_PAIR):
        side = _port_side(edge.target_port)
        if side == 'tx' or kind is EntityKind.CHANNEL_TX:
            return "blocked sending on channel"
        if side == 'rx' or kind is EntityKind.CHANNEL_RX:
            return "blocked receiving on channel"
        return "waiting on channel"
    if kind in (EntityKind.REQUEST, EntityKind.RESPONSE, EntityKind.RPC_PAIR):
        return "waiting on RPC response"
    if kind is EntityKind.SEMAPHORE:
        return "waiting for semaphore permit"
    if kind is EntityKind.NOTIFY:
        return "waiting for notification"
    if kind is EntityKind.ONCE_CELL:
        return "waiting for once-cell initialization"
    if kind is EntityKind.FUTURE:
        return "waiting on future"
    return f"waiting on {target.kind_name}"


def explain_edge(edge: Edge, target: Optional[Entity], wait_secs: float) -> str:
    """Human-readable explanation such as 'blocked acquiring lock for 4.20s'"""
    reason = edge.meta.get('reason') or default_wait_reason(edge, target)
    resource = edge.meta.get('resource')
    if resource:
        reason = f"{reason} ({resource})"
    return f"{reason} for {wait_secs:.2f}s"


def build_title(cycle_path: List[CycleNode], cross_process: bool) -> str:
    prefix = "Cross-process deadlock" if cross_process else "Deadlock"
    names = [node.label for node in cycle_path if node.kind in TASK_KINDS]
    if not names:
        return f"{prefix} involving {len(cycle_path)} nodes"
    if len(names) == 1:
        return f"{prefix}: {names[0]}"
    if len(names) == 2:
        return f"{prefix}: {names[0]} <-> {names[1]}"
    return f"{prefix}: {names[0]}, {names[1]}, and {len(names) - 2} more"


def _first_waits_on_edges(edges: List[Edge]) -> Dict[Tuple[str, str], Edge]:
    by_pair: Dict[Tuple[str, str], Edge] = {}
    for edge in edges:
        if edge.kind is EdgeKind.WAITS_ON:
            by_pair.setdefault((edge.source, edge.target), edge)
    return by_pair


def _polled_outside(entity_id: str, cycle_ids: Set[str], edges: List[Edge]) -> List[str]:
    return [
        edge.target for edge in edges
        if edge.kind is EdgeKind.POLLS and edge.source == entity_id and edge.target not in cycle_ids
    ]


def _blocked_tasks(cycle_ids: Set[str], edges: List[Edge]) -> Set[str]:
    return {
        edge.source for edge in edges
        if edge.kind is EdgeKind.WAITS_ON and edge.target in cycle_ids
    }


def _build_candidate(path: List[str], entity_by_id: Dict[str, Entity], edges: List[Edge],
                     waits_on: Dict[Tuple[str, str], Edge], high_wait_secs: float) -> DeadlockCandidate:
    cycle_ids = set(path)
    cycle_path = []
    for entity_id in path:
        entity = entity_by_id.get(entity_id)
        cycle_path.append(CycleNode(
            entity_id=entity_id,
            label=entity.name if entity else entity_id,
            kind=entity.kind_name if entity else "unknown",
            process_id=entity.process_id if entity else "",
            process_name=entity.process_name if entity else "",
        ))

    def label(position: int) -> str:
        return cycle_path[position % len(path)].label

    cycle_edges = []
    rationale = []
    for position, source_id in enumerate(path):
        next_position = (position + 1) % len(path)
        target_id = path[next_position]
        edge = waits_on[(source_id, target_id)]
        wait_secs = edge_wait_secs(edge, entity_by_id.get(source_id))
        explanation = explain_edge(edge, entity_by_id.get(target_id), wait_secs)
        cycle_edges.append(CycleEdge(
            from_index=position,
            to_index=next_position,
            explanation=explanation,
            wait_secs=wait_secs,
        ))

        polled = _polled_outside(target_id, cycle_ids, edges)
        if polled:
            polled_entity = entity_by_id.get(polled[0])
            polled_name = polled_entity.name if polled_entity else polled[0]
            holder_note = f"{label(next_position)} is actively polling {polled_name}"
        else:
            holder_note = f"{label(next_position)} is itself blocked waiting on {label(next_position + 1)}"
        rationale.append(f"{label(position)} -> {label(next_position)}: {explanation}; {holder_note}")

    processes = {node.process_id for node in cycle_path}
    cross_process = len(processes) > 1
    worst_wait_secs = max((cycle_edge.wait_secs for cycle_edge in cycle_edges), default=0.0)
    blocked = _blocked_tasks(cycle_ids, edges)
    blocked_outside = blocked - cycle_ids

    if cross_process:
        rationale.append(f"spans {len(processes)} processes")
    if worst_wait_secs > high_wait_secs:
        rationale.append(f"worst wait: {worst_wait_secs:.2f}s (>{high_wait_secs:g}s)")
    else:
        rationale.append(f"worst wait: {worst_wait_secs:.2f}s")
    if blocked_outside:
        rationale.append(f"{len(blocked_outside)} tasks blocked outside cycle")

    if worst_wait_secs > high_wait_secs or cross_process:
        severity = DeadlockSeverity.DANGER
    else:
        severity = DeadlockSeverity.WARN

    score = (
        BASE_SCORE
        + WAIT_WEIGHT * worst_wait_secs
        + BLOCKED_TASK_WEIGHT * len(blocked)
        + PATH_LENGTH_WEIGHT * len(path)
        + (CROSS_PROCESS_BONUS if cross_process else 0.0)
    )

    return DeadlockCandidate(
        id=0,
        severity=severity,
        score=round(score, 2),
        title=build_title(cycle_path, cross_process),
        cycle_path=cycle_path,
        cycle_edges=cycle_edges,
        rationale=rationale,
        cross_process=cross_process,
        worst_wait_secs=worst_wait_secs,
        blocked_task_count=len(blocked),
    )


def build_deadlock_candidates(graph: SnapshotGraph, high_wait_secs: float = DEFAULT_HIGH_WAIT_SECS,
                              max_cycles: int = DEFAULT_MAX_CYCLES) -> List[DeadlockCandidate]:
    """
    Promote every simple waits-on cycle of the graph to a deadlock candidate.

    Args:
        graph: Merged snapshot graph
        high_wait_secs: Wait above which a cycle is dangerous
        max_cycles: Cap on the number of cycles enumerated

    Returns:
        Candidates sorted by score, severity, then worst wait (worst first),
        with ids assigned in that order starting at 1
    """
    entity_by_id = graph.entity_by_id()
    waits_on = _first_waits_on_edges(graph.edges)

    candidates = [
        _build_candidate(path, entity_by_id, graph.edges, waits_on, high_wait_secs)
        for path in find_cycles(graph.edges, max_cycles)
    ]
    candidates.sort(key=lambda c: (
        -c.score,
        -c.severity.rank,
        -c.worst_wait_secs,
        c.cycle_path[0].entity_id,
    ))
    for position, candidate in enumerate(candidates, start=1):
        candidate.id = position
    return candidates
