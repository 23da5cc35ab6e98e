"""
Threshold classification of blocking signals.

Signals are single measurements (a lock held for N seconds, a channel with
blocked senders, an RPC in flight, a peer that stopped heart-beating, ...).
Each classifier maps one measurement onto WARN/DANGER or None, using the bands
in ``DEFAULT_THRESHOLDS``. The graph model stays the source of truth; this
module is only the severity layer on top of it.
"""

from typing import Dict, List, Any, Optional, Tuple

from ..core.base_detector import (
    BaseDeadlockStrategy,
    BlockingObservation,
    DeadlockSeverity,
    Problem,
    RelationshipIssue,
)
from ..core.model import Edge, EdgeKind, Entity, EntityKind, SnapshotGraph, Tone
from ..config.detection_config import DEFAULT_THRESHOLDS
from .cycle_strategy import edge_wait_secs
from .root_cause_strategy import dedupe_relationship_issues

CHANNEL_KINDS = {EntityKind.CHANNEL_TX, EntityKind.CHANNEL_RX, EntityKind.CHANNEL_PAIR}
RPC_KINDS = {EntityKind.REQUEST, EntityKind.RESPONSE, EntityKind.RPC_PAIR}
CLOSED_ONESHOT_STATES = ('sender_dropped', 'receiver_dropped')


def format_duration(secs: float) -> str:
    if secs < 1:
        return f"{secs * 1000:.0f}ms"
    if secs < 60:
        return f"{secs:.1f}s"
    minutes, seconds = divmod(int(secs), 60)
    return f"{minutes}m{seconds:02d}s"


def _thresholds(thresholds: Optional[Dict[str, float]]) -> Dict[str, float]:
    merged = dict(DEFAULT_THRESHOLDS)
    merged.update(thresholds or {})
    return merged


def classify_band(value: float, warn: float, danger: float) -> Optional[DeadlockSeverity]:
    """DANGER above ``danger``, WARN above ``warn``, otherwise None"""
    if value > danger:
        return DeadlockSeverity.DANGER
    if value > warn:
        return DeadlockSeverity.WARN
    return None


# ── Per-signal classifiers ─────────────────────────────────────


def classify_lock_wait(secs: float, thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    """Classify a lock held or waited on for ``secs`` seconds"""
    t = _thresholds(thresholds)
    return classify_band(secs, t['lock_warn_secs'], t['lock_danger_secs'])


def classify_poll(secs: float, thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    t = _thresholds(thresholds)
    return classify_band(secs, t['poll_warn_secs'], t['poll_danger_secs'])


def classify_pending_task(age_secs: float, poll_count: int,
                          thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    t = _thresholds(thresholds)
    if poll_count == 0 and age_secs > t['pending_unpolled_warn_secs']:
        return DeadlockSeverity.WARN
    return None


def classify_thread_stuck(samples: int, thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    t = _thresholds(thresholds)
    if samples >= t['thread_stuck_danger_samples']:
        return DeadlockSeverity.DANGER
    if samples >= t['thread_stuck_warn_samples']:
        return DeadlockSeverity.WARN
    return None


def classify_channel(send_waiters: int, sender_closed: bool,
                     receiver_closed: bool) -> Optional[Tuple[DeadlockSeverity, str]]:
    """
    Classify a channel from its blocked senders and closed sides.

    Returns:
        Tuple of (severity, description), or None when the channel is healthy
    """
    if send_waiters > 0 and receiver_closed:
        return DeadlockSeverity.DANGER, f"{send_waiters} blocked sender(s), receiver closed"
    if sender_closed or receiver_closed:
        side = "sender" if sender_closed else "receiver"
        return DeadlockSeverity.DANGER, f"Broken pipe: {side} closed"
    if send_waiters > 0:
        return DeadlockSeverity.WARN, f"{send_waiters} sender(s) blocked (backpressure)"
    return None


def classify_oneshot(state: str, age_secs: float,
                     thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    t = _thresholds(thresholds)
    if state in CLOSED_ONESHOT_STATES:
        return DeadlockSeverity.DANGER
    if state == 'pending' and age_secs > t['oneshot_pending_warn_secs']:
        return DeadlockSeverity.WARN
    return None


def classify_once_cell(state: str, age_secs: float,
                       thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    t = _thresholds(thresholds)
    if state == 'initializing' and age_secs > t['once_cell_initializing_warn_secs']:
        return DeadlockSeverity.WARN
    return None


def classify_rpc(elapsed_secs: float, thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    t = _thresholds(thresholds)
    return classify_band(elapsed_secs, t['rpc_warn_secs'], t['rpc_danger_secs'])


def classify_heartbeat(silence_ms: float, thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    t = _thresholds(thresholds)
    return classify_band(silence_ms, t['heartbeat_warn_ms'], t['heartbeat_danger_ms'])


def classify_queue(length: int, capacity: int) -> Optional[DeadlockSeverity]:
    if capacity > 0 and length >= capacity:
        return DeadlockSeverity.WARN
    return None


# ── Signal rows ────────────────────────────────────────────────


def _problem(severity, category, signal, description, timing, timing_label) -> Problem:
    return Problem(
        severity=severity,
        category=category,
        process=signal.get('process', ''),
        resource=signal.get('resource', ''),
        description=description,
        timing=timing,
        timing_label=timing_label,
        backtrace=signal.get('backtrace'),
    )


def classify_signal(signal: Dict[str, Any], thresholds: Optional[Dict] = None) -> Optional[Problem]:
    """
    Classify one signal row into a Problem.

    The ``type`` key selects the classifier: ``lock_held``, ``lock_wait``,
    ``task_poll``, ``task_pending``, ``thread``, ``channel``, ``oneshot``,
    ``once_cell``, ``rpc``, ``heartbeat`` or ``queue``.

    Returns:
        Problem, or None when the signal is below every band
    """
    signal_type = signal.get('type')

    if signal_type in ('lock_held', 'lock_wait'):
        secs = float(signal.get('secs', 0))
        severity = classify_lock_wait(secs, thresholds)
        if severity is None:
            return None
        verb = "Held" if signal_type == 'lock_held' else "Waiting"
        lock_kind = signal.get('lock_kind', 'lock')
        return _problem(severity, "Locks", signal, f"{verb} for {format_duration(secs)} ({lock_kind})",
                        secs, format_duration(secs))

    if signal_type == 'task_poll':
        secs = float(signal.get('secs', 0))
        severity = classify_poll(secs, thresholds)
        if severity is None:
            return None
        return _problem(severity, "Tasks", signal, f"Polling for {format_duration(secs)}",
                        secs, format_duration(secs))

    if signal_type == 'task_pending':
        age = float(signal.get('age_secs', 0))
        severity = classify_pending_task(age, signal.get('poll_count', 0), thresholds)
        if severity is None:
            return None
        return _problem(severity, "Tasks", signal, f"Pending for {format_duration(age)}, never polled",
                        age, format_duration(age))

    if signal_type == 'thread':
        samples = int(signal.get('same_location_count', 0))
        severity = classify_thread_stuck(samples, thresholds)
        if severity is None:
            return None
        description = f"Stuck at same location for {samples} samples" \
            if severity is DeadlockSeverity.DANGER else f"Same location for {samples} samples"
        return _problem(severity, "Threads", signal, description, samples, f"{samples} samples stuck")

    if signal_type == 'channel':
        classified = classify_channel(
            int(signal.get('send_waiters', 0)),
            bool(signal.get('sender_closed')),
            bool(signal.get('receiver_closed')),
        )
        if classified is None:
            return None
        age = float(signal.get('age_secs', 0))
        severity, description = classified
        return _problem(severity, "Channels", signal, description, age, format_duration(age))

    if signal_type == 'oneshot':
        state = str(signal.get('state', 'pending')).lower()
        age = float(signal.get('age_secs', 0))
        severity = classify_oneshot(state, age, thresholds)
        if severity is None:
            return None
        description = f"Oneshot: {state}" if severity is DeadlockSeverity.DANGER \
            else f"Oneshot pending for {format_duration(age)}"
        return _problem(severity, "Channels", signal, description, age, format_duration(age))

    if signal_type == 'once_cell':
        state = str(signal.get('state', 'empty')).lower()
        age = float(signal.get('age_secs', 0))
        severity = classify_once_cell(state, age, thresholds)
        if severity is None:
            return None
        return _problem(severity, "Channels", signal, f"OnceCell initializing for {format_duration(age)}",
                        age, format_duration(age))

    if signal_type == 'rpc':
        elapsed = float(signal.get('elapsed_secs', 0))
        severity = classify_rpc(elapsed, thresholds)
        if severity is None:
            return None
        return _problem(severity, "RPC", signal, f"In-flight for {format_duration(elapsed)}",
                        elapsed, format_duration(elapsed))

    if signal_type == 'heartbeat':
        silence_ms = float(signal.get('silence_ms', 0))
        severity = classify_heartbeat(silence_ms, thresholds)
        if severity is None:
            return None
        secs = silence_ms / 1000.0
        return _problem(severity, "SHM", signal, f"No heartbeat for {secs:.1f}s", secs, format_duration(secs))

    if signal_type == 'queue':
        length = int(signal.get('len', 0))
        capacity = int(signal.get('capacity', 0))
        severity = classify_queue(length, capacity)
        if severity is None:
            return None
        return _problem(severity, "SHM", signal, f"Queue full ({length}/{capacity})",
                        capacity, f"{length}/{capacity}")

    return None


def classify_signals(signals: List[Dict[str, Any]], thresholds: Optional[Dict] = None) -> List[Problem]:
    """Classify every signal row, keeping problems danger-first, then by timing"""
    problems = []
    for signal in signals:
        problem = classify_signal(signal, thresholds)
        if problem is not None:
            problems.append(problem)
    problems.sort(key=lambda p: (-p.severity.rank, -p.timing))
    return problems


# ── Signals derived from the graph ─────────────────────────────


def _is_closed(entity: Entity) -> bool:
    return entity.status.label.startswith("closed")


def _channel_sides(entity: Entity) -> Tuple[bool, bool]:
    """(sender_closed, receiver_closed) for a channel endpoint or merged pair"""
    if entity.kind is EntityKind.CHANNEL_PAIR and entity.channel_pair:
        return _is_closed(entity.channel_pair['tx']), _is_closed(entity.channel_pair['rx'])
    if entity.kind is EntityKind.CHANNEL_TX:
        return _is_closed(entity), False
    return False, _is_closed(entity)


def _is_sending_edge(edge: Edge, target: Entity) -> bool:
    if edge.target_port:
        return edge.target_port.endswith(':tx')
    return target.kind is EntityKind.CHANNEL_TX


def signals_from_graph(graph: SnapshotGraph) -> List[Dict[str, Any]]:
    """Derive signal rows from entity state and waits-on/holds edges of a merged graph"""
    entity_by_id = graph.entity_by_id()
    signals: List[Dict[str, Any]] = []
    send_waiters: Dict[str, int] = {}

    for edge in graph.edges:
        source = entity_by_id.get(edge.source)
        target = entity_by_id.get(edge.target)
        if source is None or target is None:
            continue
        if edge.kind is EdgeKind.HOLDS and source.kind is EntityKind.LOCK and 'held_secs' in edge.meta:
            signals.append({
                'type': 'lock_held', 'process': source.process_name, 'resource': source.name,
                'secs': float(edge.meta['held_secs']), 'lock_kind': source.body.get('kind', 'lock'),
            })
        if edge.kind is not EdgeKind.WAITS_ON:
            continue
        if target.kind is EntityKind.LOCK:
            signals.append({
                'type': 'lock_wait', 'process': target.process_name, 'resource': target.name,
                'secs': edge_wait_secs(edge, source), 'lock_kind': target.body.get('kind', 'lock'),
            })
        elif target.kind in CHANNEL_KINDS and _is_sending_edge(edge, target):
            send_waiters[target.id] = send_waiters.get(target.id, 0) + 1

    for entity in graph.entities:
        if entity.kind is EntityKind.FUTURE:
            if 'last_poll_secs' in entity.body:
                signals.append({
                    'type': 'task_poll', 'process': entity.process_name, 'resource': entity.name,
                    'secs': float(entity.body['last_poll_secs']),
                })
            elif entity.body.get('poll_count') == 0:
                signals.append({
                    'type': 'task_pending', 'process': entity.process_name, 'resource': entity.name,
                    'age_secs': entity.age_secs, 'poll_count': 0,
                })
        elif entity.kind in CHANNEL_KINDS:
            if entity.body.get('protocol') == 'oneshot' and 'state' in entity.body:
                signals.append({
                    'type': 'oneshot', 'process': entity.process_name, 'resource': entity.name,
                    'state': entity.body['state'], 'age_secs': entity.age_secs,
                })
                continue
            sender_closed, receiver_closed = _channel_sides(entity)
            signals.append({
                'type': 'channel', 'process': entity.process_name, 'resource': entity.name,
                'send_waiters': send_waiters.get(entity.id, 0),
                'sender_closed': sender_closed, 'receiver_closed': receiver_closed,
                'age_secs': entity.age_secs,
            })
        elif entity.kind is EntityKind.ONCE_CELL:
            signals.append({
                'type': 'once_cell', 'process': entity.process_name, 'resource': entity.name,
                'state': entity.body.get('state', 'empty'), 'age_secs': entity.age_secs,
            })
        elif entity.kind in (EntityKind.REQUEST, EntityKind.RPC_PAIR) and entity.status.tone is Tone.WARN:
            signals.append({
                'type': 'rpc', 'process': entity.process_name, 'resource': entity.name,
                'elapsed_secs': entity.age_secs,
            })
    return signals


# ── Pairwise blocking observations ─────────────────────────────


def _channel_receiver(channel: Entity, blocked_id: str, graph: SnapshotGraph,
                      entity_by_id: Dict[str, Entity]) -> Optional[str]:
    for edge in graph.edges:
        if edge.target != channel.id or edge.source == blocked_id:
            continue
        if edge.kind not in (EdgeKind.WAITS_ON, EdgeKind.POLLS):
            continue
        receiving = edge.target_port.endswith(':rx') if edge.target_port \
            else channel.kind is EntityKind.CHANNEL_RX
        if receiving and edge.source in entity_by_id:
            return entity_by_id[edge.source].name
    return None


def _rpc_owner(target: Entity) -> Optional[str]:
    if target.kind is EntityKind.RPC_PAIR and target.rpc_pair:
        return target.rpc_pair['resp'].process_name
    if target.kind is EntityKind.RESPONSE:
        return target.process_name
    return None


def extract_blocking_observations(graph: SnapshotGraph) -> List[BlockingObservation]:
    """
    Turn every waits-on edge into a lock, semaphore, channel or RPC into a
    pairwise "blocked actor waits on resource owned by owner" observation.
    """
    entity_by_id = graph.entity_by_id()
    observations = []

    for edge in graph.edges:
        if edge.kind is not EdgeKind.WAITS_ON:
            continue
        source = entity_by_id.get(edge.source)
        target = entity_by_id.get(edge.target)
        if source is None or target is None:
            continue

        wait_secs = edge_wait_secs(edge, source)
        owner = edge.meta.get('owner')
        severity = None

        if target.kind in (EntityKind.LOCK, EntityKind.SEMAPHORE):
            category = "Locks"
            resource = f"{target.kind.value}:{target.name}"
            owner = owner or target.holder_name
            description = f"Lock waiter blocked for {format_duration(wait_secs)}"
        elif target.kind in CHANNEL_KINDS:
            category = "Channels"
            resource = f"channel:{target.name}"
            owner = owner or _channel_receiver(target, source.id, graph, entity_by_id)
            if any(_channel_sides(target)):
                severity = DeadlockSeverity.DANGER
                description = "Blocked on closed channel"
            else:
                description = f"Blocked on channel for {format_duration(wait_secs)}"
        elif target.kind in RPC_KINDS:
            category = "RPC"
            resource = f"rpc:{target.name}"
            owner = owner or _rpc_owner(target)
            description = f"RPC in-flight for {format_duration(wait_secs)}"
        else:
            continue

        observations.append(BlockingObservation(
            category=category,
            process=source.process_name,
            blocked_actor=source.name,
            waits_on_resource=resource,
            wait_secs=wait_secs,
            description=description,
            owner=owner,
            severity=severity,
            backtrace=source.source.path if source.source else None,
        ))
    return observations


def classify_observation(observation: BlockingObservation,
                         thresholds: Optional[Dict] = None) -> Optional[DeadlockSeverity]:
    """Severity of one blocking observation; RPC waits use the RPC bands, the rest the lock bands"""
    if observation.category == "RPC":
        return classify_rpc(observation.wait_secs, thresholds)
    return classify_lock_wait(observation.wait_secs, thresholds)


class RelationshipSignalStrategy(BaseDeadlockStrategy):
    """Strategy that classifies pairwise blocking relationships into issues"""

    def __init__(self):
        super().__init__(
            name="relationship_signals",
            description="Classifies waits-on relationships into deduplicated blocking issues"
        )

    def detect(self, graph: SnapshotGraph, config: Dict = None) -> List[RelationshipIssue]:
        config = config or {}
        thresholds = config.get('thresholds')

        observations = extract_blocking_observations(graph)
        for observation in observations:
            if observation.severity is None:
                observation.severity = classify_observation(observation, thresholds)

        return dedupe_relationship_issues(observations)
