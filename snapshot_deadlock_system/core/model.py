"""
Entity/edge model shared by every stage of the snapshot pipeline.

Entities are observed resources (futures, locks, channel endpoints, RPC calls,
...) and edges are directed relationships between them. Both are plain
dataclasses; the closed set of kinds is expressed as enums, with a single
``CUSTOM`` entity kind for runtime-registered kinds.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Any, Optional, Tuple


class Tone(Enum):
    OK = "ok"
    WARN = "warn"
    CRIT = "crit"
    NEUTRAL = "neutral"


@dataclass
class Status:
    label: str
    tone: Tone

    def to_dict(self) -> Dict[str, str]:
        return {'label': self.label, 'tone': self.tone.value}


class EntityKind(Enum):
    FUTURE = "future"
    LOCK = "lock"
    CHANNEL_TX = "channel_tx"
    CHANNEL_RX = "channel_rx"
    CHANNEL_PAIR = "channel_pair"
    SEMAPHORE = "semaphore"
    NOTIFY = "notify"
    ONCE_CELL = "once_cell"
    REQUEST = "request"
    RESPONSE = "response"
    RPC_PAIR = "rpc_pair"
    COMMAND = "command"
    FILE_OP = "file_op"
    NET_CONNECT = "net_connect"
    NET_ACCEPT = "net_accept"
    NET_READ = "net_read"
    NET_WRITE = "net_write"
    CUSTOM = "custom"


NET_KINDS = {
    EntityKind.NET_CONNECT,
    EntityKind.NET_ACCEPT,
    EntityKind.NET_READ,
    EntityKind.NET_WRITE,
}

# Older producers emit one body key per channel flavour and direction.
LEGACY_CHANNEL_KINDS = {
    'mpsc_tx': (EntityKind.CHANNEL_TX, 'mpsc'),
    'mpsc_rx': (EntityKind.CHANNEL_RX, 'mpsc'),
    'broadcast_tx': (EntityKind.CHANNEL_TX, 'broadcast'),
    'broadcast_rx': (EntityKind.CHANNEL_RX, 'broadcast'),
    'watch_tx': (EntityKind.CHANNEL_TX, 'watch'),
    'watch_rx': (EntityKind.CHANNEL_RX, 'watch'),
    'oneshot_tx': (EntityKind.CHANNEL_TX, 'oneshot'),
    'oneshot_rx': (EntityKind.CHANNEL_RX, 'oneshot'),
}


class EdgeKind(Enum):
    WAITS_ON = "needs"
    POLLS = "polls"
    CLOSED_BY = "closed_by"
    CHANNEL_LINK = "channel_link"
    RPC_LINK = "rpc_link"
    HOLDS = "holds"
    TOUCHES = "touches"
    PAIRED_WITH = "paired_with"

    @classmethod
    def from_wire(cls, value: str) -> 'EdgeKind':
        """Parse a wire edge kind, accepting the older waits-on spellings."""
        normalized = str(value).strip().lower()
        if normalized in ('waiting_on', 'waits_on'):
            return cls.WAITS_ON
        return cls(normalized)


@dataclass
class RenderSource:
    path: str
    line: int
    krate: str


@dataclass
class RenderFrame:
    function_name: str
    crate_name: str
    module_path: str
    source_file: str
    line: Optional[int] = None
    frame_id: Optional[int] = None


@dataclass
class Entity:
    """One observed resource or instance in a snapshot."""
    id: str
    process_id: str
    process_name: str
    pid: int
    name: str
    kind: EntityKind
    body: Dict[str, Any] = field(default_factory=dict)
    birth: float = 0
    age_ms: float = 0
    birth_approx_unix_ms: Optional[float] = None
    status: Optional[Status] = None
    stat: Optional[str] = None
    stat_tone: Optional[Tone] = None
    in_cycle: bool = False
    merged_from: Optional[Tuple[str, str]] = None
    channel_pair: Optional[Dict[str, 'Entity']] = None
    rpc_pair: Optional[Dict[str, 'Entity']] = None
    holder_name: Optional[str] = None
    backtrace_id: Optional[int] = None
    source: Optional[RenderSource] = None
    krate: Optional[str] = None
    top_frame: Optional[RenderFrame] = None
    frames: List[RenderFrame] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)
    removed_at: Optional[float] = None

    def __post_init__(self):
        if self.status is None:
            self.status = derive_status(self.kind, self.body)
            self.stat = derive_stat(self.kind, self.body)
            self.stat_tone = derive_stat_tone(self.kind, self.body)

    @property
    def kind_name(self) -> str:
        """Display kind key; custom entities report their registered kind id."""
        if self.kind is EntityKind.CUSTOM:
            return self.body.get('kind', EntityKind.CUSTOM.value)
        return self.kind.value

    @property
    def age_secs(self) -> float:
        return self.age_ms / 1000.0

    @property
    def crate_name(self) -> str:
        if self.top_frame:
            return self.top_frame.crate_name
        return self.krate or "~no-crate"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'process_id': self.process_id,
            'process_name': self.process_name,
            'pid': self.pid,
            'name': self.name,
            'kind': self.kind_name,
            'body': self.body,
            'birth': self.birth,
            'age_ms': self.age_ms,
            'birth_approx_unix_ms': self.birth_approx_unix_ms,
            'status': self.status.to_dict(),
            'stat': self.stat,
            'stat_tone': self.stat_tone.value if self.stat_tone else None,
            'in_cycle': self.in_cycle,
            'holder_name': self.holder_name,
            'backtrace_id': self.backtrace_id,
            'source': asdict(self.source) if self.source else None,
            'krate': self.krate,
            'top_frame': asdict(self.top_frame) if self.top_frame else None,
            'frames': [asdict(frame) for frame in self.frames],
            'meta': self.meta,
            'removed_at': self.removed_at,
        }
        if self.merged_from:
            data['merged_from'] = list(self.merged_from)
        if self.channel_pair:
            data['channel_pair'] = {
                side: entity.to_dict() for side, entity in self.channel_pair.items()
            }
        if self.rpc_pair:
            data['rpc_pair'] = {
                side: entity.to_dict() for side, entity in self.rpc_pair.items()
            }
        return data


@dataclass
class Edge:
    """Directed relationship between two entity ids."""
    id: str
    source: str
    target: str
    kind: EdgeKind
    source_port: Optional[str] = None
    target_port: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'source': self.source,
            'target': self.target,
            'kind': self.kind.value,
        }
        if self.source_port:
            data['source_port'] = self.source_port
        if self.target_port:
            data['target_port'] = self.target_port
        if self.meta:
            data['meta'] = self.meta
        return data


@dataclass
class SnapshotGraph:
    """Merged, display-ready graph produced by snapshot conversion."""
    entities: List[Entity]
    edges: List[Edge]

    def entity_by_id(self) -> Dict[str, Entity]:
        return {entity.id: entity for entity in self.entities}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entities': [entity.to_dict() for entity in self.entities],
            'edges': [edge.to_dict() for edge in self.edges],
        }


@dataclass
class ScopeDef:
    """Grouping container (process/thread/task/connection) used for display."""
    key: str
    process_id: str
    process_name: str
    pid: int
    scope_id: str
    scope_name: str
    scope_kind: str
    birth: float
    age_ms: float
    member_entity_ids: List[str] = field(default_factory=list)
    backtrace_id: Optional[int] = None
    source: Optional[RenderSource] = None


def pair_key(a: str, b: str) -> str:
    """Canonical key for an unordered pair of entity ids."""
    return f"{a}<->{b}" if a < b else f"{b}<->{a}"


# ── Status derivation ──────────────────────────────────────────


def _channel_closed_reason(body: Dict[str, Any]) -> Optional[str]:
    lifecycle = body.get('lifecycle', 'open')
    if isinstance(lifecycle, dict) and 'closed' in lifecycle:
        return str(lifecycle['closed'])
    if isinstance(lifecycle, str) and lifecycle != 'open':
        return lifecycle
    return None


def channel_buffer(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the ``{occupancy, capacity}`` buffer state of a channel endpoint, if any."""
    details = body.get('details') or {}
    for flavour in ('mpsc', 'broadcast'):
        if flavour in details and details[flavour]:
            return details[flavour].get('buffer')
    if 'buffer' in body:
        return body['buffer']
    # Older mpsc senders report the queue length and capacity inline
    if 'queue_len' in body:
        return {'occupancy': body['queue_len'], 'capacity': body.get('capacity')}
    return None


def _legacy_channel_status(kind: EntityKind, body: Dict[str, Any]) -> Optional[Status]:
    protocol = body.get('protocol')
    if protocol == 'broadcast' and kind is EntityKind.CHANNEL_RX:
        lag = body.get('lag', 0)
        if lag > 0:
            return Status(f"lag: {lag}", Tone.WARN)
    if protocol == 'oneshot' and kind is EntityKind.CHANNEL_TX and 'sent' in body:
        return Status("sent", Tone.OK) if body['sent'] else Status("pending", Tone.NEUTRAL)
    return None


def derive_status(kind: EntityKind, body: Dict[str, Any]) -> Status:
    """Derive the display status of an entity purely from its kind payload."""
    if kind is EntityKind.FUTURE:
        return Status("polling", Tone.NEUTRAL)
    if kind is EntityKind.REQUEST:
        return Status("in_flight", Tone.WARN)
    if kind is EntityKind.RESPONSE:
        return response_status(body)
    if kind is EntityKind.LOCK:
        return Status("unlocked", Tone.OK)
    if kind in (EntityKind.CHANNEL_TX, EntityKind.CHANNEL_RX):
        reason = _channel_closed_reason(body)
        if reason:
            return Status(f"closed: {reason}", Tone.CRIT)
        return _legacy_channel_status(kind, body) or Status("connected", Tone.OK)
    if kind is EntityKind.SEMAPHORE:
        max_permits = body.get('max_permits', 0)
        handed_out = body.get('handed_out_permits', 0)
        return Status(
            f"{max_permits - handed_out}/{max_permits} permits",
            Tone.WARN if handed_out > 0 else Tone.OK,
        )
    if kind is EntityKind.NOTIFY:
        return Status("waiting", Tone.NEUTRAL)
    if kind is EntityKind.ONCE_CELL:
        state = body.get('state')
        if state == 'initialized':
            return Status("initialized", Tone.OK)
        if state == 'initializing':
            return Status("initializing", Tone.WARN)
        return Status("empty", Tone.NEUTRAL)
    if kind is EntityKind.COMMAND:
        return Status("running", Tone.NEUTRAL)
    if kind is EntityKind.FILE_OP:
        return Status(str(body.get('op', 'file')), Tone.OK)
    if kind in NET_KINDS:
        return Status("connected", Tone.OK)
    if kind is EntityKind.CUSTOM:
        return Status("active", Tone.NEUTRAL)
    return Status("unknown", Tone.NEUTRAL)


def response_status(body: Dict[str, Any]) -> Status:
    status = body.get('status', 'pending')
    if isinstance(status, dict):
        if 'ok' in status:
            return Status("ok", Tone.OK)
        if 'error' in status:
            return Status("error", Tone.CRIT)
        return Status("pending", Tone.WARN)
    if status == 'ok':
        return Status("ok", Tone.OK)
    if status == 'error':
        return Status("error", Tone.CRIT)
    if status == 'cancelled':
        return Status("cancelled", Tone.NEUTRAL)
    return Status("pending", Tone.WARN)


def derive_stat(kind: EntityKind, body: Dict[str, Any]) -> Optional[str]:
    if kind is EntityKind.SEMAPHORE:
        max_permits = body.get('max_permits', 0)
        return f"{max_permits - body.get('handed_out_permits', 0)}/{max_permits}"
    if kind is EntityKind.CHANNEL_TX:
        buffer = channel_buffer(body)
        if buffer:
            capacity = buffer.get('capacity')
            return f"{buffer.get('occupancy', 0)}/{capacity if capacity is not None else '∞'}"
        return None
    if kind in (EntityKind.NOTIFY, EntityKind.ONCE_CELL):
        waiters = body.get('waiter_count', 0)
        if waiters > 0:
            return f"{waiters} waiters" if waiters != 1 else "1 waiter"
    return None


def derive_stat_tone(kind: EntityKind, body: Dict[str, Any]) -> Optional[Tone]:
    if kind is not EntityKind.CHANNEL_TX:
        return None
    buffer = channel_buffer(body)
    if not buffer or not buffer.get('capacity'):
        return None
    occupancy = buffer.get('occupancy', 0)
    capacity = buffer['capacity']
    if occupancy >= capacity:
        return Tone.CRIT
    if occupancy / capacity >= 0.75:
        return Tone.WARN
    return None
