from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field, asdict
from enum import Enum

from .model import ScopeDef, SnapshotGraph


class DeadlockSeverity(Enum):
    WARN = "warn"
    DANGER = "danger"

    @property
    def rank(self) -> int:
        return 2 if self is DeadlockSeverity.DANGER else 1

    @classmethod
    def parse(cls, value: str) -> 'DeadlockSeverity':
        return cls[value.upper()]


@dataclass
class CycleNode:
    entity_id: str
    label: str
    kind: str
    process_id: str
    process_name: str


@dataclass
class CycleEdge:
    from_index: int
    to_index: int
    explanation: str
    wait_secs: float


@dataclass
class DeadlockCandidate:
    """A waits-on cycle promoted to a scored, explained deadlock report"""
    id: int
    severity: DeadlockSeverity
    score: float
    title: str
    cycle_path: List[CycleNode]
    cycle_edges: List[CycleEdge]
    rationale: List[str]
    cross_process: bool
    worst_wait_secs: float
    blocked_task_count: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        return data


@dataclass
class BlockingObservation:
    """One pairwise 'blocked actor waits on resource owned by owner' observation"""
    category: str
    process: str
    blocked_actor: str
    waits_on_resource: str
    wait_secs: float
    description: str
    owner: Optional[str] = None
    severity: Optional[DeadlockSeverity] = None
    backtrace: Optional[str] = None


@dataclass
class RelationshipIssue:
    severity: DeadlockSeverity
    category: str
    process: str
    blocked_actor: str
    waits_on_resource: str
    owner: Optional[str]
    description: str
    wait_secs: float
    occurrence_count: int = 1
    backtrace: Optional[str] = None

    @property
    def merge_key(self) -> tuple:
        return (
            self.severity,
            self.category,
            self.process,
            self.blocked_actor,
            self.waits_on_resource,
            self.owner or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        return data


@dataclass
class RootCauseSummary:
    severity: DeadlockSeverity
    owner: str
    blocked_group_count: int
    total_edge_count: int
    worst_wait_secs: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        return data


@dataclass
class Problem:
    """Per-resource signal that crossed a classification threshold"""
    severity: DeadlockSeverity
    category: str
    process: str
    resource: str
    description: str
    timing: float
    timing_label: str
    backtrace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        return data


@dataclass
class AnalysisReport:
    """Combined output of one detection run"""
    graph: SnapshotGraph
    candidates: List[DeadlockCandidate] = field(default_factory=list)
    issues: List[RelationshipIssue] = field(default_factory=list)
    root_causes: List[RootCauseSummary] = field(default_factory=list)
    problems: List[Problem] = field(default_factory=list)
    scopes: List[ScopeDef] = field(default_factory=list)

    @property
    def has_danger(self) -> bool:
        return any(c.severity is DeadlockSeverity.DANGER for c in self.candidates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'graph': self.graph.to_dict(),
            'candidates': [c.to_dict() for c in self.candidates],
            'issues': [i.to_dict() for i in self.issues],
            'root_causes': [r.to_dict() for r in self.root_causes],
            'problems': [p.to_dict() for p in self.problems],
            'scopes': [asdict(s) for s in self.scopes],
        }


class BaseDeadlockStrategy(ABC):
    """Abstract base class for snapshot analysis strategies"""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self.enabled = True
        self.priority = 1

    @abstractmethod
    def detect(self, graph: SnapshotGraph, config: Dict = None) -> List[Any]:
        """
        Analyze a merged snapshot graph

        Args:
            graph: Merged graph with cycle membership already marked
            config: Strategy-specific configuration

        Returns:
            List of strategy results
        """
        pass
