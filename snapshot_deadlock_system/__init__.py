"""
Snapshot Deadlock System

Turns point-in-time diagnostic snapshots of running processes (async tasks,
locks, channels, semaphores, RPC requests) into a merged dependency graph and
a ranked list of likely deadlocks and blocking root causes.
"""

from .core.base_detector import (
    AnalysisReport,
    BaseDeadlockStrategy,
    DeadlockCandidate,
    DeadlockSeverity,
    RelationshipIssue,
    RootCauseSummary,
)
from .core.model import Edge, EdgeKind, Entity, EntityKind, SnapshotGraph
from .core.graph_analyzer import GraphAnalyzer, detect_cycle_nodes
from .core.snapshot import convert_snapshot
from .config.detection_config import DetectionConfig, StrategyRegistry
from .strategies.cycle_strategy import CycleCandidateStrategy
from .strategies.signal_strategy import RelationshipSignalStrategy
from .engine import DeadlockDetectionSystem

__version__ = "1.0.0"

__all__ = [
    # Core classes
    'AnalysisReport',
    'BaseDeadlockStrategy',
    'DeadlockCandidate',
    'DeadlockSeverity',
    'RelationshipIssue',
    'RootCauseSummary',
    'Edge',
    'EdgeKind',
    'Entity',
    'EntityKind',
    'SnapshotGraph',
    'GraphAnalyzer',
    'detect_cycle_nodes',
    'convert_snapshot',

    # Configuration
    'DetectionConfig',
    'StrategyRegistry',

    # Strategies
    'CycleCandidateStrategy',
    'RelationshipSignalStrategy',

    # Orchestration
    'DeadlockDetectionSystem',
]
