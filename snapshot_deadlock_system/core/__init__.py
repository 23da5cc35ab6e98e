"""Core model, snapshot conversion and graph analysis for deadlock detection."""

from .model import Edge, EdgeKind, Entity, EntityKind, SnapshotGraph, Status, Tone
from .base_detector import (
    AnalysisReport,
    BaseDeadlockStrategy,
    BlockingObservation,
    DeadlockCandidate,
    DeadlockSeverity,
    Problem,
    RelationshipIssue,
    RootCauseSummary,
)
from .graph_analyzer import GraphAnalyzer, detect_cycle_nodes, mark_cycles, find_cycles
from .pair_merger import merge_channel_pairs, merge_rpc_pairs, merge_pairs
from .snapshot import convert_snapshot, extract_scopes, build_backtrace_index

__all__ = [
    'Edge', 'EdgeKind', 'Entity', 'EntityKind', 'SnapshotGraph', 'Status', 'Tone',
    'AnalysisReport', 'BaseDeadlockStrategy', 'BlockingObservation', 'DeadlockCandidate',
    'DeadlockSeverity', 'Problem', 'RelationshipIssue', 'RootCauseSummary',
    'GraphAnalyzer', 'detect_cycle_nodes', 'mark_cycles', 'find_cycles',
    'merge_channel_pairs', 'merge_rpc_pairs', 'merge_pairs',
    'convert_snapshot', 'extract_scopes', 'build_backtrace_index',
]
