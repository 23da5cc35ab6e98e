"""Analysis strategies run over a merged snapshot graph."""

from .cycle_strategy import CycleCandidateStrategy, build_deadlock_candidates
from .signal_strategy import (
    RelationshipSignalStrategy,
    classify_signals,
    extract_blocking_observations,
    signals_from_graph,
)
from .root_cause_strategy import dedupe_relationship_issues, summarize_root_causes

__all__ = [
    'CycleCandidateStrategy',
    'RelationshipSignalStrategy',
    'build_deadlock_candidates',
    'classify_signals',
    'extract_blocking_observations',
    'signals_from_graph',
    'dedupe_relationship_issues',
    'summarize_root_causes',
]
