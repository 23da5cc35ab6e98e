"""
Orchestration of one snapshot analysis run.

The system converts a raw snapshot into the merged graph, runs every enabled
strategy in priority order and assembles the ranked results into an
``AnalysisReport``. It never touches files; reading snapshots and writing
reports is left to the caller.
"""

import time
from typing import Dict, List, Any, Optional

from .config.detection_config import DetectionConfig, StrategyRegistry
from .core.base_detector import (
    AnalysisReport,
    DeadlockCandidate,
    DeadlockSeverity,
    RelationshipIssue,
)
from .core.model import SnapshotGraph
from .core.snapshot import convert_snapshot, extract_scopes
from .strategies.cycle_strategy import CycleCandidateStrategy
from .strategies.signal_strategy import RelationshipSignalStrategy, classify_signals, signals_from_graph
from .strategies.root_cause_strategy import summarize_root_causes
from .view.graph_filter import apply_graph_filter, parse_graph_filter_query
from .utils.logger import get_logger, set_log_level
from .utils.validator import SnapshotIntegrityError, ValidationError, validate_all_inputs


class DeadlockDetectionSystem:
    """
    Main system orchestrator for snapshot deadlock detection.
    """

    def __init__(self, config: Optional[DetectionConfig] = None, config_path: Optional[str] = None):
        """
        Initialize the detection system.

        Args:
            config: Configuration to use; defaults to the balanced preset
            config_path: Optional path to a JSON configuration file
        """
        self.logger = get_logger("engine")
        self.registry = StrategyRegistry()

        if config_path:
            self.config = DetectionConfig.load_from_file(config_path)
        else:
            self.config = config or DetectionConfig.create_balanced_config()
        validate_all_inputs(config=self.config.config)

        set_log_level(self.config.get('log_level', 'INFO'))
        if self.config.get('log_dir'):
            get_logger(log_dir=self.config.get('log_dir'))

        self._register_default_strategies()

    def _register_default_strategies(self):
        """Register the default analysis strategies."""
        self.registry.register_strategy("cycle_candidates", CycleCandidateStrategy())
        self.registry.register_strategy("relationship_signals", RelationshipSignalStrategy())

        for name, strategy in self.registry.strategies.items():
            strategy.enabled = self.config.is_strategy_enabled(name)
            strategy.priority = self.config.get_strategy_priority(name)

    def _strategy_config(self, strategy_name: str) -> Dict[str, Any]:
        strategy_config = {
            'high_wait_secs': self.config.get('high_wait_secs'),
            'max_cycles': self.config.get('max_cycles'),
            'thresholds': self.config.thresholds,
        }
        strategy_config.update(self.config.get_strategy_config(strategy_name))
        return strategy_config

    def build_graph(self, snapshot: Dict[str, Any]) -> SnapshotGraph:
        """
        Convert a raw snapshot into the merged graph.

        Raises:
            SnapshotIntegrityError: After logging it with its snapshot context
        """
        try:
            return convert_snapshot(
                snapshot,
                group_mode=self.config.get('group_mode', 'none'),
                compose_ids=self.config.get('compose_ids', False),
                require_backtraces=self.config.get('require_backtraces'),
            )
        except SnapshotIntegrityError as e:
            self.logger.log_error(e, f"converting snapshot {e.snapshot_id}")
            self.logger.log_warning("Discarding snapshot that failed integrity checks", e.context())
            raise

    def analyze(self, snapshot: Dict[str, Any]) -> AnalysisReport:
        """
        Analyze a raw snapshot with the configured strategies.

        Args:
            snapshot: Raw snapshot dictionary

        Returns:
            AnalysisReport with candidates, issues, root causes and problems
            at or above the configured severity threshold
        """
        start_time = time.perf_counter()

        try:
            validate_all_inputs(snapshot=snapshot, config=self.config.config)
        except ValidationError as e:
            self.logger.log_error(e, "input validation")
            raise

        self.logger.log_detection_start("Multi-Strategy", self.config.config)
        graph = self.build_graph(snapshot)
        report = AnalysisReport(graph=graph)

        for strategy_name, strategy in self.registry.get_strategies_by_priority():
            strategy_start = time.perf_counter()
            try:
                results = strategy.detect(graph, self._strategy_config(strategy_name))
            except Exception as e:
                self.logger.log_error(e, f"executing strategy '{strategy_name}'")
                continue

            for result in self._filter_by_severity(results):
                if isinstance(result, DeadlockCandidate):
                    report.candidates.append(result)
                elif isinstance(result, RelationshipIssue):
                    report.issues.append(result)

            self.logger.log_strategy_execution(
                strategy_name, time.perf_counter() - strategy_start, len(graph.entities)
            )

        report.root_causes = self._filter_by_severity(summarize_root_causes(report.issues))
        signals = signals_from_graph(graph) + list(snapshot.get('signals') or [])
        report.problems = self._filter_by_severity(classify_signals(signals, self.config.thresholds))
        report.scopes = extract_scopes(snapshot, self.config.get('require_backtraces'))

        for candidate in report.candidates:
            self.logger.log_candidate(candidate)
        for summary in report.root_causes:
            self.logger.log_root_cause(summary)

        self.logger.logger.info(
            f"Detection completed in {time.perf_counter() - start_time:.3f}s. "
            f"Found {len(report.candidates)} deadlock candidate(s) and "
            f"{len(report.root_causes)} root cause(s)"
        )
        return report

    def filtered_view(self, graph: SnapshotGraph, filter_text: str) -> SnapshotGraph:
        """Apply a graph filter query to a merged graph"""
        parsed = parse_graph_filter_query(filter_text)
        invalid = [token.raw for token in parsed.tokens if not token.valid]
        if invalid:
            self.logger.log_warning(f"Ignoring invalid filter token(s): {', '.join(invalid)}")
        return apply_graph_filter(graph, parsed, show_loners=self.config.get('show_loners', True))

    def _filter_by_severity(self, results: List[Any]) -> List[Any]:
        """Filter results based on minimum severity threshold."""
        threshold = self.config.get_severity_threshold()
        if not threshold:
            return list(results)
        min_rank = DeadlockSeverity.parse(threshold).rank
        return [r for r in results if r.severity.rank >= min_rank]
