"""
Command-line entry point for the Snapshot Deadlock System.

Reads a snapshot JSON file, runs the analysis and prints ranked deadlock
candidates and blocking root causes.
"""

import argparse
import json
import sys
from typing import Optional

from .config.detection_config import DetectionConfig, STRATEGY_PRESETS
from .core.base_detector import AnalysisReport, DeadlockSeverity
from .engine import DeadlockDetectionSystem
from .utils.logger import get_logger, set_log_level, log_system_info
from .utils.validator import FileValidator, SnapshotIntegrityError, ValidationError

logger = get_logger("cli")

SEVERITY_MARKERS = {
    DeadlockSeverity.WARN: '🟠',
    DeadlockSeverity.DANGER: '🔴',
}


def load_snapshot(file_path: str) -> dict:
    """
    Load a raw snapshot from a JSON file.

    Raises:
        ValidationError: If the file is missing, empty or not valid JSON
    """
    return FileValidator.validate_json_file(file_path)


def save_report(report: AnalysisReport, output_path: str, view: Optional[dict] = None):
    """Write the analysis report (and an optional filtered view) as JSON"""
    output_data = report.to_dict()
    output_data['total_candidates'] = len(report.candidates)
    if view is not None:
        output_data['view'] = view

    with open(output_path, 'w') as f:
        json.dump(output_data, f, indent=2, default=str)
    logger.logger.info(f"Results saved to {output_path}")


def print_report(report: AnalysisReport):
    if report.candidates:
        print(f"\n⚠️  Found {len(report.candidates)} deadlock candidate(s):")
        print("=" * 60)
        for candidate in report.candidates:
            marker = SEVERITY_MARKERS.get(candidate.severity, '❓')
            print(f"{candidate.id}. {marker} {candidate.title}")
            print(f"   Severity: {candidate.severity.name}  Score: {candidate.score:.1f}")
            print(f"   Path: {' -> '.join(node.label for node in candidate.cycle_path)}")
            for bullet in candidate.rationale:
                print(f"   - {bullet}")
            print()
    else:
        print("\n✅ No deadlock candidates detected!")

    if report.root_causes:
        print(f"Root causes ({len(report.root_causes)}):")
        for summary in report.root_causes:
            marker = SEVERITY_MARKERS.get(summary.severity, '❓')
            print(
                f"  {marker} {summary.owner}: {summary.blocked_group_count} blocked group(s), "
                f"{summary.total_edge_count} edge(s), worst wait {summary.worst_wait_secs:.2f}s"
            )

    if report.problems:
        print(f"\nProblems ({len(report.problems)}):")
        for problem in report.problems:
            marker = SEVERITY_MARKERS.get(problem.severity, '❓')
            print(f"  {marker} [{problem.category}] {problem.process} {problem.resource}: "
                  f"{problem.description}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Snapshot Deadlock System",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic analysis with default config
  python -m snapshot_deadlock_system.main --snapshot snapshot.json

  # Analysis with custom config
  python -m snapshot_deadlock_system.main --snapshot snapshot.json --config config.json

  # Merge RPC pairs only within a process, and save a filtered view
  python -m snapshot_deadlock_system.main --snapshot snapshot.json --group-by process \\
      --filter "-kind:future loners:off" --output report.json

  # Enable debug logging
  python -m snapshot_deadlock_system.main --snapshot snapshot.json --verbose
        """
    )

    parser.add_argument(
        '--snapshot',
        required=True,
        help='Path to JSON file containing a raw multi-process snapshot'
    )

    parser.add_argument(
        '--config',
        help='Path to configuration JSON file'
    )

    parser.add_argument(
        '--preset',
        choices=sorted(STRATEGY_PRESETS),
        default='balanced',
        help='Use a preset configuration (default: balanced)'
    )

    parser.add_argument(
        '--group-by',
        choices=['none', 'process', 'crate'],
        help='Grouping that RPC request/response pairs must share to be merged'
    )

    parser.add_argument(
        '--filter',
        help='Graph filter query applied to the saved view, e.g. "+kind:lock loners:off"'
    )

    parser.add_argument(
        '--output', '-o',
        help='Path to save the analysis report'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()

    try:
        if args.config:
            config = DetectionConfig.load_from_file(args.config)
        else:
            config = DetectionConfig.from_preset(args.preset)
        if args.group_by:
            config.set('group_mode', args.group_by)
        if args.verbose:
            config.set('log_level', 'DEBUG')

        system = DeadlockDetectionSystem(config)
        if args.verbose:
            set_log_level('DEBUG')
            log_system_info()

        print(f"Loading snapshot from {args.snapshot}...")
        snapshot = load_snapshot(args.snapshot)
        print(f"Loaded {len(snapshot.get('processes', []))} process(es)")

        print("\n🔍 Starting deadlock analysis...")
        report = system.analyze(snapshot)
        print_report(report)

        view = None
        if args.filter:
            filtered = system.filtered_view(report.graph, args.filter)
            print(f"\nFiltered view: {len(filtered.entities)} entities, {len(filtered.edges)} edges")
            view = filtered.to_dict()

        if args.output:
            save_report(report, args.output, view)
            print(f"📄 Results saved to {args.output}")

        sys.exit(1 if report.has_danger else 0)

    except SnapshotIntegrityError as e:
        print(f"❌ Snapshot integrity error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValidationError as e:
        print(f"❌ Validation error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
