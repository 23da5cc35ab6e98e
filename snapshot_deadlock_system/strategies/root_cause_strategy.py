from typing import Dict, List

from ..core.base_detector import BlockingObservation, DeadlockSeverity, RelationshipIssue, RootCauseSummary


def dedupe_relationship_issues(observations: List[BlockingObservation]) -> List[RelationshipIssue]:
    """
    Merge classified observations into relationship issues.

    Observations sharing (severity, category, process, blocked actor,
    resource, owner) collapse into one issue that keeps the longest wait and
    the first backtrace seen, and counts its occurrences. Observations without
    a severity are below every threshold and are dropped.

    Args:
        observations: Classified blocking observations

    Returns:
        Issues sorted danger first, then by occurrence count, then by wait
    """
    by_key: Dict[tuple, RelationshipIssue] = {}

    for observation in observations:
        if observation.severity is None:
            continue
        issue = RelationshipIssue(
            severity=observation.severity,
            category=observation.category,
            process=observation.process,
            blocked_actor=observation.blocked_actor,
            waits_on_resource=observation.waits_on_resource,
            owner=observation.owner,
            description=observation.description,
            wait_secs=observation.wait_secs,
            backtrace=observation.backtrace,
        )
        existing = by_key.get(issue.merge_key)
        if existing is None:
            by_key[issue.merge_key] = issue
            continue

        existing.occurrence_count += 1
        if issue.wait_secs > existing.wait_secs:
            existing.wait_secs = issue.wait_secs
            existing.description = issue.description
        if not existing.backtrace and issue.backtrace:
            existing.backtrace = issue.backtrace

    issues = list(by_key.values())
    issues.sort(key=lambda i: (-i.severity.rank, -i.occurrence_count, -i.wait_secs))
    return issues


def summarize_root_causes(issues: List[RelationshipIssue]) -> List[RootCauseSummary]:
    """
    Group relationship issues by the owner they wait on, falling back to the
    resource name when the owner is unknown.

    Returns:
        Summaries sorted danger first, then by blocked group count, total
        edge count and worst wait
    """
    by_owner: Dict[str, RootCauseSummary] = {}

    for issue in issues:
        owner = issue.owner or issue.waits_on_resource
        existing = by_owner.get(owner)
        if existing is None:
            by_owner[owner] = RootCauseSummary(
                severity=issue.severity,
                owner=owner,
                blocked_group_count=1,
                total_edge_count=issue.occurrence_count,
                worst_wait_secs=issue.wait_secs,
            )
            continue

        existing.blocked_group_count += 1
        existing.total_edge_count += issue.occurrence_count
        if issue.severity is DeadlockSeverity.DANGER:
            existing.severity = DeadlockSeverity.DANGER
        existing.worst_wait_secs = max(existing.worst_wait_secs, issue.wait_secs)

    summaries = list(by_owner.values())
    summaries.sort(key=lambda s: (
        -s.severity.rank,
        -s.blocked_group_count,
        -s.total_edge_count,
        -s.worst_wait_secs,
    ))
    return summaries
