import pytest

from snapshot_deadlock_system.core.base_detector import CycleNode, DeadlockSeverity
from snapshot_deadlock_system.core.model import EdgeKind, EntityKind
from snapshot_deadlock_system.core.snapshot import convert_snapshot
from snapshot_deadlock_system.strategies.cycle_strategy import (
    CycleCandidateStrategy,
    build_deadlock_candidates,
    build_title,
    edge_wait_secs,
    explain_edge,
)

from conftest import make_edge, make_entity, make_graph


def two_task_cycle(wait_a=1.0, wait_b=1.0, process_b="p1"):
    entities = [make_entity("a"), make_entity("b", process_id=process_b)]
    edges = [
        make_edge("a", "b", meta={'wait_secs': wait_a}),
        make_edge("b", "a", meta={'wait_secs': wait_b}),
    ]
    return make_graph(entities, edges)


class TestEndToEnd:

    def test_three_process_cycle(self, three_process_snapshot):
        graph = convert_snapshot(three_process_snapshot)

        candidates = CycleCandidateStrategy().detect(graph, {'high_wait_secs': 5.0})

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.id == 1
        assert candidate.cross_process
        assert candidate.severity is DeadlockSeverity.DANGER
        assert [node.entity_id for node in candidate.cycle_path] == ["T1", "T2", "T3"]
        assert candidate.worst_wait_secs == pytest.approx(6.0)
        assert candidate.title == "Cross-process deadlock: T1, T2, and 1 more"
        assert candidate.cycle_edges[0].explanation == "receiving on channel C for 2.50s"
        assert "spans 3 processes" in candidate.rationale

    def test_cycle_members_are_marked(self, three_process_snapshot):
        graph = convert_snapshot(three_process_snapshot)

        in_cycle = {e.id for e in graph.entities if e.in_cycle}
        assert in_cycle == {"T1", "T2", "T3"}


class TestSeverity:

    def test_short_single_process_cycle_is_warn(self):
        candidate = build_deadlock_candidates(two_task_cycle(1.0, 2.0))[0]

        assert candidate.severity is DeadlockSeverity.WARN
        assert not candidate.cross_process

    def test_long_wait_is_danger(self):
        candidate = build_deadlock_candidates(two_task_cycle(1.0, 6.0))[0]

        assert candidate.severity is DeadlockSeverity.DANGER

    def test_cross_process_is_danger(self):
        candidate = build_deadlock_candidates(two_task_cycle(process_b="p2"))[0]

        assert candidate.severity is DeadlockSeverity.DANGER

    def test_threshold_is_configurable(self):
        candidate = build_deadlock_candidates(two_task_cycle(1.0, 3.0), high_wait_secs=2.0)[0]

        assert candidate.severity is DeadlockSeverity.DANGER


class TestRanking:

    def test_longer_wait_ranks_first(self):
        entities = [make_entity(i) for i in ("a", "b", "c", "d")]
        edges = [
            make_edge("a", "b", meta={'wait_secs': 1.0}),
            make_edge("b", "a", meta={'wait_secs': 1.0}),
            make_edge("c", "d", meta={'wait_secs': 4.0}),
            make_edge("d", "c", meta={'wait_secs': 1.0}),
        ]

        candidates = build_deadlock_candidates(make_graph(entities, edges))

        assert [c.cycle_path[0].entity_id for c in candidates] == ["c", "a"]
        assert [c.id for c in candidates] == [1, 2]
        assert candidates[0].score > candidates[1].score

    def test_blocked_tasks_raise_score(self):
        graph = two_task_cycle()
        baseline = build_deadlock_candidates(graph)[0].score

        graph.entities.append(make_entity("waiter"))
        graph.edges.append(make_edge("waiter", "a", meta={'wait_secs': 0.5}))
        candidate = build_deadlock_candidates(graph)[0]

        assert candidate.blocked_task_count == 3
        assert candidate.score > baseline
        assert "1 tasks blocked outside cycle" in candidate.rationale

    def test_max_cycles_caps_candidates(self):
        entities = [make_entity(i) for i in ("a", "b", "c", "d")]
        edges = [make_edge("a", "b"), make_edge("b", "a"), make_edge("c", "d"), make_edge("d", "c")]

        assert len(build_deadlock_candidates(make_graph(entities, edges), max_cycles=1)) == 1


class TestExplanations:

    def test_wait_from_milliseconds(self):
        edge = make_edge("a", "b", meta={'wait_ms': 4200})

        assert edge_wait_secs(edge, make_entity("a")) == pytest.approx(4.2)

    def test_wait_falls_back_to_source_age(self):
        assert edge_wait_secs(make_edge("a", "b"), make_entity("a", age_ms=1500)) == pytest.approx(1.5)

    def test_lock_explanation(self):
        lock = make_entity("m", EntityKind.LOCK)

        assert explain_edge(make_edge("a", "m"), lock, 4.2) == "blocked acquiring lock for 4.20s"

    def test_channel_port_explanation(self):
        pair = make_entity("pair:c:tx:c:rx", EntityKind.CHANNEL_PAIR)
        edge = make_edge("a", pair.id, target_port="pair:c:tx:c:rx:tx")

        assert explain_edge(edge, pair, 1.0) == "blocked sending on channel for 1.00s"

    def test_polling_holder_rationale(self):
        graph = two_task_cycle()
        graph.entities.append(make_entity("io"))
        graph.edges.append(make_edge("b", "io", EdgeKind.POLLS))

        candidate = build_deadlock_candidates(graph)[0]

        assert any("b is actively polling io" in bullet for bullet in candidate.rationale)
        assert any("a is itself blocked waiting on b" in bullet for bullet in candidate.rationale)


def test_title_formats():
    def nodes(*labels, kind="future"):
        return [CycleNode(label, label, kind, "p1", "p1") for label in labels]

    assert build_title(nodes("a"), False) == "Deadlock: a"
    assert build_title(nodes("a", "b"), False) == "Deadlock: a <-> b"
    assert build_title(nodes("a", "b", "c", "d"), True) == "Cross-process deadlock: a, b, and 2 more"
    assert build_title(nodes("m", "n", kind="lock"), False) == "Deadlock involving 2 nodes"


def test_self_loop_candidate():
    graph = make_graph([make_entity("a")], [make_edge("a", "a", meta={'wait_secs': 0.2})])

    candidates = build_deadlock_candidates(graph)

    assert len(candidates) == 1
    assert len(candidates[0].cycle_edges) == 1
    assert candidates[0].cycle_edges[0].from_index == candidates[0].cycle_edges[0].to_index == 0
