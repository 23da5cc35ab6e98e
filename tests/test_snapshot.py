import pytest

from snapshot_deadlock_system.core.kind_registry import custom_kinds
from snapshot_deadlock_system.core.model import EdgeKind, EntityKind, Tone
from snapshot_deadlock_system.core.snapshot import (
    build_backtrace_index,
    convert_snapshot,
    extract_scopes,
    parse_entity_body,
    resolve_backtrace_display,
)
from snapshot_deadlock_system.utils.validator import SnapshotIntegrityError

from conftest import raw_edge, raw_entity, raw_process


FRAMES = [
    {'frame_id': 1, 'frame': {'resolved': {
        'function_name': "tokio::runtime::block_on", 'source_file': "rt.rs", 'line': 3,
    }}},
    {'frame_id': 2, 'frame': {'resolved': {
        'function_name': "app::db::query", 'module_path': "app::db", 'source_file': "src/db.rs", 'line': 42,
    }}},
    {'frame_id': 3, 'frame': {'unresolved': {'module_path': "libfoo.so"}}},
]


def single_process(entities, edges=(), **extra):
    snapshot = {'snapshot_id': 1, 'processes': [raw_process("p1", entities, edges)]}
    snapshot.update(extra)
    return snapshot


def by_id(graph):
    return graph.entity_by_id()


class TestEntities:

    def test_ages_and_birth_approximation(self):
        snapshot = single_process([raw_entity("a", birth=4000)], captured_at_unix_ms=1_700_000_000_000)

        entity = convert_snapshot(snapshot).entities[0]

        assert entity.age_ms == 6000
        assert entity.birth_approx_unix_ms == 1_699_999_994_000

    def test_birth_approximation_needs_capture_time(self):
        entity = convert_snapshot(single_process([raw_entity("a")])).entities[0]

        assert entity.birth_approx_unix_ms is None

    def test_duplicate_entity_id_across_processes(self):
        snapshot = {'snapshot_id': 9, 'processes': [
            raw_process("p1", [raw_entity("a")]),
            raw_process("p2", [raw_entity("a")]),
        ]}

        with pytest.raises(SnapshotIntegrityError) as excinfo:
            convert_snapshot(snapshot)

        assert excinfo.value.entity_id == "a"
        assert excinfo.value.snapshot_id == 9

    def test_composed_ids_keep_processes_apart(self):
        snapshot = {'snapshot_id': 9, 'processes': [
            raw_process("p1", [raw_entity("a"), raw_entity("b")], [raw_edge("a", "b")]),
            raw_process("p2", [raw_entity("a")]),
        ]}

        graph = convert_snapshot(snapshot, compose_ids=True)

        assert sorted(by_id(graph)) == ["p1/a", "p1/b", "p2/a"]
        assert (graph.edges[0].source, graph.edges[0].target) == ("p1/a", "p1/b")

    def test_legacy_channel_kind(self):
        kind, payload = parse_entity_body({'mpsc_tx': {'lifecycle': 'open'}})

        assert kind is EntityKind.CHANNEL_TX
        assert payload['protocol'] == "mpsc"

    @pytest.mark.parametrize("queue_len, capacity, stat, tone", [
        (4, 4, "4/4", Tone.CRIT),
        (3, 4, "3/4", Tone.WARN),
        (1, 4, "1/4", None),
        (7, None, "7/∞", None),
    ])
    def test_legacy_mpsc_sender_queue(self, queue_len, capacity, stat, tone):
        graph = convert_snapshot(single_process([
            raw_entity("tx", "mpsc_tx", {'queue_len': queue_len, 'capacity': capacity}),
        ]))

        entity = graph.entities[0]
        assert entity.stat == stat
        assert entity.stat_tone is tone

    def test_legacy_broadcast_receiver_lag(self):
        graph = convert_snapshot(single_process([
            raw_entity("lagging", "broadcast_rx", {'lag': 3}),
            raw_entity("caught_up", "broadcast_rx", {'lag': 0}),
        ]))

        entities = by_id(graph)
        assert (entities["lagging"].status.label, entities["lagging"].status.tone) == ("lag: 3", Tone.WARN)
        assert entities["caught_up"].status.tone is Tone.OK

    def test_legacy_oneshot_sender_state(self):
        graph = convert_snapshot(single_process([
            raw_entity("sent", "oneshot_tx", {'sent': True}),
            raw_entity("waiting", "oneshot_tx", {'sent': False}),
        ]))

        entities = by_id(graph)
        assert (entities["sent"].status.label, entities["sent"].status.tone) == ("sent", Tone.OK)
        assert (entities["waiting"].status.label, entities["waiting"].status.tone) == ("pending", Tone.NEUTRAL)

    def test_unknown_kind_becomes_registered_custom(self):
        kind, payload = parse_entity_body({'gpu_fence': {'icon': "bolt"}})

        assert kind is EntityKind.CUSTOM
        assert payload['kind'] == "gpu_fence"
        assert "gpu_fence" in custom_kinds
        assert custom_kinds.get("gpu_fence").icon == "bolt"

    def test_explicit_custom_kind(self):
        graph = convert_snapshot(single_process([
            raw_entity("w", "custom", {'kind': "worker_pool", 'display_name': "Worker pool"}),
        ]))

        entity = graph.entities[0]
        assert entity.kind_name == "worker_pool"
        assert custom_kinds.display_name("worker_pool") == "Worker pool"


class TestEdges:

    def test_edge_ids_and_cross_process_resolution(self, three_process_snapshot):
        graph = convert_snapshot(three_process_snapshot)

        ids = {edge.id for edge in graph.edges}
        assert "ep1.0-T1-T2-needs" in ids
        assert "ep3.0-T3-T1-needs" in ids

    def test_unresolved_edge_is_dropped(self):
        graph = convert_snapshot(single_process([raw_entity("a")], [raw_edge("a", "ghost")]))

        assert graph.edges == []

    def test_unknown_edge_kind_becomes_touches(self):
        graph = convert_snapshot(single_process(
            [raw_entity("a"), raw_entity("b")], [raw_edge("a", "b", kind="frobs")],
        ))

        assert graph.edges[0].kind is EdgeKind.TOUCHES

    def test_older_waits_on_spelling(self):
        graph = convert_snapshot(single_process(
            [raw_entity("a"), raw_entity("b")], [raw_edge("a", "b", kind="waiting_on")],
        ))

        assert graph.edges[0].kind is EdgeKind.WAITS_ON

    def test_edge_meta_is_kept(self, three_process_snapshot):
        graph = convert_snapshot(three_process_snapshot)

        edge = next(e for e in graph.edges if e.source == "T2")
        assert edge.meta['wait_secs'] == 6.0


def test_holds_rule_marks_lock(three_process_snapshot):
    lock = by_id(convert_snapshot(three_process_snapshot))["L"]

    assert lock.status.label == "locked"
    assert lock.status.tone is Tone.WARN
    assert lock.holder_name == "T1"


def test_paired_endpoints_are_merged(three_process_snapshot):
    entities = by_id(convert_snapshot(three_process_snapshot))

    assert "pair:C:tx:C:rx" in entities
    assert "C:tx" not in entities


class TestBacktraces:

    def test_display_prefers_first_application_frame(self):
        index = build_backtrace_index({'frames': FRAMES, 'backtraces': [{'backtrace_id': 7, 'frame_ids': [1, 2]}]})

        source, top_frame, frames = resolve_backtrace_display(index, 7)

        assert (source.path, source.line, source.krate) == ("src/db.rs", 42, "app")
        assert top_frame.function_name == "app::db::query"
        assert [f.frame_id for f in frames] == [2]

    def test_display_falls_back_to_system_frame(self):
        index = build_backtrace_index({'frames': FRAMES, 'backtraces': [{'backtrace_id': 7, 'frame_ids': [1]}]})

        source, _, frames = resolve_backtrace_display(index, 7)

        assert source.krate == "tokio"
        assert frames == []

    def test_display_uses_unresolved_module(self):
        index = build_backtrace_index({'frames': FRAMES, 'backtraces': [{'backtrace_id': 7, 'frame_ids': [3]}]})

        source, top_frame, _ = resolve_backtrace_display(index, 7)

        assert source.path == "libfoo.so"
        assert top_frame is None

    def test_entity_carries_display_source(self):
        snapshot = single_process(
            [raw_entity("a", backtrace=7)],
            frames=FRAMES, backtraces=[{'backtrace_id': 7, 'frame_ids': [1, 2]}],
        )

        entity = convert_snapshot(snapshot).entities[0]

        assert entity.backtrace_id == 7
        assert entity.krate == "app"
        assert entity.crate_name == "app"

    @pytest.mark.parametrize("catalog", [
        {'frames': [{'frame_id': 0, 'frame': {}}]},
        {'frames': [{'frame_id': 1, 'frame': {}}, {'frame_id': 1, 'frame': {}}]},
        {'frames': FRAMES, 'backtraces': [{'backtrace_id': 7, 'frame_ids': [1]},
                                          {'backtrace_id': 7, 'frame_ids': [2]}]},
        {'frames': FRAMES, 'backtraces': [{'backtrace_id': 7, 'frame_ids': [1, 99]}]},
        {'frames': FRAMES, 'backtraces': [{'backtrace_id': True, 'frame_ids': []}]},
    ])
    def test_broken_catalog_is_fatal(self, catalog):
        with pytest.raises(SnapshotIntegrityError):
            build_backtrace_index(catalog)

    def test_missing_entity_backtrace_with_catalog(self):
        snapshot = single_process([raw_entity("a")], frames=FRAMES, backtraces=[])

        with pytest.raises(SnapshotIntegrityError) as excinfo:
            convert_snapshot(snapshot)

        assert excinfo.value.entity_id == "a"

    def test_missing_backtrace_allowed_when_not_required(self):
        snapshot = single_process([raw_entity("a")], frames=FRAMES, backtraces=[])

        assert len(convert_snapshot(snapshot, require_backtraces=False).entities) == 1

    def test_edge_with_unknown_backtrace(self):
        snapshot = single_process(
            [raw_entity("a", backtrace=7), raw_entity("b", backtrace=7)],
            [raw_edge("a", "b", backtrace=99)],
            frames=FRAMES, backtraces=[{'backtrace_id': 7, 'frame_ids': [2]}],
        )

        with pytest.raises(SnapshotIntegrityError) as excinfo:
            convert_snapshot(snapshot)

        assert excinfo.value.backtrace_id == 99

    def test_edge_backtrace_with_empty_catalog(self):
        snapshot = single_process(
            [raw_entity("a"), raw_entity("b")],
            [raw_edge("a", "b", backtrace=9)],
            frames=[], backtraces=[],
        )

        with pytest.raises(SnapshotIntegrityError) as excinfo:
            convert_snapshot(snapshot, require_backtraces=False)

        assert excinfo.value.backtrace_id == 9

    def test_edge_backtrace_ignored_without_catalog(self):
        snapshot = single_process([raw_entity("a"), raw_entity("b")], [raw_edge("a", "b", backtrace=9)])

        assert len(convert_snapshot(snapshot).edges) == 1


def test_extract_scopes():
    snapshot = {'snapshot_id': 1, 'processes': [raw_process(
        "p1",
        entities=[raw_entity("T1")],
        scopes=[{'id': "s1", 'name': "main", 'body': {'task': {}}, 'birth': 1000}],
        process_name="web",
        scope_entity_links=[{'scope_id': "s1", 'entity_id': "T1"}],
    )]}

    scopes = extract_scopes(snapshot)

    assert len(scopes) == 1
    scope = scopes[0]
    assert scope.key == "p1:s1"
    assert scope.scope_kind == "task"
    assert scope.process_name == "web"
    assert scope.age_ms == 9000
    assert scope.member_entity_ids == ["T1"]
