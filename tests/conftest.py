"""Shared builders for snapshot deadlock tests."""

import pytest

from snapshot_deadlock_system.core.model import Edge, EdgeKind, Entity, EntityKind, SnapshotGraph


def make_entity(entity_id, kind=EntityKind.FUTURE, process_id="p1", name=None, body=None,
                age_ms=0, **kwargs) -> Entity:
    return Entity(
        id=entity_id,
        process_id=process_id,
        process_name=kwargs.pop('process_name', process_id),
        pid=kwargs.pop('pid', 100),
        name=name or entity_id,
        kind=kind,
        body=body or {},
        age_ms=age_ms,
        **kwargs,
    )


def make_edge(source, target, kind=EdgeKind.WAITS_ON, meta=None, edge_id=None, **kwargs) -> Edge:
    return Edge(
        id=edge_id or f"{source}->{target}:{kind.value}",
        source=source,
        target=target,
        kind=kind,
        meta=meta or {},
        **kwargs,
    )


def make_graph(entities, edges) -> SnapshotGraph:
    return SnapshotGraph(entities=list(entities), edges=list(edges))


def raw_entity(entity_id, kind_key="future", payload=None, birth=0, name=None, **extra):
    entity = {
        'id': entity_id,
        'name': name or entity_id,
        'birth': birth,
        'body': {kind_key: payload if payload is not None else {}},
    }
    entity.update(extra)
    return entity


def raw_edge(src, dst, kind="needs", **extra):
    edge = {'src': src, 'dst': dst, 'kind': kind}
    edge.update(extra)
    return edge


def raw_process(process_id, entities=(), edges=(), scopes=(), process_name=None,
                ptime_now_ms=10_000, **extra):
    process = {
        'process_id': process_id,
        'process_name': process_name or process_id,
        'pid': 1000,
        'ptime_now_ms': ptime_now_ms,
        'snapshot': {
            'entities': list(entities),
            'edges': list(edges),
            'scopes': list(scopes),
        },
    }
    process.update(extra)
    return process


@pytest.fixture
def three_process_snapshot():
    """T1 (web) -> T2 (worker) -> T3 (db) -> T1, with one wait longer than 5s"""
    return {
        'snapshot_id': 42,
        'captured_at_unix_ms': 1_700_000_000_000,
        'processes': [
            raw_process(
                "p1", process_name="web",
                entities=[
                    raw_entity("T1", "future"),
                    raw_entity("C:tx", "channel_tx", {'lifecycle': 'open'}),
                    raw_entity("C:rx", "channel_rx", {'lifecycle': 'open'}),
                ],
                edges=[
                    raw_edge("T1", "T2", meta={'wait_secs': 2.5, 'reason': "receiving on channel C"}),
                    raw_edge("C:tx", "C:rx", kind="paired_with"),
                ],
            ),
            raw_process(
                "p2", process_name="worker",
                entities=[raw_entity("T2", "future")],
                edges=[raw_edge("T2", "T3", meta={'wait_secs': 6.0, 'reason': "waiting on RPC R"})],
            ),
            raw_process(
                "p3", process_name="db",
                entities=[
                    raw_entity("T3", "future"),
                    raw_entity("L", "lock", {'kind': 'mutex'}),
                ],
                edges=[
                    raw_edge("T3", "T1", meta={'wait_secs': 1.2, 'reason': "blocked acquiring lock L"}),
                    raw_edge("L", "T1", kind="holds"),
                ],
            ),
        ],
    }
