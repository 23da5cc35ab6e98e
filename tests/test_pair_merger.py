from snapshot_deadlock_system.core.model import EdgeKind, EntityKind, Tone
from snapshot_deadlock_system.core.pair_merger import (
    coalesce_context_edges,
    merge_channel_pairs,
    merge_pairs,
    merge_rpc_pairs,
)

from conftest import make_edge, make_entity


def channel_fixture(rx_lifecycle='open'):
    entities = [
        make_entity("task"),
        make_entity("jobs:tx", EntityKind.CHANNEL_TX, name="jobs:tx", body={'lifecycle': 'open'}),
        make_entity("jobs:rx", EntityKind.CHANNEL_RX, name="jobs:rx", body={'lifecycle': rx_lifecycle}),
        make_entity("consumer"),
    ]
    edges = [
        make_edge("jobs:tx", "jobs:rx", EdgeKind.CHANNEL_LINK),
        make_edge("task", "jobs:tx"),
        make_edge("consumer", "jobs:rx"),
    ]
    return entities, edges


def rpc_fixture(resp_process="p2", link_reversed=False):
    entities = [
        make_entity("client"),
        make_entity("get:req", EntityKind.REQUEST, name="get:req", body={'method': 'get'}),
        make_entity("get:resp", EntityKind.RESPONSE, process_id=resp_process, name="get:resp",
                    body={'status': 'pending'}),
    ]
    link = make_edge("get:resp", "get:req", EdgeKind.RPC_LINK) if link_reversed \
        else make_edge("get:req", "get:resp", EdgeKind.RPC_LINK)
    edges = [link, make_edge("client", "get:req")]
    return entities, edges


class TestChannelMerge:

    def test_merges_linked_endpoints(self):
        entities, edges = merge_channel_pairs(*channel_fixture())

        pair = next(e for e in entities if e.kind is EntityKind.CHANNEL_PAIR)
        assert pair.id == "pair:jobs:tx:jobs:rx"
        assert pair.name == "jobs"
        assert pair.merged_from == ("jobs:tx", "jobs:rx")
        assert set(pair.channel_pair) == {'tx', 'rx'}
        assert pair.status.label == "open"
        assert pair.status.tone is Tone.OK
        assert not any(e.id in ("jobs:tx", "jobs:rx") for e in entities)

    def test_remaps_edges_with_ports(self):
        _, edges = merge_channel_pairs(*channel_fixture())

        assert not any(edge.kind is EdgeKind.CHANNEL_LINK for edge in edges)
        by_source = {edge.source: edge for edge in edges}
        assert by_source["task"].target == "pair:jobs:tx:jobs:rx"
        assert by_source["task"].target_port == "pair:jobs:tx:jobs:rx:tx"
        assert by_source["consumer"].target_port == "pair:jobs:tx:jobs:rx:rx"

    def test_closed_side_makes_pair_closed(self):
        entities, _ = merge_channel_pairs(*channel_fixture(rx_lifecycle={'closed': 'receiver_dropped'}))

        pair = next(e for e in entities if e.kind is EntityKind.CHANNEL_PAIR)
        assert pair.status.label == "closed"
        assert pair.status.tone is Tone.NEUTRAL

    def test_endpoint_in_two_links_merges_once(self):
        entities, edges = channel_fixture()
        entities.append(make_entity("other:rx", EntityKind.CHANNEL_RX, name="other:rx"))
        edges.append(make_edge("jobs:tx", "other:rx", EdgeKind.CHANNEL_LINK))

        merged, _ = merge_channel_pairs(entities, edges)

        pairs = [e for e in merged if e.kind is EntityKind.CHANNEL_PAIR]
        assert len(pairs) == 1
        assert any(e.id == "other:rx" for e in merged)


class TestRpcMerge:

    def test_merges_across_processes_without_grouping(self):
        entities, edges = merge_rpc_pairs(*rpc_fixture(), group_mode='none')

        pair = next(e for e in entities if e.kind is EntityKind.RPC_PAIR)
        assert pair.id == "rpc_pair:get:req:get:resp"
        assert pair.name == "get"
        assert pair.status.label == "pending"
        assert edges[0].target_port == "rpc_pair:get:req:get:resp:req"

    def test_reversed_link_is_normalized(self):
        entities, _ = merge_rpc_pairs(*rpc_fixture(link_reversed=True))

        pair = next(e for e in entities if e.kind is EntityKind.RPC_PAIR)
        assert pair.merged_from == ("get:req", "get:resp")

    def test_cross_group_pair_is_left_alone(self):
        entities, edges = merge_rpc_pairs(*rpc_fixture(resp_process="p2"), group_mode='process')

        assert not any(e.kind is EntityKind.RPC_PAIR for e in entities)
        assert any(edge.kind is EdgeKind.RPC_LINK for edge in edges)

    def test_same_process_pair_merges_in_process_mode(self):
        entities, _ = merge_rpc_pairs(*rpc_fixture(resp_process="p1"), group_mode='process')

        assert any(e.kind is EntityKind.RPC_PAIR for e in entities)


class TestMergeProperties:

    def test_idempotent(self):
        entities, edges = channel_fixture()
        rpc_entities, rpc_edges = rpc_fixture()
        once = merge_pairs(entities + rpc_entities, edges + rpc_edges)
        twice = merge_pairs(*once)

        assert [e.id for e in twice[0]] == [e.id for e in once[0]]
        assert [e.to_dict() for e in twice[1]] == [e.to_dict() for e in once[1]]

    def test_deterministic(self):
        first = merge_pairs(*channel_fixture())
        second = merge_pairs(*channel_fixture())

        assert [e.to_dict() for e in first[0]] == [e.to_dict() for e in second[0]]
        assert [e.to_dict() for e in first[1]] == [e.to_dict() for e in second[1]]


def test_polls_coalesced_when_richer_edge_exists():
    edges = [
        make_edge("a", "b", EdgeKind.POLLS),
        make_edge("a", "b", EdgeKind.WAITS_ON),
        make_edge("a", "c", EdgeKind.POLLS),
    ]

    kept = coalesce_context_edges(edges)

    assert [(e.source, e.target, e.kind) for e in kept] == [
        ("a", "b", EdgeKind.WAITS_ON),
        ("a", "c", EdgeKind.POLLS),
    ]
