from snapshot_deadlock_system.core.model import EntityKind, RenderSource
from snapshot_deadlock_system.view.graph_filter import (
    apply_graph_filter,
    entity_visible,
    parse_graph_filter_query,
    strip_filter_quotes,
    tokenize_filter_query,
)

from conftest import make_edge, make_entity, make_graph


class TestTokenizer:

    def test_splits_on_whitespace(self):
        assert tokenize_filter_query("  +kind:lock   -process:web ") == ["+kind:lock", "-process:web"]

    def test_quotes_keep_spaces(self):
        assert tokenize_filter_query('+process:"my app" loners:off') == ['+process:"my app"', "loners:off"]

    def test_escaped_quote_does_not_toggle(self):
        assert tokenize_filter_query(r'+node:a\"b c') == [r'+node:a\"b', "c"]

    def test_strip_quotes(self):
        assert strip_filter_quotes('"my app"') == "my app"
        assert strip_filter_quotes(r'"say \"hi\""') == 'say "hi"'
        assert strip_filter_quotes("plain") == "plain"


class TestParser:

    def test_signed_keys(self):
        parsed = parse_graph_filter_query('+kind:lock -process:web +process:"my app" -node:T1 +source:src/a.rs')

        assert parsed.include_kinds == {"lock"}
        assert parsed.exclude_processes == {"web"}
        assert parsed.include_processes == {"my app"}
        assert parsed.exclude_node_ids == {"T1"}
        assert parsed.include_locations == {"src/a.rs"}
        assert all(token.valid for token in parsed.tokens)

    def test_settings(self):
        parsed = parse_graph_filter_query("loners:off colorBy:crate groupBy:none")

        assert parsed.show_loners is False
        assert parsed.color_by == "crate"
        assert parsed.group_by == "none"

    def test_invalid_tokens_are_kept(self):
        parsed = parse_graph_filter_query("garbage :x +kind: loners:maybe kind:lock +colour:red")

        assert [token.raw for token in parsed.tokens] == [
            "garbage", ":x", "+kind:", "loners:maybe", "kind:lock", "+colour:red",
        ]
        assert not any(token.valid for token in parsed.tokens)
        assert parsed.include_kinds == set()


class TestVisibility:

    def test_location_matches_path_or_line(self):
        entity = make_entity("a", source=RenderSource("src/a.rs", 12, "app"))

        assert entity_visible(entity, parse_graph_filter_query("+location:src/a.rs"))
        assert entity_visible(entity, parse_graph_filter_query("+location:src/a.rs:12"))
        assert not entity_visible(entity, parse_graph_filter_query("+location:src/a.rs:13"))

    def test_process_matches_id_or_name(self):
        entity = make_entity("a", process_id="p1", process_name="web")

        assert entity_visible(entity, parse_graph_filter_query("+process:p1"))
        assert not entity_visible(entity, parse_graph_filter_query("-process:web"))

    def test_exclude_wins_over_include(self):
        entity = make_entity("a", EntityKind.LOCK)

        assert not entity_visible(entity, parse_graph_filter_query("+kind:lock -node:a"))


def test_apply_filter_collapses_hidden_lock():
    graph = make_graph(
        [make_entity("a"), make_entity("m", EntityKind.LOCK), make_entity("b"), make_entity("idle")],
        [make_edge("a", "m"), make_edge("m", "b")],
    )

    reduced = apply_graph_filter(graph, parse_graph_filter_query("-kind:lock"))

    assert [e.id for e in reduced.entities] == ["a", "b", "idle"]
    assert [e.id for e in reduced.edges] == ["collapsed-a-b"]


def test_apply_filter_hides_loners():
    graph = make_graph(
        [make_entity("a"), make_entity("b"), make_entity("idle")],
        [make_edge("a", "b")],
    )

    assert [e.id for e in apply_graph_filter(graph, parse_graph_filter_query("loners:off")).entities] == ["a", "b"]
    assert len(apply_graph_filter(graph, parse_graph_filter_query(""), show_loners=False).entities) == 2
