"""View-consistent reduction and filtering of snapshot graphs."""

from .reduction import collapse_edges_through_hidden_nodes, filter_loners, connected_subgraph
from .graph_filter import GraphFilter, parse_graph_filter_query, apply_graph_filter, tokenize_filter_query

__all__ = [
    'collapse_edges_through_hidden_nodes',
    'filter_loners',
    'connected_subgraph',
    'GraphFilter',
    'parse_graph_filter_query',
    'apply_graph_filter',
    'tokenize_filter_query',
]
