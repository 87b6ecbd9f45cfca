"""
gqltrace.testing - Helpers for asserting on produced span trees.

This subpackage contains:
- tree: SpanNode trees built from finished OpenTelemetry spans
- serializer: Text rendering of span trees for snapshot comparisons
"""

from gqltrace.testing.serializer import serialize_span_tree
from gqltrace.testing.tree import (
    SpanNode,
    build_span_tree,
    count_spans,
    flatten_tree,
    get_ancestors,
    get_descendants,
    get_span_by_id,
)

__all__ = [
    "SpanNode",
    "build_span_tree",
    "count_spans",
    "flatten_tree",
    "get_ancestors",
    "get_descendants",
    "get_span_by_id",
    "serialize_span_tree",
]
