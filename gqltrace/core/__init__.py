"""
gqltrace.core - Span tree construction for GraphQL field resolution.

This subpackage contains the main functionality:
- path: Canonical keys for response paths
- registry: Per-request span registry and the context side table
- gate: Request and field trace predicates
- builder: SpanTreeBuilder opening one span per traced field
- lifecycle: RequestSpanLifecycle owning the request span
"""

from gqltrace.core.path import build_path, is_array_path, logical_parent
from gqltrace.core.registry import (
    ContextTable,
    ParentLookup,
    ParentState,
    RequestState,
    SpanRegistry,
    add_context_helpers,
)
from gqltrace.core.gate import TraceGate, always_true
from gqltrace.core.builder import FieldSpan, FieldState, SpanTreeBuilder, get_field_name
from gqltrace.core.lifecycle import HeaderGetter, RequestSpanLifecycle, RequestStart

__all__ = [
    "build_path",
    "is_array_path",
    "logical_parent",
    "ContextTable",
    "ParentLookup",
    "ParentState",
    "RequestState",
    "SpanRegistry",
    "add_context_helpers",
    "TraceGate",
    "always_true",
    "FieldSpan",
    "FieldState",
    "SpanTreeBuilder",
    "get_field_name",
    "HeaderGetter",
    "RequestSpanLifecycle",
    "RequestStart",
]
