"""
gqltrace - OpenTelemetry span trees for GraphQL field resolution.

This package traces graphql-core execution: one span per request and one
child span per resolved field, nested the way fields nest in the response.
Fields (and whole subtrees) can be left out with predicates.

Example:
    >>> from opentelemetry import trace
    >>> from gqltrace import OpenTelemetryExtension, RequestStart
    >>>
    >>> extension = OpenTelemetryExtension(tracer=trace.get_tracer(__name__))
    >>> result = extension.execute_sync(schema, RequestStart(query="{ a { one } }"))
"""

__version__ = "0.1.0"

from gqltrace.core.lifecycle import RequestStart
from gqltrace.core.path import build_path
from gqltrace.core.registry import SpanRegistry
from gqltrace.exceptions import ConfigurationError, GqlTraceError
from gqltrace.extension import OpenTelemetryExtension

__all__ = [
    "OpenTelemetryExtension",
    "RequestStart",
    "SpanRegistry",
    "build_path",
    "ConfigurationError",
    "GqlTraceError",
]
