"""
gqltrace.core.gate - Predicates deciding what gets traced.

Both predicates default to tracing everything. Suppressing a field also
suppresses everything below it, which the span tree builder handles; the
gate only answers for the node it is asked about.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

RequestPredicate = Callable[[Any], bool]
FieldPredicate = Callable[[Any, Dict[str, Any], Any, Any], bool]


def always_true(*_args: Any, **_kwargs: Any) -> bool:
    return True


class TraceGate:
    """Holds the request-level and field-level trace predicates.

    Args:
        should_trace_request: Called once per request with the RequestStart
        should_trace_field_resolver: Called once per field with
            ``(source, args, context, info)``
    """

    def __init__(
        self,
        should_trace_request: Optional[RequestPredicate] = None,
        should_trace_field_resolver: Optional[FieldPredicate] = None,
    ) -> None:
        self._should_trace_request = should_trace_request or always_true
        self._should_trace_field_resolver = should_trace_field_resolver or always_true

    def should_trace_request(self, request_start: Any) -> bool:
        return bool(self._should_trace_request(request_start))

    def should_trace_field(
        self, source: Any, args: Dict[str, Any], context: Any, info: Any
    ) -> bool:
        return bool(self._should_trace_field_resolver(source, args, context, info))
