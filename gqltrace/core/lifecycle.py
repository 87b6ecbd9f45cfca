"""
gqltrace.core.lifecycle - The per-request root span.

``RequestSpanLifecycle.begin`` opens the span every field span of a request
nests under. If the incoming headers carry a trace context (for example a
W3C ``traceparent``), the request span continues that trace; otherwise it
starts a new one.

Classes:
    RequestStart: What the host knows about a request when it starts
    HeaderGetter: OpenTelemetry getter over HTTP header mappings
    RequestSpanLifecycle: Opens, registers and closes the root span
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagate import get_global_textmap
from opentelemetry.propagators.textmap import Getter, TextMapPropagator
from opentelemetry.trace import Span, SpanKind

from gqltrace.core.gate import TraceGate
from gqltrace.core.registry import ContextTable

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_SPAN_NAME = "request"

RequestResolveHook = Callable[[Span, "RequestStart"], None]


@dataclass
class RequestStart:
    """Request information handed to predicates and hooks.

    Attributes:
        query: GraphQL document source
        headers: Transport headers (any mapping; Starlette ``Headers`` work)
        operation_name: Requested operation, if any
        variables: Variable values
        context: Context object passed to resolvers; identifies the request
        parsed_query: Parsed DocumentNode, if the host already has one
        method: HTTP method
        url: Request URL
    """
    query: Optional[str] = None
    headers: Optional[Mapping[str, str]] = None
    operation_name: Optional[str] = None
    variables: Optional[Dict[str, Any]] = None
    context: Any = field(default_factory=dict)
    parsed_query: Any = None
    method: Optional[str] = None
    url: Optional[str] = None


class HeaderGetter(Getter[Mapping[str, str]]):
    """Case-insensitive header access for propagators."""

    def get(self, carrier: Mapping[str, str], key: str) -> Optional[List[str]]:
        if carrier is None:
            return None

        getlist = getattr(carrier, "getlist", None)
        if callable(getlist):
            values = getlist(key)
            return list(values) if values else None

        wanted = key.lower()
        for name, value in carrier.items():
            if name.lower() == wanted:
                if isinstance(value, (list, tuple)):
                    return [str(v) for v in value]
                return [str(value)]
        return None

    def keys(self, carrier: Mapping[str, str]) -> List[str]:
        if carrier is None:
            return []
        return list(carrier.keys())


HEADER_GETTER = HeaderGetter()


class RequestSpanLifecycle:
    """Creates the request span and attaches request state to the context.

    Args:
        tracer: OpenTelemetry tracer used for the request span
        table: Side table receiving the request state
        gate: Trace predicates; ``should_trace_request`` is consulted here
        propagator: Extracts remote context from headers. Defaults to the
            globally configured propagator.
        on_request_resolve: Called with ``(root_span, request_start)``
        span_name: Name of the request span
    """

    def __init__(
        self,
        tracer: trace.Tracer,
        table: ContextTable,
        gate: Optional[TraceGate] = None,
        propagator: Optional[TextMapPropagator] = None,
        on_request_resolve: Optional[RequestResolveHook] = None,
        span_name: str = DEFAULT_REQUEST_SPAN_NAME,
    ) -> None:
        self._tracer = tracer
        self._table = table
        self._gate = gate or TraceGate()
        self._propagator = propagator
        self._on_request_resolve = on_request_resolve
        self._span_name = span_name

    def begin(self, request_start: RequestStart) -> Optional[Callable[[], None]]:
        """Open the request span.

        Args:
            request_start: Information about the incoming request

        Returns:
            A closure ending the request span, or None if the request is
            not traced. The caller must invoke it on success and on failure.
        """
        if not self._gate.should_trace_request(request_start):
            logger.debug("Request not traced (rejected by predicate)")
            return None

        context = request_start.context
        if context is None:
            logger.warning("Request has no context object to attach spans to; not tracing")
            return None

        if self._table.get(context) is not None:
            logger.warning("Context object is already in use by an open request; not tracing")
            return None

        root_span = self._tracer.start_span(
            self._span_name,
            context=self._extract_parent(request_start.headers),
            kind=SpanKind.SERVER,
            attributes=self._request_attributes(request_start),
        )

        try:
            if self._on_request_resolve is not None:
                self._on_request_resolve(root_span, request_start)
        except Exception:
            root_span.end()
            raise

        state = self._table.attach(context, root_span)
        if state.root_span is not root_span:
            # Another request attached to the same context in the meantime.
            logger.warning("Context object is already in use by an open request; not tracing")
            root_span.end()
            return None
        finished = False

        def finish_request() -> None:
            nonlocal finished
            if finished:
                logger.warning("Request span finished more than once")
                return
            finished = True
            try:
                root_span.end()
            finally:
                self._table.detach(context, state)

        return finish_request

    def _extract_parent(self, headers: Optional[Mapping[str, str]]) -> Context:
        # An empty Context keeps the request span from nesting under
        # whatever span happens to be current in the host.
        if not headers:
            return Context()

        propagator = self._propagator or get_global_textmap()
        try:
            extracted = propagator.extract(headers, getter=HEADER_GETTER)
        except Exception:
            logger.warning("Could not extract trace context from headers", exc_info=True)
            return Context()

        if not trace.get_current_span(extracted).get_span_context().is_valid:
            return Context()

        logger.debug("Continuing remote trace from request headers")
        return extracted

    @staticmethod
    def _request_attributes(request_start: RequestStart) -> Dict[str, str]:
        attributes: Dict[str, str] = {}
        if request_start.operation_name:
            attributes["graphql.operation.name"] = request_start.operation_name
        if request_start.query:
            attributes["graphql.document"] = request_start.query
        return attributes
