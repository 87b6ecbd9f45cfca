"""
gqltrace.extension - OpenTelemetry tracing for graphql-core execution.

``OpenTelemetryExtension`` produces one span per request and one span per
resolved field, nested the way the fields are nested in the response. It
plugs into graphql-core as field middleware and wraps execution with the
request span.

Example:
    >>> from opentelemetry import trace
    >>> from gqltrace import OpenTelemetryExtension, RequestStart
    >>>
    >>> extension = OpenTelemetryExtension(tracer=trace.get_tracer(__name__))
    >>> result = extension.execute_sync(schema, RequestStart(query="{ a { one } }"))

    Or drive graphql-core yourself:

    >>> finish = extension.request_did_start(request_start)
    >>> try:
    ...     result = graphql_sync(schema, query, context_value=request_start.context,
    ...                           middleware=[extension])
    ... finally:
    ...     if finish:
    ...         finish()
"""

from __future__ import annotations

import dataclasses
import logging
from inspect import isawaitable
from typing import Any, Awaitable, Callable, Dict, Optional

from graphql import ExecutionResult, GraphQLSchema, graphql, graphql_sync
from opentelemetry import trace
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.trace import Span, Status, StatusCode

from gqltrace.core.builder import (
    FieldResolveFinishHook,
    FieldResolveHook,
    FieldSpan,
    SpanTreeBuilder,
)
from gqltrace.core.gate import FieldPredicate, RequestPredicate, TraceGate
from gqltrace.core.lifecycle import (
    DEFAULT_REQUEST_SPAN_NAME,
    RequestResolveHook,
    RequestSpanLifecycle,
    RequestStart,
)
from gqltrace.core.registry import ContextTable, SpanRegistry
from gqltrace.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class OpenTelemetryExtension:
    """Traces GraphQL requests and field resolvers with OpenTelemetry.

    One instance can serve any number of concurrent requests. Request state
    is keyed by the context object passed to resolvers, so every request
    needs its own context object.

    Args:
        tracer: OpenTelemetry tracer (required)
        should_trace_request: ``(request_start) -> bool``; default traces all
        should_trace_field_resolver: ``(source, args, context, info) -> bool``;
            default traces all
        on_field_resolve: ``(source, args, context, info)`` after a field
            span opens
        on_field_resolve_finish: ``(error, result, span)`` before a field
            span ends
        on_request_resolve: ``(root_span, request_start)`` after the request
            span opens
        propagator: Propagator for incoming headers; defaults to the global one
        request_span_name: Name of the request span

    Raises:
        ConfigurationError: If no tracer is given
    """

    def __init__(
        self,
        tracer: Optional[trace.Tracer] = None,
        *,
        should_trace_request: Optional[RequestPredicate] = None,
        should_trace_field_resolver: Optional[FieldPredicate] = None,
        on_field_resolve: Optional[FieldResolveHook] = None,
        on_field_resolve_finish: Optional[FieldResolveFinishHook] = None,
        on_request_resolve: Optional[RequestResolveHook] = None,
        propagator: Optional[TextMapPropagator] = None,
        request_span_name: str = DEFAULT_REQUEST_SPAN_NAME,
    ) -> None:
        if tracer is None:
            raise ConfigurationError(
                "OpenTelemetryExtension needs a tracer, please provide it to the "
                "constructor. e.g. OpenTelemetryExtension(tracer=trace.get_tracer(__name__))"
            )

        self.tracer = tracer
        self._table = ContextTable()
        gate = TraceGate(should_trace_request, should_trace_field_resolver)
        self._lifecycle = RequestSpanLifecycle(
            tracer,
            self._table,
            gate=gate,
            propagator=propagator,
            on_request_resolve=on_request_resolve,
            span_name=request_span_name,
        )
        self._builder = SpanTreeBuilder(
            tracer,
            self._table,
            gate=gate,
            on_field_resolve=on_field_resolve,
            on_field_resolve_finish=on_field_resolve_finish,
        )

    @property
    def active_requests(self) -> int:
        """Number of requests whose request span is still open."""
        return len(self._table)

    def request_did_start(self, request_start: RequestStart) -> Optional[Callable[[], None]]:
        """Open the request span for ``request_start``.

        Returns:
            A closure that ends the request span, or None if the request is
            not traced
        """
        return self._lifecycle.begin(request_start)

    def will_resolve_field(
        self, source: Any, args: Dict[str, Any], context: Any, info: Any
    ) -> Optional[FieldSpan]:
        """Open the span for one field, if it is traced.

        Returns:
            A FieldSpan to call with ``(error, result)`` once the resolver
            settles, or None
        """
        return self._builder.will_resolve_field(source, args, context, info)

    def get_registry(self, context: Any) -> Optional[SpanRegistry]:
        state = self._table.get(context)
        return state.registry if state is not None else None

    def get_request_span(self, context: Any) -> Optional[Span]:
        state = self._table.get(context)
        return state.root_span if state is not None else None

    def get_field_span(self, info: Any) -> Optional[Span]:
        """Span of the field described by ``info``, for annotating it."""
        registry = self.get_registry(getattr(info, "context", None))
        if registry is None:
            return None
        return registry.get_span_by_path(getattr(info, "path", None))

    def resolve(self, next_: Callable[..., Any], root: Any, info: Any, **args: Any) -> Any:
        """graphql-core middleware entry point."""
        field_span = self.will_resolve_field(root, args, info.context, info)
        if field_span is None:
            return next_(root, info, **args)

        try:
            with trace.use_span(
                field_span.span,
                end_on_exit=False,
                record_exception=False,
                set_status_on_exception=False,
            ):
                result = next_(root, info, **args)
        except Exception as error:
            field_span.finish(error, None)
            raise

        if isawaitable(result):
            return self._finish_when_settled(result, field_span)

        field_span.finish(None, result)
        return result

    async def _finish_when_settled(self, awaitable: Awaitable[Any], field_span: FieldSpan) -> Any:
        try:
            with trace.use_span(
                field_span.span,
                end_on_exit=False,
                record_exception=False,
                set_status_on_exception=False,
            ):
                result = await awaitable
        except Exception as error:
            field_span.finish(error, None)
            raise

        field_span.finish(None, result)
        return result

    async def execute(
        self,
        schema: GraphQLSchema,
        request_start: RequestStart,
        root_value: Any = None,
        **kwargs: Any,
    ) -> ExecutionResult:
        """Run ``request_start.query`` against ``schema`` with tracing.

        Extra keyword arguments go to ``graphql.graphql``.
        """
        request_start = self._with_context(request_start)
        finish = self.request_did_start(request_start)
        try:
            result = await graphql(
                schema,
                request_start.query or "",
                root_value=root_value,
                context_value=request_start.context,
                variable_values=request_start.variables,
                operation_name=request_start.operation_name,
                middleware=[self],
                **kwargs,
            )
            self._record_errors(request_start.context, result)
            return result
        finally:
            if finish is not None:
                finish()

    def execute_sync(
        self,
        schema: GraphQLSchema,
        request_start: RequestStart,
        root_value: Any = None,
        **kwargs: Any,
    ) -> ExecutionResult:
        """Synchronous variant of ``execute``, using ``graphql.graphql_sync``."""
        request_start = self._with_context(request_start)
        finish = self.request_did_start(request_start)
        try:
            result = graphql_sync(
                schema,
                request_start.query or "",
                root_value=root_value,
                context_value=request_start.context,
                variable_values=request_start.variables,
                operation_name=request_start.operation_name,
                middleware=[self],
                **kwargs,
            )
            self._record_errors(request_start.context, result)
            return result
        finally:
            if finish is not None:
                finish()

    @staticmethod
    def _with_context(request_start: RequestStart) -> RequestStart:
        if request_start.context is None:
            return dataclasses.replace(request_start, context={})
        return request_start

    def _record_errors(self, context: Any, result: ExecutionResult) -> None:
        if not result.errors:
            return
        root_span = self.get_request_span(context)
        if root_span is None:
            return
        root_span.set_attribute("graphql.errors.count", len(result.errors))
        root_span.set_status(Status(StatusCode.ERROR, result.errors[0].message))
