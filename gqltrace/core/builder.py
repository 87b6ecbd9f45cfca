"""
gqltrace.core.builder - Builds the field span tree during execution.

``SpanTreeBuilder.will_resolve_field`` runs before each resolver. It either
leaves the field untraced (returns None) or opens a span nested under the
parent field's span, or under the request span for top-level fields, and
returns a ``FieldSpan`` whose ``finish`` closes it.

A field is left untraced when the request is not traced, when the field
predicate rejects it, or when its parent field was left untraced. The last
rule makes suppression cover a whole subtree.

Classes:
    FieldState: Lifecycle of a traced field
    FieldSpan: An open field span and its finish action
    SpanTreeBuilder: Per-field decision and span creation
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

from gqltrace.core.gate import TraceGate
from gqltrace.core.path import build_path
from gqltrace.core.registry import ContextTable, ParentState

logger = logging.getLogger(__name__)

FALLBACK_FIELD_NAME = "field"

FieldResolveHook = Callable[[Any, Dict[str, Any], Any, Any], None]
FieldResolveFinishHook = Callable[[Optional[BaseException], Any, Span], None]


def get_field_name(info: Any) -> str:
    """Name for a field span: alias, then field name, then ``"field"``.

    Args:
        info: GraphQLResolveInfo, or anything shaped like it

    Returns:
        The span name
    """
    field_nodes = getattr(info, "field_nodes", None)
    if field_nodes:
        alias = getattr(field_nodes[0], "alias", None)
        if alias is not None and getattr(alias, "value", None):
            return alias.value

    return getattr(info, "field_name", None) or FALLBACK_FIELD_NAME


class FieldState(Enum):
    ACTIVE = "active"
    FINISHED = "finished"


class FieldSpan:
    """An open field span plus the action that closes it.

    Attributes:
        span: The OpenTelemetry span
        path_key: Registry key the span was stored under
        state: ACTIVE until ``finish`` or ``close`` runs, then FINISHED
    """

    def __init__(
        self,
        span: Span,
        path_key: str,
        on_finish: Optional[FieldResolveFinishHook] = None,
    ) -> None:
        self.span = span
        self.path_key = path_key
        self.state = FieldState.ACTIVE
        self._on_finish = on_finish

    @property
    def finished(self) -> bool:
        return self.state is FieldState.FINISHED

    def finish(self, error: Optional[BaseException] = None, result: Any = None) -> None:
        """Report the resolver outcome and end the span.

        The span is ended even if the finish hook raises; the hook's
        exception then propagates.

        Args:
            error: Exception raised by the resolver, if any
            result: Value the resolver produced
        """
        if self.finished:
            logger.warning("Field span '%s' finished more than once", self.path_key)
            return

        try:
            if error is not None:
                self.span.record_exception(error)
                self.span.set_status(Status(StatusCode.ERROR, str(error)))
            if self._on_finish is not None:
                self._on_finish(error, result, self.span)
        finally:
            self.close()

    __call__ = finish

    def close(self) -> None:
        """End the span without reporting an outcome."""
        if self.finished:
            return
        self.state = FieldState.FINISHED
        self.span.end()


class SpanTreeBuilder:
    """Opens one span per traced field, nested by response path.

    Request state (root span and registry) is looked up in ``table`` by the
    resolver's context object, so a single builder can serve concurrent
    requests.

    Args:
        tracer: OpenTelemetry tracer used to start field spans
        table: Side table holding each request's state
        gate: Trace predicates
        on_field_resolve: Called with ``(source, args, context, info)``
            after the span opens
        on_field_resolve_finish: Called with ``(error, result, span)``
            before the span ends
    """

    def __init__(
        self,
        tracer: trace.Tracer,
        table: ContextTable,
        gate: Optional[TraceGate] = None,
        on_field_resolve: Optional[FieldResolveHook] = None,
        on_field_resolve_finish: Optional[FieldResolveFinishHook] = None,
    ) -> None:
        self._tracer = tracer
        self._table = table
        self._gate = gate or TraceGate()
        self._on_field_resolve = on_field_resolve
        self._on_field_resolve_finish = on_field_resolve_finish

    def will_resolve_field(
        self,
        source: Any,
        args: Dict[str, Any],
        context: Any,
        info: Any,
    ) -> Optional[FieldSpan]:
        """Decide whether to trace a field and open its span.

        Args:
            source: Parent value passed to the resolver
            args: Field arguments
            context: Request context object
            info: GraphQLResolveInfo for the field

        Returns:
            A FieldSpan to finish once the resolver settles, or None when
            the field stays untraced
        """
        state = self._table.get(context)
        if state is None:
            return None

        path = getattr(info, "path", None)
        registry = state.registry

        if not self._gate.should_trace_field(source, args, context, info):
            key = registry.mark_untraced(path)
            logger.debug("Field '%s' rejected by predicate", key)
            return None

        lookup = registry.lookup_parent(path)
        if lookup.suppresses:
            key = registry.mark_untraced(path)
            logger.debug("Field '%s' untraced, parent '%s' is untraced", key, lookup.key)
            return None

        parent_span = lookup.span if lookup.state is ParentState.PARENT_SPAN else state.root_span
        if not parent_span.is_recording():
            logger.debug("Parent span for '%s' already ended, linking by context", lookup.key)

        name = get_field_name(info)
        span = self._tracer.start_span(
            name,
            context=trace.set_span_in_context(parent_span),
            kind=SpanKind.INTERNAL,
            attributes=self._field_attributes(info, path),
        )
        key = registry.add_span(path, span)
        field_span = FieldSpan(span, key, self._on_field_resolve_finish)

        if self._on_field_resolve is not None:
            try:
                self._on_field_resolve(source, args, context, info)
            except Exception:
                field_span.close()
                raise

        return field_span

    @staticmethod
    def _field_attributes(info: Any, path: Any) -> Dict[str, str]:
        attributes = {"graphql.field.path": build_path(path)}
        field_name = getattr(info, "field_name", None)
        if field_name:
            attributes["graphql.field.name"] = field_name
        parent_type = getattr(info, "parent_type", None)
        if parent_type is not None and getattr(parent_type, "name", None):
            attributes["graphql.parent_type"] = parent_type.name
        return attributes
