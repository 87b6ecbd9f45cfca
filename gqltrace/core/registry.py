"""
gqltrace.core.registry - Per-request span registry keyed by response path.

Every traced field registers its span under its path key so that child
fields can find the span to nest under. The registry also remembers which
paths were deliberately left untraced, so a child can tell "my parent was
suppressed" apart from "my parent was never seen".

Registries are not stored on the host's context object. A ``ContextTable``
maps a context object's identity to its ``RequestState`` (root span plus
registry) for as long as the request runs.

Classes:
    ParentState: Outcome of a parent lookup
    ParentLookup: Parent lookup result carrying the span when there is one
    SpanRegistry: Path key to span mapping for one request
    RequestState: Root span and registry for one request
    ContextTable: Side table from context object to RequestState
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple

from opentelemetry.trace import Span

from gqltrace.core.path import build_path, is_array_path, logical_parent

logger = logging.getLogger(__name__)


class ParentState(Enum):
    """How a field's parent span was resolved."""

    NO_PARENT = "no_parent"
    PARENT_SPAN = "parent_span"
    PARENT_UNTRACED = "parent_untraced"
    PARENT_MISSING = "parent_missing"


@dataclass(frozen=True)
class ParentLookup:
    """Result of ``SpanRegistry.lookup_parent``.

    Attributes:
        state: Which of the four outcomes applies
        span: The parent span, set only for ``PARENT_SPAN``
        key: Path key that was looked up (empty for ``NO_PARENT``)
    """
    state: ParentState
    span: Optional[Span] = None
    key: str = ""

    @property
    def suppresses(self) -> bool:
        """Whether the child must stay untraced."""
        return self.state in (ParentState.PARENT_UNTRACED, ParentState.PARENT_MISSING)


class SpanRegistry:
    """Mapping from path key to the span governing that position.

    Example:
        >>> registry = SpanRegistry()
        >>> registry.add_span(info.path, span)
        >>> registry.get_span_by_path(info.path) is span
        True
    """

    def __init__(self) -> None:
        self._spans: Dict[str, Span] = {}
        self._untraced: Set[str] = set()

    def __len__(self) -> int:
        return len(self._spans)

    def __contains__(self, key: object) -> bool:
        return key in self._spans

    def add_span(self, node: Any, span: Span) -> str:
        """Register ``span`` under the full path key of ``node``.

        List elements keep their bracket in the key. A later call for the
        same key replaces the earlier span.

        Args:
            node: Path step of the field that owns the span
            span: The span to register

        Returns:
            The key the span was stored under
        """
        key = build_path(node)
        self._spans[key] = span
        return key

    def mark_untraced(self, node: Any) -> str:
        """Record that the field at ``node`` deliberately got no span."""
        key = build_path(node)
        self._untraced.add(key)
        return key

    def is_untraced(self, node: Any) -> bool:
        return build_path(node) in self._untraced

    def get_span_by_path(self, node: Any) -> Optional[Span]:
        """Look up the span for ``node``.

        A list index step has no span identity of its own here; the lookup
        goes to the field that produced the list instead.

        Args:
            node: Path step to look up

        Returns:
            The registered span, or None
        """
        if is_array_path(node):
            node = logical_parent(node)
        return self._spans.get(build_path(node))

    def lookup_parent(self, node: Any) -> ParentLookup:
        """Resolve the parent span for the field at ``node``.

        Args:
            node: Path step of the field about to resolve

        Returns:
            A ParentLookup. ``NO_PARENT`` means the field is top level and
            nests under the request span.
        """
        parent = logical_parent(getattr(node, "prev", None)) if node is not None else None
        if parent is None:
            return ParentLookup(ParentState.NO_PARENT)

        key = build_path(parent)
        span = self._spans.get(key)
        if span is not None:
            return ParentLookup(ParentState.PARENT_SPAN, span=span, key=key)
        if key in self._untraced:
            return ParentLookup(ParentState.PARENT_UNTRACED, key=key)

        logger.warning(
            "No span or suppression recorded for parent path '%s' of '%s'; "
            "leaving the subtree untraced",
            key,
            build_path(node),
        )
        return ParentLookup(ParentState.PARENT_MISSING, key=key)


@dataclass
class RequestState:
    """Tracing state owned by one request.

    Attributes:
        root_span: The request span every top-level field nests under
        registry: Field spans of this request
    """
    root_span: Span
    registry: SpanRegistry = field(default_factory=SpanRegistry)


class ContextTable:
    """Side table attaching a ``RequestState`` to a host context object.

    Entries are keyed on object identity, so unhashable contexts such as
    plain dicts work. The table holds a strong reference to the context
    while attached, which keeps the identity from being reused.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[int, Tuple[Any, RequestState]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def attach(self, context: Any, root_span: Span) -> RequestState:
        """Attach state for ``context``, or return the state already attached.

        A second attach for the same context does not reset the registry and
        ignores ``root_span``.

        Args:
            context: Host context object of the request
            root_span: Request span to use if nothing is attached yet

        Returns:
            The RequestState for ``context``
        """
        with self._lock:
            entry = self._states.get(id(context))
            if entry is not None and entry[0] is context:
                return entry[1]
            state = RequestState(root_span=root_span)
            self._states[id(context)] = (context, state)
            return state

    def get(self, context: Any) -> Optional[RequestState]:
        with self._lock:
            entry = self._states.get(id(context))
        if entry is None or entry[0] is not context:
            return None
        return entry[1]

    def detach(self, context: Any, state: Optional[RequestState] = None) -> Optional[RequestState]:
        """Remove and return the state for ``context``, if any.

        When ``state`` is given, the entry is removed only if it is that
        state, so a request never detaches state it does not own.
        """
        with self._lock:
            entry = self._states.get(id(context))
            if entry is None or entry[0] is not context:
                return None
            if state is not None and entry[1] is not state:
                return None
            del self._states[id(context)]
            return entry[1]


def add_context_helpers(context: Any, table: ContextTable, root_span: Span) -> SpanRegistry:
    """Attach registry helpers for ``context`` and return its registry.

    Calling this repeatedly during one request returns the same registry.
    """
    return table.attach(context, root_span).registry
