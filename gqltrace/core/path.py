"""
gqltrace.core.path - Canonical keys for positions in a GraphQL response.

graphql-core describes where a resolver sits with a linked ``Path``
(``key``, ``prev``): a field name for object fields and an integer for
list items. This module turns such a chain into a string key that is
equal for equal positions, regardless of which ``Path`` objects carry it.

Functions:
    is_array_path: True when a path step is a list index
    logical_parent: Nearest ancestor-or-self that is a named field
    build_path: Render a path chain as ``a.three[1].four``
"""

from __future__ import annotations

from typing import Any, List, Optional


def is_array_path(node: Any) -> bool:
    """Return True if ``node`` is a list index step.

    Args:
        node: A path step with a ``key`` attribute, or None

    Returns:
        True for integer keys, False otherwise (including None)
    """
    if node is None:
        return False
    key = getattr(node, "key", None)
    return isinstance(key, int) and not isinstance(key, bool)


def logical_parent(node: Any) -> Optional[Any]:
    """Skip list index steps to reach the field that produced the list.

    ``as[0]`` resolves to ``as``; nested lists such as ``matrix[0][1]``
    resolve to ``matrix``.

    Args:
        node: A path step, or None

    Returns:
        The first named step at or above ``node``, or None if there is none
    """
    current = node
    while is_array_path(current):
        current = getattr(current, "prev", None)
    return current


def build_path(node: Any) -> str:
    """Build the canonical key for a path chain.

    Walks from ``node`` up through ``prev`` links, then renders the steps
    root first. Named steps are joined with ``.`` and index steps are
    appended directly as ``[i]``. Steps without a key are skipped.

    Args:
        node: Leaf step of the chain, or None

    Returns:
        The path key, or an empty string for None

    Example:
        >>> from graphql.pyutils import Path
        >>> build_path(Path(None, "a", None).add_key("three").add_key(1).add_key("four"))
        'a.three[1].four'
    """
    segments: List[str] = []
    current = node
    while current is not None:
        key = getattr(current, "key", None)
        if is_array_path(current):
            segments.append(f"[{key}]")
        elif key is not None:
            segments.append(str(key))
        current = getattr(current, "prev", None)

    result = ""
    for segment in reversed(segments):
        if not result or segment.startswith("["):
            result += segment
        else:
            result += "." + segment
    return result
