"""
gqltrace.exceptions - Exceptions raised by gqltrace.
"""

from __future__ import annotations


class GqlTraceError(Exception):
    """Base class for gqltrace errors."""


class ConfigurationError(GqlTraceError, ValueError):
    """A required collaborator or option is missing or invalid."""
