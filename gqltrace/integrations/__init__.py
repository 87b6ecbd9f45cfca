"""
gqltrace.integrations - Tracer setup and web framework integrations.

Example (FastAPI):
    >>> from fastapi import FastAPI
    >>> from gqltrace.integrations import setup_fastapi_graphql
    >>>
    >>> app = FastAPI()
    >>> setup_fastapi_graphql(app, schema, service_name="my-api")
"""

from gqltrace.integrations.fastapi_integration import (
    GraphQLRequest,
    create_graphql_router,
    setup_fastapi_graphql,
)
from gqltrace.integrations.setup import setup_tracing, get_tracer, shutdown_tracing

__all__ = [
    # Setup
    "setup_tracing",
    "get_tracer",
    "shutdown_tracing",
    # FastAPI
    "GraphQLRequest",
    "create_graphql_router",
    "setup_fastapi_graphql",
]
