"""Shared fixtures: an isolated tracer provider and a small test schema."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List

import pytest
from graphql import GraphQLSchema, build_schema
from opentelemetry import trace
from opentelemetry.sdk.trace import Span as SdkSpan
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from gqltrace import OpenTelemetryExtension

SDL = """
    type A {
      one: String
      two: String
      three: [B]
    }

    type B {
      four: String
    }

    type Query {
      a: A
      b: B
      as: [A]
      bs: [B]
    }
"""


class StartedSpans(SpanProcessor):
    """Records every span when it starts, finished or not."""

    def __init__(self) -> None:
        self.spans: List[SdkSpan] = []

    def on_start(self, span: SdkSpan, parent_context: Any = None) -> None:
        self.spans.append(span)

    def on_end(self, span: Any) -> None:
        pass

    @property
    def ended(self) -> List[SdkSpan]:
        return [span for span in self.spans if span.end_time is not None]


@pytest.fixture
def exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def started() -> StartedSpans:
    return StartedSpans()


@pytest.fixture
def provider(exporter: InMemorySpanExporter, started: StartedSpans) -> Iterator[TracerProvider]:
    tracer_provider = TracerProvider()
    tracer_provider.add_span_processor(started)
    tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield tracer_provider
    tracer_provider.shutdown()


@pytest.fixture
def tracer(provider: TracerProvider) -> trace.Tracer:
    return provider.get_tracer("gqltrace-tests")


@pytest.fixture
def extension(tracer: trace.Tracer) -> OpenTelemetryExtension:
    return OpenTelemetryExtension(tracer=tracer)


@pytest.fixture
def schema() -> GraphQLSchema:
    return build_schema(SDL)


@pytest.fixture
def root_value() -> Dict[str, Any]:
    """Root resolvers; graphql-core's default resolver calls callables."""
    return {
        "a": lambda info: {
            "one": "1",
            "two": "2",
            "three": [{"four": "4"}, {"four": "IV"}],
        },
        "b": lambda info: {"four": "4"},
        "as": lambda info: [
            {"one": "1", "two": "2"},
            {"one": "I", "two": "II"},
            {"one": "eins", "two": "zwei"},
        ],
    }
