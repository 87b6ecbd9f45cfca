"""
Tests for gqltrace.extension.

End-to-end runs against a small schema through graphql-core, checking the
shape of the produced span trees: nesting, suppression, lists, aliases,
errors, hooks, async resolvers and concurrent requests.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
from graphql import graphql_sync
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from gqltrace import ConfigurationError, OpenTelemetryExtension, RequestStart
from gqltrace.testing import SpanNode, build_span_tree, count_spans, flatten_tree


def span_tree(exporter) -> SpanNode:
    roots = build_span_tree(exporter.get_finished_spans())
    assert len(roots) == 1
    return roots[0]


def child_names(node: SpanNode) -> List[str]:
    return sorted(child.name for child in node.children)


class TestConstruction:
    """Constructor validation."""

    def test_fails_without_tracer(self) -> None:
        with pytest.raises(ConfigurationError, match="needs a tracer"):
            OpenTelemetryExtension()

    def test_configuration_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            OpenTelemetryExtension(tracer=None)

    def test_constructs_with_tracer(self, tracer) -> None:
        extension = OpenTelemetryExtension(tracer=tracer)
        assert extension.tracer is tracer
        assert extension.active_requests == 0


class TestSpanTree:
    """Span trees for the example queries."""

    def test_closes_all_spans(self, extension, schema, root_value, started) -> None:
        result = extension.execute_sync(
            schema, RequestStart(query="query { a { one } }"), root_value=root_value
        )

        assert result.errors is None
        assert result.data == {"a": {"one": "1"}}
        assert len(started.spans) == 3
        assert len(started.ended) == 3
        assert extension.active_requests == 0

    def test_nesting(self, extension, schema, root_value, exporter) -> None:
        extension.execute_sync(
            schema, RequestStart(query="query { a { one two } }"), root_value=root_value
        )

        root = span_tree(exporter)
        assert root.name == "request"
        assert child_names(root) == ["a"]
        assert child_names(root.children[0]) == ["one", "two"]
        assert all(node.ended for node in flatten_tree(root))

    def test_untraced_parent_suppresses_children(
        self, tracer, schema, root_value, exporter
    ) -> None:
        extension = OpenTelemetryExtension(
            tracer=tracer,
            should_trace_field_resolver=lambda source, args, ctx, info: info.field_name != "a",
        )
        extension.execute_sync(
            schema,
            RequestStart(query="query { a { one two } b { four } }"),
            root_value=root_value,
        )

        root = span_tree(exporter)
        assert child_names(root) == ["b"]
        assert child_names(root.children[0]) == ["four"]
        assert count_spans(root) == 3

    def test_only_root_when_single_parent_suppressed(
        self, tracer, schema, root_value, started
    ) -> None:
        extension = OpenTelemetryExtension(
            tracer=tracer,
            should_trace_field_resolver=lambda source, args, ctx, info: info.field_name != "a",
        )
        result = extension.execute_sync(
            schema, RequestStart(query="query { a { one } }"), root_value=root_value
        )

        assert result.data == {"a": {"one": "1"}}
        assert [span.name for span in started.spans] == ["request"]
        assert started.spans[0].end_time is not None

    def test_arrays(self, extension, schema, root_value, exporter, started) -> None:
        extension.execute_sync(
            schema, RequestStart(query="query { as { one two } }"), root_value=root_value
        )

        assert len(started.spans) == 8
        root = span_tree(exporter)
        (as_node,) = root.children
        assert as_node.name == "as"
        assert child_names(as_node) == ["one"] * 3 + ["two"] * 3
        paths = sorted(child.attributes["graphql.field.path"] for child in as_node.children)
        assert paths == [
            "as[0].one", "as[0].two",
            "as[1].one", "as[1].two",
            "as[2].one", "as[2].two",
        ]

    def test_nested_list_field(self, extension, schema, root_value, exporter) -> None:
        extension.execute_sync(
            schema, RequestStart(query="{ a { three { four } } }"), root_value=root_value
        )

        (a,) = span_tree(exporter).children
        (three,) = a.children
        assert three.name == "three"
        assert child_names(three) == ["four", "four"]

    def test_alias(self, extension, schema, root_value, exporter) -> None:
        extension.execute_sync(
            schema, RequestStart(query="query { a { uno: one two } }"), root_value=root_value
        )

        (a,) = span_tree(exporter).children
        assert child_names(a) == ["two", "uno"]

    def test_alias_with_fragment(self, extension, schema, root_value, exporter) -> None:
        query = """
            fragment F on A {
              dos: two
            }

            query {
              a {
                ...F
              }
            }
        """
        extension.execute_sync(schema, RequestStart(query=query), root_value=root_value)

        (a,) = span_tree(exporter).children
        assert child_names(a) == ["dos"]

    def test_request_not_traced(self, tracer, schema, root_value, started) -> None:
        extension = OpenTelemetryExtension(
            tracer=tracer,
            should_trace_request=lambda info: False,
            should_trace_field_resolver=lambda *args: True,
        )
        result = extension.execute_sync(
            schema, RequestStart(query="{ a { one } as { two } }"), root_value=root_value
        )

        assert result.errors is None
        assert started.spans == []

    def test_same_trace_id(self, extension, schema, root_value, exporter) -> None:
        extension.execute_sync(
            schema, RequestStart(query="{ a { one } }"), root_value=root_value
        )
        trace_ids = {node.trace_id for node in flatten_tree(span_tree(exporter))}
        assert len(trace_ids) == 1

    def test_none_context_replaced(self, extension, schema, root_value, started) -> None:
        extension.execute_sync(
            schema, RequestStart(query="{ b { four } }", context=None), root_value=root_value
        )
        assert len(started.ended) == 3


class TestErrors:
    """Resolver errors and hook failures."""

    def test_resolver_error_recorded(self, extension, schema, exporter) -> None:
        def broken(info):
            raise ValueError("boom")

        result = extension.execute_sync(
            schema, RequestStart(query="{ a { one } }"), root_value={"a": broken}
        )

        assert result.errors[0].message == "boom"
        root = span_tree(exporter)
        (a,) = root.children
        assert a.status == "ERROR"
        assert root.status == "ERROR"
        assert root.attributes["graphql.errors.count"] == 1

    def test_finish_hook_error_still_closes(self, tracer, schema, root_value, started) -> None:
        def on_finish(error, result, span):
            if span.name == "one":
                raise RuntimeError("finish hook")

        extension = OpenTelemetryExtension(tracer=tracer, on_field_resolve_finish=on_finish)
        result = extension.execute_sync(
            schema, RequestStart(query="{ a { one } }"), root_value=root_value
        )

        assert result.errors[0].message == "finish hook"
        assert len(started.spans) == 3
        assert len(started.ended) == 3

    def test_parse_error_closes_request_span(self, extension, schema, started) -> None:
        result = extension.execute_sync(schema, RequestStart(query="{ a {"))
        assert result.errors
        assert len(started.spans) == 1
        assert started.spans[0].end_time is not None


class TestHooks:
    """Field and request hooks through full execution."""

    def test_hooks_called(self, tracer, schema, root_value) -> None:
        on_field_resolve = MagicMock()
        on_field_resolve_finish = MagicMock()
        on_request_resolve = MagicMock()
        extension = OpenTelemetryExtension(
            tracer=tracer,
            on_field_resolve=on_field_resolve,
            on_field_resolve_finish=on_field_resolve_finish,
            on_request_resolve=on_request_resolve,
        )
        request_start = RequestStart(query="{ a { one } }")
        extension.execute_sync(schema, request_start, root_value=root_value)

        assert on_field_resolve.call_count == 2
        assert on_field_resolve_finish.call_count == 2
        on_request_resolve.assert_called_once()
        span, received = on_request_resolve.call_args.args
        assert span.name == "request"
        assert received is request_start

    def test_finish_hook_sees_result(self, tracer, schema, root_value) -> None:
        results: Dict[str, Any] = {}

        def on_finish(error, result, span):
            results[span.name] = result

        extension = OpenTelemetryExtension(tracer=tracer, on_field_resolve_finish=on_finish)
        extension.execute_sync(schema, RequestStart(query="{ b { four } }"), root_value=root_value)

        assert results["b"] == {"four": "4"}
        assert results["four"] == "4"


class TestFieldSpanAccess:
    """Resolvers can reach their own span."""

    def test_current_span_inside_resolver(self, extension, schema) -> None:
        seen: List[str] = []

        def resolve_b(info):
            seen.append(trace.get_current_span().name)
            seen.append(extension.get_field_span(info).name)
            return {"four": "4"}

        extension.execute_sync(schema, RequestStart(query="{ b { four } }"), root_value={"b": resolve_b})
        assert seen == ["b", "b"]

    def test_request_span_lookup(self, extension, schema) -> None:
        seen: List[str] = []

        def resolve_b(info):
            seen.append(extension.get_request_span(info.context).name)
            return {"four": "4"}

        extension.execute_sync(schema, RequestStart(query="{ b { four } }"), root_value={"b": resolve_b})
        assert seen == ["request"]

    def test_lookups_outside_request(self, extension) -> None:
        assert extension.get_registry({}) is None
        assert extension.get_request_span({}) is None
        assert extension.get_field_span(MagicMock(context={})) is None


class TestManualWiring:
    """request_did_start plus the extension as graphql-core middleware."""

    def test_middleware(self, extension, schema, root_value, exporter) -> None:
        request_start = RequestStart(query="{ a { one } }", context={"user": "me"})
        finish = extension.request_did_start(request_start)
        try:
            result = graphql_sync(
                schema,
                request_start.query,
                root_value=root_value,
                context_value=request_start.context,
                middleware=[extension],
            )
        finally:
            finish()

        assert result.data == {"a": {"one": "1"}}
        assert count_spans(span_tree(exporter)) == 3

    def test_middleware_without_request_span(self, extension, schema, root_value, started) -> None:
        result = graphql_sync(
            schema, "{ a { one } }", root_value=root_value, context_value={}, middleware=[extension]
        )
        assert result.data == {"a": {"one": "1"}}
        assert started.spans == []


class TestAsync:
    """Async resolvers and concurrent requests."""

    def test_async_resolvers(self, extension, schema, exporter, started) -> None:
        current: List[str] = []

        async def resolve_a(info):
            await asyncio.sleep(0)
            current.append(trace.get_current_span().name)
            return {"one": "1"}

        result = asyncio.run(
            extension.execute(
                schema, RequestStart(query="{ a { one } }"), root_value={"a": resolve_a}
            )
        )

        assert result.data == {"a": {"one": "1"}}
        assert current == ["a"]
        assert len(started.ended) == 3
        (a,) = span_tree(exporter).children
        assert child_names(a) == ["one"]

    def test_async_error(self, extension, schema, exporter) -> None:
        async def resolve_a(info):
            raise ValueError("async boom")

        result = asyncio.run(
            extension.execute(schema, RequestStart(query="{ a { one } }"), root_value={"a": resolve_a})
        )

        assert result.errors[0].message == "async boom"
        (a,) = span_tree(exporter).children
        assert a.status == "ERROR"

    def test_concurrent_requests_stay_separate(self, extension, schema, exporter) -> None:
        async def resolve_as(info):
            await asyncio.sleep(0)
            return [{"one": "1"}, {"one": "2"}]

        async def run_both():
            return await asyncio.gather(
                extension.execute(schema, RequestStart(query="{ as { one } }"), root_value={"as": resolve_as}),
                extension.execute(schema, RequestStart(query="{ as { one } }"), root_value={"as": resolve_as}),
            )

        results = asyncio.run(run_both())

        assert all(result.errors is None for result in results)
        roots = build_span_tree(exporter.get_finished_spans())
        assert len(roots) == 2
        for root in roots:
            assert root.name == "request"
            nodes = flatten_tree(root)
            assert len(nodes) == 4
            assert {node.trace_id for node in nodes} == {root.trace_id}
        assert roots[0].trace_id != roots[1].trace_id
        assert extension.active_requests == 0

    def test_status_code_ok_by_default(self, extension, schema, root_value, exporter) -> None:
        asyncio.run(
            extension.execute(schema, RequestStart(query="{ b { four } }"), root_value=root_value)
        )
        for span in exporter.get_finished_spans():
            assert span.status.status_code is StatusCode.UNSET
