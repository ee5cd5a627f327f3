"""
Tests for GraphQL execution and schema introspection.
"""

import json

import httpx
import pytest

from api_workbench.schemas.auth import BearerAuth
from api_workbench.schemas.environment import Environment, Variable
from api_workbench.schemas.request import GraphQLRequest, KeyValuePair
from api_workbench.services.graphql_executor import (
    GraphQLExecutor,
    graphql_payload,
    parse_variables,
)
from api_workbench.services.script_runner import ScriptRunner


ENV = Environment(variables=[
    Variable(key="endpoint", value="https://gql.example.com/graphql"),
    Variable(key="id", value="42"),
])


def make_executor(handler) -> GraphQLExecutor:
    return GraphQLExecutor(
        scripts=ScriptRunner(timeout=2.0),
        transport=httpx.MockTransport(handler),
    )


class TestPayload:

    @pytest.mark.parametrize("text", ["", "   ", "{not json"])
    def test_blank_or_invalid_variables_are_dropped(self, text):
        assert parse_variables(text) is None
        assert graphql_payload("{ a }", parse_variables(text)) == {"query": "{ a }"}

    def test_operation_name_included_when_set(self):
        payload = graphql_payload("query Q { a }", {"x": 1}, "Q")
        assert payload == {"query": "query Q { a }", "variables": {"x": 1}, "operationName": "Q"}


class TestExecution:

    @pytest.mark.asyncio
    async def test_posts_query_and_variables(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": {"user": {"id": "42"}}})

        request = GraphQLRequest(
            url="{{endpoint}}",
            query="query($id: ID!) { user(id: $id) { id } }",
            variables='{"id": "{{id}}"}',
            auth=BearerAuth(token="tok"),
        )

        response = await make_executor(handler).send(request, ENV)

        sent = seen[0]
        assert sent.method == "POST"
        assert str(sent.url) == "https://gql.example.com/graphql"
        assert sent.headers["Content-Type"] == "application/json"
        assert sent.headers["Authorization"] == "Bearer tok"
        assert json.loads(sent.content) == {
            "query": "query($id: ID!) { user(id: $id) { id } }",
            "variables": {"id": "42"},
        }
        assert response.status == 200
        assert response.body == json.dumps({"data": {"user": {"id": "42"}}}, indent=2)

    @pytest.mark.asyncio
    async def test_graphql_errors_keep_http_status(self):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"message": "bad field"}]})

        request = GraphQLRequest(url="https://gql.test", query="{ nope }")

        response = await make_executor(handler).send(request)

        assert response.status == 200
        assert "bad field" in response.body

    @pytest.mark.asyncio
    async def test_non_json_body_is_returned_verbatim(self):
        def handler(request):
            return httpx.Response(502, text="<html>bad gateway</html>")

        response = await make_executor(handler).send(GraphQLRequest(url="https://gql.test", query="{ a }"))

        assert response.status == 502
        assert response.body == "<html>bad gateway</html>"

    @pytest.mark.asyncio
    async def test_unencodable_header_becomes_status_zero(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"data": {}})

        request = GraphQLRequest(
            url="https://gql.test",
            query="{ a }",
            headers=[KeyValuePair(key="X-Name", value="caf\u00e9")],
        )

        response = await make_executor(handler).send(request)

        assert calls == []
        assert response.status == 0
        assert response.status_text.startswith("An unexpected error occurred")

    @pytest.mark.asyncio
    async def test_test_script_reads_graphql_response(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"ok": True}})

        request = GraphQLRequest(
            url="https://gql.test",
            query="{ ok }",
            test_script="pm.test('ok', lambda: pm.expect(pm.response.json()['data']['ok']).to.be.true)",
        )

        response = await make_executor(handler).send(request)

        assert response.test_script_result.test_results[0].passed is True


class TestIntrospection:

    @pytest.mark.asyncio
    async def test_introspection_query_is_sent(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"__schema": {"types": []}}})

        text = await make_executor(handler).introspect(
            "{{endpoint}}",
            [KeyValuePair(key="X-Key", value="{{id}}")],
            ENV,
        )

        assert "IntrospectionQuery" in seen[0]["query"]
        assert json.loads(text) == {"data": {"__schema": {"types": []}}}

    @pytest.mark.asyncio
    async def test_introspection_http_error_raises(self):
        def handler(request):
            return httpx.Response(401, json={"error": "unauthorized"})

        with pytest.raises(httpx.HTTPStatusError):
            await make_executor(handler).introspect("https://gql.test")
