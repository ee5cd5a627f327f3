"""
GraphQL execution service.

Queries are always POSTed as ``{"query", "variables"}`` JSON. Variables
that do not parse as JSON after interpolation are omitted so the server
reports the problem.
"""

import json
import time
from typing import Any, Optional

import httpx

from ..schemas.environment import Environment
from ..schemas.execute import Response
from ..schemas.request import GraphQLRequest, KeyValuePair
from .auth import apply_auth
from .http_executor import DEFAULT_TIMEOUT, has_header, transport_error_message
from .request_pipeline import (
    PreparedRequest,
    RequestSender,
    build_response,
    elapsed_since,
    failure_response,
)
from .variable_substitution import VariableResolver


INTROSPECTION_QUERY = """
query IntrospectionQuery {
  __schema {
    queryType { name }
    mutationType { name }
    subscriptionType { name }
    types {
      ...FullType
    }
    directives {
      name
      description
      locations
      args {
        ...InputValue
      }
    }
  }
}

fragment FullType on __Type {
  kind
  name
  description
  fields(includeDeprecated: true) {
    name
    description
    args {
      ...InputValue
    }
    type {
      ...TypeRef
    }
    isDeprecated
    deprecationReason
  }
  inputFields {
    ...InputValue
  }
  interfaces {
    ...TypeRef
  }
  enumValues(includeDeprecated: true) {
    name
    description
    isDeprecated
    deprecationReason
  }
  possibleTypes {
    ...TypeRef
  }
}

fragment InputValue on __InputValue {
  name
  description
  type { ...TypeRef }
  defaultValue
}

fragment TypeRef on __Type {
  kind
  name
  ofType {
    kind
    name
    ofType {
      kind
      name
      ofType {
        kind
        name
        ofType {
          kind
          name
          ofType {
            kind
            name
            ofType {
              kind
              name
              ofType {
                kind
                name
              }
            }
          }
        }
      }
    }
  }
}
"""


def parse_variables(text: str) -> Optional[Any]:
    """Parse the variables JSON, or None when blank or invalid."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def graphql_payload(query: str, variables: Optional[Any], operation_name: Optional[str] = None) -> dict:
    payload: dict[str, Any] = {"query": query}
    if variables is not None:
        payload["variables"] = variables
    if operation_name:
        payload["operationName"] = operation_name
    return payload


def pretty_body(text: str) -> str:
    """Pretty-print a JSON body; other bodies are returned unchanged."""
    try:
        return json.dumps(json.loads(text), indent=2)
    except ValueError:
        return text


class GraphQLExecutor(RequestSender):
    """Sends ``GraphQLRequest`` values and runs schema introspection."""

    protocol = "graphql"

    def __init__(self, scripts=None, timeout: float = DEFAULT_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(scripts, timeout)
        self._transport = transport

    def prepare(self, request: GraphQLRequest, resolver: VariableResolver) -> PreparedRequest:
        url = resolver.resolve(request.url, "URL")
        headers = resolver.resolve_pairs(request.headers, "headers")
        params: dict[str, str] = {}
        apply_auth(request.auth, headers, params, resolver)
        if not has_header(headers, "Content-Type"):
            headers["Content-Type"] = "application/json"

        query = resolver.resolve(request.query, "query")
        variables = parse_variables(resolver.resolve(request.variables, "variables"))
        payload = graphql_payload(query, variables, request.operation_name)

        return PreparedRequest(
            url=url,
            method="POST",
            headers=headers,
            params=params,
            body=json.dumps(payload),
        )

    async def transport(self, request: GraphQLRequest, prepared: PreparedRequest) -> Response:
        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    prepared.url,
                    headers=prepared.headers,
                    params=prepared.params or None,
                    content=prepared.body.encode("utf-8"),
                )
        except Exception as e:
            # Includes non-httpx failures such as header values that cannot be encoded
            return failure_response(
                request.id,
                transport_error_message(e, self.timeout),
                elapsed_since(start_time),
            )

        return build_response(
            request.id,
            status=response.status_code,
            status_text=response.reason_phrase or "",
            headers=dict(response.headers),
            body=pretty_body(response.text),
            elapsed_ms=elapsed_since(start_time),
        )

    async def introspect(
        self,
        url: str,
        headers: Optional[list[KeyValuePair]] = None,
        environment: Optional[Environment] = None,
    ) -> str:
        """
        Post the standard introspection query and return the pretty JSON reply.

        Raises ``httpx.HTTPError`` on transport failure or a non-2xx reply.
        """
        resolver = VariableResolver(environment)
        request_headers = resolver.resolve_pairs(headers or [])
        request_headers["Content-Type"] = "application/json"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                resolver.resolve(url),
                headers=request_headers,
                json={"query": INTROSPECTION_QUERY},
            )
            response.raise_for_status()
        return json.dumps(response.json(), indent=2)
