"""
End-to-end tests for the execute endpoint.

The application's ``Workbench`` is swapped for one whose HTTP traffic goes
to ``httpx.MockTransport``, so the full route, environment store and
pipeline run without a network.
"""

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from contextlib import contextmanager

from api_workbench.main import app
from api_workbench.database import Base, get_db
from api_workbench.workbench import Workbench


# Test database setup
TEST_DATABASE_URL = "sqlite:///./test_execute_api.db"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)


@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override database dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


class Upstream:
    """Records requests and answers with a fixed JSON body."""

    def __init__(self):
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json={"token": "from-server", "path": request.url.path})


@contextmanager
def get_test_client(upstream):
    """Test client with a fresh database and a mocked upstream."""
    Base.metadata.create_all(bind=test_engine)
    app.dependency_overrides[get_db] = override_get_db

    try:
        with TestClient(app) as test_client:
            app.state.workbench = Workbench(transport=httpx.MockTransport(upstream))
            yield test_client
    finally:
        Base.metadata.drop_all(bind=test_engine)
        app.dependency_overrides.clear()


def create_environment(client, name="dev", is_active=False, variables=None):
    response = client.post("/api/environments", json={
        "name": name,
        "is_active": is_active,
        "variables": variables or [],
    })
    assert response.status_code == 201
    return response.json()


class TestExecuteEndpoint:

    def test_inline_environment(self):
        upstream = Upstream()
        with get_test_client(upstream) as client:
            response = client.post("/api/execute", json={
                "request": {"type": "http", "url": "https://api.test/{{path}}"},
                "environment": {"variables": [{"key": "path", "value": "users"}]},
            })

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == 200
        assert data["warnings"] == []
        assert str(upstream.requests[0].url) == "https://api.test/users"

    def test_active_environment_is_the_default(self):
        upstream = Upstream()
        with get_test_client(upstream) as client:
            create_environment(client, "inactive", variables=[{"key": "path", "value": "wrong"}])
            create_environment(client, "active", is_active=True, variables=[{"key": "path", "value": "right"}])

            response = client.post("/api/execute", json={
                "request": {"type": "http", "url": "https://api.test/{{path}}"},
            })

        assert response.status_code == 200
        assert upstream.requests[0].url.path == "/right"

    def test_script_updates_are_written_back(self):
        upstream = Upstream()
        with get_test_client(upstream) as client:
            env = create_environment(client, variables=[
                {"key": "stale", "value": "x"},
                {"key": "base", "value": "https://api.test"},
            ])

            response = client.post("/api/execute", json={
                "request": {
                    "type": "http",
                    "url": "{{base}}/login",
                    "method": "POST",
                    "pre_request_script": "pm.environment.unset('stale')",
                    "test_script": "pm.environment.set('token', pm.response.json()['token'])",
                },
                "environment_id": env["id"],
            })
            assert response.status_code == 200
            assert response.json()["test_script_result"]["environment_updates"] == {"token": "from-server"}

            stored = client.get(f"/api/environments/{env['id']}").json()["variables"]

        assert [(v["key"], v["value"], v["enabled"]) for v in stored] == [
            ("stale", "", False),
            ("base", "https://api.test", True),
            ("token", "from-server", True),
        ]

    def test_inline_environment_is_never_persisted(self):
        upstream = Upstream()
        with get_test_client(upstream) as client:
            env = create_environment(client, is_active=True)

            client.post("/api/execute", json={
                "request": {
                    "type": "http",
                    "url": "https://api.test",
                    "test_script": "pm.environment.set('token', 'x')",
                },
                "environment": {"variables": []},
            })

            stored = client.get(f"/api/environments/{env['id']}").json()["variables"]

        assert stored == []

    def test_pre_request_script_failure(self):
        upstream = Upstream()
        with get_test_client(upstream) as client:
            response = client.post("/api/execute", json={
                "request": {
                    "type": "http",
                    "url": "https://api.test",
                    "pre_request_script": "import os",
                },
            })

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == 0
        assert data["status_text"] == "Pre-request script error"
        assert upstream.requests == []

    def test_graphql_request(self):
        upstream = Upstream()
        with get_test_client(upstream) as client:
            response = client.post("/api/execute", json={
                "request": {"type": "graphql", "url": "https://api.test/graphql", "query": "{ me { id } }"},
            })

        assert response.status_code == 200
        assert upstream.requests[0].method == "POST"
        assert '"token": "from-server"' in response.json()["body"]

    def test_introspection_failure_is_bad_gateway(self):
        def failing(request):
            return httpx.Response(500, text="boom")

        with get_test_client(failing) as client:
            response = client.post("/api/graphql/introspect", json={"url": "https://api.test/graphql"})

        assert response.status_code == 502
        assert response.json()["error_code"] == "INTROSPECTION_FAILED"

    def test_root_and_health(self):
        with get_test_client(Upstream()) as client:
            assert client.get("/health").json() == {"status": "healthy"}
            assert client.get("/").json()["name"] == "API Workbench"
