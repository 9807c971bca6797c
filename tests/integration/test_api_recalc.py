"""
Integration tests for deployment/api.py

Drives the FastAPI application through TestClient with the default
stores, recompute functions and event log.
"""

import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from fingraph.bootstrap.app import FinGraphApp
from fingraph.bootstrap.config import FinGraphConfig
from fingraph.core.enums import DomainNode
from fingraph.dependencies.cascade import RecomputeRegistry
from fingraph.dependencies.graph import DomainRegistry
from fingraph.deployment.api import create_fastapi_app


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def context(built_app):
    return built_app.context


@pytest.fixture
def client(context):
    with TestClient(create_fastapi_app(context)) as test_client:
        yield test_client


@pytest.fixture
def failing_client():
    """Application whose Previsions recompute always fails."""
    calls = []

    def make(node):
        def recompute(scope):
            calls.append(node.value)
            if node == DomainNode.PREVISIONS:
                raise RuntimeError("forecast model unavailable")
        return recompute

    recomputes = RecomputeRegistry.from_mapping({n: make(n) for n in DomainNode})
    app = FinGraphApp(config=FinGraphConfig(), recomputes=recomputes).build()
    with TestClient(create_fastapi_app(app.context)) as test_client:
        test_client.calls = calls
        yield test_client


# =============================================================================
# GRAPH ENDPOINTS
# =============================================================================

class TestGraphEndpoints:
    """Test graph inspection endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["graph_valid"] is True

    def test_nodes_in_declared_order(self, client):
        response = client.get("/api/graph/nodes")
        assert response.status_code == 200
        assert response.json() == {
            "nodes": ["Tax", "Compta", "Immobilier", "Previsions", "Decideur"],
        }

    def test_graph(self, client):
        data = client.get("/api/graph").json()
        assert {"source": "Compta", "target": "Previsions"} in data["edges"]
        assert len(data["edges"]) == 4


class TestRecalcEndpoint:
    """Test POST /api/graph/recalc."""

    def test_compta_for_year(self, client):
        response = client.post("/api/graph/recalc", json={"source": "Compta", "year": 2024})

        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "Compta"
        assert data["order"] == ["Compta", "Previsions", "Decideur"]
        assert data["scopeKey"] == 2024
        assert data["partial"] is False
        assert data["runId"]
        assert data["at"]

    def test_omitted_year_is_all_years(self, client):
        data = client.post("/api/graph/recalc", json={"source": "Tax"}).json()
        assert data["scopeKey"] is None
        assert data["order"] == ["Tax", "Previsions", "Decideur"]

    def test_explicit_all_years(self, client):
        data = client.post("/api/graph/recalc", json={"source": "Tax", "allYears": True}).json()
        assert data["scopeKey"] is None

    def test_year_and_all_years_conflict(self, client):
        response = client.post(
            "/api/graph/recalc", json={"source": "Tax", "year": 2024, "allYears": True},
        )
        assert response.status_code == 400

    def test_unknown_source(self, client, context):
        response = client.post("/api/graph/recalc", json={"source": "Banque", "year": 2024})

        assert response.status_code == 400
        assert response.json()["code"] == 1001
        assert context.event_log.count == 0

    @pytest.mark.parametrize("year", [1800, 2500, "2024", True])
    def test_invalid_year(self, client, context, year):
        response = client.post("/api/graph/recalc", json={"source": "Tax", "year": year})

        assert response.status_code == 400
        assert response.json()["code"] == 1002
        assert context.event_log.count == 0

    def test_partial_failure(self, failing_client):
        response = failing_client.post("/api/graph/recalc", json={"source": "Compta", "year": 2024})

        assert response.status_code == 500
        data = response.json()
        assert data["partial"] is True
        assert data["failedNode"] == "Previsions"
        assert data["order"] == ["Compta"]
        assert data["source"] == "Compta"
        assert data["scopeKey"] == 2024
        assert "forecast model unavailable" in data["error"]
        assert "Decideur" not in failing_client.calls

    def test_invalid_graph_unavailable(self):
        config = FinGraphConfig()
        app = FinGraphApp(config=config).build()
        app.context.registry = DomainRegistry()
        app.context.orchestrator._registry = app.context.registry

        with TestClient(create_fastapi_app(app.context)) as test_client:
            response = test_client.post("/api/graph/recalc", json={"source": "Tax"})

        assert response.status_code == 503
        assert response.json()["code"] == 6004


class TestEventsEndpoint:
    """Test GET /api/events/recent."""

    def test_empty(self, client):
        assert client.get("/api/events/recent").json() == []

    def test_newest_first(self, client):
        client.post("/api/graph/recalc", json={"source": "Compta", "year": 2024})
        client.post("/api/graph/recalc", json={"source": "Tax", "year": 2023})

        events = client.get("/api/events/recent", params={"limit": 5}).json()

        assert [e["source"] for e in events] == ["Tax", "Compta"]
        assert all(e["type"] == "recalc" for e in events)
        assert events[0]["order"] == ["Tax", "Previsions", "Decideur"]

    def test_limit(self, client):
        for _ in range(3):
            client.post("/api/graph/recalc", json={"source": "Decideur"})
        assert len(client.get("/api/events/recent", params={"limit": 2}).json()) == 2

    def test_partial_run_in_feed(self, failing_client):
        failing_client.post("/api/graph/recalc", json={"source": "Tax", "year": 2024})

        events = failing_client.get("/api/events/recent").json()

        assert len(events) == 1
        assert events[0]["partial"] is True
        assert events[0]["failedNode"] == "Previsions"

    @pytest.mark.parametrize("limit", [-1, 501])
    def test_limit_out_of_range(self, client, limit):
        response = client.get("/api/events/recent", params={"limit": limit})
        assert response.status_code == 400
