"""Tests for the FastAPI gateway routes."""
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from prometheus_client import REGISTRY

from apisql.config.registry import SchemaRegistry
from apisql.gateway import main

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def client(cache):
    registry = SchemaRegistry(str(FIXTURES / "model.yaml"), cache=cache)
    registry.load_all()
    main.install_registry(registry)
    # no context manager: the lifespan would load APISQL_MODEL instead
    yield TestClient(main.app)
    main.install_registry(None)


def _query_count(status: str) -> float:
    return REGISTRY.get_sample_value("apisql_queries_total", {"status": status}) or 0.0


# ---------------------------------------------------------------------------
# /v1/query
# ---------------------------------------------------------------------------

class TestQueryRoute:
    def test_select(self, client):
        resp = client.post(
            "/v1/query",
            json={"sql": 'select "id", "name" from "PetStore"."Pet" where "id" = 109'},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["rows"] == [{"id": 109, "name": "doggiepartha"}]
        assert body["columns"] == ["id", "name"]
        assert set(body["timing"]) == {"total_ms", "scan_ms", "duckdb_ms"}
        assert body["trace_id"]

    def test_trace_id_is_echoed(self, client):
        resp = client.post(
            "/v1/query",
            json={
                "sql": 'select "id" from "Test"."Rainbow" where "id" = 0',
                "metadata": {"trace_id": "abc-123"},
            },
        )
        assert resp.json()["trace_id"] == "abc-123"

    def test_missing_where_is_400(self, client):
        resp = client.post("/v1/query", json={"sql": 'select * from "PetStore"."Pet"'})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "QueryShapeError"
        assert body["details"] == "Where clause is required."

    def test_unknown_table_is_404(self, client):
        resp = client.post(
            "/v1/query", json={"sql": 'select * from "PetStore"."Nope" where "id" = 1'}
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "UnknownTableError"

    def test_write_is_405(self, client):
        resp = client.post(
            "/v1/query",
            json={"sql": 'delete from "PetStore"."Pet" where "id" = 1'},
        )
        assert resp.status_code == 405
        assert resp.json()["error"] == "UnsupportedOperationError"

    def test_upstream_404_is_502(self, client):
        resp = client.post(
            "/v1/query",
            json={"sql": 'select * from "PetStore"."Pet" where "id" = 404'},
        )
        assert resp.status_code == 502
        assert resp.json()["error"] == "FetchError"

    def test_unexpected_failure_is_counted_500(self, client, monkeypatch):
        def crash(sql, cancel_event=None):
            raise OSError(36, "File name too long")

        monkeypatch.setattr(main._engine, "execute_query", crash)
        before = _query_count("500")
        resp = client.post(
            "/v1/query", json={"sql": 'select "id" from "Test"."Rainbow" where "id" = 0'}
        )
        assert resp.status_code == 500
        assert "File name too long" in resp.json()["detail"]
        assert _query_count("500") == before + 1

    def test_no_engine_is_503(self, client):
        main.install_registry(None)
        resp = client.post("/v1/query", json={"sql": "select 1"})
        assert resp.status_code == 503


# ---------------------------------------------------------------------------
# Catalog routes
# ---------------------------------------------------------------------------

class TestSchemaRoutes:
    def test_list_schemas(self, client):
        body = client.get("/v1/schemas").json()
        assert body["schemas"]["Test"] == ["Rainbow"]
        assert body["schemas"]["PetStore"] == [
            "Category", "Order", "Pet", "Tag", "User",
        ]

    def test_describe_table(self, client):
        resp = client.get("/v1/schemas/Test/tables/Rainbow")
        assert resp.status_code == 200
        assert resp.json()["columns"] == [
            {"name": "a_string", "kind": "string", "sql_type": "VARCHAR"},
            {"name": "id", "kind": "integer", "sql_type": "BIGINT"},
        ]

    def test_describe_unknown_table(self, client):
        assert client.get("/v1/schemas/Test/tables/Nope").status_code == 404
        assert client.get("/v1/schemas/Nope/tables/Rainbow").status_code == 404


# ---------------------------------------------------------------------------
# Operational routes
# ---------------------------------------------------------------------------

class TestOperationalRoutes:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body == {"status": "ok", "checks": {"schemas": "2"}}

    def test_metrics(self, client):
        client.post(
            "/v1/query", json={"sql": 'select "id" from "Test"."Rainbow" where "id" = 0'}
        )
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "apisql_queries_total" in resp.text


class TestTracingSetup:
    def test_console_without_endpoint(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        assert isinstance(main._span_processor(), SimpleSpanProcessor)
