from __future__ import annotations
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from pydantic import BaseModel

from apisql.config.registry import SchemaRegistry
from apisql.engine.query_engine import QueryEngine
from apisql.errors import ApiSqlError

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------
QUERY_COUNT = Counter(
    "apisql_queries_total",
    "Total SQL queries processed",
    ["status"],
)
QUERY_LATENCY = Histogram(
    "apisql_query_latency_seconds",
    "Query execution latency",
    buckets=[0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ---------------------------------------------------------------------------
# Shared process-level resources (populated in lifespan)
# ---------------------------------------------------------------------------
_registry: Optional[SchemaRegistry] = None
_engine: Optional[QueryEngine] = None


def install_registry(registry: Optional[SchemaRegistry]) -> None:
    """Swap in a registry and rebuild the engine over its schemas."""
    global _registry, _engine
    _registry = registry
    _engine = QueryEngine(registry.schemas()) if registry else None


def _span_processor() -> SpanProcessor:
    """OTLP export when OTEL_EXPORTER_OTLP_ENDPOINT is set, console otherwise."""
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    if endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError:
            logger.warning(
                "OTEL_EXPORTER_OTLP_ENDPOINT is set but the otlp extra is not "
                "installed; tracing to console"
            )
        else:
            logger.info("Exporting traces to %s", endpoint)
            return BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
    return SimpleSpanProcessor(ConsoleSpanExporter())


def _init_tracing() -> None:
    provider = TracerProvider(
        resource=Resource.create({"service.name": "apisql-gateway"})
    )
    provider.add_span_processor(_span_processor())
    trace.set_tracer_provider(provider)


# ---------------------------------------------------------------------------
# App lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    _init_tracing()

    model_path = os.environ.get("APISQL_MODEL", "model.yaml")
    registry = SchemaRegistry(model_path)
    try:
        await run_in_threadpool(registry.load_all)
    except FileNotFoundError:
        logger.warning("Model file not found: %s, no schemas loaded", model_path)
    install_registry(registry)

    logger.info("apisql gateway started. Schemas: %s", registry.all_schema_names())
    yield
    logger.info("apisql gateway shut down.")


app = FastAPI(title="apisql Gateway", version="0.1.0", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class QueryRequest(BaseModel):
    sql: str
    metadata: Optional[Dict[str, Any]] = {}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.post("/v1/query")
async def execute_query(request: QueryRequest):
    """
    Execute SQL against the mounted API schemas.

    Returns 400 for unsupported predicates, 404 for unknown tables,
    405 for writes, 502 for fetch/decode failures.
    """
    if _engine is None:
        raise HTTPException(status_code=503, detail="No schemas loaded")

    trace_id = (request.metadata or {}).get("trace_id", str(uuid.uuid4()))

    start_time = time.time()
    # scans block on network I/O; keep them off the event loop
    try:
        result = await run_in_threadpool(_engine.execute_query, request.sql)
    except Exception as exc:
        logger.exception("Query crashed: %s", request.sql)
        QUERY_COUNT.labels(status="500").inc()
        raise HTTPException(status_code=500, detail=str(exc))
    duration = time.time() - start_time

    if "error" in result:
        status_code = result.get("status_code", 500)
        QUERY_COUNT.labels(status=str(status_code)).inc()
        return JSONResponse(
            status_code=status_code,
            content={
                "error": result.get("error_type", "Error"),
                "details": result["error"],
                "trace_id": trace_id,
            },
        )

    QUERY_LATENCY.observe(duration)
    QUERY_COUNT.labels(status="200").inc()
    result["trace_id"] = trace_id
    return result


@app.get("/v1/schemas")
async def list_schemas():
    if _registry is None:
        return {"schemas": {}}
    return {
        "schemas": {
            name: sorted(schema.table_map)
            for name, schema in _registry.schemas().items()
        }
    }


@app.get("/v1/schemas/{schema_name}/tables/{table_name}")
async def describe_table(schema_name: str, table_name: str):
    schema = _registry.get(schema_name) if _registry else None
    table = schema.table(table_name) if schema else None
    if table is None:
        raise HTTPException(
            status_code=404, detail=f"Unknown table: {schema_name}.{table_name}"
        )
    try:
        row_type = table.row_type()
    except ApiSqlError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    return {
        "schema": schema_name,
        "table": table_name,
        "columns": [
            {"name": name, "kind": kind.value, "sql_type": kind.sql_type}
            for name, kind in row_type
        ],
    }


@app.get("/health")
async def health():
    """Liveness/readiness probe."""
    count = _registry.count() if _registry else 0
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "checks": {"schemas": str(count)}},
    )


@app.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8002)
