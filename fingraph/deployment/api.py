"""
deployment/api.py - REST API

Exposes the domain graph, recalculation, the audit feed and domain
record mutations. Handlers are synchronous so FastAPI runs them in its
thread pool; a recalculation never blocks the event loop.

Error mapping:
    UnknownSourceError / InvalidScopeError -> 400
    RecordNotFound                         -> 404
    NodeRecomputeError                     -> 500 with the partial run
    ConfigurationError                     -> 503
    unclassified FinGraphError             -> 500
"""

from typing import Any, Dict, Optional, TYPE_CHECKING
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fingraph.core.enums import AuditEventType
from fingraph.dependencies.scope import Scope
from fingraph.domains.store import RecordNotFound
from fingraph.errors import (
    ConfigurationError,
    ErrorCategory,
    FinGraphError,
    InvalidScopeError,
    NodeRecomputeError,
)

if TYPE_CHECKING:
    from fingraph.bootstrap.app import AppContext

logger = logging.getLogger("deployment.api")


# =============================================================================
# Request Models
# =============================================================================

class RecalcBody(BaseModel):
    """Request model for triggering a recalculation."""
    source: str
    # Validated against the configured range, not by pydantic, so that a
    # bad year is a 400 like every other scope error.
    year: Optional[Any] = None
    allYears: Optional[bool] = None


class RecordCreate(BaseModel):
    """Request model for adding a domain record."""
    year: Any
    category: str
    label: str = ""
    amount: float


# =============================================================================
# Helpers
# =============================================================================

_STATUS_BY_ERROR = (
    (NodeRecomputeError, 500),
    (ConfigurationError, 503),
    (FinGraphError, 400),
)


def _status_for(exc: FinGraphError) -> int:
    if exc.category == ErrorCategory.INTERNAL:
        return 500
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


def _resolve_scope(context: "AppContext", year: Any, all_years: Optional[bool]) -> Scope:
    """Map request fields to a Scope; an omitted year means all years."""
    graph = context.config.graph
    if year is None:
        return Scope.all_years()
    if all_years:
        raise InvalidScopeError(year, graph.min_year, graph.max_year)
    return Scope.for_year(year, graph.min_year, graph.max_year)


def create_fastapi_app(context: "AppContext" = None) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        context: Built application context; a default application is
            built when omitted.

    Returns:
        FastAPI application instance
    """
    if context is None:
        from fingraph.bootstrap.app import FinGraphApp
        context = FinGraphApp().build().context

    config = context.config
    registry = context.registry
    orchestrator = context.orchestrator
    event_log = context.event_log

    app = FastAPI(
        title="FinGraph API",
        description="Cross-domain recalculation service",
        version=config.version,
        docs_url=config.api.docs_url if config.api.enable_docs else None,
        redoc_url="/redoc" if config.api.enable_docs else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # Error Handlers
    # =========================================================================

    @app.exception_handler(FinGraphError)
    async def fingraph_error_handler(request: Request, exc: FinGraphError):
        status = _status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(RecordNotFound)
    async def record_not_found_handler(request: Request, exc: RecordNotFound):
        return JSONResponse(status_code=404, content={"error": exc.args[0]})

    # =========================================================================
    # Health
    # =========================================================================

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy" if orchestrator.is_ready else "degraded",
            "version": config.version,
            "graph_valid": registry.is_valid,
            "uptime_seconds": round(context.get_uptime(), 3),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # =========================================================================
    # Graph
    # =========================================================================

    @app.get("/api/graph/nodes")
    def list_nodes():
        """Declared domains, in tie-break order."""
        return {"nodes": [n.value for n in registry.nodes()]}

    @app.get("/api/graph")
    def describe_graph():
        return registry.to_dict()

    @app.post("/api/graph/recalc")
    def recalc(body: RecalcBody):
        """Recalculate every domain downstream of `source`."""
        orchestrator.ensure_ready()
        source = registry.resolve(body.source)
        scope = _resolve_scope(context, body.year, body.allYears)
        run = orchestrator.recalculate_source(source, scope)
        return run.to_dict()

    @app.get("/api/graph/outputs")
    def graph_outputs():
        """Derived summaries: domain -> year -> summary."""
        return context.derived.outputs()

    # =========================================================================
    # Audit Feed
    # =========================================================================

    @app.get("/api/events/recent")
    def recent_events(limit: Optional[int] = None):
        if limit is None:
            limit = config.api.default_events_limit
        if limit < 0 or limit > config.api.max_events_limit:
            raise HTTPException(
                status_code=400,
                detail=f"limit must be between 0 and {config.api.max_events_limit}",
            )
        return event_log.recent(limit).to_list()

    # =========================================================================
    # Domain Records (mutation followed by recalculation)
    # =========================================================================

    def _recalc_after_mutation(node, scope: Scope, payload: Dict[str, Any]):
        try:
            run = orchestrator.recalculate_source(node, scope)
        except NodeRecomputeError as e:
            logger.error(f"{node.value} mutation left a partial recalculation: {e.message}")
            return JSONResponse(status_code=500, content={**e.to_dict(), **payload})
        return {**payload, "run": run.to_dict()}

    @app.get("/api/domains/{node}/records")
    def list_records(node: str, year: Optional[int] = None):
        domain = registry.resolve(node)
        records = context.data.records(domain, year)
        return {"node": domain.value, "records": [r.to_dict() for r in records]}

    @app.post("/api/domains/{node}/records", status_code=201)
    def create_record(node: str, body: RecordCreate):
        orchestrator.ensure_ready()
        domain = registry.resolve(node)
        scope = _resolve_scope(context, body.year, None)
        if scope.is_all:
            raise InvalidScopeError(body.year, config.graph.min_year, config.graph.max_year)

        try:
            record = context.data.add(domain, scope.year, body.category, body.label, body.amount)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        event_log.record(
            AuditEventType.MUTATION.value,
            action="create",
            node=domain.value,
            recordId=record.record_id,
            year=record.year,
        )
        return _recalc_after_mutation(domain, scope, {"record": record.to_dict()})

    @app.delete("/api/domains/{node}/records/{record_id}")
    def delete_record(node: str, record_id: int):
        orchestrator.ensure_ready()
        domain = registry.resolve(node)
        record = context.data.remove(domain, record_id)

        event_log.record(
            AuditEventType.MUTATION.value,
            action="delete",
            node=domain.value,
            recordId=record.record_id,
            year=record.year,
        )
        scope = Scope.for_year(record.year, config.graph.min_year, config.graph.max_year)
        return _recalc_after_mutation(domain, scope, {"deleted": record.to_dict()})

    return app


def get_app() -> FastAPI:
    """Factory for `uvicorn --factory fingraph.deployment.api:get_app`."""
    return create_fastapi_app()
