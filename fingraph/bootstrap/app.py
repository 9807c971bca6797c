"""
bootstrap/app.py - Application builder and lifecycle

Assembles stores, registry, orchestrator and event log. The dependency
graph is validated during build(); a malformed graph or a domain without
a recompute function fails the build instead of surfacing per request.
"""

from __future__ import annotations
from typing import Callable, List, Optional
from dataclasses import dataclass
from enum import Enum
import logging
import time

from fingraph.dependencies.cascade import RecalcOrchestrator, RecomputeRegistry
from fingraph.dependencies.graph import DomainRegistry, edges_from_mapping
from fingraph.dependencies.trigger_log import EventLog
from fingraph.domains.recompute import build_default_recomputes
from fingraph.domains.store import DerivedStore, DomainDataStore
from .config import FinGraphConfig, load_config

logger = logging.getLogger("bootstrap.app")


class AppState(Enum):
    """Application lifecycle states."""
    CREATED = "created"
    CONFIGURING = "configuring"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class AppContext:
    """Runtime application context shared with the API layer."""
    config: FinGraphConfig = None
    registry: DomainRegistry = None
    orchestrator: RecalcOrchestrator = None
    event_log: EventLog = None
    data: DomainDataStore = None
    derived: DerivedStore = None
    state: AppState = AppState.CREATED
    start_time: float = 0

    def get_uptime(self) -> float:
        """Get application uptime in seconds."""
        if self.start_time == 0:
            return 0
        return time.time() - self.start_time


class FinGraphApp:
    """
    Main application class.

    Usage:
        app = FinGraphApp().build()
        app.context.orchestrator.recalculate_source("Compta", Scope.for_year(2024))
    """

    def __init__(
        self,
        config_file: str = None,
        config: Optional[FinGraphConfig] = None,
        recomputes: Optional[RecomputeRegistry] = None,
    ):
        self._config_file = config_file
        self._context = AppContext(config=config)
        self._recomputes = recomputes
        self._shutdown_hooks: List[Callable[[AppContext], None]] = []
        self._initialized = False

    @property
    def config(self) -> FinGraphConfig:
        return self._context.config

    @property
    def context(self) -> AppContext:
        return self._context

    @property
    def orchestrator(self) -> RecalcOrchestrator:
        return self._context.orchestrator

    def build(self) -> "FinGraphApp":
        """
        Build the application.

        Raises:
            ConfigurationError: the dependency graph is cyclic, names an
                unknown domain, or a domain has no recompute function.
        """
        self._context.state = AppState.CONFIGURING

        if self._context.config is None:
            self._context.config = load_config(self._config_file)
        config = self._context.config

        ctx = self._context
        ctx.data = DomainDataStore()
        ctx.derived = DerivedStore()
        ctx.event_log = EventLog(max_entries=config.events.max_entries)

        edges = edges_from_mapping(config.graph.edges) if config.graph.edges else None
        ctx.registry = DomainRegistry(edges=edges)

        recomputes = self._recomputes or build_default_recomputes(ctx.data, ctx.derived)
        ctx.orchestrator = RecalcOrchestrator(
            ctx.registry,
            recomputes,
            event_log=ctx.event_log,
            min_year=config.graph.min_year,
            max_year=config.graph.max_year,
        )

        try:
            ctx.registry.validate()
            ctx.orchestrator.ensure_ready()
        except Exception as e:
            ctx.state = AppState.FAILED
            logger.error(f"Startup validation failed: {e}")
            raise

        ctx.state = AppState.RUNNING
        ctx.start_time = time.time()
        self._initialized = True
        logger.info(
            f"Application built: {len(ctx.registry.nodes())} domains, "
            f"{len(ctx.registry.edges())} edges"
        )
        return self

    def on_shutdown(self, hook: Callable[[AppContext], None]) -> "FinGraphApp":
        """Register shutdown hook."""
        self._shutdown_hooks.append(hook)
        return self

    def stop(self) -> None:
        """Run shutdown hooks and export the event log if configured."""
        for hook in reversed(self._shutdown_hooks):
            try:
                hook(self._context)
            except Exception as e:
                logger.error(f"Shutdown hook failed: {e}")

        export_path = self.config.events.export_path if self.config else None
        if export_path and self._context.event_log is not None:
            count = self._context.event_log.export_json(export_path)
            logger.info(f"Exported {count} events to {export_path}")

        self._context.state = AppState.STOPPED
        logger.info("Application stopped")

    def run_api(self) -> None:
        """Run API server."""
        import uvicorn

        if not self._initialized:
            self.build()

        from fingraph.deployment.api import create_fastapi_app

        app = create_fastapi_app(self._context)
        try:
            uvicorn.run(
                app,
                host=self.config.api.host,
                port=self.config.api.port,
            )
        finally:
            self.stop()


def create_app(config_file: str = None) -> FinGraphApp:
    """Create and build the FinGraph application."""
    return FinGraphApp(config_file).build()
