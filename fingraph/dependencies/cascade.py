"""
FinGraph Recalculation Orchestrator

Turns a RecalcRequest into a deterministic propagation order over the
domain registry and executes each domain's recompute function in that
order.

- Ordering: Kahn's algorithm restricted to the subgraph reachable from
  the source, ties broken by the registry's declared node order.
- Execution: strictly sequential; a downstream node may read what an
  upstream node just wrote for the same scope.
- Failure: propagation stops at the failing node; the partial run is
  recorded and surfaced through NodeRecomputeError. No rollback.
- Concurrency: recomputes of the same (node, scope) never overlap.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from heapq import heappush, heappop
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, TYPE_CHECKING
import logging
import threading
import time
import uuid

from fingraph.core.enums import DomainNode, RecalcStatus
from fingraph.errors import (
    ConfigurationError,
    ErrorCode,
    NodeRecomputeError,
)
from .scope import DEFAULT_MAX_YEAR, DEFAULT_MIN_YEAR, Scope

if TYPE_CHECKING:
    from .graph import DomainRegistry, NodeLike
    from .trigger_log import EventLog

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST / RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class RecalcRequest:
    """This domain's data changed for this scope; propagate."""
    source: "NodeLike"
    scope: Scope


@dataclass(frozen=True)
class NodeStepResult:
    """Outcome of recomputing a single node within a run."""
    node: DomainNode
    status: RecalcStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    execution_time_ms: int = 0
    output: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == RecalcStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "execution_time_ms": self.execution_time_ms,
            "error": self.error,
        }


@dataclass(frozen=True)
class RecalcRun:
    """
    Result of executing a RecalcRequest. Never mutated after creation.

    `order` lists the nodes actually recomputed. For a partial run it is
    the prefix of the planned order that completed before `failed_node`.
    """
    run_id: str
    triggered_at: datetime
    source: DomainNode
    scope: Scope
    order: Tuple[DomainNode, ...]
    planned: Tuple[DomainNode, ...] = ()
    partial: bool = False
    failed_node: Optional[DomainNode] = None
    error: Optional[str] = None
    steps: Tuple[NodeStepResult, ...] = ()

    @property
    def success(self) -> bool:
        return not self.partial

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "runId": self.run_id,
            "at": self.triggered_at.isoformat(),
            "source": self.source.value,
            "scopeKey": self.scope.to_key(),
            "order": [n.value for n in self.order],
            "partial": self.partial,
        }
        if self.failed_node is not None:
            data["failedNode"] = self.failed_node.value
        return data


# =============================================================================
# RECOMPUTE REGISTRY
# =============================================================================

# (scope) -> derived state (or None); must be idempotent per scope
RecomputeFunc = Callable[[Scope], Any]


class RecomputeRegistry:
    """Registry of recompute functions, one per domain."""

    def __init__(self):
        self._recomputes: Dict[DomainNode, RecomputeFunc] = {}

    def register(self, node: DomainNode, recompute: RecomputeFunc) -> None:
        """Register (or replace) the recompute function for a node."""
        self._recomputes[node] = recompute

    def has_recompute(self, node: DomainNode) -> bool:
        return node in self._recomputes

    def get_recompute(self, node: DomainNode) -> Optional[RecomputeFunc]:
        return self._recomputes.get(node)

    def missing(self, nodes: List[DomainNode]) -> List[DomainNode]:
        """Nodes from `nodes` with no registered recompute."""
        return [n for n in nodes if n not in self._recomputes]

    @classmethod
    def from_mapping(cls, mapping: Dict[DomainNode, RecomputeFunc]) -> "RecomputeRegistry":
        registry = cls()
        for node, recompute in mapping.items():
            registry.register(node, recompute)
        return registry


# =============================================================================
# PER-(NODE, SCOPE) SERIALIZATION
# =============================================================================

class ScopeLockTable:
    """
    Serializes recompute calls per (node, scope).

    Different years of the same node may run concurrently. The all-years
    scope conflicts with every scope of that node, since it touches every
    year's data.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._active: Dict[DomainNode, List[Scope]] = {}

    def _conflicts(self, node: DomainNode, scope: Scope) -> bool:
        return any(scope.conflicts_with(held) for held in self._active.get(node, []))

    @contextmanager
    def hold(self, node: DomainNode, scope: Scope) -> Iterator[None]:
        with self._cond:
            while self._conflicts(node, scope):
                self._cond.wait()
            self._active.setdefault(node, []).append(scope)
        try:
            yield
        finally:
            with self._cond:
                held = self._active[node]
                held.remove(scope)
                if not held:
                    del self._active[node]
                self._cond.notify_all()

    def active(self) -> Dict[DomainNode, List[Scope]]:
        """Snapshot of currently held (node, scope) pairs."""
        with self._cond:
            return {n: list(s) for n, s in self._active.items()}


# =============================================================================
# RECALCULATION ORCHESTRATOR
# =============================================================================

ProgressCallback = Callable[[DomainNode, NodeStepResult], None]


class RecalcOrchestrator:
    """
    Executes cross-domain recalculation in dependency order.

    The orchestrator refuses to serve requests until the registry has
    been validated and every node has a recompute function.
    """

    def __init__(
        self,
        registry: "DomainRegistry",
        recomputes: Optional[RecomputeRegistry] = None,
        event_log: Optional["EventLog"] = None,
        min_year: int = DEFAULT_MIN_YEAR,
        max_year: int = DEFAULT_MAX_YEAR,
    ):
        from .trigger_log import EventLog

        self._registry = registry
        self._recomputes = recomputes or RecomputeRegistry()
        self._event_log = event_log if event_log is not None else EventLog()
        self._min_year = min_year
        self._max_year = max_year

        self._locks = ScopeLockTable()
        self._progress_callbacks: List[ProgressCallback] = []

    @property
    def registry(self) -> "DomainRegistry":
        return self._registry

    @property
    def recomputes(self) -> RecomputeRegistry:
        return self._recomputes

    @property
    def event_log(self) -> "EventLog":
        return self._event_log

    @property
    def locks(self) -> ScopeLockTable:
        return self._locks

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------

    def ensure_ready(self) -> None:
        """
        Raise ConfigurationError unless the orchestrator can serve requests.

        Called once at startup so a malformed graph fails the process, and
        again on every request so nothing is served if startup was skipped.
        """
        if not self._registry.is_valid:
            raise ConfigurationError(
                "Dependency graph has not been validated",
                code=ErrorCode.CFG_GRAPH_NOT_VALIDATED,
            )
        missing = self._recomputes.missing(self._registry.nodes())
        if missing:
            raise ConfigurationError(
                f"No recompute registered for: {', '.join(n.value for n in missing)}",
                code=ErrorCode.CFG_MISSING_RECOMPUTE,
            )

    @property
    def is_ready(self) -> bool:
        try:
            self.ensure_ready()
        except ConfigurationError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def propagation_order(self, source: "NodeLike") -> List[DomainNode]:
        """
        Deterministic propagation order for a change in `source`.

        Starts with `source`, lists every transitively dependent node
        exactly once, and never places a node before one of its in-graph
        predecessors.
        """
        if not self._registry.is_valid:
            raise ConfigurationError(
                "Dependency graph has not been validated",
                code=ErrorCode.CFG_GRAPH_NOT_VALIDATED,
            )
        start = self._registry.resolve(source)
        reachable = self._registry.reachable_from(start)

        in_degree = {
            n: sum(1 for d in self._registry.dependencies_of(n) if d in reachable)
            for n in reachable
        }

        rank = self._registry.rank
        ready: List[Tuple[int, DomainNode]] = []
        for n in reachable:
            if in_degree[n] == 0:
                heappush(ready, (rank(n), n))

        order: List[DomainNode] = []
        while ready:
            _, node = heappop(ready)
            order.append(node)
            for dependent in self._registry.dependents_of(node):
                if dependent not in reachable:
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heappush(ready, (rank(dependent), dependent))

        if len(order) != len(reachable):
            # Only possible if the registry was mutated after validation
            raise ConfigurationError(
                f"Cycle among domains reachable from {start.value}",
                code=ErrorCode.CFG_CYCLIC_GRAPH,
            )

        return order

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _check_scope(self, scope: Scope) -> Scope:
        if not isinstance(scope, Scope):
            raise TypeError(
                f"scope must be a Scope (use Scope.for_year or Scope.all_years), got {scope!r}"
            )
        if not scope.is_all:
            Scope.for_year(scope.year, self._min_year, self._max_year)
        return scope

    def recalculate(self, request: RecalcRequest) -> RecalcRun:
        """
        Execute a recalculation request.

        Returns:
            RecalcRun whose `order` is the full propagation order.

        Raises:
            ConfigurationError: graph invalid or recompute wiring incomplete.
            UnknownSourceError: source is not a declared domain.
            InvalidScopeError: scope year outside the accepted range.
            NodeRecomputeError: a node failed; `.run` is the partial run.
        """
        self.ensure_ready()
        source = self._registry.resolve(request.source)
        scope = self._check_scope(request.scope)
        order = self.propagation_order(source)

        run_id = str(uuid.uuid4())[:8]
        triggered_at = datetime.now(timezone.utc)
        start = time.time()

        logger.info(
            f"Starting recalc {run_id}: source={source.value} scope={scope} "
            f"order={[n.value for n in order]}"
        )

        completed: List[DomainNode] = []
        steps: List[NodeStepResult] = []

        for node in order:
            step = self._execute_single(node, scope)
            steps.append(step)
            self._notify_progress(node, step)

            if not step.success:
                run = RecalcRun(
                    run_id=run_id,
                    triggered_at=triggered_at,
                    source=source,
                    scope=scope,
                    order=tuple(completed),
                    planned=tuple(order),
                    partial=True,
                    failed_node=node,
                    error=step.error,
                    steps=tuple(steps),
                )
                self._event_log.record_recalc(run)
                logger.warning(
                    f"Recalc {run_id} stopped at {node.value}: {step.error} "
                    f"(completed={[n.value for n in completed]})"
                )
                raise NodeRecomputeError(node, run, step.cause) from step.cause

            completed.append(node)

        run = RecalcRun(
            run_id=run_id,
            triggered_at=triggered_at,
            source=source,
            scope=scope,
            order=tuple(completed),
            planned=tuple(order),
            steps=tuple(steps),
        )
        self._event_log.record_recalc(run)

        logger.info(
            f"Recalc {run_id} complete: {len(completed)} domains "
            f"in {int((time.time() - start) * 1000)}ms"
        )
        return run

    def recalculate_source(self, source: "NodeLike", scope: Scope) -> RecalcRun:
        """Convenience wrapper building the request."""
        return self.recalculate(RecalcRequest(source=source, scope=scope))

    def _execute_single(self, node: DomainNode, scope: Scope) -> "_Step":
        """Recompute a single node while holding its (node, scope) lock."""
        recompute = self._recomputes.get_recompute(node)
        started_at = datetime.now(timezone.utc)

        with self._locks.hold(node, scope):
            start = time.time()
            try:
                output = recompute(scope)
            except Exception as e:
                elapsed = int((time.time() - start) * 1000)
                logger.error(f"Recompute error for {node.value} (scope={scope}): {e}")
                return _Step(
                    node=node,
                    status=RecalcStatus.FAILED,
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc),
                    execution_time_ms=elapsed,
                    error=str(e) or type(e).__name__,
                    cause=e,
                )

        return _Step(
            node=node,
            status=RecalcStatus.COMPLETED,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            execution_time_ms=int((time.time() - start) * 1000),
            output=output,
        )

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    def on_progress(self, callback: ProgressCallback) -> None:
        """Register a callback notified after each node completes or fails."""
        self._progress_callbacks.append(callback)

    def _notify_progress(self, node: DomainNode, step: NodeStepResult) -> None:
        for callback in self._progress_callbacks:
            try:
                callback(node, step)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")


@dataclass(frozen=True)
class _Step(NodeStepResult):
    """Step result that also keeps the raised exception for chaining."""
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)
