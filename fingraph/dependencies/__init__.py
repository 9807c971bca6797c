"""
FinGraph Dependency & Recalculation Engine

Provides:
- DomainRegistry: static DAG of cross-domain dependencies
- Scope: explicit fiscal-year / all-years scope keys
- RecalcOrchestrator: ordered, serialized recomputation
- EventLog: audit trail of recalculation runs and domain events
"""

from .graph import (
    DomainRegistry,
    DependencyEdge,
    DOMAIN_DEPENDENCIES,
    edges_from_mapping,
)
from .scope import (
    Scope,
    ALL_YEARS,
    DEFAULT_MIN_YEAR,
    DEFAULT_MAX_YEAR,
)
from .cascade import (
    RecalcOrchestrator,
    RecalcRequest,
    RecalcRun,
    NodeStepResult,
    RecomputeRegistry,
    RecomputeFunc,
    ScopeLockTable,
)
from .trigger_log import (
    EventLog,
    AuditEvent,
    RecentEvents,
    recalc_event,
)

__all__ = [
    # Graph
    "DomainRegistry",
    "DependencyEdge",
    "DOMAIN_DEPENDENCIES",
    "edges_from_mapping",
    # Scope
    "Scope",
    "ALL_YEARS",
    "DEFAULT_MIN_YEAR",
    "DEFAULT_MAX_YEAR",
    # Orchestrator
    "RecalcOrchestrator",
    "RecalcRequest",
    "RecalcRun",
    "NodeStepResult",
    "RecomputeRegistry",
    "RecomputeFunc",
    "ScopeLockTable",
    # Event log
    "EventLog",
    "AuditEvent",
    "RecentEvents",
    "recalc_event",
]
