"""
errors/taxonomy.py - Error classification for the recalculation core

Every failure the core raises derives from FinGraphError and carries a
stable ErrorCode so the API edge can map it to a status code and body.
"""

from __future__ import annotations
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from fingraph.core.enums import DomainNode
    from fingraph.client.cache import RunSummary
    from fingraph.dependencies.cascade import RecalcRun


class ErrorCategory(Enum):
    """Error categories."""
    CONFIGURATION = "configuration"
    REQUEST = "request"
    RECOMPUTE = "recompute"
    CLIENT = "client"
    INTERNAL = "internal"


class ErrorCode(Enum):
    """Specific error codes."""

    # Configuration (6xxx)
    CFG_CYCLIC_GRAPH = 6001
    CFG_UNKNOWN_NODE = 6002
    CFG_MISSING_RECOMPUTE = 6003
    CFG_GRAPH_NOT_VALIDATED = 6004

    # Request (1xxx)
    REQ_UNKNOWN_SOURCE = 1001
    REQ_INVALID_SCOPE = 1002

    # Recompute (5xxx)
    RCP_NODE_FAILED = 5001

    # Client (7xxx)
    CLI_RECALC_INCOMPLETE = 7001
    CLI_HTTP = 7002

    # Internal (9xxx)
    INT_UNCLASSIFIED = 9001


_CATEGORY_BY_PREFIX = {
    1: ErrorCategory.REQUEST,
    5: ErrorCategory.RECOMPUTE,
    6: ErrorCategory.CONFIGURATION,
    7: ErrorCategory.CLIENT,
    9: ErrorCategory.INTERNAL,
}


class FinGraphError(Exception):
    """Base exception for all recalculation core errors."""

    code: ErrorCode = ErrorCode.INT_UNCLASSIFIED

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY_BY_PREFIX[self.code.value // 1000]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code.value,
            "category": self.category.value,
        }


class ConfigurationError(FinGraphError):
    """
    The dependency graph or recompute wiring is malformed.

    Fatal at startup: the service must not serve recalculation requests.
    """

    code = ErrorCode.CFG_GRAPH_NOT_VALIDATED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        cycle: Optional[List[str]] = None,
    ):
        super().__init__(message, code)
        self.cycle = cycle or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.cycle:
            data["cycle"] = self.cycle
        return data


class UnknownSourceError(FinGraphError):
    """A recalculation source is not one of the declared domains."""

    code = ErrorCode.REQ_UNKNOWN_SOURCE

    def __init__(self, source: Any):
        super().__init__(f"Unknown source domain: {source!r}")
        self.source = source


class InvalidScopeError(FinGraphError):
    """A scope key is outside the accepted range."""

    code = ErrorCode.REQ_INVALID_SCOPE

    def __init__(self, value: Any, min_year: int, max_year: int):
        super().__init__(
            f"Invalid scope year {value!r}: expected an integer in [{min_year}, {max_year}]"
        )
        self.value = value


class NodeRecomputeError(FinGraphError):
    """
    A domain's recompute function failed.

    Propagation stopped at `node`; `run` holds the partial run with the
    nodes that completed before it. The original exception is chained.
    """

    code = ErrorCode.RCP_NODE_FAILED

    def __init__(self, node: "DomainNode", run: "RecalcRun", cause: BaseException):
        super().__init__(f"Recompute failed for {node.value}: {cause}")
        self.node = node
        self.run = run

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["failedNode"] = self.node.value
        data.update(self.run.to_dict())
        return data


# =============================================================================
# CLIENT ERRORS
# =============================================================================

class ApiError(FinGraphError):
    """The API answered with an unexpected status."""

    code = ErrorCode.CLI_HTTP

    def __init__(self, status_code: int, body: Any, message: Optional[str] = None):
        if message is None:
            detail = body.get("error") if isinstance(body, dict) else body
            message = f"API request failed ({status_code}): {detail}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RecalcIncompleteError(FinGraphError):
    """
    A recalculation stopped before reaching every dependent domain.

    Raised by the client after caches have already been invalidated for
    the domains that were recomputed.
    """

    code = ErrorCode.CLI_RECALC_INCOMPLETE

    def __init__(self, run: "RunSummary", server_message: Optional[str] = None):
        failed = run.failed_node.value if run.failed_node else "unknown"
        super().__init__(f"Recalculation could not complete (failed domain: {failed})")
        self.run = run
        self.failed_node = run.failed_node
        self.server_message = server_message
