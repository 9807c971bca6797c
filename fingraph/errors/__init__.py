"""
errors/ - Error Taxonomy

Structured error classification for the recalculation core.
"""

from .taxonomy import (
    ErrorCategory,
    ErrorCode,
    FinGraphError,
    ConfigurationError,
    UnknownSourceError,
    InvalidScopeError,
    NodeRecomputeError,
    ApiError,
    RecalcIncompleteError,
)

__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "FinGraphError",
    "ConfigurationError",
    "UnknownSourceError",
    "InvalidScopeError",
    "NodeRecomputeError",
    "ApiError",
    "RecalcIncompleteError",
]
