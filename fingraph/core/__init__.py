"""
FinGraph Core

Shared enumerations for the recalculation core.
"""

from .enums import (
    DomainNode,
    DOMAIN_LABELS,
    RecalcStatus,
    AuditEventType,
)

__all__ = [
    "DomainNode",
    "DOMAIN_LABELS",
    "RecalcStatus",
    "AuditEventType",
]
