"""
domains/ - Domain data, derived aggregates and default recompute functions.
"""

from .store import (
    DOMAIN_CATEGORIES,
    DomainRecord,
    DomainDataStore,
    DerivedStore,
    RecordNotFound,
)
from .recompute import (
    DomainCalculators,
    build_default_recomputes,
)

__all__ = [
    "DOMAIN_CATEGORIES",
    "DomainRecord",
    "DomainDataStore",
    "DerivedStore",
    "RecordNotFound",
    "DomainCalculators",
    "build_default_recomputes",
]
