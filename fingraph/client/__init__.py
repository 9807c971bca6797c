"""
client/ - Cache-consistency client

Query cache keyed on declared domain dependencies, the default dashboard
query catalog, and an httpx client for the FinGraph API.
"""

from .cache import (
    QueryCache,
    CacheEntry,
    CacheKey,
    RunSummary,
)
from .queries import (
    DEFAULT_QUERY_DEPENDENCIES,
    RECORDS_QUERY,
    register_defaults,
)
from .api_client import FinGraphClient

__all__ = [
    "QueryCache",
    "CacheEntry",
    "CacheKey",
    "RunSummary",
    "DEFAULT_QUERY_DEPENDENCIES",
    "RECORDS_QUERY",
    "register_defaults",
    "FinGraphClient",
]
