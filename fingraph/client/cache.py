"""
client/cache.py - Cache-consistency protocol for client-side queries

Every cached query declares, at registration time, the set of domains
its data depends on. After a recalculation the cache invalidates every
entry whose dependency set intersects the run's realized order.

Invalidation is a set intersection on declared domains, never a match on
query names or keys, so renaming or reparameterizing a query cannot
break it. Over-invalidating is acceptable; under-invalidating is not.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union, TYPE_CHECKING
import logging
import threading

from fingraph.core.enums import DomainNode

if TYPE_CHECKING:
    from fingraph.dependencies.cascade import RecalcRun

logger = logging.getLogger(__name__)


CacheKey = Tuple[Any, ...]
Fetcher = Callable[[], Any]
InvalidationCallback = Callable[[str, List[CacheKey]], None]


# =============================================================================
# RUN SUMMARY
# =============================================================================

@dataclass(frozen=True)
class RunSummary:
    """
    Client view of a recalculation run.

    `order` is the realized order: for a partial run only the nodes that
    were actually recomputed.
    """
    source: DomainNode
    order: Tuple[DomainNode, ...]
    scope_key: Optional[int] = None
    at: Optional[str] = None
    run_id: Optional[str] = None
    partial: bool = False
    failed_node: Optional[DomainNode] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunSummary":
        failed = data.get("failedNode")
        return cls(
            source=DomainNode(data["source"]),
            order=tuple(DomainNode(n) for n in data.get("order", [])),
            scope_key=data.get("scopeKey"),
            at=data.get("at"),
            run_id=data.get("runId"),
            partial=bool(data.get("partial", False)),
            failed_node=DomainNode(failed) if failed else None,
        )

    @classmethod
    def from_run(cls, run: "RecalcRun") -> "RunSummary":
        return cls(
            source=run.source,
            order=tuple(run.order),
            scope_key=run.scope.to_key(),
            at=run.triggered_at.isoformat(),
            run_id=run.run_id,
            partial=run.partial,
            failed_node=run.failed_node,
        )


# =============================================================================
# CACHE ENTRY
# =============================================================================

@dataclass
class CacheEntry:
    """A cached query result."""
    key: CacheKey
    data: Any
    year: Optional[int] = None
    valid: bool = True
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    invalidated_at: Optional[datetime] = None
    fetch_count: int = 1

    @property
    def query_name(self) -> str:
        return self.key[0]


@dataclass(eq=False)
class _PendingFetch:
    """A fetch in flight; `stale` is set if an invalidation matches it meanwhile."""
    key: CacheKey
    year: Optional[int] = None
    stale: bool = False

    @property
    def query_name(self) -> str:
        return self.key[0]


# =============================================================================
# QUERY CACHE
# =============================================================================

class QueryCache:
    """
    Client-side query cache owned by the cache-consistency protocol.

    No other component mutates entries directly: reads go through get(),
    invalidation through on_recalc_completed() and invalidate_query().
    """

    def __init__(self):
        self._dependencies: Dict[str, FrozenSet[DomainNode]] = {}
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._pending: List[_PendingFetch] = []
        self._subscribers: Dict[str, List[InvalidationCallback]] = {}
        self._last_run: Optional[RunSummary] = None
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, query_name: str, depends_on: Iterable[DomainNode]) -> FrozenSet[DomainNode]:
        """
        Declare the domains a query's data depends on.

        Registering an already-known query widens its set (union); a
        dependency set never shrinks.

        Returns:
            The effective dependency set.
        """
        deps = frozenset(DomainNode(d) for d in depends_on)
        if not deps:
            raise ValueError(f"Query {query_name!r} must depend on at least one domain")

        with self._lock:
            previous = self._dependencies.get(query_name, frozenset())
            effective = previous | deps
            self._dependencies[query_name] = effective

        if previous and effective != previous:
            logger.debug(f"Widened dependencies of {query_name}: {sorted(d.value for d in effective)}")
        return effective

    def dependencies_of(self, query_name: str) -> FrozenSet[DomainNode]:
        with self._lock:
            return self._dependencies[query_name]

    def is_registered(self, query_name: str) -> bool:
        with self._lock:
            return query_name in self._dependencies

    def registered_queries(self) -> List[str]:
        with self._lock:
            return sorted(self._dependencies)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: CacheKey, fetcher: Fetcher, year: Optional[int] = None) -> Any:
        """
        Cached data for `key`, fetching when missing or invalid.

        Raises:
            KeyError: if the query (key[0]) was never registered.
        """
        query_name = key[0]
        if not self.is_registered(query_name):
            raise KeyError(f"Query {query_name!r} has no declared dependencies")

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.valid:
                return entry.data

        pending = _PendingFetch(key=key, year=year)
        with self._lock:
            self._pending.append(pending)
        try:
            data = fetcher()
        except Exception:
            with self._lock:
                self._pending.remove(pending)
            raise

        with self._lock:
            self._pending.remove(pending)
            previous = self._entries.get(key)
            entry = CacheEntry(
                key=key,
                data=data,
                year=year,
                fetch_count=(previous.fetch_count + 1) if previous else 1,
            )
            # Invalidated while the fetch was in flight: the data may predate the run.
            if pending.stale:
                self._mark_invalid(entry)
                logger.debug(f"Fetch of {key} overlapped an invalidation; stored as invalid")
            self._entries[key] = entry
        return data

    def peek(self, key: CacheKey) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def is_valid(self, key: CacheKey) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.valid

    @property
    def last_run(self) -> Optional[RunSummary]:
        return self._last_run

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def on_recalc_completed(self, run: Union[RunSummary, "RecalcRun"]) -> List[CacheKey]:
        """
        Invalidate every entry whose query depends on a recomputed domain.

        Only the realized order is used, so a partial run invalidates
        exactly what was recomputed. An entry scoped to a year is kept
        when the run was scoped to a different year.

        Returns:
            The invalidated keys.
        """
        summary = run if isinstance(run, RunSummary) else RunSummary.from_run(run)
        recomputed = set(summary.order)

        invalidated: Dict[str, List[CacheKey]] = {}
        with self._lock:
            self._last_run = summary
            for key, entry in self._entries.items():
                if not entry.valid:
                    continue
                if not (self._dependencies[entry.query_name] & recomputed):
                    continue
                if not _scope_matches(entry.year, summary.scope_key):
                    continue
                self._mark_invalid(entry)
                invalidated.setdefault(entry.query_name, []).append(key)
            for pending in self._pending:
                if (self._dependencies[pending.query_name] & recomputed
                        and _scope_matches(pending.year, summary.scope_key)):
                    pending.stale = True

        keys = [k for ks in invalidated.values() for k in ks]
        logger.info(
            f"Recalc from {summary.source.value} invalidated {len(keys)} cache entries "
            f"({', '.join(sorted(invalidated)) or 'none'})"
        )
        self._notify(invalidated)
        return keys

    def invalidate_query(self, query_name: str) -> List[CacheKey]:
        """Invalidate every entry of one query (a mutation's own cache)."""
        with self._lock:
            keys = []
            for key, entry in self._entries.items():
                if entry.query_name == query_name and entry.valid:
                    self._mark_invalid(entry)
                    keys.append(key)
            for pending in self._pending:
                if pending.query_name == query_name:
                    pending.stale = True
        if keys:
            self._notify({query_name: keys})
        return keys

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @staticmethod
    def _mark_invalid(entry: CacheEntry) -> None:
        entry.valid = False
        entry.invalidated_at = datetime.now(timezone.utc)

    # -------------------------------------------------------------------------
    # Subscribers
    # -------------------------------------------------------------------------

    def subscribe(self, query_name: str, callback: InvalidationCallback) -> None:
        """Notify `callback(query_name, keys)` whenever entries of the query are invalidated."""
        with self._lock:
            self._subscribers.setdefault(query_name, []).append(callback)

    def unsubscribe(self, query_name: str, callback: InvalidationCallback) -> bool:
        with self._lock:
            handlers = self._subscribers.get(query_name, [])
            if callback in handlers:
                handlers.remove(callback)
                return True
            return False

    def _notify(self, invalidated: Dict[str, List[CacheKey]]) -> None:
        for query_name, keys in invalidated.items():
            with self._lock:
                handlers = list(self._subscribers.get(query_name, []))
            for handler in handlers:
                try:
                    handler(query_name, keys)
                except Exception as e:
                    logger.error(f"Invalidation subscriber error for {query_name}: {e}")


def _scope_matches(entry_year: Optional[int], run_year: Optional[int]) -> bool:
    return entry_year is None or run_year is None or entry_year == run_year
