"""
domains/store.py - In-memory domain data and derived-aggregate stores

DomainDataStore holds the raw line items users edit (income lines, tax
slips, journal lines, rental statements). DerivedStore holds the
per-(domain, year) summaries written by recompute functions.

DerivedStore.upsert replaces rather than accumulates, which is what
makes the default recompute functions idempotent.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
import itertools
import logging
import threading

from fingraph.core.enums import DomainNode

logger = logging.getLogger(__name__)


# =============================================================================
# RECORD CATEGORIES
# =============================================================================

DOMAIN_CATEGORIES: Dict[DomainNode, Set[str]] = {
    DomainNode.TAX: {"income", "deduction", "withholding"},
    DomainNode.COMPTA: {"revenue", "expense"},
    DomainNode.IMMOBILIER: {"rent", "expense", "interest"},
    DomainNode.PREVISIONS: {"assumption"},
    DomainNode.DECIDEUR: {"objective"},
}


class RecordNotFound(KeyError):
    """Raised when a record id does not exist in a domain."""


# =============================================================================
# DOMAIN RECORD
# =============================================================================

@dataclass(frozen=True)
class DomainRecord:
    """A raw line item belonging to one domain and one fiscal year."""
    record_id: int
    node: DomainNode
    year: int
    category: str
    label: str
    amount: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record_id,
            "node": self.node.value,
            "year": self.year,
            "category": self.category,
            "label": self.label,
            "amount": self.amount,
            "createdAt": self.created_at.isoformat(),
        }


class DomainDataStore:
    """Thread-safe store of raw records, indexed by domain."""

    def __init__(self):
        self._records: Dict[DomainNode, Dict[int, DomainRecord]] = {n: {} for n in DomainNode}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def add(
        self,
        node: DomainNode,
        year: int,
        category: str,
        label: str,
        amount: float,
    ) -> DomainRecord:
        """
        Add a record.

        Raises:
            ValueError: if the category is not used by this domain.
        """
        allowed = DOMAIN_CATEGORIES[node]
        if category not in allowed:
            raise ValueError(
                f"Invalid category {category!r} for {node.value}. Valid: {sorted(allowed)}"
            )
        with self._lock:
            record = DomainRecord(
                record_id=next(self._ids),
                node=node,
                year=year,
                category=category,
                label=label,
                amount=float(amount),
            )
            self._records[node][record.record_id] = record
        logger.debug(f"Record {record.record_id} added to {node.value}/{year}")
        return record

    def remove(self, node: DomainNode, record_id: int) -> DomainRecord:
        with self._lock:
            try:
                return self._records[node].pop(record_id)
            except KeyError:
                raise RecordNotFound(f"{node.value} record {record_id} not found") from None

    def get(self, node: DomainNode, record_id: int) -> DomainRecord:
        with self._lock:
            try:
                return self._records[node][record_id]
            except KeyError:
                raise RecordNotFound(f"{node.value} record {record_id} not found") from None

    def records(self, node: DomainNode, year: Optional[int] = None) -> List[DomainRecord]:
        """Records of a domain, oldest first, optionally for one year."""
        with self._lock:
            items = list(self._records[node].values())
        if year is not None:
            items = [r for r in items if r.year == year]
        return sorted(items, key=lambda r: r.record_id)

    def years(self, node: DomainNode) -> Set[int]:
        with self._lock:
            return {r.year for r in self._records[node].values()}

    def totals_by_category(self, node: DomainNode, year: int) -> Dict[str, float]:
        """Sum of amounts per category; every category of the domain is present."""
        totals = {c: 0.0 for c in DOMAIN_CATEGORIES[node]}
        for record in self.records(node, year):
            totals[record.category] += record.amount
        return totals


# =============================================================================
# DERIVED STORE
# =============================================================================

class DerivedStore:
    """Per-(domain, year) derived summaries. Writes replace, never add."""

    def __init__(self):
        self._summaries: Dict[DomainNode, Dict[int, Dict[str, Any]]] = {n: {} for n in DomainNode}
        self._write_count = 0
        self._lock = threading.RLock()

    def upsert(self, node: DomainNode, year: int, summary: Dict[str, Any]) -> None:
        with self._lock:
            self._summaries[node][year] = dict(summary)
            self._write_count += 1

    def get(self, node: DomainNode, year: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            summary = self._summaries[node].get(year)
            return dict(summary) if summary is not None else None

    def years(self, node: DomainNode) -> Set[int]:
        with self._lock:
            return set(self._summaries[node])

    @property
    def write_count(self) -> int:
        return self._write_count

    def outputs(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Display mapping: domain -> year -> summary."""
        with self._lock:
            return {
                node.value: {str(year): dict(s) for year, s in sorted(by_year.items())}
                for node, by_year in self._summaries.items()
            }
