"""
domains/recompute.py - Default recompute functions per domain

Each function rebuilds a domain's derived summary for a scope from its
raw records and from the summaries of its upstream domains, then writes
it with DerivedStore.upsert. Recomputing the same scope twice leaves the
store unchanged, so the orchestrator can retry freely.

The arithmetic is deliberately simple aggregation; real tax and
forecasting formulas plug in by registering other functions.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Set
import logging

from fingraph.core.enums import DomainNode
from fingraph.dependencies.cascade import RecomputeFunc, RecomputeRegistry
from fingraph.dependencies.scope import Scope
from .store import DerivedStore, DomainDataStore

logger = logging.getLogger(__name__)


class DomainCalculators:
    """Recompute functions bound to a pair of stores."""

    def __init__(self, data: DomainDataStore, derived: DerivedStore):
        self._data = data
        self._derived = derived

    # -------------------------------------------------------------------------
    # Scope expansion
    # -------------------------------------------------------------------------

    def _years(self, scope: Scope, node: DomainNode, upstream: Iterable[DomainNode] = ()) -> List[int]:
        """Years a recompute of `node` must cover for `scope`."""
        if not scope.is_all:
            return [scope.year]
        years: Set[int] = self._data.years(node) | self._derived.years(node)
        for up in upstream:
            years |= self._derived.years(up)
        return sorted(years)

    def _upstream(self, node: DomainNode, year: int) -> Dict[str, Any]:
        return self._derived.get(node, year) or {}

    # -------------------------------------------------------------------------
    # Source domains
    # -------------------------------------------------------------------------

    def recompute_tax(self, scope: Scope) -> Dict[int, Dict[str, Any]]:
        results = {}
        for year in self._years(scope, DomainNode.TAX):
            totals = self._data.totals_by_category(DomainNode.TAX, year)
            summary = {
                "totalIncome": totals["income"],
                "totalDeductions": totals["deduction"],
                "taxableIncome": totals["income"] - totals["deduction"],
                "withheld": totals["withholding"],
            }
            self._derived.upsert(DomainNode.TAX, year, summary)
            results[year] = summary
        return results

    def recompute_compta(self, scope: Scope) -> Dict[int, Dict[str, Any]]:
        results = {}
        for year in self._years(scope, DomainNode.COMPTA):
            totals = self._data.totals_by_category(DomainNode.COMPTA, year)
            summary = {
                "revenue": totals["revenue"],
                "expenses": totals["expense"],
                "netIncome": totals["revenue"] - totals["expense"],
            }
            self._derived.upsert(DomainNode.COMPTA, year, summary)
            results[year] = summary
        return results

    def recompute_immobilier(self, scope: Scope) -> Dict[int, Dict[str, Any]]:
        results = {}
        for year in self._years(scope, DomainNode.IMMOBILIER):
            totals = self._data.totals_by_category(DomainNode.IMMOBILIER, year)
            summary = {
                "grossRents": totals["rent"],
                "expenses": totals["expense"],
                "interest": totals["interest"],
                "netRentalIncome": totals["rent"] - totals["expense"] - totals["interest"],
            }
            self._derived.upsert(DomainNode.IMMOBILIER, year, summary)
            results[year] = summary
        return results

    # -------------------------------------------------------------------------
    # Derived domains
    # -------------------------------------------------------------------------

    def recompute_previsions(self, scope: Scope) -> Dict[int, Dict[str, Any]]:
        upstream = (DomainNode.TAX, DomainNode.COMPTA, DomainNode.IMMOBILIER)
        results = {}
        for year in self._years(scope, DomainNode.PREVISIONS, upstream):
            tax = self._upstream(DomainNode.TAX, year)
            compta = self._upstream(DomainNode.COMPTA, year)
            immo = self._upstream(DomainNode.IMMOBILIER, year)
            assumptions = self._data.totals_by_category(DomainNode.PREVISIONS, year)

            corporate = compta.get("netIncome", 0.0)
            rental = immo.get("netRentalIncome", 0.0)
            personal = tax.get("taxableIncome", 0.0)
            summary = {
                "corporateNetIncome": corporate,
                "rentalNetIncome": rental,
                "personalTaxableIncome": personal,
                "adjustments": assumptions["assumption"],
                "projectedCashflow": corporate + rental + personal
                - tax.get("withheld", 0.0) + assumptions["assumption"],
            }
            self._derived.upsert(DomainNode.PREVISIONS, year, summary)
            results[year] = summary
        return results

    def recompute_decideur(self, scope: Scope) -> Dict[int, Dict[str, Any]]:
        results = {}
        for year in self._years(scope, DomainNode.DECIDEUR, (DomainNode.PREVISIONS,)):
            previsions = self._upstream(DomainNode.PREVISIONS, year)
            objectives = self._data.totals_by_category(DomainNode.DECIDEUR, year)
            cashflow = previsions.get("projectedCashflow", 0.0)
            gap = cashflow - objectives["objective"]

            if gap > 0:
                recommendation = "invest-surplus"
            elif gap < 0:
                recommendation = "reduce-spending"
            else:
                recommendation = "hold"

            summary = {
                "projectedCashflow": cashflow,
                "objective": objectives["objective"],
                "gap": gap,
                "recommendation": recommendation,
            }
            self._derived.upsert(DomainNode.DECIDEUR, year, summary)
            results[year] = summary
        return results

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def as_mapping(self) -> Dict[DomainNode, RecomputeFunc]:
        return {
            DomainNode.TAX: self.recompute_tax,
            DomainNode.COMPTA: self.recompute_compta,
            DomainNode.IMMOBILIER: self.recompute_immobilier,
            DomainNode.PREVISIONS: self.recompute_previsions,
            DomainNode.DECIDEUR: self.recompute_decideur,
        }


def build_default_recomputes(data: DomainDataStore, derived: DerivedStore) -> RecomputeRegistry:
    """RecomputeRegistry with the default function for every domain."""
    return RecomputeRegistry.from_mapping(DomainCalculators(data, derived).as_mapping())
