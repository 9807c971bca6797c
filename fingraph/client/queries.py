"""
client/queries.py - Default query catalog with declared dependency sets

Each dashboard query names the domains whose derived state it reads.
When unsure, a query lists more domains rather than fewer.
"""

from __future__ import annotations
from typing import Dict, FrozenSet, Optional

from fingraph.core.enums import DomainNode

from .cache import QueryCache


TAX = DomainNode.TAX
COMPTA = DomainNode.COMPTA
IMMOBILIER = DomainNode.IMMOBILIER
PREVISIONS = DomainNode.PREVISIONS
DECIDEUR = DomainNode.DECIDEUR

ALL_DOMAINS: FrozenSet[DomainNode] = frozenset(DomainNode)


DEFAULT_QUERY_DEPENDENCIES: Dict[str, FrozenSet[DomainNode]] = {
    # Personal income and returns
    "personal-incomes": frozenset({TAX}),
    "personal-income-summary": frozenset({TAX, COMPTA, IMMOBILIER}),
    "why-personal-income": frozenset({TAX, COMPTA, IMMOBILIER}),
    "personal-returns": frozenset({TAX}),
    "personal-tax-return": frozenset({TAX, COMPTA, IMMOBILIER}),
    "profile": frozenset({TAX, PREVISIONS, DECIDEUR}),

    # Dashboard summary reads every domain
    "summary": ALL_DOMAINS,

    # Rental properties
    "revenues": frozenset({IMMOBILIER}),
    "expenses": frozenset({IMMOBILIER, COMPTA}),
    "properties": frozenset({IMMOBILIER}),
    "rental-tax": frozenset({IMMOBILIER, TAX}),
    "depreciation": frozenset({IMMOBILIER}),

    # Corporate
    "companies": frozenset({COMPTA}),
    "dividends": frozenset({COMPTA, TAX}),
    "returns-of-capital": frozenset({COMPTA}),
    "valuation": frozenset({COMPTA, PREVISIONS}),

    # Planning
    "family-wealth": frozenset({COMPTA, IMMOBILIER, PREVISIONS}),
    "freeze": frozenset({COMPTA, PREVISIONS, DECIDEUR}),
    "leverage": frozenset({IMMOBILIER, PREVISIONS, DECIDEUR}),
    "leveraged-buyback": frozenset({COMPTA, PREVISIONS, DECIDEUR}),

    # Graph views
    "recent-events": ALL_DOMAINS,
    "graph-outputs": ALL_DOMAINS,
    "domain-records": ALL_DOMAINS,
}

# Query a record mutation invalidates directly, before the run is known
RECORDS_QUERY = "domain-records"


def register_defaults(cache: Optional[QueryCache] = None) -> QueryCache:
    """Register every default query on `cache` (a new one if omitted)."""
    cache = cache if cache is not None else QueryCache()
    for name, depends_on in DEFAULT_QUERY_DEPENDENCIES.items():
        cache.register(name, depends_on)
    return cache
