"""
Unit tests for domains/store.py and domains/recompute.py

Includes the idempotence contract: recomputing a (node, scope) twice
leaves the derived summaries equal to recomputing once.
"""

import pytest

from fingraph.core.enums import DomainNode
from fingraph.dependencies.cascade import RecalcOrchestrator
from fingraph.dependencies.graph import DomainRegistry
from fingraph.dependencies.scope import Scope
from fingraph.domains.recompute import DomainCalculators, build_default_recomputes
from fingraph.domains.store import (
    DOMAIN_CATEGORIES,
    DerivedStore,
    DomainDataStore,
    RecordNotFound,
)


TAX = DomainNode.TAX
COMPTA = DomainNode.COMPTA
IMMOBILIER = DomainNode.IMMOBILIER
PREVISIONS = DomainNode.PREVISIONS
DECIDEUR = DomainNode.DECIDEUR


@pytest.fixture
def data():
    store = DomainDataStore()
    store.add(COMPTA, 2024, "revenue", "Ventes", 100000)
    store.add(COMPTA, 2024, "expense", "Salaires", 60000)
    store.add(TAX, 2024, "income", "Salaire", 80000)
    store.add(TAX, 2024, "deduction", "REER", 10000)
    store.add(TAX, 2024, "withholding", "Retenues", 15000)
    store.add(IMMOBILIER, 2024, "rent", "Loyers", 24000)
    store.add(IMMOBILIER, 2024, "expense", "Taxes", 4000)
    store.add(IMMOBILIER, 2024, "interest", "Hypothèque", 6000)
    store.add(DECIDEUR, 2024, "objective", "Cible", 100000)
    store.add(COMPTA, 2023, "revenue", "Ventes", 50000)
    return store


@pytest.fixture
def derived():
    return DerivedStore()


@pytest.fixture
def calculators(data, derived):
    return DomainCalculators(data, derived)


class TestDomainDataStore:
    """Test raw record storage."""

    def test_add_and_get(self):
        store = DomainDataStore()
        record = store.add(TAX, 2024, "income", "Salaire", 1000)

        assert store.get(TAX, record.record_id) == record
        assert record.amount == 1000.0
        assert record.to_dict()["node"] == "Tax"

    def test_ids_increase(self):
        store = DomainDataStore()
        first = store.add(TAX, 2024, "income", "a", 1)
        second = store.add(COMPTA, 2024, "revenue", "b", 1)
        assert second.record_id > first.record_id

    def test_rejects_unknown_category(self):
        store = DomainDataStore()
        with pytest.raises(ValueError, match="Invalid category"):
            store.add(TAX, 2024, "rent", "wrong domain", 1)

    def test_every_domain_has_categories(self):
        assert set(DOMAIN_CATEGORIES) == set(DomainNode)

    def test_records_filtered_by_year(self, data):
        assert len(data.records(COMPTA)) == 3
        assert [r.year for r in data.records(COMPTA, 2023)] == [2023]

    def test_remove(self, data):
        record = data.records(COMPTA, 2023)[0]
        removed = data.remove(COMPTA, record.record_id)

        assert removed == record
        assert data.records(COMPTA, 2023) == []

    def test_remove_missing(self, data):
        with pytest.raises(RecordNotFound):
            data.remove(TAX, 9999)

    def test_years(self, data):
        assert data.years(COMPTA) == {2023, 2024}
        assert data.years(PREVISIONS) == set()

    def test_totals_include_every_category(self, data):
        totals = data.totals_by_category(IMMOBILIER, 2025)
        assert totals == {"rent": 0.0, "expense": 0.0, "interest": 0.0}


class TestDerivedStore:
    """Test derived summaries."""

    def test_upsert_replaces(self, derived):
        derived.upsert(TAX, 2024, {"total": 1})
        derived.upsert(TAX, 2024, {"total": 2})

        assert derived.get(TAX, 2024) == {"total": 2}
        assert derived.write_count == 2

    def test_get_returns_copy(self, derived):
        derived.upsert(TAX, 2024, {"total": 1})
        derived.get(TAX, 2024)["total"] = 99
        assert derived.get(TAX, 2024) == {"total": 1}

    def test_outputs(self, derived):
        derived.upsert(COMPTA, 2024, {"netIncome": 5})
        outputs = derived.outputs()

        assert outputs["Compta"] == {"2024": {"netIncome": 5}}
        assert outputs["Tax"] == {}


class TestCalculators:
    """Test default recompute functions."""

    def test_compta(self, calculators, derived):
        calculators.recompute_compta(Scope.for_year(2024))
        assert derived.get(COMPTA, 2024) == {
            "revenue": 100000.0,
            "expenses": 60000.0,
            "netIncome": 40000.0,
        }

    def test_tax(self, calculators, derived):
        calculators.recompute_tax(Scope.for_year(2024))
        summary = derived.get(TAX, 2024)
        assert summary["taxableIncome"] == 70000.0
        assert summary["withheld"] == 15000.0

    def test_immobilier(self, calculators, derived):
        calculators.recompute_immobilier(Scope.for_year(2024))
        assert derived.get(IMMOBILIER, 2024)["netRentalIncome"] == 14000.0

    def test_previsions_reads_upstream(self, calculators, derived):
        scope = Scope.for_year(2024)
        calculators.recompute_tax(scope)
        calculators.recompute_compta(scope)
        calculators.recompute_immobilier(scope)
        calculators.recompute_previsions(scope)

        summary = derived.get(PREVISIONS, 2024)
        # 40000 + 14000 + 70000 - 15000
        assert summary["projectedCashflow"] == 109000.0

    def test_decideur_recommendation(self, calculators, derived):
        derived.upsert(PREVISIONS, 2024, {"projectedCashflow": 90000.0})
        calculators.recompute_decideur(Scope.for_year(2024))

        summary = derived.get(DECIDEUR, 2024)
        assert summary["gap"] == -10000.0
        assert summary["recommendation"] == "reduce-spending"

    def test_all_years_covers_every_year_with_data(self, calculators, derived):
        result = calculators.recompute_compta(Scope.all_years())

        assert set(result) == {2023, 2024}
        assert derived.get(COMPTA, 2023)["netIncome"] == 50000.0

    def test_single_year_does_not_touch_other_years(self, calculators, derived):
        calculators.recompute_compta(Scope.for_year(2024))
        assert derived.get(COMPTA, 2023) is None

    @pytest.mark.parametrize("node", list(DomainNode))
    @pytest.mark.parametrize("scope", [Scope.for_year(2024), Scope.all_years()])
    def test_recompute_is_idempotent(self, data, node, scope):
        """Running a recompute twice equals running it once."""
        once = DerivedStore()
        twice = DerivedStore()
        for store in (once, twice):
            store.upsert(PREVISIONS, 2024, {"projectedCashflow": 1000.0})

        DomainCalculators(data, once).as_mapping()[node](scope)
        fn = DomainCalculators(data, twice).as_mapping()[node]
        fn(scope)
        fn(scope)

        assert once.outputs() == twice.outputs()


class TestDefaultWiring:
    """Default recomputes through the orchestrator."""

    def test_registry_covers_every_domain(self, data, derived):
        recomputes = build_default_recomputes(data, derived)
        assert recomputes.missing(list(DomainNode)) == []

    def test_compta_change_reaches_decideur(self, data, derived):
        orchestrator = RecalcOrchestrator(
            DomainRegistry.default(), build_default_recomputes(data, derived),
        )
        for source in (TAX, IMMOBILIER):
            orchestrator.recalculate_source(source, Scope.for_year(2024))

        data.add(COMPTA, 2024, "revenue", "Contrat", 11000)
        orchestrator.recalculate_source(COMPTA, Scope.for_year(2024))

        assert derived.get(COMPTA, 2024)["netIncome"] == 51000.0
        assert derived.get(PREVISIONS, 2024)["projectedCashflow"] == 120000.0
        assert derived.get(DECIDEUR, 2024)["recommendation"] == "invest-surplus"
