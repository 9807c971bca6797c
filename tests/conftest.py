"""
FinGraph Test Configuration and Fixtures

Shared registries, orchestrators and application contexts.
"""

import pytest
from typing import Callable, Dict, List

from fingraph.bootstrap.app import FinGraphApp
from fingraph.bootstrap.config import FinGraphConfig, reset_config
from fingraph.core.enums import DomainNode
from fingraph.dependencies.cascade import RecalcOrchestrator, RecomputeRegistry
from fingraph.dependencies.graph import DomainRegistry
from fingraph.dependencies.scope import Scope
from fingraph.dependencies.trigger_log import EventLog


class RecordingRecomputes:
    """
    Recompute functions that record every call.

    `fail` maps a node to the exception its recompute raises.
    """

    def __init__(self, fail: Dict[DomainNode, Exception] = None):
        self.calls: List[tuple] = []
        self.fail = dict(fail or {})

    def _make(self, node: DomainNode) -> Callable[[Scope], dict]:
        def recompute(scope: Scope) -> dict:
            self.calls.append((node, scope))
            if node in self.fail:
                raise self.fail[node]
            return {"node": node.value, "scope": scope.to_key()}
        return recompute

    def registry(self) -> RecomputeRegistry:
        return RecomputeRegistry.from_mapping({n: self._make(n) for n in DomainNode})

    @property
    def called_nodes(self) -> List[DomainNode]:
        return [node for node, _ in self.calls]


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Keep FINGRAPH_* variables and cached config out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("FINGRAPH_"):
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def registry():
    """Validated registry with the default domain edges."""
    return DomainRegistry.default()


@pytest.fixture
def recorder():
    return RecordingRecomputes()


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def orchestrator(registry, recorder, event_log):
    """Orchestrator wired to recording recomputes."""
    return RecalcOrchestrator(registry, recorder.registry(), event_log=event_log)


@pytest.fixture
def chain_registry():
    """Validated 4-node chain: Tax -> Compta -> Immobilier -> Previsions."""
    registry = DomainRegistry(edges=[
        (DomainNode.TAX, DomainNode.COMPTA),
        (DomainNode.COMPTA, DomainNode.IMMOBILIER),
        (DomainNode.IMMOBILIER, DomainNode.PREVISIONS),
    ])
    registry.validate()
    return registry


@pytest.fixture
def app_config():
    """Default configuration, independent of the environment."""
    return FinGraphConfig()


@pytest.fixture
def built_app(app_config):
    """Application built with the default stores and recompute functions."""
    return FinGraphApp(config=app_config).build()


@pytest.fixture
def make_recorder():
    """Factory for RecordingRecomputes with optional failures."""
    return RecordingRecomputes
