"""Fixtures for session layer tests."""

import sys
from pathlib import Path

import pytest

# Make workspace_fakes importable from nested test directories
sys.path.insert(0, str(Path(__file__).parent))

from workspace_fakes import ACME, GLOBEX, FakeSessionFactory, make_strategy  # noqa: E402

from synapse_workspace.tenants.registry import TenantRegistry  # noqa: E402


@pytest.fixture
def strategies():
    """Strategies handed out by the fake resolver, in registration order."""
    return []


@pytest.fixture
def fake_resolver(strategies):
    def resolve(declaration):
        strategy = make_strategy("tok-1", "tok-2", "tok-3", kind=declaration.type)
        strategies.append(strategy)
        return strategy

    return resolve


@pytest.fixture
def registry(fake_resolver):
    registry = TenantRegistry(strategy_resolver=fake_resolver)
    registry.add_tenant(ACME)
    registry.add_tenant(GLOBEX)
    registry.set_default_tenant("acme")
    return registry


@pytest.fixture
def session_factory():
    return FakeSessionFactory(rows=[{"id": 1, "region": "west"}, {"id": 2, "region": "east"}])
