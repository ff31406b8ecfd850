"""
pytest configuration for the session layer tests.

Adds src directory to Python path for imports and clears environment
variables that would leak an implicit tenant or settings into tests.
"""

import os
import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

_LEAKY_ENV_VARS = (
    "AZURE_SYNAPSE_WORKSPACE",
    "SYNAPSE_WORKSPACE_NAME",
    "SYNAPSE_CONFIG_PATH",
    "SYNAPSE_SETTINGS_PATH",
    "SYNAPSE_DEFAULT_TENANT",
    "CACHE_TTL",
    "REQUEST_TIMEOUT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Tests never see the developer's Synapse environment."""
    for name in _LEAKY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def clean_log_context():
    from synapse_core.logging.context import clear_log_context

    clear_log_context()
    yield
    clear_log_context()


def pytest_configure(config):
    os.environ.setdefault("TEST_MODE", "true")
