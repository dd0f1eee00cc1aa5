"""Pytest configuration — ensures the project root is importable."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from regulation_validator.config import get_settings  # noqa: E402

_REMOTE_ENDPOINT_VARS = (
    "LEVEL1_VALIDATOR_URL",
    "LEVEL2_VALIDATOR_URL",
    "LEVEL3_VALIDATOR_URL",
    "VERSION_SERVICE_URL",
    "AUDIT_SERVICE_URL",
    "AUDIT_MODE",
)


@pytest.fixture(autouse=True)
def _no_remote_endpoints(monkeypatch):
    """Keep every test on the local validator, off the network."""
    for name in _REMOTE_ENDPOINT_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
