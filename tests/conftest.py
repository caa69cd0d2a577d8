"""
Root conftest.py for bitwise workbench tests.

This file contains shared fixtures and pytest configuration
that applies to all test modules.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Persisted documents go to a throwaway folder; must happen before api is imported
os.environ.setdefault("BITWISE_CONFIG", tempfile.mkdtemp(prefix="bitwise-test-"))

# Ensure the project root is in the path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "websocket: mark test as involving WebSocket communication",
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running",
    )


def pytest_collection_modifyitems(config, items):
    """Mark tests with 'websocket' in their name."""
    for item in items:
        if "websocket" in item.name.lower():
            item.add_marker(pytest.mark.websocket)


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def config_store(tmp_path, monkeypatch):
    """An AppConfigManager writing to a fresh temporary folder."""
    from api.app_config import AppConfigManager

    monkeypatch.setenv("BITWISE_CONFIG", str(tmp_path))
    return AppConfigManager()


@pytest.fixture
def random_bits():
    """1024 reproducible pseudo-random bits."""
    from api.bit_model import BinaryModel

    return BinaryModel.generate_random(1024, seed=42)
