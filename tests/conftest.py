"""Root test configuration."""

import sys

import pytest
from loguru import logger

import victorialogs_mcp  # noqa: F401  (configures loguru on import)

NOW = 1_700_000_000.0


def pytest_configure(config):
    """Keep loguru quiet during tests."""
    logger.remove()
    logger.add(sys.stderr, level="WARNING")


@pytest.fixture
def now() -> float:
    return NOW
