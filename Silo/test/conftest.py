"""
Test configuration and fixtures for the Silo client core.

Provides:
- Logging configured for tests
- Fresh process-wide unread counters per test
- In-memory backend and realtime feed fixtures (see ``fakes``)
"""

import pytest

from Silo.core.client.services.unread import reset_all
from Silo.core.logging import configure_logging, create_testing_config
from Silo.test.fakes import FakeBackend, FakeRealtimeFeed


@pytest.fixture(scope="session", autouse=True)
def test_logging():
    """Console-only debug logging for the whole run."""
    configure_logging(create_testing_config())


@pytest.fixture(autouse=True)
def reset_counters():
    """Process-wide unread counters start at zero in every test."""
    reset_all()
    yield
    reset_all()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def feed() -> FakeRealtimeFeed:
    return FakeRealtimeFeed()
