"""Pytest fixtures for Sentinel engine tests."""

import os
from datetime import UTC, datetime

import pytest


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables before any imports.

    Keeps the default pattern store in memory so no test writes to
    ``data/`` unless it asks for a database explicitly.
    """
    os.environ.setdefault("SENTINEL_ENVIRONMENT", "test")
    os.environ.setdefault("SENTINEL_PATTERN_DB_PATH", "")

    # Clear the settings cache to ensure tests start fresh
    from sentinel_engine.config import get_settings

    get_settings.cache_clear()

    yield

    # Cleanup after all tests
    get_settings.cache_clear()


@pytest.fixture
def test_settings():
    """Settings with generous latency ceilings for slow CI machines."""
    from sentinel_engine.config import Settings

    return Settings(
        environment="test",
        log_level="DEBUG",
        pattern_db_path=None,
        fast_ceiling_ms=1000.0,
        deep_ceiling_full_ms=5000.0,
        deep_ceiling_balanced_ms=5000.0,
        deep_ceiling_conserving_ms=5000.0,
    )


@pytest.fixture
def now():
    """A fixed reference time."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def monitor():
    """Resource monitor pinned to the full tier."""
    from sentinel_engine.models import OperatingTier
    from sentinel_engine.resources.monitor import ResourceMonitor

    return ResourceMonitor(initial_tier=OperatingTier.FULL)


@pytest.fixture
def store():
    """Empty in-memory pattern store."""
    from sentinel_engine.learning.store import PatternStore

    return PatternStore()


@pytest.fixture
def engine(monitor, store, test_settings):
    """Engine wired with in-memory collaborators."""
    from sentinel_engine.engine import SentinelEngine
    from sentinel_engine.policy import PolicyEngine

    return SentinelEngine(
        monitor=monitor,
        policy=PolicyEngine(),
        store=store,
        settings=test_settings,
    )


@pytest.fixture
def child_profile():
    from sentinel_engine.models import UserProfile

    return UserProfile(age=9)


@pytest.fixture
def teen_profile():
    from sentinel_engine.models import UserProfile

    return UserProfile(age=15)


@pytest.fixture
def adult_profile():
    from sentinel_engine.models import UserProfile

    return UserProfile(age=35)


@pytest.fixture
def senior_profile():
    from sentinel_engine.models import UserProfile

    return UserProfile(age=72)
