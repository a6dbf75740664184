"""
Pytest configuration and shared fixtures for silo-cache tests.

Provides in-memory storage, a controllable clock and pre-wired KeyStore and
RevalidatingFetcher instances.
"""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

from silo_cache.cli.common.context import clear_cli_context
from silo_cache.config.loader import SettingsLoader
from silo_cache.services.key_store import KeyStore
from silo_cache.services.key_value_store import MemoryStorage
from silo_cache.services.revalidating_fetcher import RevalidatingFetcher
from silo_cache.shared.constants import Logging
from tests.test_helpers import FakeClock, RecordingSleep


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage, clock: FakeClock) -> KeyStore:
    return KeyStore(storage, clock=clock)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fetcher(store: KeyStore, sleep: RecordingSleep) -> RevalidatingFetcher:
    return RevalidatingFetcher(store, retry_count=2, retry_delay=0.5, sleep=sleep)


@pytest.fixture(autouse=True)
def _reset_global_state() -> Generator[None, None, None]:
    """Undo the CLI's logger setup, context and cached settings between tests."""
    yield
    clear_cli_context()
    SettingsLoader._instance = None
    package_logger = logging.getLogger(Logging.LOGGER_NAME)
    for handler in list(package_logger.handlers):
        handler.close()
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
