"""
Shared fixtures for apiscope tests.
"""
import pytest

from apiscope.settings import SettingsSource
from apiscope.storage import MemoryStore

from helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings(settings_store: MemoryStore) -> SettingsSource:
    return SettingsSource(settings_store)
