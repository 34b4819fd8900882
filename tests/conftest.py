"""Shared test fixtures for the iFi BFF tests."""
import pytest

from helpers import FakeBackend, FakeClock, make_settings, signed_in_storage
from ifi_bff.config import Settings
from ifi_bff.storage import Storage


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> Storage:
    return signed_in_storage()


@pytest.fixture
def tab_storage() -> Storage:
    return Storage()
