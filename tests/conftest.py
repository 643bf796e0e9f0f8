"""
Pytest configuration and fixtures for the sync engine tests.

Store doubles live in fakes.py; the fixtures here wire them into
ready-to-use server/local pairs.
"""

import os

import pytest
from prometheus_client import CollectorRegistry

from fakes import FakeSchemaImporter, FakeStore, StateDiffTransport, create_server_schema
from offline_sync.config import SyncConfig
from sync_utils.metrics import SyncMetrics


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "property: hypothesis-driven property tests")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(autouse=True)
def set_test_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep SYNC_* and VAULT_* settings from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("SYNC_") or key.startswith("VAULT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def metrics() -> SyncMetrics:
    """Metrics on a private registry so counts start at zero."""
    return SyncMetrics(registry=CollectorRegistry())


@pytest.fixture
def server() -> FakeStore:
    store = FakeStore("server")
    create_server_schema(store)
    return store


@pytest.fixture
def local() -> FakeStore:
    return FakeStore("local")


@pytest.fixture
def transport() -> StateDiffTransport:
    return StateDiffTransport(client_id="device-1")


@pytest.fixture
def importer(local: FakeStore, server: FakeStore) -> FakeSchemaImporter:
    return FakeSchemaImporter(local, server)


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        local_connection_string="DRIVER={fake};DATABASE=device",
        remote_connection_string="DRIVER={fake};DATABASE=central",
        local_database="device",
        remote_database="central",
        client_id="device-1",
    )
