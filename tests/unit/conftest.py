"""Shared fixtures."""

import pytest

from autosort.core.config import Settings
from autosort.infra.telemetry import MetricsCollector

from fakes import FakeFactory, FakeHost, FakeRuleStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATA_DIR=tmp_path / "data",
        ENGINE_CLOSE_GRACE_S=0.05,
        PROBE_TIMEOUT_S=1.0,
    )


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def rules():
    return FakeRuleStore()


@pytest.fixture
def factory():
    return FakeFactory()
