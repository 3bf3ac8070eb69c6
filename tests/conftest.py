"""Shared fixtures for the kudu test suite."""

import logging

import pytest

from kudu import App, TestClient


@pytest.fixture
def app() -> App:
    """Return a fresh application with access logging silenced."""
    return App(access_log=False)


@pytest.fixture
def client(app: App) -> TestClient:
    return TestClient(app)


@pytest.fixture
def kudu_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    caplog.set_level(logging.DEBUG, logger="kudu")
    return caplog
