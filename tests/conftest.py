"""Shared fixtures for the reloader test suite."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from fakes import FakeAccountGateway, ManualTimer, RecordingGateway

from gfreloader.classifier import CATEGORY_CATALOGUE, ReloadCategory
from gfreloader.config import AppConfig, load_config


@pytest.fixture(autouse=True)
def _restore_package_logger() -> Iterator[None]:
    """Undo ``configure_logging`` so caplog keeps seeing package records."""
    logger = logging.getLogger("gfreloader")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def manual_timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def account_gateway() -> FakeAccountGateway:
    return FakeAccountGateway()


@pytest.fixture
def dashboards() -> ReloadCategory:
    return CATEGORY_CATALOGUE["dashboards"]


@pytest.fixture
def datasources() -> ReloadCategory:
    return CATEGORY_CATALOGUE["datasources"]


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    provisioning = tmp_path / "provisioning"
    provisioning.mkdir()
    return load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "provisioning_dir": str(provisioning),
            "data_dir": str(tmp_path / "data"),
            "initial_reload": False,
        },
        hostname="grafana-test",
    )
