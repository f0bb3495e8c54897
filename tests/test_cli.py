"""Tests for the gf-provisioning-reloader CLI."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from gfreloader import __version__, cli
from gfreloader.cli import app
from gfreloader.identity import (
    BootstrapFailedError,
    CorruptStateError,
    IdentityStore,
    candidate_credential,
)
from gfreloader.service import ReloaderService
from gfreloader.watcher import WatcherError

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, str]:
    """Point every config source at the temporary directory."""
    return {
        "GFRELOADER_CONFIG_FILE": str(tmp_path / "config.yml"),
        "GFRELOADER_DATA_DIR": str(tmp_path / "data"),
        "GFRELOADER_PROVISIONING_DIR": str(tmp_path / "provisioning"),
        "GFRELOADER_NODE_ID": "node-1",
    }


def _identity_file(tmp_path: Path) -> Path:
    return tmp_path / "data" / "serviceaccount.json"


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"gf-provisioning-reloader {__version__}" in result.stdout


def test_invalid_config_exits_with_validation_code(
    tmp_path: Path, cli_env: dict[str, str]
) -> None:
    """Unknown configuration keys are rejected before any command runs."""
    (tmp_path / "config.yml").write_text("bogus: true\n", encoding="utf-8")

    result = runner.invoke(app, ["identity"], env=cli_env)

    assert result.exit_code == 2
    assert "Unknown configuration keys: bogus" in result.output


def test_classify_json(cli_env: dict[str, str]) -> None:
    """Classification honours the configured categories."""
    env = {**cli_env, "GFRELOADER_CATEGORIES": "dashboards,notifiers"}
    paths = [
        "/etc/grafana/provisioning/dashboards/home.yml",
        "/etc/grafana/provisioning/notifiers/slack.yml",
        "/etc/grafana/provisioning/datasources/prom.yml",
    ]

    result = runner.invoke(app, ["classify", *paths, "--json"], env=env)

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {
        paths[0]: ["dashboards"],
        paths[1]: ["notifiers"],
        paths[2]: [],
    }


def test_classify_table(cli_env: dict[str, str]) -> None:
    result = runner.invoke(app, ["classify", "dashboards/a.yml"], env=cli_env)
    assert result.exit_code == 0
    assert "Classification" in result.stdout
    assert "dashboards" in result.stdout


def test_identity_absent(tmp_path: Path, cli_env: dict[str, str]) -> None:
    result = runner.invoke(app, ["identity", "--json"], env=cli_env)

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {
        "path": str(_identity_file(tmp_path)),
        "present": False,
        "node_id": "node-1",
    }

    table = runner.invoke(app, ["identity"], env=cli_env)
    assert table.exit_code == 0
    assert "No identity persisted yet" in table.stdout


def test_identity_present_is_redacted(tmp_path: Path, cli_env: dict[str, str]) -> None:
    """The stored password never appears in CLI output."""
    credential = candidate_credential("node-1")
    IdentityStore(_identity_file(tmp_path)).save(credential)

    result = runner.invoke(app, ["identity", "--json"], env=cli_env)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["present"] is True
    assert payload["login"] == credential.login
    assert payload["password"] == "********"

    table = runner.invoke(app, ["identity"], env=cli_env)
    assert table.exit_code == 0
    assert "Service account" in table.stdout
    assert "********" in table.stdout


def test_identity_corrupt_file_exits_with_environment_code(
    tmp_path: Path, cli_env: dict[str, str]
) -> None:
    path = _identity_file(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    result = runner.invoke(app, ["identity"], env=cli_env)

    assert result.exit_code == 3


@pytest.mark.parametrize(
    ("error", "exit_code"),
    [
        (BootstrapFailedError('msg="Unauthorized" status="401"'), 1),
        (CorruptStateError("Identity file is invalid"), 3),
        (WatcherError("Cannot watch provisioning directory /nope"), 3),
    ],
)
def test_run_maps_failures_to_exit_codes(
    cli_env: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
    error: Exception,
    exit_code: int,
) -> None:
    """Bootstrap and state failures terminate ``run`` with distinct codes."""
    seen: dict[str, object] = {}

    async def fake_run(self: ReloaderService, *, handle_signals: bool = True) -> None:
        seen["debounce_window"] = self.config.debounce_window
        seen["initial_reload"] = self.config.initial_reload
        raise error

    monkeypatch.setattr(ReloaderService, "run", fake_run)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)

    result = runner.invoke(
        app,
        ["run", "--debounce-window", "1.5", "--no-initial-reload"],
        env=cli_env,
    )

    assert result.exit_code == exit_code
    assert seen == {"debounce_window": 1.5, "initial_reload": False}


def test_run_returns_cleanly_when_service_stops(
    cli_env: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def fake_run(self: ReloaderService, *, handle_signals: bool = True) -> None:
        return None

    monkeypatch.setattr(ReloaderService, "run", fake_run)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)

    result = runner.invoke(app, ["run"], env=cli_env)

    assert result.exit_code == 0
