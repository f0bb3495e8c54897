"""Tests for the persisted service-account identity."""
from __future__ import annotations

import json
import stat
import tempfile
import uuid
from pathlib import Path

import pytest

from gfreloader.identity import (
    CorruptStateError,
    IdentityStore,
    PersistenceError,
    candidate_credential,
    derive_node_id,
)


def test_derive_node_id_is_deterministic() -> None:
    """The node id is a DNS-namespace uuid5 of the hostname."""
    assert derive_node_id("grafana-0") == str(uuid.uuid5(uuid.NAMESPACE_DNS, "grafana-0"))
    assert derive_node_id("grafana-0") == derive_node_id("grafana-0")
    assert derive_node_id("grafana-0") != derive_node_id("grafana-1")


def test_candidate_credential_shape() -> None:
    """Login, email and password are all derived from the node id."""
    credential = candidate_credential("abc")

    assert credential.id == "abc"
    assert credential.email == "abc@gf-provisioning-config-reloader"
    assert credential.login == "gf-provisioning-config-reloader-abc"
    assert credential.password == "abc"


def test_load_returns_none_when_missing(tmp_path: Path) -> None:
    """An absent file means no identity yet, not an error."""
    store = IdentityStore(tmp_path / "serviceaccount.json")

    assert store.load() is None
    assert store.exists() is False


def test_save_then_load_round_trip(tmp_path: Path) -> None:
    """Saved credentials are read back unchanged and kept private."""
    store = IdentityStore(tmp_path / "nested" / "serviceaccount.json")
    credential = candidate_credential("node-1")

    store.save(credential)

    assert store.load() == credential
    mode = stat.S_IMODE(store.path.stat().st_mode)
    assert mode == 0o600
    assert list(store.path.parent.glob(".serviceaccount.json.*")) == []


def test_load_accepts_file_without_id(tmp_path: Path) -> None:
    """Files holding only email/login/password still load; the id comes from the password."""
    path = tmp_path / "serviceaccount.json"
    path.write_text(
        json.dumps({"email": "n@x", "login": "x-n", "password": "n"}),
        encoding="utf-8",
    )

    credential = IdentityStore(path).load()

    assert credential is not None
    assert credential.id == "n"


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"email": "a@b", "login": "a"}),
        json.dumps({"email": "a@b", "login": "a", "password": 5}),
    ],
)
def test_load_rejects_corrupt_files(tmp_path: Path, content: str) -> None:
    """Unparseable or incomplete identity files are fatal."""
    path = tmp_path / "serviceaccount.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(CorruptStateError):
        IdentityStore(path).load()


def test_save_never_overwrites(tmp_path: Path) -> None:
    """Once persisted, the identity is immutable."""
    store = IdentityStore(tmp_path / "serviceaccount.json")
    store.save(candidate_credential("first"))

    with pytest.raises(PersistenceError):
        store.save(candidate_credential("second"))

    loaded = store.load()
    assert loaded is not None
    assert loaded.id == "first"


def test_save_wraps_write_failures(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """OS-level write errors surface as PersistenceError and leave nothing behind."""
    store = IdentityStore(tmp_path / "serviceaccount.json")

    def fail_mkstemp(*args: object, **kwargs: object) -> tuple[int, str]:
        raise OSError("disk full")

    monkeypatch.setattr(tempfile, "mkstemp", fail_mkstemp)

    with pytest.raises(PersistenceError, match="disk full"):
        store.save(candidate_credential("node"))
    assert not store.path.exists()


def test_describe_redacts_password(tmp_path: Path) -> None:
    """The display summary never includes the secret."""
    store = IdentityStore(tmp_path / "serviceaccount.json")
    assert store.describe() == {"path": str(store.path), "present": False}

    store.save(candidate_credential("secret-node"))
    summary = store.describe()

    assert summary["present"] is True
    assert summary["login"] == "gf-provisioning-config-reloader-secret-node"
    assert summary["password"] == "********"
