"""Persistence for the locally cached service-account credential.

The identity file (``/data/serviceaccount.json`` by default) is written once,
on first bootstrap, and is the source of truth from then on. Writes are atomic
so a crash mid-write never leaves a half-written credential behind.
"""
from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .credential import ServiceAccountCredential


class CorruptStateError(RuntimeError):
    """Raised when the identity file exists but cannot be understood."""


class PersistenceError(RuntimeError):
    """Raised when the identity file cannot be written."""


@dataclass(frozen=True)
class IdentityStore:
    """Load and save the credential kept in a single JSON file."""

    path: Path

    def __post_init__(self) -> None:
        """Normalise the path after initialisation."""
        object.__setattr__(self, "path", Path(self.path).expanduser())

    def exists(self) -> bool:
        """Return ``True`` when an identity has already been persisted."""
        return self.path.exists()

    def load(self) -> ServiceAccountCredential | None:
        """Return the persisted credential, or ``None`` when nothing is stored."""
        if not self.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptStateError(f"Failed to read identity file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise CorruptStateError(f"Identity file {self.path} must contain a JSON object.")
        try:
            return ServiceAccountCredential.from_mapping(data)
        except ValueError as exc:
            raise CorruptStateError(f"Identity file {self.path} is invalid: {exc}") from exc

    def save(self, credential: ServiceAccountCredential) -> None:
        """Atomically persist *credential*; an existing identity is never replaced."""
        if self.exists():
            raise PersistenceError(f"Refusing to overwrite existing identity file {self.path}.")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}."
            )
        except OSError as exc:
            raise PersistenceError(f"Failed to write identity file {self.path}: {exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(credential.to_dict(), handle, indent=2)
                handle.write("\n")
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"Failed to write identity file {self.path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def describe(self) -> dict[str, object]:
        """Return a display-safe summary of the stored identity."""
        credential = self.load()
        if credential is None:
            return {"path": str(self.path), "present": False}
        return {
            "path": str(self.path),
            "present": True,
            "id": credential.id,
            "email": credential.email,
            "login": credential.login,
            "password": "********",
        }


__all__ = ["CorruptStateError", "IdentityStore", "PersistenceError"]
