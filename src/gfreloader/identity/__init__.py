"""Helpers used to bootstrap and persist the reloader's Grafana identity."""
from __future__ import annotations

from .bootstrap import (
    AccountCreation,
    AccountGateway,
    BootstrapFailedError,
    IdentityBootstrapper,
)
from .credential import (
    ServiceAccountCredential,
    candidate_credential,
    derive_node_id,
)
from .store import CorruptStateError, IdentityStore, PersistenceError

__all__ = [
    # credential helpers
    "ServiceAccountCredential",
    "candidate_credential",
    "derive_node_id",
    # persistence
    "CorruptStateError",
    "IdentityStore",
    "PersistenceError",
    # bootstrap workflow
    "AccountCreation",
    "AccountGateway",
    "BootstrapFailedError",
    "IdentityBootstrapper",
]
