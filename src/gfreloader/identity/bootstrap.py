"""Ensure exactly one Grafana service account exists for this reloader node."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from .credential import ServiceAccountCredential, candidate_credential
from .store import IdentityStore

LOGGER = logging.getLogger(__name__)


class BootstrapFailedError(RuntimeError):
    """Raised when the remote account could not be created or elevated."""


@dataclass(slots=True)
class AccountCreation:
    """Outcome of a remote account-creation request."""

    status: int
    account_id: int | None = None
    message: str = ""
    exists: bool = False

    @property
    def ok(self) -> bool:
        return self.status == 200


class AccountGateway(Protocol):
    """Remote operations the bootstrapper relies upon."""

    async def create_account(self, candidate: ServiceAccountCredential) -> AccountCreation:
        ...

    async def find_account(self, login: str) -> int | None:
        ...

    async def elevate(self, account_id: int) -> None:
        ...


@dataclass(slots=True)
class IdentityBootstrapper:
    """Create, persist and elevate the node's credential, at most once."""

    store: IdentityStore
    gateway: AccountGateway
    node_id: str

    async def ensure(self) -> ServiceAccountCredential:
        """Return the node credential, provisioning it remotely when not cached.

        A persisted credential short-circuits every remote call. Otherwise the
        account is created, saved to the store and only then elevated; any
        remote failure raises :class:`BootstrapFailedError` and the store
        write errors from :class:`IdentityStore` propagate unchanged.
        """
        existing = self.store.load()
        if existing is not None:
            LOGGER.info("Service account already exists, reading from %s", self.store.path)
            return existing

        candidate = candidate_credential(self.node_id)
        LOGGER.info("Creating service account %s", candidate.login)
        try:
            creation = await self.gateway.create_account(candidate)
        except Exception as exc:
            raise BootstrapFailedError(f"Account creation request failed: {exc}") from exc

        if creation.exists:
            # Identity file was lost but the account survived; adopt it.
            LOGGER.warning(
                'msg="%s" status="%s" adopting existing account %s',
                creation.message,
                creation.status,
                candidate.login,
            )
            account_id = await self._lookup(candidate.login)
        elif creation.ok and creation.account_id is not None:
            account_id = creation.account_id
        else:
            raise BootstrapFailedError(
                f'msg="{creation.message}" status="{creation.status}"'
            )

        LOGGER.info("Writing the service account to %s", self.store.path)
        self.store.save(candidate)

        LOGGER.info("Updating account permissions for %s", candidate.login)
        try:
            await self.gateway.elevate(account_id)
        except Exception as exc:
            raise BootstrapFailedError(f"Account elevation failed: {exc}") from exc

        return candidate

    async def _lookup(self, login: str) -> int:
        try:
            account_id = await self.gateway.find_account(login)
        except Exception as exc:
            raise BootstrapFailedError(f"Account lookup failed: {exc}") from exc
        if account_id is None:
            raise BootstrapFailedError(
                f"Account {login} reported as existing but could not be found."
            )
        return account_id


__all__ = [
    "AccountCreation",
    "AccountGateway",
    "BootstrapFailedError",
    "IdentityBootstrapper",
]
