"""Thin asynchronous client for the parts of the Grafana HTTP API we drive."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Protocol

import aiohttp

from .classifier import ReloadCategory
from .config import GrafanaConfig
from .identity.bootstrap import AccountCreation
from .identity.credential import ServiceAccountCredential

LOGGER = logging.getLogger(__name__)

# Grafana answers 412 Precondition Failed when the login or email is taken.
ACCOUNT_EXISTS_STATUS = 412


class GatewayError(RuntimeError):
    """Raised when a Grafana API request fails."""


class ReloadCallFailedError(GatewayError):
    """Raised when a provisioning reload request errors or is rejected."""


class ReloadGateway(Protocol):
    """The single remote operation the dispatcher consumes."""

    async def reload_category(self, category: ReloadCategory) -> str:
        ...


@dataclass(slots=True)
class ApiResponse:
    """Status code and decoded JSON body of an API call."""

    status: int
    body: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def message(self) -> str:
        return str(self.body.get("message", ""))


class GrafanaClient:
    """Issue JSON requests against ``<root>/api/`` with HTTP basic auth.

    The client owns one :class:`aiohttp.ClientSession`, opened lazily and
    closed by :meth:`close` or by leaving the ``async with`` block. Every
    operation is attempted exactly once.
    """

    def __init__(
        self,
        api_url: str,
        auth: aiohttp.BasicAuth,
        *,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.api_url = api_url if api_url.endswith("/") else f"{api_url}/"
        self.auth = auth
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: GrafanaConfig) -> GrafanaClient:
        """Return a client authenticated with the configured admin account."""
        return cls(
            config.api_url,
            aiohttp.BasicAuth(config.admin_user, config.admin_password),
            timeout=config.timeout,
        )

    def for_credential(self, credential: ServiceAccountCredential) -> GrafanaClient:
        """Return a client for the same server authenticated as *credential*."""
        return GrafanaClient(
            self.api_url,
            aiohttp.BasicAuth(credential.login, credential.password),
            timeout=self.timeout,
        )

    async def __aenter__(self) -> GrafanaClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Account provisioning
    # ------------------------------------------------------------------
    async def create_account(self, candidate: ServiceAccountCredential) -> AccountCreation:
        """Create a Grafana user for *candidate* (``POST admin/users``)."""
        response = await self._request("POST", "admin/users", json=candidate.to_account_payload())
        raw_id = response.body.get("id")
        return AccountCreation(
            status=response.status,
            account_id=int(raw_id) if isinstance(raw_id, int) else None,
            message=response.message,
            exists=response.status == ACCOUNT_EXISTS_STATUS,
        )

    async def find_account(self, login: str) -> int | None:
        """Return the numeric id of the user called *login*, if any."""
        response = await self._request("GET", "users/lookup", params={"loginOrEmail": login})
        if response.status == 404:
            return None
        if not response.ok:
            raise GatewayError(
                f'Account lookup failed: msg="{response.message}" status="{response.status}"'
            )
        raw_id = response.body.get("id")
        return raw_id if isinstance(raw_id, int) else None

    async def elevate(self, account_id: int) -> None:
        """Grant Grafana admin rights to *account_id*."""
        response = await self._request(
            "PUT",
            f"admin/users/{account_id}/permissions",
            json={"isGrafanaAdmin": True},
        )
        if not response.ok:
            raise GatewayError(
                f'Permission update failed: msg="{response.message}" status="{response.status}"'
            )

    # ------------------------------------------------------------------
    # Provisioning reloads
    # ------------------------------------------------------------------
    async def reload_category(self, category: ReloadCategory) -> str:
        """Ask Grafana to re-read the provisioning files of *category*."""
        try:
            response = await self._request("POST", category.reload_path)
        except GatewayError as exc:
            raise ReloadCallFailedError(f"{category.name} reload failed: {exc}") from exc
        if not response.ok:
            raise ReloadCallFailedError(
                f'{category.name} reload rejected: msg="{response.message}" '
                f'status="{response.status}"'
            )
        return response.message

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, object] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> ApiResponse:
        url = f"{self.api_url}{path}"
        LOGGER.debug("%s %s", method, url)
        try:
            async with self._get_session().request(
                method,
                url,
                json=json,
                params=params,
                auth=self.auth,
                headers={"Content-Type": "application/json"},
            ) as response:
                body = await _read_body(response)
                return ApiResponse(status=response.status, body=body)
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise GatewayError(f"{method} {url} failed: {exc}") from exc


async def _read_body(response: aiohttp.ClientResponse) -> Mapping[str, Any]:
    try:
        data = await response.json(content_type=None)
    except ValueError:
        text = await response.text()
        return {"message": text.strip()}
    return data if isinstance(data, Mapping) else {}


__all__ = [
    "ACCOUNT_EXISTS_STATUS",
    "ApiResponse",
    "GatewayError",
    "GrafanaClient",
    "ReloadCallFailedError",
    "ReloadGateway",
]
