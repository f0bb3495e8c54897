"""Test doubles: a virtual clock and recording fakes for the Grafana API."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from gfreloader.classifier import ReloadCategory
from gfreloader.identity import AccountCreation, ServiceAccountCredential


@dataclass
class ManualHandle:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer:
    """Timer whose clock only moves when a test calls :meth:`advance`."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def armed(self) -> list[ManualHandle]:
        return [handle for handle in self.handles if not handle.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [handle for handle in self.armed if handle.when <= target]
            if not due:
                break
            handle = min(due, key=lambda item: item.when)
            handle.cancelled = True
            self.now = handle.when
            handle.callback()
        self.now = target


class RecordingGateway:
    """Reload gateway that records calls and can block or fail per category."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.finished: list[str] = []
        self.failures: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}

    def block(self, name: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[name] = gate
        return gate

    async def reload_category(self, category: ReloadCategory) -> str:
        self.calls.append(category.name)
        gate = self.gates.get(category.name)
        if gate is not None:
            await gate.wait()
        self.finished.append(category.name)
        if category.name in self.failures:
            raise RuntimeError(f"{category.name} exploded")
        return f"{category.name.capitalize()} config reloaded"

    def count(self, name: str) -> int:
        return self.calls.count(name)


@dataclass
class FakeAccountGateway:
    """Stand-in for the admin Grafana client used during bootstrap."""

    creation: AccountCreation = field(
        default_factory=lambda: AccountCreation(status=200, account_id=7, message="User created")
    )
    lookup_id: int | None = 42
    create_error: Exception | None = None
    elevate_error: Exception | None = None
    created: list[ServiceAccountCredential] = field(default_factory=list)
    elevated: list[int] = field(default_factory=list)
    lookups: list[str] = field(default_factory=list)
    entered: int = 0

    async def __aenter__(self) -> FakeAccountGateway:
        self.entered += 1
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def create_account(self, candidate: ServiceAccountCredential) -> AccountCreation:
        self.created.append(candidate)
        if self.create_error is not None:
            raise self.create_error
        return self.creation

    async def find_account(self, login: str) -> int | None:
        self.lookups.append(login)
        return self.lookup_id

    async def elevate(self, account_id: int) -> None:
        self.elevated.append(account_id)
        if self.elevate_error is not None:
            raise self.elevate_error
