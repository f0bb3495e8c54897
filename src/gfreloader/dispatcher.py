"""Coalesce bursts of provisioning changes into few, ordered reload calls.

Each category runs an "immediate + trailing" debounce:

* The first change after a quiet period reloads the category straight away
  and arms a quiescence timer.
* Further changes while the timer is armed only restart it.
* When the timer finally expires, one trailing reload captures the final
  state, but only if changes arrived after the immediate call.

All state lives on the event loop thread, so no locking is needed. Reload
calls run as tasks and never block :meth:`DebouncedDispatcher.submit`; calls
for one category are chained so they reach Grafana in submission order, while
different categories proceed independently.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .classifier import ReloadCategory
from .grafana import ReloadGateway

LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Anything that can be cancelled, e.g. :class:`asyncio.TimerHandle`."""

    def cancel(self) -> None:
        ...


class Timer(Protocol):
    """Schedules callbacks after a delay (in seconds)."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class LoopTimer:
    """Schedule callbacks on the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass(slots=True)
class PendingReload:
    """Debounce state of a category between its first event and quiescence."""

    category: ReloadCategory
    timer: TimerHandle
    dirty: bool = False
    last_event: str = ""
    last_path: str = ""


class DebouncedDispatcher:
    """Drive ``gateway.reload_category`` from a stream of classified changes."""

    def __init__(
        self,
        gateway: ReloadGateway,
        window: float = 0.5,
        *,
        timer: Timer | None = None,
    ) -> None:
        if window <= 0:
            raise ValueError("Debounce window must be greater than zero.")
        self.gateway = gateway
        self.window = window
        self.timer = timer if timer is not None else LoopTimer()
        self._pending: dict[str, PendingReload] = {}
        self._tails: dict[str, asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def is_pending(self, category: ReloadCategory) -> bool:
        """Return ``True`` while *category* waits for quiescence."""
        return category.name in self._pending

    def submit(self, category: ReloadCategory, event: str, path: str) -> None:
        """Record a change to *category*; must be called on the loop thread."""
        pending = self._pending.get(category.name)
        if pending is None:
            pending = PendingReload(
                category=category,
                timer=self.timer.call_later(self.window, lambda: self._expire(category)),
                last_event=event,
                last_path=path,
            )
            self._pending[category.name] = pending
            self._fire(category, event, path)
            return

        pending.timer.cancel()
        pending.timer = self.timer.call_later(self.window, lambda: self._expire(category))
        pending.dirty = True
        pending.last_event = event
        pending.last_path = path

    async def drain(self) -> None:
        """Wait until every reload started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Abandon all armed timers; their trailing reloads never happen."""
        for pending in self._pending.values():
            pending.timer.cancel()
        if self._pending:
            LOGGER.debug("Dropped %d pending trailing reload(s)", len(self._pending))
        self._pending.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _expire(self, category: ReloadCategory) -> None:
        pending = self._pending.pop(category.name, None)
        if pending is None:
            return
        if pending.dirty:
            self._fire(category, pending.last_event, pending.last_path)

    def _fire(self, category: ReloadCategory, event: str, path: str) -> None:
        previous = self._tails.get(category.name)
        task = asyncio.get_running_loop().create_task(
            self._reload(category, event, path, previous),
            name=f"reload-{category.name}",
        )
        self._tails[category.name] = task
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._forget(category.name, done))

    def _forget(self, name: str, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if self._tails.get(name) is task:
            del self._tails[name]

    async def _reload(
        self,
        category: ReloadCategory,
        event: str,
        path: str,
        previous: asyncio.Task[None] | None,
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        try:
            message = await self.gateway.reload_category(category)
        except Exception as exc:  # noqa: BLE001 - one failed reload must not stop the others
            LOGGER.warning(
                'msg="%s" category="%s" event="%s" path="%s"',
                exc,
                category.name,
                event,
                path,
            )
            return
        LOGGER.info(
            'msg="%s" category="%s" event="%s" path="%s"',
            message,
            category.name,
            event,
            path,
        )


__all__ = [
    "DebouncedDispatcher",
    "LoopTimer",
    "PendingReload",
    "Timer",
    "TimerHandle",
]
