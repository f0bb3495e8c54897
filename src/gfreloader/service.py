"""Wire identity bootstrap, classification, debouncing and watching together.

Startup is a strict two-stage sequence: the Grafana identity is bootstrapped
first (and may suspend on the network), then the provisioning directory is
watched. Nothing is watched until an identity exists.
"""
from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import AsyncExitStack
from enum import Enum

from .classifier import ChangeClassifier, resolve_categories
from .config import AppConfig
from .dispatcher import DebouncedDispatcher, Timer
from .grafana import GrafanaClient, ReloadGateway
from .identity import IdentityBootstrapper, IdentityStore, ServiceAccountCredential
from .watcher import ChangeEvent, ProvisioningWatcher

LOGGER = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServiceState(str, Enum):
    """Lifecycle stages of :class:`ReloaderService`."""

    CREATED = "created"
    BOOTSTRAPPED = "bootstrapped"
    WATCHING = "watching"
    STOPPED = "stopped"


class ReloaderService:
    """Run the sidecar for one :class:`AppConfig`."""

    def __init__(
        self,
        config: AppConfig,
        *,
        admin_client: GrafanaClient | None = None,
        reload_gateway: ReloadGateway | None = None,
        timer: Timer | None = None,
    ) -> None:
        self.config = config
        self.store = IdentityStore(config.service_account_file)
        self.classifier = ChangeClassifier(resolve_categories(config.categories))
        self.state = ServiceState.CREATED
        self.credential: ServiceAccountCredential | None = None
        self.dispatcher: DebouncedDispatcher | None = None
        self.watcher: ProvisioningWatcher | None = None
        self._admin_client = admin_client
        self._reload_gateway = reload_gateway
        self._timer = timer
        self._stop = asyncio.Event()
        self._exit_stack = AsyncExitStack()

    async def bootstrap(self) -> ServiceAccountCredential:
        """Stage one: load or provision the node's Grafana identity."""
        admin = self._admin_client or GrafanaClient.from_config(self.config.grafana)
        async with admin:
            bootstrapper = IdentityBootstrapper(self.store, admin, self.config.node_id)
            self.credential = await bootstrapper.ensure()
        if self._reload_gateway is None:
            self._reload_gateway = admin.for_credential(self.credential)
        self.state = ServiceState.BOOTSTRAPPED
        return self.credential

    async def start(self) -> None:
        """Bootstrap if needed, then begin dispatching provisioning changes."""
        if self.state is ServiceState.CREATED:
            await self.bootstrap()
        gateway = self._reload_gateway
        if gateway is None:
            raise RuntimeError("No reload gateway available after bootstrap.")
        if isinstance(gateway, GrafanaClient):
            await self._exit_stack.enter_async_context(gateway)

        self.dispatcher = DebouncedDispatcher(
            gateway,
            self.config.debounce_window,
            timer=self._timer,
        )
        self.watcher = ProvisioningWatcher(self.config.provisioning_dir, self.handle_event)
        LOGGER.info(
            "Reloading categories: %s",
            ", ".join(category.name for category in self.classifier.categories),
        )

        if self.config.initial_reload:
            for event in self.watcher.scan():
                self.handle_event(event)

        self.watcher.start()
        self.state = ServiceState.WATCHING

    def handle_event(self, event: ChangeEvent) -> None:
        """Classify *event* and submit it for every category it touches."""
        if self.dispatcher is None:
            return
        categories = self.classifier.classify(event.path)
        if not categories:
            LOGGER.debug('Ignoring event="%s" path="%s"', event.kind.value, event.path)
            return
        for category in sorted(categories, key=lambda item: item.name):
            self.dispatcher.submit(category, event.kind.value, event.path)

    def request_stop(self, reason: str | None = None) -> None:
        """Ask :meth:`run` to return; safe to call more than once."""
        if reason:
            LOGGER.info("%s, exiting...", reason)
        self._stop.set()

    def install_signal_handlers(self) -> None:
        """Stop on SIGINT/SIGTERM without flushing pending trailing reloads."""
        loop = asyncio.get_running_loop()
        for sig in STOP_SIGNALS:
            loop.add_signal_handler(sig, self.request_stop, f"Received signal: {sig.name}")

    async def stop(self) -> None:
        """Stop watching and abandon pending debounce timers."""
        if self.watcher is not None:
            self.watcher.stop()
        if self.dispatcher is not None:
            self.dispatcher.close()
            # Callbacks already queued by the observer thread become no-ops.
            self.dispatcher = None
        await self._exit_stack.aclose()
        self.state = ServiceState.STOPPED

    async def run(self, *, handle_signals: bool = True) -> None:
        """Bootstrap, watch until asked to stop, then shut down."""
        if handle_signals:
            self.install_signal_handlers()
        try:
            await self.start()
            await self._stop.wait()
        finally:
            await self.stop()


__all__ = ["ReloaderService", "ServiceState", "STOP_SIGNALS"]
