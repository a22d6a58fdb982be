# Overview: Facade wiring the local store, queue, monitor, reconciler and alerts into one sync core.

"""
Sync Core

The only surface the UI layer talks to. It exposes plain data and
callbacks: pending_count(), connectivity_state(), on_alerts_changed(),
on_sync_event() and request_sync(). Several cores may live in one process;
nothing here is global.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..config import SyncSettings
from ..events import Subscription
from ..models import EntitySnapshot
from ..permissions import ACTION_VIEW
from ..time_utils import to_utc_z, utcnow
from . import permission_service
from .alerts_service import AlertSummary, DerivedAlertsEngine
from .local_store import LocalStore
from .mutation_queue import MutationQueue
from .network_monitor import Connectivity, HttpProbe, NetworkMonitor
from .reconciler import PassResult, SyncReconciler
from .remote_store import HttpRemoteStore, RemoteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectivityStatus:
    state: Connectivity
    pending_count: int
    syncing: bool
    last_synced_at: datetime | None

    @property
    def is_online(self) -> bool:
        return self.state is Connectivity.ONLINE

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "pending_count": self.pending_count,
            "syncing": self.syncing,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class SyncCore:
    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        *,
        settings: SyncSettings | None = None,
        monitor: NetworkMonitor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or SyncSettings()
        self.store = store
        self.remote = remote
        self.monitor = monitor or NetworkMonitor(debounce=self.settings.debounce)
        self.queue = MutationQueue(store, clock=clock)
        self.alerts = DerivedAlertsEngine(store, horizon_days=self.settings.expiry_horizon_days, clock=clock)
        self.reconciler = SyncReconciler(
            store,
            self.queue,
            self.monitor,
            remote,
            settings=self.settings,
            clock=clock,
        )
        self._started = False

    # -- mutations --

    def enqueue(self, context, entity_id, kind: str, payload: dict | None = None, *, entity_type: str | None = None) -> str:
        return self.queue.enqueue(context, entity_id, kind, payload, entity_type=entity_type)

    def pending_count(self) -> int:
        return self.queue.pending_count()

    def request_sync(self, trigger: str = "manual") -> asyncio.Task:
        return self.reconciler.request_sync(trigger)

    async def sync_once(self, trigger: str = "manual") -> PassResult:
        return await self.reconciler.request_sync(trigger)

    async def wait_idle(self) -> None:
        await self.reconciler.wait_idle()

    # -- status --

    def connectivity_state(self) -> ConnectivityStatus:
        return ConnectivityStatus(
            state=self.monitor.current_state(),
            pending_count=self.queue.pending_count(),
            syncing=self.reconciler.syncing,
            last_synced_at=self.store.get_cursor().last_synced_at,
        )

    def on_alerts_changed(self, listener: Callable[[AlertSummary], None]) -> Subscription:
        return self.alerts.on_alerts_changed(listener)

    def on_sync_event(self, listener: Callable[[object], None]) -> Subscription:
        return self.reconciler.on_sync_event(listener)

    def on_connectivity_change(self, listener: Callable[[Connectivity], None]) -> Subscription:
        return self.monitor.on_change(listener)

    # -- reads --

    def low_stock(self) -> list[EntitySnapshot]:
        return self.alerts.low_stock()

    def expiring_within(self, days: int | None = None, *, include_expired: bool = False) -> list[EntitySnapshot]:
        if days is None:
            days = self.settings.expiry_horizon_days
        return self.alerts.expiring_within(days, include_expired=include_expired)

    def alert_summary(self) -> AlertSummary:
        return self.alerts.summary()

    def snapshots(self, context, entity_type: str | None = None) -> list[EntitySnapshot]:
        permission_service.require_permission(context, ACTION_VIEW)
        return self.store.snapshots(entity_type)

    # -- lifecycle --

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.alerts.start()
        await self.monitor.start()
        await self.reconciler.start()
        logger.info("Sync core started (%s, %d pending)", self.monitor.current_state().value, self.pending_count())

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.reconciler.stop()
        await self.monitor.stop()
        self.alerts.stop()
        logger.info("Sync core stopped (%d pending)", self.pending_count())

    async def aclose(self) -> None:
        await self.stop()
        await self.monitor.aclose()
        self.alerts.close()
        aclose = getattr(self.remote, "aclose", None)
        if aclose is not None:
            await aclose()


def build_sync_core(
    app,
    remote: RemoteStore | None = None,
    *,
    store: LocalStore | None = None,
    initial: Connectivity = Connectivity.OFFLINE,
) -> SyncCore:
    """
    Build a core from a Flask app's configuration.

    The core gets its own engine on the app's database URI; it never uses
    the Flask-SQLAlchemy session, so it can run outside a request.
    """
    settings = SyncSettings.from_mapping(app.config)
    if store is None:
        store = LocalStore.from_url(app.config["SQLALCHEMY_DATABASE_URI"])
    base_url = app.config["REMOTE_STORE_URL"].rstrip("/")
    if remote is None:
        remote = HttpRemoteStore(base_url, timeout=settings.remote_timeout)
    monitor = NetworkMonitor(
        initial=initial,
        debounce=settings.debounce,
        probe=HttpProbe(base_url + app.config["REMOTE_HEALTH_PATH"], timeout=settings.remote_timeout),
        probe_interval=settings.probe_interval,
    )
    return SyncCore(store, remote, settings=settings, monitor=monitor)
