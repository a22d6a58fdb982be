# Overview: Connectivity observation with debounced transition notifications.

"""
Network Monitor

Observations arrive from report(online) (an external signal) or from an
optional async probe polled on an interval. A transition is committed only
after the new observation has held for `debounce` seconds; flapping back
to the current state inside that window cancels it. Listeners therefore
hear about each sustained transition exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

import httpx

from ..events import ObserverRegistry, Subscription

logger = logging.getLogger(__name__)


class Connectivity(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class HttpProbe:
    """Reachability check against the remote store's health endpoint."""

    def __init__(self, url: str, *, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __call__(self) -> bool:
        try:
            resp = await self._client.get(self.url)
        except httpx.HTTPError as exc:
            logger.debug("Probe %s failed: %s", self.url, exc)
            return False
        return resp.status_code < 500

    async def aclose(self) -> None:
        await self._client.aclose()


class NetworkMonitor:
    def __init__(
        self,
        *,
        initial: Connectivity = Connectivity.OFFLINE,
        debounce: float = 3.0,
        probe: Callable[[], Awaitable[bool]] | None = None,
        probe_interval: float = 5.0,
    ):
        self._state = Connectivity(initial)
        self._observed = self._state
        self._debounce = debounce
        self._probe = probe
        self._probe_interval = probe_interval
        self._timer: asyncio.TimerHandle | None = None
        self._probe_task: asyncio.Task | None = None
        self._listeners = ObserverRegistry("connectivity change")

    def current_state(self) -> Connectivity:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is Connectivity.ONLINE

    def on_change(self, listener: Callable[[Connectivity], None]) -> Subscription:
        return self._listeners.subscribe(listener)

    def report(self, online: bool) -> None:
        """Feed one raw observation."""
        self._observed = Connectivity.ONLINE if online else Connectivity.OFFLINE

        if self._observed is self._state:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
                logger.debug("Connectivity flap suppressed (still %s)", self._state.value)
            return

        if self._debounce <= 0:
            self._settle()
            return

        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._debounce, self._settle)

    def _settle(self) -> None:
        self._timer = None
        if self._observed is self._state:
            return
        self._state = self._observed
        logger.info("Connectivity is now %s", self._state.value)
        self._listeners.emit(self._state)

    async def start(self) -> None:
        if self._probe is not None and self._probe_task is None:
            self._probe_task = asyncio.create_task(self._probe_loop())

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._probe_task is not None:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None

    async def aclose(self) -> None:
        await self.stop()
        close = getattr(self._probe, "aclose", None)
        if close is not None:
            await close()

    async def _probe_loop(self) -> None:
        while True:
            try:
                online = bool(await self._probe())
            except Exception as exc:
                logger.debug("Connectivity probe raised: %s", exc)
                online = False
            self.report(online)
            await asyncio.sleep(self._probe_interval)
