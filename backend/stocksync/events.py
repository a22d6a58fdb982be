# Overview: Observer registries and the sync events delivered through them.

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by ObserverRegistry.subscribe; call or unsubscribe() to detach."""

    def __init__(self, registry: "ObserverRegistry", key: int):
        self._registry = registry
        self._key = key

    def unsubscribe(self) -> None:
        self._registry._remove(self._key)

    __call__ = unsubscribe

    @property
    def active(self) -> bool:
        return self._key in self._registry._listeners


class ObserverRegistry:
    """
    Explicit, per-instance listener list.

    Delivery is synchronous and in subscription order. A failing listener is
    logged and skipped so it cannot break the component that emits.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: dict[int, Callable[..., Any]] = {}
        self._keys = itertools.count(1)

    def subscribe(self, listener: Callable[..., Any]) -> Subscription:
        if not callable(listener):
            raise TypeError("listener must be callable")
        key = next(self._keys)
        self._listeners[key] = listener
        return Subscription(self, key)

    def _remove(self, key: int) -> None:
        self._listeners.pop(key, None)

    def emit(self, *args: Any) -> None:
        for listener in list(self._listeners.values()):
            try:
                listener(*args)
            except Exception:
                logger.exception("%s listener failed", self.name)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)


# -- SYNC EVENTS --

@dataclass(frozen=True)
class SyncStarted:
    trigger: str
    pending_count: int


@dataclass(frozen=True)
class SyncCompleted:
    trigger: str
    pushed: int
    pulled: int
    abandoned: int
    deferred: int
    cancelled: bool
    pending_count: int
    cursor: int | None = None
    last_synced_at: datetime | None = None


@dataclass(frozen=True)
class SyncConflict:
    """A mutation abandoned after its merge resubmission conflicted again."""
    entity_id: str
    mutation_id: str
    kind: str
    payload: dict
    server_payload: dict | None = None
    server_revision: int | None = None


@dataclass(frozen=True)
class SyncExhausted:
    """A mutation abandoned after exhausting its retry budget."""
    entity_id: str
    mutation_id: str
    kind: str
    payload: dict
    attempts: int
    error: str = ""


@dataclass(frozen=True)
class SyncFailed:
    """A pass aborted by a non-retryable remote error; the queue is untouched."""
    trigger: str
    error: str
    pending_count: int
