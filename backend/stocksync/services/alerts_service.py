# Overview: Derived low-stock and near-expiry views kept consistent with the local store.

"""
Derived Alerts

low_stock() and expiring_within(days) are pure functions of the current
product snapshots. Both are cached and invalidated by every local store
write; the write listener recomputes synchronously, so a badge never shows
a count older than the last completed write.

expiring_within() compares against "today" at call time, so its cache is
keyed by (store version, today, days): a calendar-day rollover invalidates
it even when nothing was written.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable

from ..events import ObserverRegistry, Subscription
from ..models import EntitySnapshot
from ..time_utils import parse_iso_date, utcnow
from .local_store import LocalStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertSummary:
    low_stock_ids: tuple[str, ...]
    expiring_ids: tuple[str, ...]
    horizon_days: int
    as_of: date

    @property
    def low_stock_count(self) -> int:
        return len(self.low_stock_ids)

    @property
    def expiring_count(self) -> int:
        return len(self.expiring_ids)

    def to_dict(self) -> dict:
        return {
            "low_stock": list(self.low_stock_ids),
            "expiring": list(self.expiring_ids),
            "horizon_days": self.horizon_days,
            "as_of": self.as_of.isoformat(),
        }


def is_low_stock(payload: dict) -> bool:
    quantity = payload.get("quantity")
    threshold = payload.get("reorder_threshold")
    if quantity is None or threshold is None:
        return False
    return quantity <= threshold


def expiry_of(payload: dict) -> date | None:
    try:
        return parse_iso_date(payload.get("expiry_date"))
    except ValueError:
        return None


class DerivedAlertsEngine:
    def __init__(
        self,
        store: LocalStore,
        *,
        horizon_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._horizon_days = horizon_days
        self._clock = clock
        self._low_stock: tuple[int, list[EntitySnapshot]] | None = None
        self._expiring: dict[tuple, list[EntitySnapshot]] = {}
        self._listeners = ObserverRegistry("alerts changed")
        self._rollover: asyncio.TimerHandle | None = None
        self._summary = self._compute_summary()
        self._subscription = store.on_write(self._on_write)

    def on_alerts_changed(self, listener: Callable[[AlertSummary], None]) -> Subscription:
        return self._listeners.subscribe(listener)

    def _today(self) -> date:
        return self._clock().date()

    def _products(self) -> list[EntitySnapshot]:
        return self._store.products()

    # -- views --

    def low_stock(self) -> list[EntitySnapshot]:
        version = self._store.version
        if self._low_stock is None or self._low_stock[0] != version:
            items = [p for p in self._products() if is_low_stock(p.payload)]
            items.sort(key=lambda p: (p.payload.get("quantity"), p.payload.get("name") or "", p.entity_id))
            self._low_stock = (version, items)
        return list(self._low_stock[1])

    def expiring_within(self, days: int, *, include_expired: bool = False) -> list[EntitySnapshot]:
        if days < 0:
            raise ValueError("days must be >= 0")
        version = self._store.version
        today = self._today()
        key = (version, today, days, include_expired)
        cached = self._expiring.get(key)
        if cached is None:
            # Only entries for the current version and day can ever hit again
            self._expiring = {k: v for k, v in self._expiring.items() if k[0] == version and k[1] == today}
            horizon = today + timedelta(days=days)
            items = []
            for product in self._products():
                expiry = expiry_of(product.payload)
                if expiry is None or expiry > horizon:
                    continue
                if expiry < today and not include_expired:
                    continue
                items.append((expiry, product))
            items.sort(key=lambda pair: (pair[0], pair[1].entity_id))
            cached = [product for _, product in items]
            self._expiring[key] = cached
        return list(cached)

    def summary(self) -> AlertSummary:
        if self._summary.as_of != self._today():
            self.refresh()
        return self._summary

    def _compute_summary(self) -> AlertSummary:
        return AlertSummary(
            low_stock_ids=tuple(p.entity_id for p in self.low_stock()),
            expiring_ids=tuple(p.entity_id for p in self.expiring_within(self._horizon_days)),
            horizon_days=self._horizon_days,
            as_of=self._today(),
        )

    # -- invalidation --

    def _on_write(self, version: int) -> None:
        self.refresh()

    def refresh(self) -> AlertSummary:
        """Recompute now; listeners hear about it only if the summary changed."""
        summary = self._compute_summary()
        changed = (summary.low_stock_ids, summary.expiring_ids) != (
            self._summary.low_stock_ids,
            self._summary.expiring_ids,
        )
        self._summary = summary
        if changed:
            logger.debug(
                "Alerts changed: %d low stock, %d expiring within %d days",
                summary.low_stock_count, summary.expiring_count, summary.horizon_days,
            )
            self._listeners.emit(summary)
        return summary

    def start(self) -> None:
        """Schedule a refresh at every calendar-day rollover."""
        self._schedule_rollover()

    def stop(self) -> None:
        if self._rollover is not None:
            self._rollover.cancel()
            self._rollover = None

    def close(self) -> None:
        self.stop()
        self._subscription.unsubscribe()
        self._listeners.clear()

    def _schedule_rollover(self) -> None:
        now = self._clock()
        midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
        delay = max(1.0, (midnight - now).total_seconds())
        self._rollover = asyncio.get_running_loop().call_later(delay, self._on_rollover)

    def _on_rollover(self) -> None:
        self._rollover = None
        self.refresh()
        self._schedule_rollover()
