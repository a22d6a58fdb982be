"""
Derived alerts tests: low stock and near-expiry views, cache invalidation,
day rollover and change notifications.
"""

from datetime import datetime, timedelta

import pytest

from stocksync.services.alerts_service import DerivedAlertsEngine
from stocksync.services.remote_store import RemoteChange


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def product(name="Widget", **fields):
    payload = {"name": name, "quantity": 10, "reorder_threshold": 2}
    payload.update(fields)
    return payload


@pytest.fixture
def clock():
    return Clock(datetime(2026, 10, 19, 12, 0, 0))


@pytest.fixture
def alerts(store, clock):
    engine = DerivedAlertsEngine(store, horizon_days=30, clock=clock)
    yield engine
    engine.close()


def ids(snapshots):
    return [s.entity_id for s in snapshots]


# =============================================================================
# LOW STOCK
# =============================================================================

class TestLowStock:
    def test_reflects_local_mutation_immediately(self, queue, alerts, admin):
        queue.enqueue(admin, "P1", "create", product(quantity=10, reorder_threshold=3))
        assert alerts.low_stock() == []

        queue.enqueue(admin, "P1", "update", {"quantity": 2})
        assert ids(alerts.low_stock()) == ["P1"]

        queue.enqueue(admin, "P1", "update", {"quantity": 4})
        assert alerts.low_stock() == []

    def test_quantity_equal_to_threshold_is_low(self, queue, alerts, admin):
        queue.enqueue(admin, "P1", "create", product(quantity=3, reorder_threshold=3))
        assert ids(alerts.low_stock()) == ["P1"]

    def test_missing_threshold_is_never_low(self, queue, alerts, admin):
        queue.enqueue(admin, "P1", "create", {"name": "No threshold", "quantity": 0})
        assert alerts.low_stock() == []

    def test_locally_deleted_product_excluded(self, queue, alerts, admin):
        queue.enqueue(admin, "P1", "create", product(quantity=0))
        queue.enqueue(admin, "P1", "delete")
        assert alerts.low_stock() == []

    def test_transactions_ignored(self, queue, alerts, admin):
        queue.enqueue(
            admin, "T1", "create",
            {"product_id": "P1", "type": "in", "quantity": 1},
            entity_type="transaction",
        )
        assert alerts.low_stock() == []

    def test_sorted_by_quantity(self, queue, alerts, admin):
        queue.enqueue(admin, "A", "create", product(name="A", quantity=2, reorder_threshold=5))
        queue.enqueue(admin, "B", "create", product(name="B", quantity=0, reorder_threshold=5))
        assert ids(alerts.low_stock()) == ["B", "A"]

    def test_cached_until_next_write(self, store, queue, alerts, admin):
        queue.enqueue(admin, "P1", "create", product(quantity=0))
        first = alerts.low_stock()
        version = store.version

        assert ids(alerts.low_stock()) == ids(first)
        assert store.version == version

    def test_pull_updates_view(self, store, alerts):
        store.apply_remote_changes(
            [RemoteChange("R1", 1, product(quantity=0))],
            synced_at=datetime(2026, 10, 19),
        )
        assert ids(alerts.low_stock()) == ["R1"]


# =============================================================================
# EXPIRY
# =============================================================================

class TestExpiring:
    def test_window_is_inclusive(self, queue, alerts, admin):
        queue.enqueue(admin, "today", "create", product(expiry_date="2026-10-19"))
        queue.enqueue(admin, "edge", "create", product(expiry_date="2026-10-26"))
        queue.enqueue(admin, "later", "create", product(expiry_date="2026-10-27"))
        queue.enqueue(admin, "none", "create", product())

        assert ids(alerts.expiring_within(7)) == ["today", "edge"]

    def test_already_expired_optional(self, queue, alerts, admin):
        queue.enqueue(admin, "old", "create", product(expiry_date="2026-10-01"))

        assert alerts.expiring_within(7) == []
        assert ids(alerts.expiring_within(7, include_expired=True)) == ["old"]

    def test_datetime_expiry_uses_calendar_day(self, queue, alerts, admin):
        queue.enqueue(admin, "P1", "create", product(expiry_date="2026-10-20T23:30:00Z"))
        assert ids(alerts.expiring_within(1)) == ["P1"]

    def test_sorted_by_expiry(self, queue, alerts, admin):
        queue.enqueue(admin, "late", "create", product(expiry_date="2026-11-01"))
        queue.enqueue(admin, "soon", "create", product(expiry_date="2026-10-21"))
        assert ids(alerts.expiring_within(30)) == ["soon", "late"]

    def test_day_rollover_invalidates_without_write(self, store, queue, alerts, clock, admin):
        queue.enqueue(admin, "P1", "create", product(expiry_date="2026-10-27"))
        assert alerts.expiring_within(7) == []
        version = store.version

        clock.advance(days=1)

        assert store.version == version
        assert ids(alerts.expiring_within(7)) == ["P1"]

    def test_negative_days_rejected(self, alerts):
        with pytest.raises(ValueError):
            alerts.expiring_within(-1)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class TestAlertNotifications:
    def test_notifies_only_on_change(self, queue, alerts, admin):
        summaries = []
        alerts.on_alerts_changed(summaries.append)

        queue.enqueue(admin, "P1", "create", product(quantity=10))
        queue.enqueue(admin, "P1", "update", {"quantity": 1})
        queue.enqueue(admin, "P1", "update", {"quantity": 0})
        queue.enqueue(admin, "P1", "update", {"quantity": 9})

        assert [s.low_stock_ids for s in summaries] == [("P1",), ()]

    def test_summary_counts(self, queue, alerts, admin):
        queue.enqueue(admin, "P1", "create", product(quantity=0, expiry_date="2026-10-30"))
        queue.enqueue(admin, "P2", "create", product(expiry_date="2027-01-01"))

        summary = alerts.summary()

        assert summary.low_stock_count == 1
        assert summary.expiring_ids == ("P1",)
        assert summary.horizon_days == 30
        assert summary.to_dict()["as_of"] == "2026-10-19"

    def test_refresh_after_rollover_notifies(self, queue, alerts, clock, admin):
        queue.enqueue(admin, "P1", "create", product(expiry_date="2026-11-19"))
        summaries = []
        alerts.on_alerts_changed(summaries.append)

        clock.advance(days=1)
        alerts.refresh()

        assert summaries and summaries[-1].expiring_ids == ("P1",)

    def test_close_detaches_from_store(self, store, queue, alerts, admin):
        summaries = []
        alerts.on_alerts_changed(summaries.append)
        alerts.close()

        queue.enqueue(admin, "P1", "create", product(quantity=0))

        assert summaries == []

    @pytest.mark.asyncio
    async def test_start_schedules_rollover_timer(self, alerts):
        alerts.start()
        assert alerts._rollover is not None
        alerts.stop()
        assert alerts._rollover is None
