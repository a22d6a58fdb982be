# Overview: Push-then-pull reconciliation between the local store and the remote store.

"""
Sync Reconciler

State machine: IDLE -> PUSHING -> PULLING -> IDLE, and IDLE -> FAILED -> IDLE
when a pass is aborted by SyncFatal.

WHY: The queue only records intent. The reconciler is the single place that
talks to the remote store, so "at most one in-flight remote operation per
entity" holds structurally: each entity is replayed by exactly one worker
coroutine, strictly in enqueue order. Different entities are pushed
concurrently, bounded by a semaphore.

Triggers:
- the network monitor reports online while records are pending
- a mutation is enqueued while online
- an explicit request_sync()
- the periodic timer (while online)
- a scheduled retry once the earliest backoff elapses

A request that arrives while a pass is running does not start a second pass;
it marks the running one for a rerun once it finishes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from ..config import SyncSettings
from ..events import (
    ObserverRegistry,
    Subscription,
    SyncCompleted,
    SyncConflict,
    SyncExhausted,
    SyncFailed,
    SyncStarted,
)
from ..models import MutationRecord
from ..time_utils import utcnow
from ..validation import KIND_CREATE, KIND_DELETE, KIND_UPDATE
from .concurrency import backoff_delay, call_with_timeout
from .local_store import LocalStore
from .mutation_queue import MutationQueue
from .network_monitor import Connectivity, NetworkMonitor
from .remote_store import RemoteConflict, RemoteStore, SyncFatal, TransientError

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    FAILED = "failed"


@dataclass
class PassResult:
    trigger: str
    pushed: int = 0
    pulled: int = 0
    abandoned: int = 0
    deferred: int = 0
    cancelled: bool = False
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class SyncReconciler:
    def __init__(
        self,
        store: LocalStore,
        queue: MutationQueue,
        monitor: NetworkMonitor,
        remote: RemoteStore,
        *,
        settings: SyncSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._queue = queue
        self._monitor = monitor
        self._remote = remote
        self._settings = settings or SyncSettings()
        self._clock = clock

        self._state = SyncState.IDLE
        self._events = ObserverRegistry("sync event")
        self._task: asyncio.Task | None = None
        self._rerun: str | None = None
        self._periodic_task: asyncio.Task | None = None
        self._retry_timer: asyncio.TimerHandle | None = None
        self._subscriptions: list[Subscription] = []

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def syncing(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_sync_event(self, listener: Callable[[object], None]) -> Subscription:
        return self._events.subscribe(listener)

    # -- lifecycle --

    async def start(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            self._monitor.on_change(self._on_connectivity),
            self._queue.on_enqueued(self._on_enqueued),
        ]
        self._periodic_task = asyncio.create_task(self._periodic_loop())
        # Work left over from a previous run
        if self._monitor.is_online and self._queue.pending_count() > 0:
            self.request_sync("startup")

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self._cancel_retry()
        for task in (self._periodic_task, self._task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._periodic_task = None
        self._task = None
        self._rerun = None
        self._state = SyncState.IDLE

    # -- triggers --

    def request_sync(self, trigger: str = "manual") -> asyncio.Task:
        """
        Start a pass, or mark the running one for a rerun.

        Returns the task running the pass; awaiting it yields the PassResult
        of the last pass it ran.
        """
        if self.syncing:
            self._rerun = trigger
            return self._task
        self._cancel_retry()
        self._task = asyncio.get_running_loop().create_task(self._run(trigger))
        return self._task

    async def wait_idle(self) -> None:
        """Wait until no pass is running and no retry is already due."""
        loop = asyncio.get_running_loop()
        while True:
            if self._task is not None and not self._task.done():
                await self._task
                continue
            if self._retry_timer is not None and self._retry_timer.when() <= loop.time():
                await asyncio.sleep(0)
                continue
            return

    def _schedule(self, trigger: str) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Enqueued from synchronous code (e.g. the CLI); the next pass picks it up
            logger.debug("No running event loop; %s trigger ignored", trigger)
            return
        self.request_sync(trigger)

    def _on_connectivity(self, state: Connectivity) -> None:
        if state is Connectivity.ONLINE and self._queue.pending_count() > 0:
            self._schedule("online")

    def _on_enqueued(self, record_id: str, entity_id: str) -> None:
        if self._monitor.is_online:
            self._schedule("enqueue")

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sync_interval)
            if self._monitor.is_online:
                self.request_sync("periodic")

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        if not self._monitor.is_online:
            return
        due = self._queue.next_retry_at()
        if due is None:
            return
        delay = max(0.0, (due - self._clock()).total_seconds())
        logger.debug("Next retry in %.2fs", delay)
        loop = asyncio.get_running_loop()
        self._retry_timer = loop.call_later(delay, self._on_retry_due)

    def _on_retry_due(self) -> None:
        self._retry_timer = None
        self.request_sync("retry")

    # -- pass --

    async def _run(self, trigger: str) -> PassResult:
        while True:
            result = await self.run_pass(trigger)
            if self._rerun is None:
                break
            trigger, self._rerun = self._rerun, None
        self._schedule_retry()
        return result

    async def run_pass(self, trigger: str = "manual") -> PassResult:
        """One push-then-pull cycle. Remote failures are reported as events, never raised."""
        result = PassResult(trigger=trigger)
        pending = self._queue.pending_count()
        logger.info("Sync pass started (%s, %d pending)", trigger, pending)
        self._events.emit(SyncStarted(trigger=trigger, pending_count=pending))

        try:
            self._state = SyncState.PUSHING
            await self._push_phase(result)
            if not result.cancelled and not result.failed:
                self._state = SyncState.PULLING
                await self._pull_phase(result)
        except Exception as exc:
            logger.exception("Sync pass crashed (%s)", trigger)
            result.error = str(exc) or exc.__class__.__name__

        if result.failed:
            self._state = SyncState.FAILED
            logger.error("Sync pass aborted (%s): %s", trigger, result.error)
            self._events.emit(
                SyncFailed(trigger=trigger, error=result.error, pending_count=self._queue.pending_count())
            )
            self._state = SyncState.IDLE
            return result

        self._state = SyncState.IDLE
        cursor = self._store.get_cursor()
        logger.info(
            "Sync pass finished (%s): pushed=%d pulled=%d abandoned=%d deferred=%d cancelled=%s",
            trigger, result.pushed, result.pulled, result.abandoned, result.deferred, result.cancelled,
        )
        self._events.emit(
            SyncCompleted(
                trigger=trigger,
                pushed=result.pushed,
                pulled=result.pulled,
                abandoned=result.abandoned,
                deferred=result.deferred,
                cancelled=result.cancelled,
                pending_count=self._queue.pending_count(),
                cursor=cursor.revision,
                last_synced_at=cursor.last_synced_at,
            )
        )
        return result

    async def _push_phase(self, result: PassResult) -> None:
        entities = self._queue.pending_entities()
        if not entities:
            return
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        workers = [
            asyncio.ensure_future(self._push_entity(entity_id, semaphore, result))
            for entity_id in entities
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            # No worker outlives its pass: a crash in one stops the others
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _push_entity(self, entity_id: str, semaphore: asyncio.Semaphore, result: PassResult) -> None:
        async with semaphore:
            while True:
                if result.failed:
                    return
                if not self._monitor.is_online:
                    # Already dispatched requests finish; nothing new starts
                    result.cancelled = True
                    return
                record = self._queue.head(entity_id)
                if record is None:
                    return
                if self._queue.is_in_flight(record.id):
                    # Still being pushed by an earlier pass
                    result.deferred += 1
                    return
                if record.next_attempt_at is not None and record.next_attempt_at > self._clock():
                    result.deferred += 1
                    return
                try:
                    done = await self._push_record(record, result)
                except SyncFatal as exc:
                    result.error = str(exc) or "remote store rejected the mutation"
                    return
                if not done:
                    return

    async def _push_record(self, record: MutationRecord, result: PassResult) -> bool:
        """
        Push one record. Returns True when the record reached a terminal
        outcome (acknowledged or abandoned) and the entity's next record may
        follow, False when it stays queued for a later pass.
        """
        snapshot = self._store.get(record.entity_id)
        base_revision = snapshot.revision if snapshot is not None else None

        with self._queue.in_flight(record.id):
            try:
                ack = await call_with_timeout(
                    self._remote.push(
                        record.entity_id,
                        record.kind,
                        dict(record.payload or {}),
                        record.id,
                        entity_type=record.entity_type,
                        base_revision=base_revision,
                    ),
                    self._settings.remote_timeout,
                )
            except TransientError as exc:
                return self._transient_failure(record, exc, result)
            except RemoteConflict as conflict:
                return await self._resolve_conflict(record, conflict, result)

        self._queue.acknowledge(record.id, ack.revision)
        result.pushed += 1
        logger.debug("Pushed %s %s (%s) -> revision %s", record.kind, record.entity_id, record.id, ack.revision)
        return True

    def _transient_failure(self, record: MutationRecord, exc: Exception, result: PassResult) -> bool:
        attempts = (record.attempts or 0) + 1
        if attempts >= self._settings.max_attempts:
            logger.warning("Retry budget exhausted for %s %s: %s", record.kind, record.entity_id, exc)
            self._abandon(
                record,
                SyncExhausted(
                    entity_id=record.entity_id,
                    mutation_id=record.id,
                    kind=record.kind,
                    payload=dict(record.payload or {}),
                    attempts=attempts,
                    error=str(exc),
                ),
                result,
            )
            return True

        delay = backoff_delay(attempts, base=self._settings.backoff_base, cap=self._settings.backoff_max)
        self._queue.record_failure(
            record.id,
            str(exc),
            next_attempt_at=self._clock() + timedelta(seconds=delay),
        )
        logger.warning(
            "Push of %s %s failed (attempt %d/%d), retrying in %.1fs: %s",
            record.kind, record.entity_id, attempts, self._settings.max_attempts, delay, exc,
        )
        result.deferred += 1
        return False

    async def _resolve_conflict(self, record: MutationRecord, conflict: RemoteConflict, result: PassResult) -> bool:
        """
        Server state wins for untouched fields; the record's own fields are
        reapplied on top and resubmitted once as a merge. A second conflict
        abandons the record.
        """
        original = dict(record.payload or {})

        if conflict.deleted:
            if record.kind == KIND_DELETE:
                # Already gone remotely; that is what we wanted
                self._queue.acknowledge(record.id, conflict.revision)
                result.pushed += 1
                return True
            self._abandon(
                record,
                SyncConflict(
                    entity_id=record.entity_id,
                    mutation_id=record.id,
                    kind=record.kind,
                    payload=original,
                    server_payload=None,
                    server_revision=conflict.revision,
                ),
                result,
                server_state=(conflict.revision, None),
            )
            return True

        logger.info("Conflict on %s (server revision %s); resubmitting as merge", record.entity_id, conflict.revision)
        self._queue.adopt_server_state(record.entity_id, conflict.revision, conflict.payload)

        if not self._monitor.is_online:
            # The merge is a new request; it waits for the next pass
            result.cancelled = True
            return False

        if record.kind == KIND_DELETE:
            kind, merged = KIND_DELETE, {}
        else:
            kind, merged = KIND_UPDATE, {**conflict.payload, **original}

        try:
            ack = await call_with_timeout(
                self._remote.push(
                    record.entity_id,
                    kind,
                    merged,
                    f"{record.id}:merge:{record.attempts or 0}",
                    entity_type=record.entity_type,
                    base_revision=conflict.revision,
                    merge=True,
                ),
                self._settings.remote_timeout,
            )
        except TransientError as exc:
            return self._transient_failure(record, exc, result)
        except RemoteConflict as second:
            logger.warning("Merge of %s %s conflicted again; abandoning", record.kind, record.entity_id)
            self._abandon(
                record,
                SyncConflict(
                    entity_id=record.entity_id,
                    mutation_id=record.id,
                    kind=record.kind,
                    payload=original,
                    server_payload=None if second.deleted else dict(second.payload),
                    server_revision=second.revision,
                ),
                result,
                server_state=(second.revision, None if second.deleted else second.payload),
            )
            return True

        self._queue.acknowledge(record.id, ack.revision, payload=merged)
        result.pushed += 1
        return True

    def _abandon(
        self,
        record: MutationRecord,
        event,
        result: PassResult,
        *,
        server_state: tuple[int | None, dict | None] | None = None,
    ) -> None:
        snapshot = self._store.get(record.entity_id)
        never_synced = (
            record.kind == KIND_CREATE
            and server_state is None
            and (snapshot is None or snapshot.revision is None)
        )
        if self._queue.abandon(record.id, server_state=server_state) is None:
            return
        result.abandoned += 1
        self._events.emit(event)

        if not never_synced:
            return
        # Later records target an entity the remote store never received
        for dependent in self._queue.peek_ordered(record.entity_id):
            if self._queue.abandon(dependent.id) is None:
                continue
            result.abandoned += 1
            self._events.emit(
                SyncExhausted(
                    entity_id=dependent.entity_id,
                    mutation_id=dependent.id,
                    kind=dependent.kind,
                    payload=dict(dependent.payload or {}),
                    attempts=dependent.attempts or 0,
                    error=f"create {record.id} was abandoned",
                )
            )

    async def _pull_phase(self, result: PassResult) -> None:
        if not self._monitor.is_online:
            result.cancelled = True
            return
        cursor = self._store.get_cursor()
        try:
            changes = await call_with_timeout(
                self._remote.pull_since(cursor.revision or 0),
                self._settings.remote_timeout,
            )
        except TransientError as exc:
            logger.warning("Pull failed, keeping cursor at %s: %s", cursor.revision, exc)
            return
        except SyncFatal as exc:
            result.error = str(exc) or "remote store rejected the pull"
            return

        applied, highest = self._store.apply_remote_changes(changes, synced_at=self._clock())
        result.pulled = applied
        logger.debug("Pulled %d change(s); cursor now %d", applied, highest)
