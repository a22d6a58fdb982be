# Overview: Durable local store for entity snapshots, the mutation log and the sync cursor.

"""
Local Store

WHY: The app must keep working while the remote store is unreachable, and a
process restart must not lose a single pending write. Everything the sync
core knows lives in one SQLite database managed through SQLAlchemy.

INVARIANTS:
- Every committed write bumps `version` and notifies write listeners
  synchronously, before the writing call returns (alerts never lag a write).
- Inside `batch()` notifications are coalesced into one, emitted when the
  outermost batch exits.
- snapshot.payload == server_payload with pending mutations replayed in seq
  order (see rebuild_snapshot).
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..events import ObserverRegistry, Subscription
from ..extensions import db
from ..models import EntitySnapshot, MutationRecord, SyncCursor
from ..validation import KIND_CREATE, KIND_DELETE, KIND_UPDATE, ENTITY_PRODUCT


DEFAULT_CURSOR = "default"


def apply_mutation(state: dict | None, kind: str, payload: dict | None) -> dict | None:
    """Apply one mutation to an entity state; None means "does not exist"."""
    if kind == KIND_DELETE:
        return None
    if state is None:
        # An update of a missing entity does not bring it back
        return dict(payload or {}) if kind == KIND_CREATE else None
    merged = dict(state or {})
    merged.update(payload or {})
    return merged


def pending_for_entity(session: Session, entity_id: str) -> list[MutationRecord]:
    return (
        session.query(MutationRecord)
        .filter(MutationRecord.entity_id == entity_id)
        .order_by(MutationRecord.seq.asc())
        .all()
    )


def rebuild_snapshot(session: Session, snapshot: EntitySnapshot) -> EntitySnapshot | None:
    """
    Recompute the optimistic view from the server shadow and pending records.

    Returns None (and deletes the row) when the entity neither exists on the
    server nor has a pending create. Pending updates of an entity the server
    has deleted keep the last known payload, flagged deleted, until the
    reconciler abandons them.
    """
    session.flush()
    records = pending_for_entity(session, snapshot.entity_id)

    state = dict(snapshot.server_payload) if snapshot.server_payload is not None else None
    deleted = False
    orphaned = False
    for record in records:
        if record.kind == KIND_DELETE:
            # Keep the last known state around for rollback until acknowledged
            deleted = True
            continue
        if record.kind == KIND_UPDATE and state is None:
            orphaned = True
            continue
        state = apply_mutation(state, record.kind, record.payload)

    if state is None and orphaned and snapshot.payload is not None:
        snapshot.deleted = True
        snapshot.dirty = True
        return snapshot

    if state is None:
        session.delete(snapshot)
        session.flush()
        return None

    snapshot.payload = state
    snapshot.deleted = deleted
    snapshot.dirty = bool(records)
    return snapshot


class LocalStore:
    def __init__(self, engine: sa.engine.Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._version = 0
        self._batch_depth = 0
        self._batch_pending = False
        self._write_listeners = ObserverRegistry("local store write")

    @classmethod
    def from_url(cls, url: str, *, create: bool = True) -> "LocalStore":
        kwargs = {}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        store = cls(sa.create_engine(url, **kwargs))
        if create:
            store.create_all()
        return store

    def create_all(self) -> None:
        db.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self._write_listeners.clear()
        self.engine.dispose()

    # -- sessions --

    @property
    def version(self) -> int:
        return self._version

    @contextmanager
    def read(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def write(self) -> Iterator[Session]:
        """
        One atomic write. Commits on success, rolls back on error.
        Listeners are notified only after a successful commit.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._committed()

    @contextmanager
    def batch(self) -> Iterator[None]:
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._batch_pending:
                self._batch_pending = False
                self._write_listeners.emit(self._version)

    def _committed(self) -> None:
        self._version += 1
        if self._batch_depth:
            self._batch_pending = True
            return
        self._write_listeners.emit(self._version)

    def on_write(self, listener: Callable[[int], None]) -> Subscription:
        return self._write_listeners.subscribe(listener)

    # -- reads --

    def get(self, entity_id: str) -> EntitySnapshot | None:
        with self.read() as session:
            return session.get(EntitySnapshot, entity_id)

    def snapshots(self, entity_type: str | None = None, *, include_deleted: bool = False) -> list[EntitySnapshot]:
        with self.read() as session:
            query = session.query(EntitySnapshot)
            if entity_type is not None:
                query = query.filter(EntitySnapshot.entity_type == entity_type)
            if not include_deleted:
                query = query.filter(EntitySnapshot.deleted.is_(False))
            return query.order_by(EntitySnapshot.entity_id.asc()).all()

    def products(self) -> list[EntitySnapshot]:
        return self.snapshots(ENTITY_PRODUCT)

    def dirty_snapshots(self) -> list[EntitySnapshot]:
        with self.read() as session:
            return (
                session.query(EntitySnapshot)
                .filter(EntitySnapshot.dirty.is_(True))
                .order_by(EntitySnapshot.entity_id.asc())
                .all()
            )

    def pending_records(self) -> list[MutationRecord]:
        with self.read() as session:
            return session.query(MutationRecord).order_by(MutationRecord.seq.asc()).all()

    def count_pending(self) -> int:
        with self.read() as session:
            return session.query(sa.func.count(MutationRecord.seq)).scalar() or 0

    def get_cursor(self, name: str = DEFAULT_CURSOR) -> SyncCursor:
        with self.read() as session:
            cursor = session.get(SyncCursor, name)
            if cursor is None:
                cursor = SyncCursor(name=name, revision=0, last_synced_at=None)
            return cursor

    # -- remote results --

    def apply_remote_changes(
        self,
        changes: Iterable,
        *,
        synced_at: datetime,
        cursor_name: str = DEFAULT_CURSOR,
    ) -> tuple[int, int]:
        """
        Apply one pulled batch in a single transaction (one write notification).

        Remote wins for entities without pending mutations. Entities with
        pending mutations get their server shadow refreshed and their local
        view rebased on top of it. Returns (applied, new_cursor).
        """
        with self.write() as session:
            cursor = session.get(SyncCursor, cursor_name)
            if cursor is None:
                cursor = SyncCursor(name=cursor_name, revision=0)
                session.add(cursor)
            highest = cursor.revision or 0
            applied = 0

            for change in sorted(changes, key=lambda c: c.revision):
                highest = max(highest, change.revision)
                snapshot = session.get(EntitySnapshot, change.entity_id)
                if snapshot is not None and snapshot.revision is not None and change.revision <= snapshot.revision:
                    continue

                has_pending = (
                    session.query(MutationRecord.seq)
                    .filter(MutationRecord.entity_id == change.entity_id)
                    .first()
                    is not None
                )

                if change.deleted:
                    if snapshot is None:
                        continue
                    if has_pending:
                        snapshot.server_payload = None
                        snapshot.revision = change.revision
                        rebuild_snapshot(session, snapshot)
                    else:
                        session.delete(snapshot)
                        session.flush()
                    applied += 1
                    continue

                if snapshot is None:
                    snapshot = EntitySnapshot(
                        entity_id=change.entity_id,
                        entity_type=change.entity_type,
                        payload=dict(change.payload),
                        server_payload=dict(change.payload),
                        revision=change.revision,
                        dirty=False,
                        deleted=False,
                    )
                    session.add(snapshot)
                    session.flush()
                elif has_pending:
                    snapshot.server_payload = dict(change.payload)
                    snapshot.revision = change.revision
                    rebuild_snapshot(session, snapshot)
                else:
                    snapshot.server_payload = dict(change.payload)
                    snapshot.payload = dict(change.payload)
                    snapshot.revision = change.revision
                    snapshot.deleted = False
                    snapshot.dirty = False
                applied += 1

            cursor.revision = highest
            cursor.last_synced_at = synced_at
        return applied, highest
