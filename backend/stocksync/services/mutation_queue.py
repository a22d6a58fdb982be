# Overview: Service-layer operations for the mutation queue; optimistic local writes plus the durable replay log.

"""
Mutation Queue

WHY: Every user write is applied to the local snapshot immediately and
recorded here until the remote store acknowledges it. The log is the only
thing that lets us replay offline work after reconnecting.

DESIGN:
- Records for one entity are replayed strictly in enqueue (seq) order.
- pending_count() is a cached counter, never a log scan.
- Consecutive updates (and a create followed by updates) collapse into one
  record while that record has never been sent, so a create always reaches
  the remote store as a single create carrying the final payload.
- A record that was ever attempted, or is in flight, is never rewritten:
  the remote store may already hold its idempotency token.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator

import sqlalchemy as sa

from ..events import ObserverRegistry, Subscription
from ..models import EntitySnapshot, MutationRecord
from ..time_utils import utcnow
from ..validation import (
    ENTITY_PRODUCT,
    KIND_CREATE,
    KIND_DELETE,
    KIND_UPDATE,
    MUTATION_KINDS,
    ValidationError,
    validate_mutation,
)
from . import permission_service
from .local_store import LocalStore, apply_mutation, pending_for_entity, rebuild_snapshot

logger = logging.getLogger(__name__)


def new_mutation_id() -> str:
    return str(uuid.uuid4())


def _normalize_entity_id(entity_id) -> str:
    if entity_id is None or isinstance(entity_id, bool):
        raise ValidationError("entity_id is required")
    value = str(entity_id).strip()
    if not value:
        raise ValidationError("entity_id is required")
    if len(value) > 64:
        raise ValidationError("entity_id exceeds max length 64")
    return value


class MutationQueue:
    def __init__(self, store: LocalStore, *, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock
        self._pending = store.count_pending()
        self._in_flight: set[str] = set()
        self._enqueued = ObserverRegistry("mutation enqueued")

    def on_enqueued(self, listener: Callable[[str, str], None]) -> Subscription:
        return self._enqueued.subscribe(listener)

    # -- user-facing --

    def enqueue(self, context, entity_id, kind: str, payload: dict | None = None, *, entity_type: str | None = None) -> str:
        """
        Apply a mutation optimistically and append it to the durable log.

        Raises:
            PermissionDenied: the acting role may not perform this kind
            ValidationError: malformed payload, or the entity state does not
                allow this kind (create over an existing entity, update or
                delete of a missing one)

        Returns the id of the record carrying this mutation (an existing id
        when the mutation was coalesced into a not-yet-sent record).
        """
        if kind not in MUTATION_KINDS:
            raise ValidationError(f"Unknown mutation kind: {kind!r}")
        permission_service.require_mutation_permission(context, kind)
        entity_id = _normalize_entity_id(entity_id)

        with self._store.write() as session:
            snapshot = session.get(EntitySnapshot, entity_id)

            if kind == KIND_CREATE:
                if snapshot is not None:
                    raise ValidationError(f"{entity_id} already exists")
                resolved_type = entity_type or ENTITY_PRODUCT
            else:
                if snapshot is None or snapshot.deleted:
                    raise ValidationError(f"{entity_id} does not exist")
                if entity_type is not None and entity_type != snapshot.entity_type:
                    raise ValidationError(f"{entity_id} is a {snapshot.entity_type}, not a {entity_type}")
                resolved_type = snapshot.entity_type

            patch = validate_mutation(kind=kind, entity_type=resolved_type, payload=payload)

            if kind == KIND_CREATE:
                snapshot = EntitySnapshot(
                    entity_id=entity_id,
                    entity_type=resolved_type,
                    payload=dict(patch),
                    server_payload=None,
                    revision=None,
                    dirty=True,
                    deleted=False,
                )
                session.add(snapshot)
            elif kind == KIND_UPDATE:
                snapshot.payload = apply_mutation(snapshot.payload, kind, patch)
                snapshot.dirty = True
            else:
                snapshot.deleted = True
                snapshot.dirty = True

            record_id, appended = self._append(session, entity_id, resolved_type, kind, patch)

        if appended:
            self._pending += 1
        logger.debug("Enqueued %s %s (%s, appended=%s)", kind, entity_id, record_id, appended)
        self._enqueued.emit(record_id, entity_id)
        return record_id

    def _append(self, session, entity_id: str, entity_type: str, kind: str, patch: dict) -> tuple[str, bool]:
        now = self._clock()
        if kind == KIND_UPDATE:
            last = (
                session.query(MutationRecord)
                .filter(MutationRecord.entity_id == entity_id)
                .order_by(MutationRecord.seq.desc())
                .first()
            )
            if (
                last is not None
                and last.kind in (KIND_CREATE, KIND_UPDATE)
                and last.attempts == 0
                and last.id not in self._in_flight
            ):
                last.payload = apply_mutation(last.payload, KIND_UPDATE, patch)
                last.client_timestamp = now
                return last.id, False

        record = MutationRecord(
            id=new_mutation_id(),
            entity_id=entity_id,
            entity_type=entity_type,
            kind=kind,
            payload=dict(patch),
            client_timestamp=now,
            attempts=0,
        )
        session.add(record)
        return record.id, True

    def pending_count(self) -> int:
        return self._pending

    def dequeue(self, record_id: str) -> bool:
        """
        Remove a record after confirmed remote acknowledgment.

        Idempotent: an unknown or already removed id is a no-op (returns False).
        """
        return self.acknowledge(record_id)

    def peek_ordered(self, entity_id: str) -> list[MutationRecord]:
        with self._store.read() as session:
            return pending_for_entity(session, str(entity_id))

    # -- reconciler-facing --

    def head(self, entity_id: str) -> MutationRecord | None:
        with self._store.read() as session:
            return (
                session.query(MutationRecord)
                .filter(MutationRecord.entity_id == entity_id)
                .order_by(MutationRecord.seq.asc())
                .first()
            )

    def get(self, record_id: str) -> MutationRecord | None:
        with self._store.read() as session:
            return session.query(MutationRecord).filter(MutationRecord.id == record_id).first()

    def pending_entities(self) -> list[str]:
        """Entity ids with pending records, ordered by their oldest record."""
        with self._store.read() as session:
            rows = (
                session.query(MutationRecord.entity_id, sa.func.min(MutationRecord.seq).label("first_seq"))
                .group_by(MutationRecord.entity_id)
                .order_by("first_seq")
                .all()
            )
            return [row.entity_id for row in rows]

    def next_retry_at(self) -> datetime | None:
        with self._store.read() as session:
            return (
                session.query(sa.func.min(MutationRecord.next_attempt_at))
                .filter(MutationRecord.next_attempt_at.isnot(None))
                .scalar()
            )

    @contextmanager
    def in_flight(self, record_id: str) -> Iterator[None]:
        self._in_flight.add(record_id)
        try:
            yield
        finally:
            self._in_flight.discard(record_id)

    def is_in_flight(self, record_id: str) -> bool:
        return record_id in self._in_flight

    def acknowledge(self, record_id: str, revision: int | None = None, *, payload: dict | None = None) -> bool:
        """
        Terminal success: fold the record into the server shadow and drop it.

        payload overrides what the server applied (a merge resubmission
        carries the merged state rather than the original patch).
        """
        if self.get(record_id) is None:
            return False

        with self._store.write() as session:
            record = session.query(MutationRecord).filter(MutationRecord.id == record_id).first()
            snapshot = session.get(EntitySnapshot, record.entity_id)
            applied = payload if payload is not None else record.payload
            session.delete(record)

            if snapshot is not None:
                if record.kind == KIND_DELETE:
                    session.delete(snapshot)
                else:
                    snapshot.server_payload = apply_mutation(snapshot.server_payload, record.kind, applied)
                    if revision is not None:
                        snapshot.revision = revision
                    rebuild_snapshot(session, snapshot)

        self._pending -= 1
        return True

    def record_failure(self, record_id: str, error: str, *, next_attempt_at: datetime | None) -> int:
        """Count one failed attempt; nothing else about the record changes."""
        with self._store.write() as session:
            record = session.query(MutationRecord).filter(MutationRecord.id == record_id).first()
            if record is None:
                return 0
            record.attempts = (record.attempts or 0) + 1
            record.last_error = error
            record.next_attempt_at = next_attempt_at
            return record.attempts

    def adopt_server_state(self, entity_id: str, revision: int | None, payload: dict | None) -> None:
        """Refresh the server shadow (e.g. from a conflict) and rebase the local view."""
        with self._store.write() as session:
            snapshot = session.get(EntitySnapshot, entity_id)
            if snapshot is None:
                return
            snapshot.server_payload = dict(payload) if payload is not None else None
            snapshot.revision = revision
            rebuild_snapshot(session, snapshot)

    def abandon(self, record_id: str, *, server_state: tuple[int | None, dict | None] | None = None) -> MutationRecord | None:
        """
        Terminal failure: drop the record and rebuild the snapshot without it.

        server_state=(revision, payload) overwrites the server shadow first;
        payload None means the server no longer has the entity.
        Returns the removed record, or None if it was already gone.
        """
        record = self.get(record_id)
        if record is None:
            return None

        with self._store.write() as session:
            row = session.query(MutationRecord).filter(MutationRecord.id == record_id).first()
            snapshot = session.get(EntitySnapshot, row.entity_id)
            session.delete(row)
            if snapshot is not None:
                if server_state is not None:
                    revision, payload = server_state
                    snapshot.server_payload = dict(payload) if payload is not None else None
                    snapshot.revision = revision
                rebuild_snapshot(session, snapshot)

        self._pending -= 1
        logger.warning("Abandoned %s %s (%s) after %d attempt(s)", record.kind, record.entity_id, record.id, record.attempts)
        return record
