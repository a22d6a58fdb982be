from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class EntitySnapshot(db.Model):
    """
    Last known state of one product or transaction.

    payload is the optimistic local view: server_payload with every pending
    mutation for the entity replayed on top, in enqueue order.
    server_payload/revision are the last authoritative state received from
    the remote store (None until the entity first reaches the server).

    dirty mirrors "has at least one unacknowledged mutation record".
    deleted marks a local delete that the remote store has not acknowledged;
    the row is only removed once the delete is acknowledged.
    """
    __tablename__ = "entity_snapshots"
    __table_args__ = (
        db.Index("ix_entity_snapshots_type_deleted", "entity_type", "deleted"),
    )

    entity_id = db.Column(db.String(64), primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False, index=True)

    payload = db.Column(db.JSON, nullable=False)
    server_payload = db.Column(db.JSON, nullable=True)
    revision = db.Column(db.Integer, nullable=True)

    dirty = db.Column(db.Boolean, nullable=False, default=False)
    deleted = db.Column(db.Boolean, nullable=False, default=False)

    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<EntitySnapshot {self.entity_type}:{self.entity_id} "
            f"rev={self.revision} dirty={self.dirty} deleted={self.deleted}>"
        )

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "payload": dict(self.payload or {}),
            "revision": self.revision,
            "dirty": self.dirty,
            "deleted": self.deleted,
            "updated_at": to_utc_z(self.updated_at),
        }


class MutationRecord(db.Model):
    """
    Append-only log entry for one local write awaiting acknowledgment.

    seq gives the enqueue order; id is the idempotency token sent to the
    remote store and is never reused for a different mutation.
    """
    __tablename__ = "mutation_records"
    __table_args__ = (
        db.Index("ix_mutation_records_entity_seq", "entity_id", "seq"),
        {"sqlite_autoincrement": True},
    )

    seq = db.Column(db.Integer, primary_key=True, autoincrement=True)
    id = db.Column(db.String(36), nullable=False, unique=True, index=True)

    entity_id = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(32), nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    payload = db.Column(db.JSON, nullable=False)

    client_timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    next_attempt_at = db.Column(db.DateTime, nullable=True)
    last_error = db.Column(db.Text, nullable=True)

    def __repr__(self) -> str:
        return f"<MutationRecord seq={self.seq} {self.kind} {self.entity_id} attempts={self.attempts}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seq": self.seq,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "kind": self.kind,
            "payload": dict(self.payload or {}),
            "client_timestamp": to_utc_z(self.client_timestamp),
            "attempts": self.attempts,
            "next_attempt_at": to_utc_z(self.next_attempt_at),
            "last_error": self.last_error,
        }


class SyncCursor(db.Model):
    """Watermark of the last successful pull (highest remote revision seen)."""
    __tablename__ = "sync_cursors"

    name = db.Column(db.String(64), primary_key=True)
    revision = db.Column(db.Integer, nullable=False, default=0)
    last_synced_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "revision": self.revision,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }
