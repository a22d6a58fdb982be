# Overview: Local store models; imported here so Alembic sees every table.

from .sync import EntitySnapshot, MutationRecord, SyncCursor

__all__ = [
    "EntitySnapshot",
    "MutationRecord",
    "SyncCursor",
]
