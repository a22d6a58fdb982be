"""
Pytest fixtures for stocksync backend tests.

Provides an in-memory local store, a fake remote store that honours
idempotency tokens and base revisions, a manually driven network monitor,
and admin/employee session contexts.
"""

from dataclasses import dataclass, field

import pytest
import pytest_asyncio

from stocksync import create_app
from stocksync.config import SyncSettings
from stocksync.permissions import ROLE_ADMIN, ROLE_EMPLOYEE
from stocksync.services.local_store import LocalStore
from stocksync.services.mutation_queue import MutationQueue
from stocksync.services.network_monitor import Connectivity, NetworkMonitor
from stocksync.services.remote_store import PushAck, RemoteChange, RemoteConflict
from stocksync.services.session_service import make_context
from stocksync.services.sync_core import SyncCore


@dataclass
class PushCall:
    entity_id: str
    kind: str
    payload: dict
    token: str
    entity_type: str
    base_revision: int | None
    merge: bool


@dataclass
class RemoteEntity:
    entity_type: str
    payload: dict
    revision: int
    deleted: bool = False


@dataclass
class FakeRemoteStore:
    """
    In-memory authoritative store.

    - A repeated idempotency token returns the original ack without
      applying anything twice.
    - A push whose base revision differs from the current revision raises
      RemoteConflict carrying the current server state.
    - `failures` is a list of exceptions raised (in order) by the next pushes.
    - `on_push(call)` runs before every push; tests use it to simulate
      another client writing concurrently.
    """
    entities: dict = field(default_factory=dict)
    revision: int = 0
    calls: list = field(default_factory=list)
    tokens: dict = field(default_factory=dict)
    failures: list = field(default_factory=list)
    pull_failures: list = field(default_factory=list)
    pull_cursors: list = field(default_factory=list)
    on_push: object = None

    # -- helpers used by tests --

    def seed(self, entity_id, payload, *, entity_type="product"):
        """Write directly on the server (another client, or initial data)."""
        self.revision += 1
        current = self.entities.get(entity_id)
        if current is None or current.deleted:
            self.entities[entity_id] = RemoteEntity(entity_type, dict(payload), self.revision)
        else:
            current.payload = {**current.payload, **payload}
            current.revision = self.revision
        return self.revision

    def remove(self, entity_id):
        self.revision += 1
        current = self.entities[entity_id]
        current.deleted = True
        current.revision = self.revision
        return self.revision

    def state(self, entity_id):
        current = self.entities.get(entity_id)
        if current is None or current.deleted:
            return None
        return dict(current.payload)

    def calls_for(self, entity_id):
        return [c for c in self.calls if c.entity_id == entity_id]

    # -- RemoteStore --

    async def push(self, entity_id, kind, payload, idempotency_token, *, entity_type, base_revision, merge=False):
        call = PushCall(entity_id, kind, dict(payload), idempotency_token, entity_type, base_revision, merge)
        self.calls.append(call)
        if self.on_push is not None:
            self.on_push(call)
        if self.failures:
            raise self.failures.pop(0)
        if idempotency_token in self.tokens:
            return self.tokens[idempotency_token]

        current = self.entities.get(entity_id)
        if kind == "create":
            if current is not None and not current.deleted:
                raise RemoteConflict(entity_id, current.revision, current.payload)
        else:
            if current is None:
                raise RemoteConflict(entity_id, None, None, deleted=True)
            if current.deleted:
                raise RemoteConflict(entity_id, current.revision, None, deleted=True)
            if base_revision != current.revision:
                raise RemoteConflict(entity_id, current.revision, current.payload)

        self.revision += 1
        if kind == "create":
            self.entities[entity_id] = RemoteEntity(entity_type, dict(payload), self.revision)
        elif kind == "update":
            current.payload = {**current.payload, **payload}
            current.revision = self.revision
        else:
            current.deleted = True
            current.revision = self.revision

        ack = PushAck(revision=self.revision)
        self.tokens[idempotency_token] = ack
        return ack

    async def pull_since(self, cursor):
        self.pull_cursors.append(cursor)
        if self.pull_failures:
            raise self.pull_failures.pop(0)
        changes = [
            RemoteChange(
                entity_id=entity_id,
                revision=entity.revision,
                payload={} if entity.deleted else dict(entity.payload),
                deleted=entity.deleted,
                entity_type=entity.entity_type,
            )
            for entity_id, entity in self.entities.items()
            if entity.revision > cursor
        ]
        return sorted(changes, key=lambda c: c.revision)


@pytest.fixture
def store():
    store = LocalStore.from_url("sqlite://")
    yield store
    store.dispose()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def settings():
    # No backoff delay and no debounce: every test drives time explicitly
    return SyncSettings(
        sync_interval=3600,
        max_attempts=4,
        backoff_base=0,
        backoff_max=0,
        debounce=0,
        remote_timeout=5,
    )


@pytest.fixture
def monitor():
    return NetworkMonitor(initial=Connectivity.OFFLINE, debounce=0)


@pytest.fixture
def queue(store):
    return MutationQueue(store)


@pytest.fixture
def admin():
    return make_context(user_id="u-admin", role=ROLE_ADMIN)


@pytest.fixture
def employee():
    return make_context(user_id="u-employee", role=ROLE_EMPLOYEE)


@pytest.fixture
def core(store, remote, settings, monitor):
    return SyncCore(store, remote, settings=settings, monitor=monitor)


@pytest_asyncio.fixture
async def running_core(core):
    await core.start()
    yield core
    await core.stop()


@pytest.fixture
def app(tmp_path):
    """Flask app on a throwaway SQLite file (the CLI opens its own engine on it)."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'stocksync.sqlite3'}",
        'REMOTE_STORE_URL': 'http://remote.test',
    })
    return app


@pytest.fixture
def runner(app):
    return app.test_cli_runner()
