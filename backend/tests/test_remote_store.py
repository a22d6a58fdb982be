"""
HttpRemoteStore tests against httpx.MockTransport.
"""

import json

import httpx
import pytest

from stocksync.services.remote_store import (
    CHANGES_PATH,
    MUTATIONS_PATH,
    HttpRemoteStore,
    RemoteConflict,
    SyncFatal,
    TransientError,
)


def make_store(handler):
    return HttpRemoteStore("http://remote.test", transport=httpx.MockTransport(handler))


async def push(store, **overrides):
    kwargs = dict(
        entity_id="P1",
        kind="update",
        payload={"quantity": 5},
        idempotency_token="tok-1",
        entity_type="product",
        base_revision=3,
    )
    kwargs.update(overrides)
    return await store.push(
        kwargs.pop("entity_id"),
        kwargs.pop("kind"),
        kwargs.pop("payload"),
        kwargs.pop("idempotency_token"),
        **kwargs,
    )


# =============================================================================
# PUSH
# =============================================================================

class TestPush:
    @pytest.mark.asyncio
    async def test_success_returns_revision(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("Idempotency-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"revision": 4})

        async with make_store(handler) as store:
            ack = await push(store, merge=True)

        assert ack.revision == 4
        assert seen["path"] == MUTATIONS_PATH
        assert seen["key"] == "tok-1"
        assert seen["body"]["base_revision"] == 3
        assert seen["body"]["merge"] is True
        assert seen["body"]["payload"] == {"quantity": 5}

    @pytest.mark.asyncio
    async def test_conflict_carries_server_state(self):
        def handler(request):
            return httpx.Response(409, json={"revision": 7, "payload": {"quantity": 8, "price": 10}})

        async with make_store(handler) as store:
            with pytest.raises(RemoteConflict) as exc:
                await push(store)

        assert exc.value.revision == 7
        assert exc.value.payload == {"quantity": 8, "price": 10}
        assert exc.value.deleted is False

    @pytest.mark.asyncio
    async def test_conflict_on_deleted_entity(self):
        def handler(request):
            return httpx.Response(409, json={"revision": 9, "deleted": True})

        async with make_store(handler) as store:
            with pytest.raises(RemoteConflict) as exc:
                await push(store)

        assert exc.value.deleted is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    async def test_retryable_statuses(self, status):
        async with make_store(lambda request: httpx.Response(status)) as store:
            with pytest.raises(TransientError):
                await push(store)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404, 422])
    async def test_other_client_errors_are_fatal(self, status):
        async with make_store(lambda request: httpx.Response(status, text="nope")) as store:
            with pytest.raises(SyncFatal):
                await push(store)

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_store(handler) as store:
            with pytest.raises(TransientError):
                await push(store)

    @pytest.mark.asyncio
    async def test_undecodable_response_is_transient(self):
        def handler(request):
            raise httpx.DecodingError("bad gzip stream", request=request)

        async with make_store(handler) as store:
            with pytest.raises(TransientError):
                await push(store)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_store(handler) as store:
            with pytest.raises(TransientError):
                await push(store)

    @pytest.mark.asyncio
    async def test_malformed_ack_is_fatal(self):
        async with make_store(lambda request: httpx.Response(200, json={"revision": "four"})) as store:
            with pytest.raises(SyncFatal):
                await push(store)

    @pytest.mark.asyncio
    async def test_non_json_body_is_fatal(self):
        async with make_store(lambda request: httpx.Response(200, text="<html>")) as store:
            with pytest.raises(SyncFatal):
                await push(store)


# =============================================================================
# PULL
# =============================================================================

class TestPull:
    @pytest.mark.asyncio
    async def test_parses_changes(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["since"] = request.url.params.get("since")
            return httpx.Response(200, json={"changes": [
                {"entity_id": "P1", "revision": 5, "payload": {"name": "Widget"}},
                {"entity_id": 7, "revision": 6, "deleted": True, "entity_type": "transaction"},
            ]})

        async with make_store(handler) as store:
            changes = await store.pull_since(4)

        assert seen == {"path": CHANGES_PATH, "since": "4"}
        assert changes[0].entity_id == "P1"
        assert changes[0].payload == {"name": "Widget"}
        assert changes[0].entity_type == "product"
        assert changes[1].entity_id == "7"
        assert changes[1].deleted is True
        assert changes[1].payload == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"changes": "nope"},
        {"changes": [{"revision": 1}]},
        {"changes": [{"entity_id": "P1", "revision": None}]},
        {"changes": [{"entity_id": "P1", "revision": 1, "payload": [1, 2]}]},
    ])
    async def test_malformed_changes_are_fatal(self, body):
        async with make_store(lambda request: httpx.Response(200, json=body)) as store:
            with pytest.raises(SyncFatal):
                await store.pull_since(0)

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        async with make_store(lambda request: httpx.Response(503)) as store:
            with pytest.raises(TransientError):
                await store.pull_since(0)
