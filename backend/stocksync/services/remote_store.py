# Overview: Remote store collaborator contract and its HTTP adapter.

"""
Remote Store

The authoritative backend is reached only through two calls:

    push(entity_id, kind, payload, idempotency_token, ...) -> PushAck
    pull_since(cursor) -> list[RemoteChange]

Failures are raised, never returned:
- TransientError: network error, timeout, 408/429/5xx (retried with backoff)
- RemoteConflict: the server holds a newer revision than our base revision
- SyncFatal: anything else the server rejects (schema mismatch, 4xx)

The remote store must no-op a repeated idempotency token; that contract is
the server's, not enforced here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx


MUTATIONS_PATH = "/api/sync/mutations"
CHANGES_PATH = "/api/sync/changes"


class RemoteError(Exception):
    pass


class TransientError(RemoteError):
    """Network error or timeout; safe to retry."""


class SyncFatal(RemoteError):
    """Non-retryable remote failure; aborts the reconciliation pass."""


class RemoteConflict(RemoteError):
    """The server already has a newer revision than the client's base revision."""

    def __init__(self, entity_id: str, revision: int | None, payload: dict | None, *, deleted: bool = False):
        self.entity_id = entity_id
        self.revision = revision
        self.payload = dict(payload or {})
        self.deleted = deleted
        super().__init__(f"conflict on {entity_id} (server revision {revision})")


@dataclass(frozen=True)
class PushAck:
    revision: int


@dataclass(frozen=True)
class RemoteChange:
    entity_id: str
    revision: int
    payload: dict = field(default_factory=dict)
    deleted: bool = False
    entity_type: str = "product"


class RemoteStore(Protocol):
    async def push(
        self,
        entity_id: str,
        kind: str,
        payload: dict,
        idempotency_token: str,
        *,
        entity_type: str,
        base_revision: int | None,
        merge: bool = False,
    ) -> PushAck: ...

    async def pull_since(self, cursor: int) -> list[RemoteChange]: ...


def _json(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError as exc:
        raise SyncFatal(f"malformed response body from {resp.request.url}") from exc
    if not isinstance(data, dict):
        raise SyncFatal(f"unexpected response body from {resp.request.url}")
    return data


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SyncFatal(f"{what} must be an integer")
    return value


def parse_change(item: Any) -> RemoteChange:
    if not isinstance(item, dict) or "entity_id" not in item:
        raise SyncFatal("malformed change row")
    payload = item.get("payload") or {}
    if not isinstance(payload, dict):
        raise SyncFatal("change payload must be an object")
    return RemoteChange(
        entity_id=str(item["entity_id"]),
        revision=_as_int(item.get("revision"), "revision"),
        payload=payload,
        deleted=bool(item.get("deleted", False)),
        entity_type=str(item.get("entity_type") or "product"),
    )


class HttpRemoteStore:
    """RemoteStore over HTTP/JSON using httpx."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        headers: dict | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpRemoteStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientError(f"timeout calling {path}") from exc
        except httpx.RequestError as exc:
            # Transport failures and undecodable responses alike
            raise TransientError(f"network error calling {path}: {exc}") from exc

        status = resp.status_code
        if status in (408, 429) or status >= 500:
            raise TransientError(f"{path} returned {status}")
        if status >= 400 and status != 409:
            raise SyncFatal(f"{path} returned {status}: {resp.text[:200]}")
        return resp

    async def push(
        self,
        entity_id: str,
        kind: str,
        payload: dict,
        idempotency_token: str,
        *,
        entity_type: str,
        base_revision: int | None,
        merge: bool = False,
    ) -> PushAck:
        body = {
            "entity_id": entity_id,
            "entity_type": entity_type,
            "kind": kind,
            "payload": payload,
            "idempotency_token": idempotency_token,
            "base_revision": base_revision,
            "merge": merge,
        }
        resp = await self._request(
            "POST",
            MUTATIONS_PATH,
            json=body,
            headers={"Idempotency-Key": idempotency_token},
        )
        data = _json(resp)
        if resp.status_code == 409:
            revision = data.get("revision")
            raise RemoteConflict(
                entity_id,
                _as_int(revision, "revision") if revision is not None else None,
                data.get("payload") or {},
                deleted=bool(data.get("deleted", False)),
            )
        return PushAck(revision=_as_int(data.get("revision"), "revision"))

    async def pull_since(self, cursor: int) -> list[RemoteChange]:
        resp = await self._request("GET", CHANGES_PATH, params={"since": cursor})
        data = _json(resp)
        if resp.status_code == 409:
            raise SyncFatal(f"{CHANGES_PATH} returned 409")
        changes = data.get("changes")
        if not isinstance(changes, list):
            raise SyncFatal("changes must be a list")
        return [parse_change(item) for item in changes]
