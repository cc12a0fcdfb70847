"""
portal_sdk.tier0_core.gateway
──────────────────────────────
The Remote Gateway: identity provider, relational store, and blob store
behind one async protocol. Raw backend failures are translated into the
portal error taxonomy here so nothing above this layer inspects vendor
exceptions.

Minimal stack: supabase (async client) | in-memory (tests / local dev)
Configure via: SUPABASE_URL, SUPABASE_ANON_KEY
"""
from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from typing import Any, Awaitable, Callable, Mapping, Protocol, TypeVar, runtime_checkable

import httpx

from portal_sdk.tier0_core.errors import (
    AuthError,
    CollisionError,
    DatabaseError,
    NetworkError,
    OperationTimeoutError,
    PortalError,
)
from portal_sdk.tier0_core.identity import AuthSession, Identity
from portal_sdk.tier0_core.logging import get_logger

T = TypeVar("T")

logger = get_logger("portal_sdk.gateway")

AuthListener = Callable[[str, "AuthSession | None"], None]


# ── Protocol ──────────────────────────────────────────────────────────────────

@runtime_checkable
class GatewayClient(Protocol):
    """Implement this protocol to add a new backend."""

    async def get_session(self) -> AuthSession | None: ...

    async def get_user(self) -> Identity | None: ...

    async def sign_out(self) -> None: ...

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        columns: str = "*",
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict]: ...

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict: ...

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]
    ) -> list[dict]: ...

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
    ) -> None: ...

    async def public_url(self, bucket: str, path: str) -> str | None: ...

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]: ...


# ── Error translation ─────────────────────────────────────────────────────────

_DUPLICATE_MARKERS = ("duplicate", "already exists", "23505")


def translate_error(exc: Exception, operation: str) -> PortalError:
    """Map a raw client exception onto the portal taxonomy."""
    if isinstance(exc, PortalError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return OperationTimeoutError(
            "gateway_timeout", "The server took too long to respond.",
            detail=f"{operation}: {exc}", operation=operation,
        )
    if isinstance(exc, httpx.TransportError):
        return NetworkError(
            "gateway_unreachable", "Could not reach the server. Check your connection.",
            detail=f"{operation}: {exc}", operation=operation,
        )

    code = str(getattr(exc, "code", "") or "")
    status = str(getattr(exc, "status", "") or getattr(exc, "status_code", "") or "")
    message = str(getattr(exc, "message", "") or exc)
    lowered = message.lower()

    if code == "23505" or status == "409" or any(m in lowered for m in _DUPLICATE_MARKERS):
        return CollisionError(
            "already_exists", "An item with the same name already exists.",
            detail=f"{operation}: {message}", operation=operation,
        )
    if "auth" in type(exc).__name__.lower() or status in ("401", "403"):
        return AuthError("session_rejected", detail=f"{operation}: {message}", operation=operation)
    return DatabaseError(
        code or "query_failed", "The server could not complete the request.",
        detail=f"{operation}: {message}", operation=operation,
    )


# ── Supabase gateway ──────────────────────────────────────────────────────────

class SupabaseGateway:
    """
    Supabase async client wrapper.
    Requires: SUPABASE_URL, SUPABASE_ANON_KEY
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    async def connect(cls, url: str, anon_key: str) -> "SupabaseGateway":
        from supabase import acreate_client

        client = await acreate_client(url, anon_key)
        logger.info("gateway.connected", backend="supabase", url=url)
        return cls(client)

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except Exception as exc:
            translated = translate_error(exc, operation)
            if translated is exc:
                raise
            raise translated from exc

    @staticmethod
    def _to_session(raw: Any) -> AuthSession | None:
        if raw is None or getattr(raw, "user", None) is None:
            return None
        return AuthSession(
            identity=SupabaseGateway._to_identity(raw.user),
            access_token=getattr(raw, "access_token", None),
            expires_at=getattr(raw, "expires_at", None),
        )

    @staticmethod
    def _to_identity(user: Any) -> Identity:
        return Identity(
            id=str(user.id),
            email=getattr(user, "email", None),
            metadata=dict(getattr(user, "user_metadata", None) or {}),
        )

    async def get_session(self) -> AuthSession | None:
        raw = await self._guard("auth.get_session", self._client.auth.get_session())
        return self._to_session(raw)

    async def get_user(self) -> Identity | None:
        response = await self._guard("auth.get_user", self._client.auth.get_user())
        user = getattr(response, "user", None)
        return self._to_identity(user) if user is not None else None

    async def sign_out(self) -> None:
        await self._guard("auth.sign_out", self._client.auth.sign_out())

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        columns: str = "*",
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict]:
        query = self._client.table(table).select(columns)
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        if order_by:
            query = query.order(order_by, desc=descending)
        if limit:
            query = query.limit(limit)
        response = await self._guard(f"select:{table}", query.execute())
        return list(getattr(response, "data", None) or [])

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        response = await self._guard(
            f"insert:{table}", self._client.table(table).insert(dict(row)).execute()
        )
        data = getattr(response, "data", None) or []
        return dict(data[0]) if data else dict(row)

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]
    ) -> list[dict]:
        query = self._client.table(table).update(dict(values))
        for column, value in filters.items():
            query = query.eq(column, value)
        response = await self._guard(f"update:{table}", query.execute())
        return list(getattr(response, "data", None) or [])

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        options = {
            "content-type": content_type,
            "cache-control": "3600",
            "upsert": "true" if upsert else "false",
        }
        await self._guard(
            f"upload:{bucket}",
            self._client.storage.from_(bucket).upload(path, data, options),
        )

    async def public_url(self, bucket: str, path: str) -> str | None:
        # get_public_url is sync in older storage clients, async in newer ones
        result = self._client.storage.from_(bucket).get_public_url(path)
        if inspect.isawaitable(result):
            result = await self._guard(f"public_url:{bucket}", result)
        if isinstance(result, Mapping):
            result = result.get("publicUrl") or result.get("public_url")
        return str(result) if result else None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        def _forward(event: Any, session: Any) -> None:
            listener(str(getattr(event, "value", event)), self._to_session(session))

        subscription = self._client.auth.on_auth_state_change(_forward)
        return subscription.unsubscribe


# ── In-memory gateway (tests / local dev) ─────────────────────────────────────

class InMemoryGateway:
    """
    Deterministic in-process backend. Never calls external services.

    Failures are scripted per operation name (``"get_session"``,
    ``"select:users"``, ``"insert:users"``, ``"upload"``, ...) with
    :meth:`fail_next`; every call is counted in :attr:`calls`.
    """

    def __init__(
        self,
        *,
        tables: Mapping[str, list[dict]] | None = None,
        session: AuthSession | None = None,
        user: Identity | None = None,
        public_base_url: str = "https://storage.local",
        latency: float = 0.0,
    ) -> None:
        self.tables: dict[str, list[dict]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.objects: dict[str, bytes] = {}
        self.session = session
        self.user = user
        self.public_base_url = public_base_url.rstrip("/")
        self.latency = latency
        self.calls: Counter[str] = Counter()
        self._failures: dict[str, list[Exception]] = {}
        self._listeners: list[AuthListener] = []

    # ── scripting helpers ────────────────────────────────────────────────────

    def fail_next(self, operation: str, exc: Exception, times: int = 1) -> None:
        self._failures.setdefault(operation, []).extend([exc] * times)

    def sign_in(self, identity: Identity, *, expires_at: float | None = None) -> AuthSession:
        self.session = AuthSession(identity=identity, access_token="test-token", expires_at=expires_at)
        self.user = identity
        self.emit("SIGNED_IN", self.session)
        return self.session

    def emit(self, event: str, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            listener(event, session)

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    # ── protocol ─────────────────────────────────────────────────────────────

    async def get_session(self) -> AuthSession | None:
        await self._enter("get_session")
        return self.session

    async def get_user(self) -> Identity | None:
        await self._enter("get_user")
        if self.session is None:
            return None
        return self.user or self.session.identity

    async def sign_out(self) -> None:
        await self._enter("sign_out")
        self.session = None
        self.user = None
        self.emit("SIGNED_OUT", None)

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        columns: str = "*",
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict]:
        await self._enter(f"select:{table}")
        rows = [
            dict(row) for row in self.tables.get(table, [])
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda row: str(row.get(order_by) or ""), reverse=descending)
        return rows[:limit] if limit else rows

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        await self._enter(f"insert:{table}")
        rows = self.tables.setdefault(table, [])
        if "id" in row and any(existing.get("id") == row["id"] for existing in rows):
            raise CollisionError("already_exists", detail=f"duplicate key {row['id']!r} in {table}")
        stored = dict(row)
        stored.setdefault("id", len(rows) + 1)
        rows.append(stored)
        return dict(stored)

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]
    ) -> list[dict]:
        await self._enter(f"update:{table}")
        changed = []
        for row in self.tables.get(table, []):
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(values)
                changed.append(dict(row))
        return changed

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        await self._enter("upload")
        key = f"{bucket}/{path}"
        if key in self.objects and not upsert:
            raise CollisionError("already_exists", detail=f"object {key!r} already exists")
        self.objects[key] = bytes(data)

    async def public_url(self, bucket: str, path: str) -> str | None:
        await self._enter("public_url")
        if f"{bucket}/{path}" not in self.objects:
            return None
        return f"{self.public_base_url}/{bucket}/{path}"

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


__all__ = [
    "GatewayClient", "SupabaseGateway", "InMemoryGateway", "translate_error",
]
