"""
portal_sdk.tier3_platform.session
───────────────────────────────────
Resolves "who is the current user" and keeps that answer fresh.

States: UNRESOLVED → RESOLVING → RESOLVED | ANONYMOUS.

Resolution asks the gateway for the session, validates it server-side,
loads the ``users`` record (provisioning one on first sign-in) and rejects
inactive accounts. The principal lives in its own TTL cache, separate from
business data, so concurrent callers share one resolution. ``resolve()``
never raises: every failure is logged and reported as anonymous.

Auth events from the identity provider drive invalidation. An event for the
identity that is already resolved is a no-op, and one for the identity being
resolved joins that resolution. A resolution that finishes after the session
was cleared is discarded.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable

from portal_sdk.tier0_core.config import PortalConfig
from portal_sdk.tier0_core.errors import (
    AuthError,
    ConfigurationError,
    InactiveAccountError,
    PortalError,
    ProfileMissingError,
)
from portal_sdk.tier0_core.gateway import GatewayClient
from portal_sdk.tier0_core.identity import AuthSession, EmailPolicy, Identity, Principal
from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier1_runtime.clock import Clock, get_clock
from portal_sdk.tier1_runtime.context import bind_actor
from portal_sdk.tier2_reliability.cache import TTLCache

logger = get_logger("portal_sdk.session")

_PRINCIPAL_KEY = "principal:current"

Listener = Callable[["Principal | None"], Any]


class SessionState(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    ANONYMOUS = "anonymous"


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    INITIAL_SESSION = "INITIAL_SESSION"

    @classmethod
    def parse(cls, value: str) -> "AuthEvent | None":
        normalized = str(value).strip().upper().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            return None


class SessionResolver:
    def __init__(
        self,
        gateway: GatewayClient | None,
        *,
        data_cache: TTLCache,
        policy: EmailPolicy | None = None,
        ttl: float = 60.0,
        users_table: str = "users",
        clock: Clock | None = None,
    ) -> None:
        self._gateway = gateway
        self._data_cache = data_cache
        self._policy = policy or EmailPolicy()
        self._ttl = ttl
        self._users_table = users_table
        self._clock = clock or get_clock()
        self._identity_cache = TTLCache("identity", clock=self._clock)
        self._anonymous = False
        self._last_identity_id: str | None = None
        self._resolving_id: str | None = None
        self._epoch = 0
        self._listeners: list[Listener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._event_tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(
        cls,
        gateway: GatewayClient | None,
        config: PortalConfig,
        *,
        data_cache: TTLCache,
        clock: Clock | None = None,
    ) -> "SessionResolver":
        return cls(
            gateway,
            data_cache=data_cache,
            policy=EmailPolicy(config.student_email_domain, config.staff_email_domain),
            ttl=config.identity_cache_ttl,
            users_table=config.users_table,
            clock=clock,
        )

    # ── state ────────────────────────────────────────────────────────────────

    @property
    def principal(self) -> Principal | None:
        """The cached principal, if one is resolved and still fresh."""
        return self._identity_cache.peek(_PRINCIPAL_KEY, self._ttl)

    @property
    def state(self) -> SessionState:
        if self._identity_cache.pending(_PRINCIPAL_KEY):
            return SessionState.RESOLVING
        if self.principal is not None:
            return SessionState.RESOLVED
        if self._anonymous:
            return SessionState.ANONYMOUS
        return SessionState.UNRESOLVED

    # ── resolution ───────────────────────────────────────────────────────────

    async def resolve(self) -> Principal | None:
        """Return the current principal, or None when nobody usable is signed in."""
        if self._gateway is None:
            self._mark_anonymous("backend_unavailable")
            return None
        epoch = self._epoch
        try:
            principal = await self._identity_cache.get_or_fetch(
                _PRINCIPAL_KEY, self._ttl, self._load
            )
        except (AuthError, InactiveAccountError) as exc:
            if epoch != self._epoch:
                return None
            logger.info("session.anonymous", code=exc.code, detail=exc.detail)
            self._mark_anonymous(exc.code)
            return None
        except Exception as exc:
            if epoch != self._epoch:
                return None
            logger.warning(
                "session.resolve_failed",
                code=getattr(exc, "code", None),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self._mark_anonymous(str(getattr(exc, "code", "") or type(exc).__name__))
            return None
        if epoch != self._epoch:
            logger.info("session.stale_result_ignored", actor_id=principal.id)
            return None
        self._anonymous = False
        self._last_identity_id = principal.id
        bind_actor(principal)
        return principal

    async def refresh(self) -> Principal | None:
        """Forget the cached principal and resolve again."""
        self.clear()
        return await self.resolve()

    def clear(self) -> None:
        """Drop the cached principal; a resolution already in flight is discarded."""
        self._epoch += 1
        self._identity_cache.invalidate(_PRINCIPAL_KEY)

    def _mark_anonymous(self, reason: str) -> None:
        self._anonymous = True
        bind_actor(None)
        logger.debug("session.state", state=SessionState.ANONYMOUS.value, reason=reason)

    def _backend(self) -> GatewayClient:
        if self._gateway is None:
            raise ConfigurationError("backend_unavailable", detail="no gateway configured")
        return self._gateway

    async def _load(self) -> Principal:
        gateway = self._backend()
        session = await gateway.get_session()
        if session is None:
            raise AuthError("no_session", detail="no active session")
        if session.is_expired(self._clock.timestamp()):
            raise AuthError("session_expired", detail=f"session expired at {session.expires_at}")

        identity = await gateway.get_user()
        if identity is None:
            raise AuthError("invalid_session", detail="identity provider rejected the session")
        self._resolving_id = identity.id

        record = await self._fetch_profile(identity.id)
        if record is None:
            record = await self._provision(identity)

        principal = Principal.from_record(record)
        if not principal.is_active:
            raise InactiveAccountError(
                "inactive_account",
                "Your account has been deactivated. Contact the placement cell.",
                detail=f"user {principal.id} is inactive",
            )
        logger.info("session.resolved", actor_id=principal.id, role=principal.role.value)
        return principal

    async def _fetch_profile(self, user_id: str) -> dict | None:
        rows = await self._backend().select(self._users_table, filters={"id": user_id}, limit=1)
        return rows[0] if rows else None

    async def _provision(self, identity: Identity) -> dict:
        row = self._policy.new_profile(identity, now=self._clock.now())
        if row is None:
            raise ProfileMissingError(
                "email_domain_not_allowed",
                "Please sign in with your institutional email address.",
                detail=f"no role for {identity.email!r}",
            )
        try:
            created = await self._backend().insert(self._users_table, row)
        except PortalError as exc:
            # usually a concurrent first login inserted the same row
            logger.warning("session.provision_failed", user_id=identity.id, code=exc.code)
            existing = await self._fetch_profile(identity.id)
            if existing is None:
                raise ProfileMissingError(
                    "profile_create_failed",
                    "We could not set up your profile. Please contact support.",
                    detail=str(exc),
                ) from exc
            return existing
        logger.info("session.provisioned", user_id=identity.id, role=row["role"])
        return created

    # ── session helpers ──────────────────────────────────────────────────────

    async def is_session_valid(self) -> bool:
        if self._gateway is None:
            return False
        try:
            session = await self._gateway.get_session()
        except PortalError as exc:
            logger.info("session.check_failed", code=exc.code)
            return False
        return session is not None and not session.is_expired(self._clock.timestamp())

    async def sign_out(self) -> None:
        """Drop every cached identity and business record, then end the session."""
        self.clear()
        self._data_cache.invalidate_all()
        self._last_identity_id = None
        self._resolving_id = None
        self._mark_anonymous("signed_out")
        if self._gateway is not None:
            try:
                await self._gateway.sign_out()
            except PortalError as exc:
                logger.warning("session.sign_out_failed", code=exc.code)
                raise AuthError(
                    "sign_out_failed", "Could not sign out. Please try again.", detail=exc.detail
                ) from exc
        self._notify(None)

    # ── auth events ──────────────────────────────────────────────────────────

    async def handle_auth_event(self, event: str, session: AuthSession | None) -> Principal | None:
        kind = AuthEvent.parse(event)

        if kind is AuthEvent.SIGNED_OUT:
            logger.info("session.signed_out")
            self.clear()
            self._data_cache.invalidate_all()
            self._last_identity_id = None
            self._resolving_id = None
            self._mark_anonymous("signed_out")
            self._notify(None)
            return None

        if kind is None or session is None:
            logger.debug("session.event_ignored", auth_event=str(event))
            return self.principal

        incoming = session.identity.id
        current = self.principal
        if current is not None and current.id == incoming:
            logger.debug("session.event_suppressed", auth_event=kind.value, actor_id=incoming)
            return current

        if incoming == self._resolving_id and self._identity_cache.pending(_PRINCIPAL_KEY):
            logger.debug("session.event_joined", auth_event=kind.value, actor_id=incoming)
            return await self.resolve()

        if kind is AuthEvent.SIGNED_IN or (
            self._last_identity_id is not None and self._last_identity_id != incoming
        ):
            self._data_cache.invalidate_all()
        self.clear()
        self._resolving_id = incoming
        principal = await self.resolve()
        self._notify(principal)
        return principal

    def attach(self) -> None:
        """Subscribe to the gateway's auth-event stream. Call from a running loop."""
        if self._gateway is None or self._unsubscribe is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self._gateway.on_auth_state_change(self._on_auth_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_auth_event(self, event: str, session: AuthSession | None) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self.handle_auth_event(event, session))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def drain(self) -> None:
        """Wait until every auth event delivered so far has been handled."""
        while self._event_tasks:
            await asyncio.gather(*list(self._event_tasks), return_exceptions=True)

    # ── listeners ────────────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* with the new principal (or None) after each change."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, principal: Principal | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(principal)
            except Exception:
                logger.exception("session.listener_failed", listener=repr(listener))

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def dispose(self) -> None:
        self.detach()
        for task in list(self._event_tasks):
            task.cancel()
        await asyncio.gather(*list(self._event_tasks), return_exceptions=True)
        self._event_tasks.clear()
        self._listeners.clear()
        self._identity_cache.dispose()


__all__ = ["SessionResolver", "SessionState", "AuthEvent"]
