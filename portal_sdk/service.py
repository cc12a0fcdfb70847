"""
portal_sdk.service
──────────────────────
Service surface: the composition root the UI layer talks to.

The backend is decided once, at construction: a Supabase gateway when
``SUPABASE_URL`` and ``SUPABASE_ANON_KEY`` are set, otherwise none, in which
case reads serve fallback data and writes run in simulation.

Usage::

    async with await PortalService.create() as portal:
        principal = await portal.resolve_current_principal()
        dashboard = await portal.records.student_dashboard(principal.id)
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from portal_sdk.tier0_core.config import PortalConfig, get_config
from portal_sdk.tier0_core.gateway import GatewayClient, SupabaseGateway
from portal_sdk.tier0_core.identity import Principal, Role
from portal_sdk.tier0_core.logging import bind_context, clear_context, get_logger
from portal_sdk.tier0_core.metrics import start_metrics_server
from portal_sdk.tier1_runtime.clock import Clock, get_clock
from portal_sdk.tier2_reliability.cache import FetchFn, TTLCache
from portal_sdk.tier2_reliability.invalidation import Resource
from portal_sdk.tier2_reliability.storage import UploadFile, UploadPipeline, UploadResult
from portal_sdk.tier3_platform.authorization import require_role
from portal_sdk.tier3_platform.records import PortalRecords
from portal_sdk.tier3_platform.session import SessionResolver

logger = get_logger("portal_sdk.service")

_STUDENT = (Role.STUDENT,)
_REVIEWERS = (Role.TEACHER, Role.PLACEMENT_OFFICER, Role.ADMIN)


class PortalService:
    def __init__(
        self,
        config: PortalConfig | None = None,
        *,
        gateway: GatewayClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or get_config()
        self.gateway = gateway
        self.clock = clock or get_clock()
        self.cache = TTLCache("data", clock=self.clock)
        self.sessions = SessionResolver.from_config(
            gateway, self.config, data_cache=self.cache, clock=self.clock
        )
        self.uploads = UploadPipeline.from_config(gateway, self.config, clock=self.clock)
        self.records = PortalRecords(
            gateway,
            self.cache,
            ttl=self.config.data_cache_ttl,
            resolver=self.sessions,
            users_table=self.config.users_table,
            clock=self.clock,
        )
        self._opened = False
        self._closed = False

    @classmethod
    async def create(
        cls, config: PortalConfig | None = None, *, clock: Clock | None = None
    ) -> "PortalService":
        """Build a service, connecting to Supabase when credentials are configured."""
        config = config or get_config()
        gateway: GatewayClient | None = None
        if config.backend_configured:
            gateway = await SupabaseGateway.connect(config.supabase_url, config.supabase_anon_key)
        else:
            logger.warning("service.backend_unavailable", environment=config.environment)
        return cls(config, gateway=gateway, clock=clock)

    @property
    def backend_available(self) -> bool:
        return self.gateway is not None

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def open(self) -> "PortalService":
        if not self._opened:
            bind_context(app=self.config.app_name, environment=self.config.environment)
            if self.config.metrics_port is not None:
                start_metrics_server(self.config.metrics_port)
            self.sessions.attach()
            self._opened = True
            logger.info(
                "service.opened",
                app=self.config.app_name,
                backend="supabase" if self.backend_available else "none",
            )
        return self

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.sessions.dispose()
        await self.uploads.aclose()
        self.cache.dispose()
        logger.info("service.closed", app=self.config.app_name)
        clear_context()

    async def __aenter__(self) -> "PortalService":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ── identity ─────────────────────────────────────────────────────────────

    async def resolve_current_principal(self) -> Principal | None:
        return await self.sessions.resolve()

    async def require_role(self, allowed: Iterable[Role | str]) -> Principal:
        return await require_role(self.sessions, allowed)

    async def sign_out(self) -> None:
        await self.sessions.sign_out()

    # ── cache ────────────────────────────────────────────────────────────────

    async def get_or_fetch(self, key: str, ttl: float | None, fetch_fn: FetchFn[Any]) -> Any:
        """Cached read; ``ttl=None`` uses the configured data TTL."""
        if ttl is None:
            ttl = self.config.data_cache_ttl
        return await self.cache.get_or_fetch(key, ttl, fetch_fn)

    def invalidate(self, key: str) -> None:
        self.cache.invalidate(key)

    def invalidate_all(self) -> None:
        self.cache.invalidate_all()

    # ── uploads ──────────────────────────────────────────────────────────────

    async def upload(
        self, file: UploadFile | None, folder: str = "reports", name: str | None = None
    ) -> UploadResult:
        return await self.uploads.upload(file, folder=folder, name=name)

    # ── actions on behalf of the current principal ───────────────────────────

    async def submit_noc_request(self, data: Mapping[str, Any]) -> dict:
        student = await self.require_role(_STUDENT)
        return await self.records.create_noc_request(student, data)

    async def submit_certificate(self, data: Mapping[str, Any]) -> dict:
        student = await self.require_role(_STUDENT)
        return await self.records.create_certificate(student, data)

    async def review(
        self, resource: Resource | str, record_id: Any, status: str, feedback: str | None = None
    ) -> dict:
        reviewer = await self.require_role(_REVIEWERS)
        return await self.records.update_status(resource, record_id, status, reviewer, feedback)

    async def update_my_profile(self, updates: Mapping[str, Any]) -> dict:
        principal = await self.require_role(())
        return await self.records.update_profile(principal.id, updates)


__all__ = ["PortalService"]
