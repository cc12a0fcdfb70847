"""
portal_sdk.tier3_platform.records
──────────────────────────────────
Portal data access: placement dashboards, NOC requests, certificates,
weekly reports and job opportunities.

Reads are cached per actor and never raise. A backend failure yields the
fallback dataset with ``status="fallback"``; a successful empty query stays
empty. Writes raise typed errors, stamp the acting principal, and evict
every cached view the write made stale.

With no backend configured, writes succeed in simulation: the input is
echoed back with a generated id so local development keeps working.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from portal_sdk.tier0_core.errors import (
    ConfigurationError,
    DatabaseError,
    PortalError,
    ValidationError,
)
from portal_sdk.tier0_core.gateway import GatewayClient
from portal_sdk.tier0_core.identity import Principal
from portal_sdk.tier0_core.ids import new_id
from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier1_runtime.clock import Clock, get_clock
from portal_sdk.tier1_runtime.result import Outcome
from portal_sdk.tier2_reliability.cache import TTLCache
from portal_sdk.tier2_reliability.fallback import (
    FallbackDataset,
    summarize_placement,
    summarize_student,
    unavailable,
    with_fallback,
)
from portal_sdk.tier2_reliability.invalidation import CacheInvalidator, Resource, cache_key
from portal_sdk.tier3_platform.session import SessionResolver

T = TypeVar("T")

logger = get_logger("portal_sdk.records")

TABLES: dict[Resource, str] = {
    Resource.NOC_REQUESTS: "noc_requests",
    Resource.CERTIFICATES: "certificates",
    Resource.WEEKLY_REPORTS: "weekly_reports",
    Resource.OPPORTUNITIES: "job_opportunities",
}

_ORDER_BY: dict[Resource, str] = {
    Resource.NOC_REQUESTS: "submitted_date",
    Resource.CERTIFICATES: "upload_date",
    Resource.WEEKLY_REPORTS: "week_number",
    Resource.OPPORTUNITIES: "posted_date",
}

REVIEW_STATUSES = frozenset({"pending", "approved", "rejected", "revision_required"})

PROFILE_FIELDS = frozenset(
    {"name", "department", "designation", "phone", "employee_id", "roll_number", "avatar_url"}
)


def _require(data: Mapping[str, Any], *names: str) -> None:
    missing = {name: "required" for name in names if not data.get(name)}
    if missing:
        raise ValidationError(
            "missing_fields",
            "Please fill in all required fields.",
            fields=missing,
        )


def _matches(row: Mapping[str, Any], field: str, needle: str | None) -> bool:
    if not needle:
        return True
    return needle.strip().lower() in str(row.get(field) or "").lower()


class PortalRecords:
    def __init__(
        self,
        gateway: GatewayClient | None,
        cache: TTLCache,
        *,
        ttl: float = 30.0,
        resolver: SessionResolver | None = None,
        users_table: str = "users",
        clock: Clock | None = None,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._ttl = ttl
        self._resolver = resolver
        self._users_table = users_table
        self._clock = clock or get_clock()
        self._invalidator = CacheInvalidator(cache)

    @property
    def invalidator(self) -> CacheInvalidator:
        return self._invalidator

    # ── read plumbing ────────────────────────────────────────────────────────

    async def _read(
        self,
        resource: Resource,
        actor_id: str | None,
        load: Callable[[], Awaitable[T]],
        substitute: Callable[[], T],
    ) -> Outcome[T]:
        if self._gateway is None:
            return unavailable(resource.value, substitute)
        key = cache_key(resource, actor_id)
        return await with_fallback(
            resource.value,
            lambda: self._cache.get_or_fetch(key, self._ttl, load),
            substitute,
        )

    def _backend(self) -> GatewayClient:
        if self._gateway is None:
            raise ConfigurationError("backend_unavailable", detail="no gateway configured")
        return self._gateway

    async def _list(self, resource: Resource, filters: Mapping[str, Any] | None = None) -> list[dict]:
        return await self._backend().select(
            TABLES[resource], filters=filters, order_by=_ORDER_BY[resource], descending=True
        )

    # ── reads ────────────────────────────────────────────────────────────────

    async def noc_requests(self, student_id: str) -> Outcome[list[dict]]:
        return await self._read(
            Resource.NOC_REQUESTS,
            student_id,
            lambda: self._list(Resource.NOC_REQUESTS, {"student_id": student_id}),
            lambda: FallbackDataset.noc_requests(student_id),
        )

    async def certificates(self, student_id: str) -> Outcome[list[dict]]:
        return await self._read(
            Resource.CERTIFICATES,
            student_id,
            lambda: self._list(Resource.CERTIFICATES, {"student_id": student_id}),
            lambda: FallbackDataset.certificates(student_id),
        )

    async def weekly_reports(self, student_id: str) -> Outcome[list[dict]]:
        return await self._read(
            Resource.WEEKLY_REPORTS,
            student_id,
            lambda: self._list(Resource.WEEKLY_REPORTS, {"student_id": student_id}),
            lambda: FallbackDataset.weekly_reports(student_id),
        )

    async def opportunities(self) -> Outcome[list[dict]]:
        return await self._read(
            Resource.OPPORTUNITIES,
            None,
            lambda: self._list(Resource.OPPORTUNITIES, {"status": "active"}),
            FallbackDataset.opportunities,
        )

    async def search_opportunities(
        self,
        search: str | None = None,
        location: str | None = None,
        job_type: str | None = None,
        company: str | None = None,
    ) -> Outcome[list[dict]]:
        """Filter the cached opportunity list; the status of the listing carries over."""
        outcome = await self.opportunities()
        needle = (search or "").strip().lower()
        matches = [
            row for row in outcome.value or []
            if (
                not needle
                or needle in str(row.get("title") or "").lower()
                or needle in str(row.get("company_name") or "").lower()
                or needle in str(row.get("description") or "").lower()
            )
            and _matches(row, "location", location)
            and _matches(row, "job_type", job_type)
            and _matches(row, "company_name", company)
        ]
        return replace(outcome, value=matches)

    async def student_dashboard(self, student_id: str) -> Outcome[dict]:
        async def load() -> dict:
            noc, reports, certs, opps = await asyncio.gather(
                self._list(Resource.NOC_REQUESTS, {"student_id": student_id}),
                self._list(Resource.WEEKLY_REPORTS, {"student_id": student_id}),
                self._list(Resource.CERTIFICATES, {"student_id": student_id}),
                self._list(Resource.OPPORTUNITIES, {"status": "active"}),
            )
            return summarize_student(noc, reports, certs, opps)

        return await self._read(
            Resource.STUDENT_DASHBOARD,
            student_id,
            load,
            lambda: FallbackDataset.student_dashboard(student_id),
        )

    async def placement_dashboard(self) -> Outcome[dict]:
        async def load() -> dict:
            noc, reports, certs, opps = await asyncio.gather(
                self._list(Resource.NOC_REQUESTS),
                self._list(Resource.WEEKLY_REPORTS),
                self._list(Resource.CERTIFICATES),
                self._list(Resource.OPPORTUNITIES),
            )
            return summarize_placement(noc, reports, certs, opps)

        return await self._read(
            Resource.PLACEMENT_DASHBOARD, None, load, FallbackDataset.placement_dashboard
        )

    # ── write plumbing ───────────────────────────────────────────────────────

    def _now(self) -> str:
        return self._clock.now().isoformat()

    async def _insert(self, resource: Resource, row: dict[str, Any], actor_id: str) -> dict:
        if self._gateway is None:
            created = {**row, "id": new_id()}
            logger.info("write.simulated", resource=resource.value, actor_id=actor_id)
        else:
            try:
                created = await self._gateway.insert(TABLES[resource], row)
            except PortalError as exc:
                logger.warning(
                    "write.failed", resource=resource.value, actor_id=actor_id, code=exc.code
                )
                raise
        self._invalidator.after_write(resource, actor_id)
        return created

    async def _update(
        self, table: str, values: dict[str, Any], record_id: Any, resource: Resource
    ) -> dict:
        if self._gateway is None:
            logger.info("write.simulated", resource=resource.value, record_id=record_id)
            return {**values, "id": record_id}
        try:
            rows = await self._gateway.update(table, values, filters={"id": record_id})
        except PortalError as exc:
            logger.warning("write.failed", resource=resource.value, record_id=record_id, code=exc.code)
            raise
        if not rows:
            raise DatabaseError(
                "record_not_found",
                "The item no longer exists.",
                detail=f"{table} id={record_id!r} matched no rows",
            )
        return rows[0]

    # ── writes ───────────────────────────────────────────────────────────────

    async def create_noc_request(self, actor: Principal, data: Mapping[str, Any]) -> dict:
        _require(data, "company_name", "position", "start_date")
        row = {
            **data,
            "student_id": actor.id,
            "student_name": actor.display_name,
            "student_email": actor.email,
            "status": "pending",
            "submitted_date": self._now(),
        }
        return await self._insert(Resource.NOC_REQUESTS, row, actor.id)

    async def create_certificate(self, actor: Principal, data: Mapping[str, Any]) -> dict:
        _require(data, "title", "company_name")
        row = {
            **data,
            "student_id": actor.id,
            "student_name": actor.display_name,
            "student_email": actor.email,
            "status": "pending",
            "upload_date": self._now(),
        }
        return await self._insert(Resource.CERTIFICATES, row, actor.id)

    async def update_status(
        self,
        resource: Resource | str,
        record_id: Any,
        status: str,
        reviewer: Principal,
        feedback: str | None = None,
    ) -> dict:
        """Record a review decision on a NOC request, certificate or weekly report."""
        try:
            resource = Resource(resource)
        except ValueError:
            raise ValidationError(
                "not_reviewable", "This item cannot be reviewed.", fields={"resource": str(resource)}
            ) from None
        if resource not in (Resource.NOC_REQUESTS, Resource.CERTIFICATES, Resource.WEEKLY_REPORTS):
            raise ValidationError(
                "not_reviewable", "This item cannot be reviewed.", fields={"resource": resource.value}
            )
        if status not in REVIEW_STATUSES:
            raise ValidationError(
                "invalid_status", "Unknown review status.", fields={"status": status}
            )
        stamp = self._now()
        values: dict[str, Any] = {
            "status": status,
            "reviewed_by": reviewer.id,
            "reviewed_date": stamp,
        }
        if feedback is not None:
            values["feedback"] = feedback
        if status == "approved":
            values["approved_by"] = reviewer.display_name
            values["approved_date"] = stamp

        updated = await self._update(TABLES[resource], values, record_id, resource)
        owner = updated.get("student_id")
        self._invalidator.after_write(resource, str(owner) if owner else None)
        logger.info(
            "record.reviewed",
            resource=resource.value,
            record_id=record_id,
            status=status,
            reviewer_id=reviewer.id,
        )
        return updated

    async def update_profile(self, user_id: str, updates: Mapping[str, Any]) -> dict:
        unknown = sorted(set(updates) - PROFILE_FIELDS)
        if unknown:
            raise ValidationError(
                "invalid_profile_fields",
                "Some profile fields cannot be changed.",
                fields={name: "not editable" for name in unknown},
            )
        values = {**updates, "updated_at": self._now()}
        updated = await self._update(self._users_table, values, user_id, Resource.PROFILE)
        self._invalidator.after_write(Resource.PROFILE, user_id)
        if self._resolver is not None:
            current = self._resolver.principal
            if current is None or current.id == user_id:
                await self._resolver.refresh()
        return updated


__all__ = ["PortalRecords", "TABLES", "REVIEW_STATUSES", "PROFILE_FIELDS"]
