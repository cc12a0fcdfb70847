"""Tests for tier3_platform modules."""
from __future__ import annotations

import asyncio

import pytest

from portal_sdk.tier0_core.errors import (
    AuthError,
    CollisionError,
    DatabaseError,
    ForbiddenError,
    NetworkError,
    ValidationError,
)
from portal_sdk.tier0_core.identity import AuthSession, Identity, Principal, Role
from portal_sdk.tier1_runtime.context import get_actor_id
from portal_sdk.tier2_reliability.fallback import FallbackDataset
from portal_sdk.tier2_reliability.invalidation import Resource
from portal_sdk.tier3_platform.authorization import check_role, has_permission, require_role
from portal_sdk.tier3_platform.records import PortalRecords
from portal_sdk.tier3_platform.session import AuthEvent, SessionResolver, SessionState


@pytest.fixture
def teacher_identity():
    return Identity(id="t-1", email="r.shah@charusat.ac.in", metadata={"full_name": "Ravi Shah"})


@pytest.fixture
def records(signed_in_gateway, data_cache, resolver, clock):
    return PortalRecords(signed_in_gateway, data_cache, ttl=30.0, resolver=resolver, clock=clock)


# ── session ────────────────────────────────────────────────────────────────

class TestSessionResolver:
    @pytest.mark.asyncio
    async def test_resolves_existing_profile(self, resolver):
        assert resolver.state is SessionState.UNRESOLVED
        principal = await resolver.resolve()
        assert principal.id == "stu-1"
        assert principal.role is Role.STUDENT
        assert resolver.state is SessionState.RESOLVED
        assert get_actor_id() == "stu-1"

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_one_lookup(self, resolver, signed_in_gateway):
        results = await asyncio.gather(*(resolver.resolve() for _ in range(5)))
        assert {p.id for p in results} == {"stu-1"}
        assert signed_in_gateway.calls["get_session"] == 1
        assert signed_in_gateway.calls["select:users"] == 1

    @pytest.mark.asyncio
    async def test_principal_cached_for_identity_ttl(self, resolver, signed_in_gateway, clock):
        await resolver.resolve()
        clock.advance(59)
        await resolver.resolve()
        assert signed_in_gateway.calls["get_session"] == 1
        clock.advance(1)
        await resolver.resolve()
        assert signed_in_gateway.calls["get_session"] == 2

    @pytest.mark.asyncio
    async def test_no_backend_is_anonymous(self, data_cache, clock):
        resolver = SessionResolver(None, data_cache=data_cache, clock=clock)
        assert await resolver.resolve() is None
        assert resolver.state is SessionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_no_session_is_anonymous(self, gateway, data_cache, clock):
        resolver = SessionResolver(gateway, data_cache=data_cache, clock=clock)
        assert await resolver.resolve() is None
        assert resolver.state is SessionState.ANONYMOUS
        assert gateway.calls["get_user"] == 0

    @pytest.mark.asyncio
    async def test_expired_session_is_anonymous(self, resolver, signed_in_gateway, student_identity, clock):
        signed_in_gateway.session = AuthSession(
            identity=student_identity, expires_at=clock.timestamp() - 1
        )
        assert await resolver.resolve() is None
        assert signed_in_gateway.calls["get_user"] == 0

    @pytest.mark.asyncio
    async def test_rejected_user_is_anonymous(self, resolver, signed_in_gateway):
        signed_in_gateway.fail_next("get_user", AuthError("session_rejected"))
        assert await resolver.resolve() is None
        assert resolver.state is SessionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_gateway_failure_is_anonymous_and_not_cached(self, resolver, signed_in_gateway):
        signed_in_gateway.fail_next("select:users", NetworkError("gateway_unreachable"))
        assert await resolver.resolve() is None
        assert (await resolver.resolve()).id == "stu-1"

    @pytest.mark.asyncio
    async def test_inactive_account_is_anonymous(self, resolver, signed_in_gateway):
        signed_in_gateway.tables["users"][0]["is_active"] = False
        assert await resolver.resolve() is None
        assert resolver.state is SessionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_provisions_missing_profile(self, resolver, signed_in_gateway):
        signed_in_gateway.tables["users"] = []
        principal = await resolver.resolve()
        assert principal.role is Role.STUDENT
        assert principal.display_name == "Asha Patel"
        assert principal.roll_number == "21CE045"
        assert signed_in_gateway.calls["insert:users"] == 1
        assert signed_in_gateway.tables["users"][0]["id"] == "stu-1"

    @pytest.mark.asyncio
    async def test_provisioning_race_refetches(self, resolver, signed_in_gateway):
        signed_in_gateway.tables["users"] = []
        original_insert = signed_in_gateway.insert

        async def losing_insert(table, row):
            # another tab created the row first
            await original_insert(table, row)
            raise CollisionError("already_exists")

        signed_in_gateway.insert = losing_insert
        principal = await resolver.resolve()
        assert principal.id == "stu-1"
        assert signed_in_gateway.calls["select:users"] == 2

    @pytest.mark.asyncio
    async def test_provisioning_failure_is_anonymous(self, resolver, signed_in_gateway):
        signed_in_gateway.tables["users"] = []
        signed_in_gateway.fail_next("insert:users", DatabaseError("permission_denied"))
        assert await resolver.resolve() is None
        assert signed_in_gateway.calls["select:users"] == 2

    @pytest.mark.asyncio
    async def test_foreign_domain_is_not_provisioned(self, gateway, data_cache, clock):
        outsider = Identity(id="x-1", email="someone@gmail.com")
        gateway.session = AuthSession(identity=outsider)
        resolver = SessionResolver(gateway, data_cache=data_cache, clock=clock)
        assert await resolver.resolve() is None
        assert gateway.calls["insert:users"] == 0

    @pytest.mark.asyncio
    async def test_refresh_rereads_profile(self, resolver, signed_in_gateway):
        await resolver.resolve()
        signed_in_gateway.tables["users"][0]["name"] = "Asha P."
        principal = await resolver.refresh()
        assert principal.display_name == "Asha P."

    @pytest.mark.asyncio
    async def test_is_session_valid(self, resolver, signed_in_gateway):
        assert await resolver.is_session_valid()
        signed_in_gateway.fail_next("get_session", NetworkError("offline"))
        assert not await resolver.is_session_valid()
        signed_in_gateway.session = None
        assert not await resolver.is_session_valid()


class TestAuthEvents:
    def test_event_parsing(self):
        assert AuthEvent.parse("SIGNED_IN") is AuthEvent.SIGNED_IN
        assert AuthEvent.parse("signed-out") is AuthEvent.SIGNED_OUT
        assert AuthEvent.parse("USER_UPDATED") is None

    @pytest.mark.asyncio
    async def test_signed_out_clears_everything(self, resolver, data_cache):
        seen = []
        resolver.subscribe(seen.append)
        await resolver.resolve()
        await data_cache.get_or_fetch("certificates:stu-1", 30, lambda: [])

        assert await resolver.handle_auth_event("SIGNED_OUT", None) is None
        assert resolver.state is SessionState.ANONYMOUS
        assert len(data_cache) == 0
        assert seen == [None]
        assert get_actor_id() is None

    @pytest.mark.asyncio
    async def test_redundant_event_for_same_identity_is_suppressed(
        self, resolver, signed_in_gateway, student_identity, data_cache
    ):
        seen = []
        resolver.subscribe(seen.append)
        await resolver.resolve()
        await data_cache.get_or_fetch("certificates:stu-1", 30, lambda: [])

        for event in ("SIGNED_IN", "TOKEN_REFRESHED", "INITIAL_SESSION"):
            principal = await resolver.handle_auth_event(event, AuthSession(identity=student_identity))
            assert principal.id == "stu-1"

        assert signed_in_gateway.calls["get_session"] == 1
        assert "certificates:stu-1" in data_cache
        assert seen == []

    @pytest.mark.asyncio
    async def test_identity_switch_clears_data_and_reresolves(
        self, resolver, signed_in_gateway, teacher_identity, data_cache
    ):
        seen = []
        resolver.subscribe(seen.append)
        await resolver.resolve()
        await data_cache.get_or_fetch("certificates:stu-1", 30, lambda: [])

        signed_in_gateway.session = AuthSession(identity=teacher_identity)
        signed_in_gateway.user = teacher_identity
        principal = await resolver.handle_auth_event(
            "TOKEN_REFRESHED", AuthSession(identity=teacher_identity)
        )
        assert principal.id == "t-1"
        assert principal.role is Role.TEACHER
        assert len(data_cache) == 0
        assert [p.id for p in seen] == ["t-1"]

    @pytest.mark.asyncio
    async def test_unknown_events_are_ignored(self, resolver, signed_in_gateway, student_identity):
        await resolver.handle_auth_event("USER_UPDATED", AuthSession(identity=student_identity))
        assert signed_in_gateway.calls["get_session"] == 0

    @pytest.mark.asyncio
    async def test_events_during_resolution_join_it(
        self, resolver, signed_in_gateway, student_identity
    ):
        seen = []
        resolver.subscribe(seen.append)
        signed_in_gateway.latency = 0.02
        session = AuthSession(identity=student_identity)

        first, second = await asyncio.gather(
            resolver.handle_auth_event("INITIAL_SESSION", session),
            resolver.handle_auth_event("SIGNED_IN", session),
        )
        assert first.id == second.id == "stu-1"
        assert signed_in_gateway.calls["get_session"] == 1
        assert signed_in_gateway.calls["select:users"] == 1
        assert [p.id for p in seen] == ["stu-1"]
        assert resolver.state is SessionState.RESOLVED

    @pytest.mark.asyncio
    async def test_sign_out_during_resolution_wins(self, resolver, signed_in_gateway):
        signed_in_gateway.latency = 0.02
        pending = asyncio.ensure_future(resolver.resolve())
        await asyncio.sleep(0.005)
        assert resolver.state is SessionState.RESOLVING

        await resolver.handle_auth_event("SIGNED_OUT", None)
        assert await pending is None
        assert resolver.principal is None
        assert resolver.state is SessionState.ANONYMOUS
        assert get_actor_id() is None

    @pytest.mark.asyncio
    async def test_refresh_discards_resolution_in_flight(self, resolver, signed_in_gateway):
        signed_in_gateway.latency = 0.02
        stale = asyncio.ensure_future(resolver.resolve())
        await asyncio.sleep(0.005)
        fresh = await resolver.refresh()
        assert fresh.id == "stu-1"
        assert await stale is None
        assert resolver.principal.id == "stu-1"

    @pytest.mark.asyncio
    async def test_attached_resolver_follows_gateway_events(
        self, resolver, signed_in_gateway, teacher_identity
    ):
        resolver.attach()
        await resolver.resolve()

        signed_in_gateway.sign_in(teacher_identity)
        await resolver.drain()
        assert resolver.principal.id == "t-1"

        await signed_in_gateway.sign_out()
        await resolver.drain()
        assert resolver.principal is None
        assert resolver.state is SessionState.ANONYMOUS

        resolver.detach()
        signed_in_gateway.sign_in(teacher_identity)
        await resolver.drain()
        assert resolver.principal is None

    @pytest.mark.asyncio
    async def test_unsubscribed_listener_is_not_called(self, resolver):
        seen = []
        unsubscribe = resolver.subscribe(seen.append)
        unsubscribe()
        await resolver.handle_auth_event("SIGNED_OUT", None)
        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others(self, resolver):
        seen = []

        def broken(_principal):
            raise RuntimeError("ui crashed")

        resolver.subscribe(broken)
        resolver.subscribe(seen.append)
        await resolver.handle_auth_event("SIGNED_OUT", None)
        assert seen == [None]

    @pytest.mark.asyncio
    async def test_sign_out(self, resolver, signed_in_gateway, data_cache):
        await resolver.resolve()
        await data_cache.get_or_fetch("certificates:stu-1", 30, lambda: [])
        await resolver.sign_out()
        assert signed_in_gateway.session is None
        assert len(data_cache) == 0
        assert resolver.state is SessionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_sign_out_failure_raises_auth_error(self, resolver, signed_in_gateway):
        signed_in_gateway.fail_next("sign_out", NetworkError("offline"))
        with pytest.raises(AuthError) as exc_info:
            await resolver.sign_out()
        assert exc_info.value.code == "sign_out_failed"


# ── authorization ──────────────────────────────────────────────────────────

class TestAuthorization:
    @pytest.mark.asyncio
    async def test_allowed_role_returns_principal(self, resolver):
        principal = await require_role(resolver, [Role.STUDENT])
        assert principal.id == "stu-1"

    @pytest.mark.asyncio
    async def test_anonymous_redirects_to_sign_in(self, gateway, data_cache, clock):
        resolver = SessionResolver(gateway, data_cache=data_cache, clock=clock)
        with pytest.raises(AuthError) as exc_info:
            await require_role(resolver, [Role.STUDENT])
        assert exc_info.value.redirect_to == "/auth"

    @pytest.mark.asyncio
    async def test_wrong_role_redirects_to_own_dashboard(self, resolver):
        with pytest.raises(ForbiddenError) as exc_info:
            await require_role(resolver, ["tp-officer", Role.ADMIN])
        assert exc_info.value.redirect_to == "/dashboard/student"
        assert exc_info.value.kind == "forbidden"

    def test_officer_dashboard_path(self, officer_record):
        officer = Principal.from_record(officer_record)
        with pytest.raises(ForbiddenError) as exc_info:
            check_role(officer, [Role.STUDENT])
        assert exc_info.value.redirect_to == "/dashboard/tp-officer"

    def test_empty_allow_list_only_requires_sign_in(self, student_record):
        student = Principal.from_record(student_record)
        assert check_role(student, ()) is student

    def test_has_permission_follows_hierarchy(self, officer_record):
        officer = Principal.from_record(officer_record)
        assert has_permission(officer, Role.TEACHER)
        assert not has_permission(officer, Role.ADMIN)
        assert not has_permission(None, Role.STUDENT)


# ── records: reads ─────────────────────────────────────────────────────────

NOC_ROWS = [
    {"id": 1, "student_id": "stu-1", "company_name": "Acme", "status": "pending",
     "submitted_date": "2024-02-01T00:00:00Z"},
    {"id": 2, "student_id": "stu-1", "company_name": "Globex", "status": "approved",
     "submitted_date": "2024-01-01T00:00:00Z"},
    {"id": 3, "student_id": "stu-2", "company_name": "Initech", "status": "pending",
     "submitted_date": "2024-01-15T00:00:00Z"},
]

OPPORTUNITY_ROWS = [
    {"id": 1, "title": "Backend Intern", "company_name": "Acme", "location": "Pune",
     "job_type": "Paid Internship", "status": "active", "posted_date": "2024-01-02"},
    {"id": 2, "title": "Data Intern", "company_name": "Globex", "location": "Bangalore",
     "job_type": "Unpaid Internship", "status": "active", "posted_date": "2024-01-03"},
    {"id": 3, "title": "Closed Role", "company_name": "Initech", "location": "Pune",
     "job_type": "Paid Internship", "status": "closed", "posted_date": "2024-01-04"},
]


class TestRecordReads:
    @pytest.mark.asyncio
    async def test_without_backend_serves_fallback(self, data_cache, clock):
        records = PortalRecords(None, data_cache, clock=clock)
        outcome = await records.noc_requests("stu-1")
        assert outcome.degraded
        assert outcome.reason == "backend_unavailable"
        assert outcome.value == FallbackDataset.noc_requests("stu-1")

    @pytest.mark.asyncio
    async def test_reads_are_scoped_and_cached(self, records, signed_in_gateway):
        signed_in_gateway.tables["noc_requests"] = [dict(r) for r in NOC_ROWS]
        first = await records.noc_requests("stu-1")
        second = await records.noc_requests("stu-1")
        assert first.ok
        assert [r["id"] for r in first.value] == [1, 2]
        assert second.value == first.value
        assert signed_in_gateway.calls["select:noc_requests"] == 1

    @pytest.mark.asyncio
    async def test_empty_result_is_not_replaced(self, records):
        outcome = await records.certificates("stu-1")
        assert outcome.ok
        assert outcome.value == []

    @pytest.mark.asyncio
    async def test_failure_falls_back_and_is_not_cached(self, records, signed_in_gateway):
        signed_in_gateway.fail_next("select:weekly_reports", NetworkError("gateway_unreachable"))
        degraded = await records.weekly_reports("stu-1")
        assert degraded.degraded
        assert degraded.reason == "gateway_unreachable"
        assert degraded.value == FallbackDataset.weekly_reports("stu-1")

        recovered = await records.weekly_reports("stu-1")
        assert recovered.ok
        assert signed_in_gateway.calls["select:weekly_reports"] == 2

    @pytest.mark.asyncio
    async def test_opportunities_lists_active_only(self, records, signed_in_gateway):
        signed_in_gateway.tables["job_opportunities"] = [dict(r) for r in OPPORTUNITY_ROWS]
        outcome = await records.opportunities()
        assert [r["id"] for r in outcome.value] == [2, 1]

    @pytest.mark.asyncio
    async def test_search_opportunities(self, records, signed_in_gateway):
        signed_in_gateway.tables["job_opportunities"] = [dict(r) for r in OPPORTUNITY_ROWS]
        by_text = await records.search_opportunities(search="data")
        assert [r["id"] for r in by_text.value] == [2]
        by_location = await records.search_opportunities(location="pune", job_type="paid")
        assert [r["id"] for r in by_location.value] == [1]
        by_company = await records.search_opportunities(company="Glob")
        assert [r["id"] for r in by_company.value] == [2]
        assert signed_in_gateway.calls["select:job_opportunities"] == 1

    @pytest.mark.asyncio
    async def test_search_keeps_fallback_status(self, data_cache, clock):
        records = PortalRecords(None, data_cache, clock=clock)
        outcome = await records.search_opportunities(location="Pune")
        assert outcome.degraded
        assert [r["company_name"] for r in outcome.value] == ["DataMine Analytics"]

    @pytest.mark.asyncio
    async def test_student_dashboard_from_live_tables(self, records, signed_in_gateway):
        signed_in_gateway.tables["noc_requests"] = [dict(r) for r in NOC_ROWS]
        signed_in_gateway.tables["job_opportunities"] = [dict(r) for r in OPPORTUNITY_ROWS]
        outcome = await records.student_dashboard("stu-1")
        assert outcome.ok
        assert outcome.value["noc_requests"] == {"total": 2, "pending": 1, "approved": 1, "rejected": 0}
        assert outcome.value["opportunities"]["total"] == 2

    @pytest.mark.asyncio
    async def test_student_dashboard_falls_back_on_partial_failure(self, records, signed_in_gateway):
        signed_in_gateway.fail_next("select:certificates", DatabaseError("42P01"))
        outcome = await records.student_dashboard("stu-1")
        assert outcome.degraded
        assert outcome.value == FallbackDataset.student_dashboard("stu-1")

    @pytest.mark.asyncio
    async def test_placement_dashboard_spans_students(self, records, signed_in_gateway):
        signed_in_gateway.tables["noc_requests"] = [dict(r) for r in NOC_ROWS]
        outcome = await records.placement_dashboard()
        assert outcome.value["stats"]["pending_nocs"] == 2
        assert len(outcome.value["pending_items"]["noc_requests"]) == 2


# ── records: writes ────────────────────────────────────────────────────────

class TestRecordWrites:
    @pytest.mark.asyncio
    async def test_create_noc_request_stamps_actor(self, records, resolver, signed_in_gateway):
        student = await resolver.resolve()
        created = await records.create_noc_request(
            student, {"company_name": "Acme", "position": "Intern", "start_date": "2024-06-01"}
        )
        assert created["student_id"] == "stu-1"
        assert created["student_email"] == "21ce045@charusat.edu.in"
        assert created["status"] == "pending"
        assert signed_in_gateway.tables["noc_requests"][0]["company_name"] == "Acme"

    @pytest.mark.asyncio
    async def test_write_invalidates_cached_reads(self, records, resolver, signed_in_gateway):
        student = await resolver.resolve()
        assert (await records.noc_requests("stu-1")).value == []
        await records.create_noc_request(
            student, {"company_name": "Acme", "position": "Intern", "start_date": "2024-06-01"}
        )
        after = await records.noc_requests("stu-1")
        assert len(after.value) == 1
        assert signed_in_gateway.calls["select:noc_requests"] == 2

    @pytest.mark.asyncio
    async def test_missing_fields_never_reach_backend(self, records, resolver, signed_in_gateway):
        student = await resolver.resolve()
        with pytest.raises(ValidationError) as exc_info:
            await records.create_noc_request(student, {"company_name": "Acme"})
        assert set(exc_info.value.fields) == {"position", "start_date"}
        assert signed_in_gateway.calls["insert:noc_requests"] == 0

    @pytest.mark.asyncio
    async def test_write_failure_is_raised_not_faked(self, records, resolver, signed_in_gateway):
        student = await resolver.resolve()
        signed_in_gateway.fail_next("insert:certificates", NetworkError("gateway_unreachable"))
        with pytest.raises(NetworkError):
            await records.create_certificate(student, {"title": "Intern", "company_name": "Acme"})

    @pytest.mark.asyncio
    async def test_simulated_write_without_backend(self, data_cache, clock, student_record):
        records = PortalRecords(None, data_cache, clock=clock)
        student = Principal.from_record(student_record)
        created = await records.create_certificate(student, {"title": "Intern", "company_name": "Acme"})
        assert created["title"] == "Intern"
        assert len(created["id"]) == 36

    @pytest.mark.asyncio
    async def test_update_status_approves_and_invalidates_owner(
        self, records, signed_in_gateway, officer_record, data_cache
    ):
        signed_in_gateway.tables["noc_requests"] = [dict(r) for r in NOC_ROWS]
        await records.noc_requests("stu-1")
        await records.placement_dashboard()
        officer = Principal.from_record(officer_record)

        updated = await records.update_status(
            Resource.NOC_REQUESTS, 1, "approved", officer, feedback="Looks good"
        )
        assert updated["status"] == "approved"
        assert updated["approved_by"] == "Placement Office"
        assert updated["feedback"] == "Looks good"
        assert "noc-requests:stu-1" not in data_cache
        assert "placement-dashboard:*" not in data_cache

    @pytest.mark.asyncio
    async def test_update_status_rejects_unknown_status(self, records, officer_record):
        officer = Principal.from_record(officer_record)
        with pytest.raises(ValidationError):
            await records.update_status("noc-requests", 1, "maybe", officer)
        with pytest.raises(ValidationError):
            await records.update_status("opportunities", 1, "approved", officer)

    @pytest.mark.asyncio
    async def test_update_status_missing_record(self, records, officer_record):
        officer = Principal.from_record(officer_record)
        with pytest.raises(DatabaseError) as exc_info:
            await records.update_status("certificates", 99, "approved", officer)
        assert exc_info.value.code == "record_not_found"

    @pytest.mark.asyncio
    async def test_update_profile_refreshes_principal(self, records, resolver, signed_in_gateway):
        await resolver.resolve()
        await records.update_profile("stu-1", {"name": "Asha R. Patel", "phone": "9999999999"})
        assert signed_in_gateway.tables["users"][0]["phone"] == "9999999999"
        assert resolver.principal.display_name == "Asha R. Patel"

    @pytest.mark.asyncio
    async def test_update_profile_rejects_protected_fields(self, records, signed_in_gateway):
        with pytest.raises(ValidationError) as exc_info:
            await records.update_profile("stu-1", {"role": "admin"})
        assert "role" in exc_info.value.fields
        assert signed_in_gateway.calls["update:users"] == 0
