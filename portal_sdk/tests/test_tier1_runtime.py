"""Tests for tier1_runtime modules."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from portal_sdk.tier0_core.errors import CollisionError, NetworkError, ValidationError
from portal_sdk.tier0_core.identity import Principal, Role
from portal_sdk.tier1_runtime.clock import Clock, ManualClock, get_clock, set_clock
from portal_sdk.tier1_runtime.context import bind_actor, get_actor_id, get_context
from portal_sdk.tier1_runtime.result import capture, err, fallback, ok
from portal_sdk.tier1_runtime.retry import retry_policy


# ── clock ──────────────────────────────────────────────────────────────────

class TestClock:
    def test_now_returns_utc_datetime(self):
        assert Clock().now().tzinfo is not None

    def test_timestamp_ms_is_int(self):
        ms = Clock().timestamp_ms()
        assert isinstance(ms, int)
        assert ms > 0

    def test_manual_clock_only_moves_when_told(self):
        clock = ManualClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert clock.monotonic() == 0.0
        clock.advance(29.5)
        assert clock.monotonic() == 29.5
        assert clock.now() == datetime(2025, 1, 1, 0, 0, 29, 500000, tzinfo=timezone.utc)

    def test_set_global_clock(self):
        manual = ManualClock()
        set_clock(manual)
        assert get_clock() is manual


# ── context ────────────────────────────────────────────────────────────────

class TestContext:
    def test_bind_actor(self, student_record):
        principal = Principal.from_record(student_record)
        ctx = bind_actor(principal)
        assert ctx.actor_id == "stu-1"
        assert ctx.role == Role.STUDENT.value
        assert get_actor_id() == "stu-1"

    def test_bind_anonymous(self):
        bind_actor(None)
        assert get_context().actor_id is None


# ── result ─────────────────────────────────────────────────────────────────

class TestOutcome:
    def test_ok(self):
        outcome = ok([1, 2])
        assert outcome.ok and not outcome.degraded
        assert outcome.unwrap() == [1, 2]

    def test_fallback_keeps_value_and_reason(self):
        outcome = fallback([{"id": 1}], "network_error")
        assert outcome.degraded
        assert outcome.reason == "network_error"
        assert outcome.unwrap() == [{"id": 1}]
        assert outcome.as_dict()["status"] == "fallback"

    def test_err_raises_on_unwrap(self):
        outcome = err(NetworkError("offline", "You appear to be offline."))
        assert outcome.failed
        assert outcome.message == "You appear to be offline."
        with pytest.raises(NetworkError):
            outcome.unwrap()

    @pytest.mark.asyncio
    async def test_capture_folds_portal_errors(self):
        async def write():
            raise ValidationError("missing_fields", "Fill everything in.")

        outcome = await capture(write())
        assert outcome.failed
        assert outcome.error.kind == "validation"
        assert outcome.as_dict()["error"]["message"] == "Fill everything in."

    @pytest.mark.asyncio
    async def test_capture_lets_bugs_propagate(self):
        async def write():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await capture(write())


# ── retry ──────────────────────────────────────────────────────────────────

class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_collision_once(self):
        attempts = []
        async for attempt in retry_policy(max_attempts=2):
            with attempt:
                attempts.append(attempt.retry_state.attempt_number)
                if len(attempts) == 1:
                    raise CollisionError("already_exists")
        assert attempts == [1, 2]

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        attempts = 0
        with pytest.raises(NetworkError):
            async for attempt in retry_policy(max_attempts=2):
                with attempt:
                    attempts += 1
                    raise NetworkError("offline")
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        attempts = 0
        with pytest.raises(CollisionError):
            async for attempt in retry_policy(max_attempts=2):
                with attempt:
                    attempts += 1
                    raise CollisionError("already_exists")
        assert attempts == 2
