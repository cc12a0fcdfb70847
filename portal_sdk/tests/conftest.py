"""
portal_sdk test configuration.

All tests run against the in-memory gateway; no external services required.
Backend credentials are cleared so nothing can reach a real Supabase project.
"""
from __future__ import annotations

import os

import pytest

# ── Force an offline, test-mode environment ───────────────────────────────
# These must be set before any portal_sdk modules are imported.

os.environ["APP_ENV"] = "test"
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_ANON_KEY", None)
os.environ.setdefault("PORTAL_LOG_FORMAT", "console")
os.environ.setdefault("PORTAL_LOG_LEVEL", "WARNING")


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """
    Restore the global clock, actor context and config cache between tests.
    This ensures each test starts anonymous with a real clock.
    """
    from portal_sdk.tier0_core.config import _reset_config
    from portal_sdk.tier1_runtime.clock import get_clock, set_clock
    from portal_sdk.tier1_runtime.context import bind_actor

    orig_clock = get_clock()

    yield

    set_clock(orig_clock)
    bind_actor(None)
    _reset_config()


@pytest.fixture
def clock():
    """A clock that only moves on ``advance()``."""
    from portal_sdk.tier1_runtime.clock import ManualClock
    return ManualClock()


@pytest.fixture
def config():
    """Offline config with the default policy values."""
    from portal_sdk.tier0_core.config import PortalConfig
    return PortalConfig(_env_file=None, environment="test", supabase_url=None, supabase_anon_key=None)


@pytest.fixture
def gateway():
    """Return a fresh InMemoryGateway with no session."""
    from portal_sdk.tier0_core.gateway import InMemoryGateway
    return InMemoryGateway()


@pytest.fixture
def student_identity():
    from portal_sdk.tier0_core.identity import Identity
    return Identity(
        id="stu-1",
        email="21ce045@charusat.edu.in",
        metadata={"full_name": "Asha Patel"},
    )


@pytest.fixture
def student_record():
    return {
        "id": "stu-1",
        "email": "21ce045@charusat.edu.in",
        "name": "Asha Patel",
        "role": "student",
        "department": "Computer Engineering",
        "roll_number": "21CE045",
        "is_active": True,
    }


@pytest.fixture
def officer_record():
    return {
        "id": "tpo-1",
        "email": "tp.office@charusat.ac.in",
        "name": "Placement Office",
        "role": "tp-officer",
        "department": "Training & Placement",
        "is_active": True,
    }


@pytest.fixture
def signed_in_gateway(gateway, student_identity, student_record):
    """Gateway with a live student session and an existing profile row."""
    from portal_sdk.tier0_core.identity import AuthSession

    gateway.tables["users"] = [dict(student_record)]
    gateway.session = AuthSession(identity=student_identity, access_token="test-token")
    gateway.user = student_identity
    return gateway


@pytest.fixture
def data_cache(clock):
    from portal_sdk.tier2_reliability.cache import TTLCache
    return TTLCache("data", clock=clock)


@pytest.fixture
def resolver(signed_in_gateway, data_cache, clock):
    from portal_sdk.tier3_platform.session import SessionResolver
    return SessionResolver(signed_in_gateway, data_cache=data_cache, ttl=60.0, clock=clock)
