"""
portal_sdk.tier3_platform.authorization
────────────────────────────────────────────
Role gates for portal pages and actions.

Roles are ordered student < teacher < placement-officer < admin. A gate
either returns the resolved principal or raises with a ``redirect_to``
telling the caller where to send the user: sign-in for anonymous callers,
their own dashboard for callers with the wrong role.
"""
from __future__ import annotations

from typing import Iterable

from portal_sdk.tier0_core.errors import AuthError, ForbiddenError
from portal_sdk.tier0_core.identity import Principal, Role
from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier3_platform.session import SessionResolver

logger = get_logger("portal_sdk.authorization")

SIGN_IN_PATH = "/auth"

_DASHBOARDS = {
    Role.STUDENT: "/dashboard/student",
    Role.TEACHER: "/dashboard/teacher",
    Role.PLACEMENT_OFFICER: "/dashboard/tp-officer",
    Role.ADMIN: "/dashboard/admin",
}


def dashboard_path(role: Role | str) -> str:
    return _DASHBOARDS[Role.parse(role)]


def has_permission(principal: Principal | None, required: Role | str) -> bool:
    """True if *principal* holds *required* or a higher role."""
    return principal is not None and principal.at_least(required)


def check_role(principal: Principal | None, allowed: Iterable[Role | str]) -> Principal:
    """Synchronous gate over an already-resolved principal."""
    if principal is None:
        raise AuthError("login_required", redirect_to=SIGN_IN_PATH)
    roles = {Role.parse(r) for r in allowed}
    if roles and principal.role not in roles:
        logger.info(
            "authz.denied",
            actor_id=principal.id,
            role=principal.role.value,
            allowed=sorted(r.value for r in roles),
        )
        raise ForbiddenError(
            "role_not_allowed",
            "You do not have access to this page.",
            detail=f"role {principal.role.value!r} not in {sorted(r.value for r in roles)}",
            redirect_to=dashboard_path(principal.role),
        )
    return principal


async def require_role(resolver: SessionResolver, allowed: Iterable[Role | str]) -> Principal:
    """
    Resolve the current principal and enforce *allowed*.

    Usage::

        officer = await require_role(resolver, [Role.PLACEMENT_OFFICER, Role.ADMIN])

    Raises:
        AuthError: nobody usable is signed in (``redirect_to="/auth"``).
        ForbiddenError: signed in with another role (``redirect_to`` is the
            caller's own dashboard).
    """
    return check_role(await resolver.resolve(), allowed)


__all__ = ["require_role", "check_role", "has_permission", "dashboard_path", "SIGN_IN_PATH"]
