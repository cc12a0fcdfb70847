"""
portal_sdk.tier2_reliability.invalidation
──────────────────────────────────────────
Cache keys are namespaced ``<resource>:<actor>`` so a write by one actor
never evicts another actor's entries. After a successful write the
invalidator evicts the written resource plus every view derived from it.
"""
from __future__ import annotations

from enum import Enum

from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier2_reliability.cache import TTLCache

logger = get_logger("portal_sdk.invalidation")

SHARED = "*"


class Resource(str, Enum):
    STUDENT_DASHBOARD = "student-dashboard"
    PLACEMENT_DASHBOARD = "placement-dashboard"
    NOC_REQUESTS = "noc-requests"
    CERTIFICATES = "certificates"
    WEEKLY_REPORTS = "weekly-reports"
    OPPORTUNITIES = "opportunities"
    PROFILE = "profile"


# resource written → per-actor views and shared views that embed it
_DERIVED: dict[Resource, tuple[tuple[Resource, ...], tuple[Resource, ...]]] = {
    Resource.NOC_REQUESTS: ((Resource.STUDENT_DASHBOARD,), (Resource.PLACEMENT_DASHBOARD,)),
    Resource.CERTIFICATES: ((Resource.STUDENT_DASHBOARD,), (Resource.PLACEMENT_DASHBOARD,)),
    Resource.WEEKLY_REPORTS: ((Resource.STUDENT_DASHBOARD,), (Resource.PLACEMENT_DASHBOARD,)),
    Resource.OPPORTUNITIES: ((), (Resource.PLACEMENT_DASHBOARD,)),
    Resource.PROFILE: ((), ()),
}


def cache_key(resource: Resource | str, actor_id: str | None = None) -> str:
    """``cache_key(Resource.CERTIFICATES, "u1") == "certificates:u1"``."""
    name = resource.value if isinstance(resource, Resource) else str(resource)
    return f"{name}:{actor_id or SHARED}"


class CacheInvalidator:
    """Evicts the keys a write makes stale."""

    def __init__(self, cache: TTLCache) -> None:
        self._cache = cache

    def keys_for(self, resource: Resource, actor_id: str | None) -> list[str]:
        per_actor, shared = _DERIVED.get(resource, ((), ()))
        keys = [cache_key(resource, actor_id)]
        if actor_id is not None:
            # actor-less listings of the resource are stale too
            keys.append(cache_key(resource))
        keys.extend(cache_key(view, actor_id) for view in per_actor)
        keys.extend(cache_key(view) for view in shared)
        return list(dict.fromkeys(keys))

    def after_write(self, resource: Resource, actor_id: str | None = None) -> list[str]:
        keys = self.keys_for(resource, actor_id)
        for key in keys:
            self._cache.invalidate(key)
        logger.info("cache.write_invalidated", resource=resource.value, actor_id=actor_id, keys=keys)
        return keys


__all__ = ["Resource", "cache_key", "CacheInvalidator", "SHARED"]
