"""
portal_sdk
────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier0_core.errors import (
    PortalError,
    AuthError,
    ForbiddenError,
    ProfileMissingError,
    InactiveAccountError,
    NetworkError,
    OperationTimeoutError,
    CollisionError,
    ValidationError,
    DatabaseError,
    ConfigurationError,
)
from portal_sdk.tier0_core.config import get_config, PortalConfig
from portal_sdk.tier0_core.identity import Role, Principal, Identity, AuthSession, EmailPolicy
from portal_sdk.tier0_core.gateway import GatewayClient, SupabaseGateway, InMemoryGateway

from portal_sdk.tier1_runtime.clock import Clock, ManualClock, get_clock, set_clock
from portal_sdk.tier1_runtime.context import get_context, bind_actor
from portal_sdk.tier1_runtime.result import Outcome, capture

from portal_sdk.tier2_reliability.cache import TTLCache
from portal_sdk.tier2_reliability.invalidation import Resource, CacheInvalidator, cache_key
from portal_sdk.tier2_reliability.fallback import FallbackDataset, with_fallback
from portal_sdk.tier2_reliability.storage import UploadFile, UploadResult, UploadPipeline

from portal_sdk.tier3_platform.session import SessionResolver, SessionState
from portal_sdk.tier3_platform.authorization import require_role, has_permission
from portal_sdk.tier3_platform.records import PortalRecords

from portal_sdk.service import PortalService

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "PortalError", "AuthError", "ForbiddenError", "ProfileMissingError",
    "InactiveAccountError", "NetworkError", "OperationTimeoutError",
    "CollisionError", "ValidationError", "DatabaseError", "ConfigurationError",
    # config
    "get_config", "PortalConfig",
    # identity
    "Role", "Principal", "Identity", "AuthSession", "EmailPolicy",
    # gateway
    "GatewayClient", "SupabaseGateway", "InMemoryGateway",
    # clock & context
    "Clock", "ManualClock", "get_clock", "set_clock", "get_context", "bind_actor",
    # results
    "Outcome", "capture",
    # cache
    "TTLCache", "Resource", "CacheInvalidator", "cache_key",
    # fallback
    "FallbackDataset", "with_fallback",
    # uploads
    "UploadFile", "UploadResult", "UploadPipeline",
    # session & authorization
    "SessionResolver", "SessionState", "require_role", "has_permission",
    # records
    "PortalRecords",
    # service
    "PortalService",
]
