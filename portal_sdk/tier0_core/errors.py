"""
portal_sdk.tier0_core.errors
─────────────────────────────
Standard error taxonomy for the portal access layer. Every error carries a
stable machine-readable code, a user-safe message, and a coarse ``kind`` the
UI uses to pick wording (network/timeout, conflict, validation, ...).

Read paths never let these escape (they degrade to fallback data); write
paths raise them to the caller.
"""
from __future__ import annotations

from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class PortalError(Exception):
    """
    Base class for all portal errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - kind: coarse class used by the UI to choose a message
    - user_message: safe to surface to end users
    - detail: internal context, never shown to users
    """

    code: str = "internal_error"
    kind: str = "internal"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)

    @property
    def redirect_to(self) -> str | None:
        return self.metadata.get("redirect_to")

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "kind": self.kind,
                "message": self.user_message,
            }
        }


# ── Identity ──────────────────────────────────────────────────────────────────

class AuthError(PortalError):
    """No session, or the session is invalid/expired."""
    code = "auth_error"
    kind = "auth"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Please sign in to continue.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        metadata.setdefault("redirect_to", "/auth")
        super().__init__(code, user_message, detail, **metadata)


class ForbiddenError(PortalError):
    """Principal is authenticated but its role is not allowed here."""
    code = "forbidden"
    kind = "forbidden"


class ProfileMissingError(PortalError):
    """Session is valid but no profile record exists and none could be created."""
    code = "profile_missing"
    kind = "auth"


class InactiveAccountError(PortalError):
    """A profile record exists but the account has been deactivated."""
    code = "inactive_account"
    kind = "auth"


# ── Transport ─────────────────────────────────────────────────────────────────

class NetworkError(PortalError):
    """The remote gateway could not be reached."""
    code = "network_error"
    kind = "network"


class OperationTimeoutError(PortalError):
    """A bounded operation did not finish within its latency budget."""
    code = "timeout"
    kind = "timeout"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "The operation took too long. Try a smaller file or a better connection.",
        timeout: float | None = None,
        **metadata: Any,
    ) -> None:
        self.timeout = timeout
        super().__init__(code, user_message, **metadata)


# ── Data ──────────────────────────────────────────────────────────────────────

class CollisionError(PortalError):
    """A record key or object name already exists."""
    code = "collision"
    kind = "conflict"


class ValidationError(PortalError):
    """Input validation failure (file type, size, missing fields)."""
    code = "validation_error"
    kind = "validation"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Validation failed.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class DatabaseError(PortalError):
    """Generic query or storage failure reported by the backend."""
    code = "database_error"
    kind = "database"


class ConfigurationError(PortalError):
    """Misconfiguration or use of a disposed component."""
    code = "configuration_error"
    kind = "configuration"


__all__ = [
    "PortalError", "AuthError", "ForbiddenError", "ProfileMissingError",
    "InactiveAccountError", "NetworkError", "OperationTimeoutError",
    "CollisionError", "ValidationError", "DatabaseError", "ConfigurationError",
]
