"""
portal_sdk.tier0_core.ids
──────────────────────────
ID generation utilities. Simulated writes (backend absent) get a UUID v4;
upload collision retries get a short random suffix.
"""
from __future__ import annotations

import secrets
import string
import uuid
from typing import Literal

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def new_uuid4() -> str:
    """Generate a random UUID v4 string."""
    return str(uuid.uuid4())


def short_token(length: int = 4) -> str:
    """Lowercase alphanumeric token, e.g. ``"k3x9"``."""
    if length < 1:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def new_id(kind: Literal["uuid4", "short"] = "uuid4") -> str:
    """Generate a new portal ID of the given kind."""
    if kind == "uuid4":
        return new_uuid4()
    if kind == "short":
        return short_token(8)
    raise ValueError(f"Unknown ID kind: {kind!r}. Use 'uuid4' or 'short'.")


__all__ = ["new_uuid4", "short_token", "new_id"]
