"""
portal_sdk.tier1_runtime.result
─────────────────────────────────
Typed outcome envelope for data-access calls. Read paths return either
real data (``ok``) or degraded data (``fallback``) so callers and tests can
tell them apart without parsing logs; ``err`` carries a typed write failure.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Generic, Literal, TypeVar

from portal_sdk.tier0_core.errors import PortalError

T = TypeVar("T")

Status = Literal["ok", "fallback", "error"]


@dataclass(frozen=True)
class Outcome(Generic[T]):
    status: Status
    value: T | None = None
    reason: str | None = None
    error: PortalError | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def degraded(self) -> bool:
        return self.status == "fallback"

    @property
    def failed(self) -> bool:
        return self.status == "error"

    @property
    def message(self) -> str | None:
        """User-facing message for a failed outcome."""
        return self.error.user_message if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value (real or fallback); raise the error for ``err``."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def as_dict(self) -> dict:
        d: dict = {"status": self.status, "data": self.value}
        if self.reason:
            d["reason"] = self.reason
        if self.error is not None:
            d.update(self.error.to_dict())
        return d


def ok(value: T) -> Outcome[T]:
    return Outcome(status="ok", value=value)


def fallback(value: T, reason: str) -> Outcome[T]:
    return Outcome(status="fallback", value=value, reason=reason)


def err(error: PortalError) -> Outcome[None]:
    return Outcome(status="error", error=error, reason=error.code)


async def capture(awaitable: Awaitable[T]) -> Outcome[T]:
    """
    Await a write and fold its typed failure into an ``err`` outcome.

    Only portal errors are folded; anything else is a bug and propagates.

    Usage::

        outcome = await capture(records.create_noc_request(actor, form))
        if outcome.failed:
            show_toast(outcome.message)
    """
    try:
        return ok(await awaitable)
    except PortalError as exc:
        return err(exc)  # type: ignore[return-value]


__all__ = ["Outcome", "ok", "fallback", "err", "capture"]
