"""
portal_sdk.tier1_runtime.context
──────────────────────────────────
Actor context: who the current operation is performed for. Set by the
session resolver once a principal is resolved and read by write paths to
stamp records with an actor id.

Uses Python contextvars for async-safe storage; fields are mirrored into
structlog contextvars so every log line carries the actor.
"""
from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass

import structlog

from portal_sdk.tier0_core.identity import Principal


@dataclass(frozen=True)
class ActorContext:
    actor_id: str | None = None
    role: str | None = None


_ctx: ContextVar[ActorContext] = ContextVar("portal_actor_context", default=ActorContext())


def get_context() -> ActorContext:
    """Return the current actor context."""
    return _ctx.get()


def set_context(ctx: ActorContext) -> None:
    """Set the actor context for the current async scope."""
    _ctx.set(ctx)
    structlog.contextvars.bind_contextvars(actor_id=ctx.actor_id, role=ctx.role)


def bind_actor(principal: Principal | None) -> ActorContext:
    """Activate the context for *principal* (or the anonymous context)."""
    if principal is None:
        ctx = ActorContext()
    else:
        ctx = ActorContext(actor_id=principal.id, role=principal.role.value)
    set_context(ctx)
    return ctx


def get_actor_id() -> str | None:
    return get_context().actor_id


__all__ = ["ActorContext", "get_context", "set_context", "bind_actor", "get_actor_id"]
