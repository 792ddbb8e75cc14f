# Overview: Service-layer operations for role gates; resolves actors and checks capabilities.

"""
LabTrace Role Gates

WHY: The upstream authentication provider supplies (user_id, role) for every
call. This module turns that pair into an Actor and answers "may this actor
do X?" from the static role -> capability table in labtrace.permissions.

No session handling lives here: identity is trusted as given.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import Forbidden, Unauthorized
from ..permissions import Role, ROLE_CAPABILITIES, role_has_capability


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the auth provider."""
    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "role": self.role.value}


# Used by CLI commands and background maintenance (no human caller).
SYSTEM_ACTOR = Actor(user_id=0, role=Role.ADMIN)


def resolve_actor(user_id_raw, role_raw) -> Actor:
    """
    Build an Actor from raw identity values (request headers).

    Raises:
        Unauthorized: missing/malformed user id or unknown role
    """
    if user_id_raw is None or str(user_id_raw).strip() == "":
        raise Unauthorized("Authentication required")
    try:
        user_id = int(str(user_id_raw).strip())
    except ValueError:
        raise Unauthorized("Invalid user identity")

    role = Role.parse(role_raw)
    if role is None:
        raise Unauthorized(f"Unknown role: {role_raw!r}")
    return Actor(user_id=user_id, role=role)


def get_actor_capabilities(actor: Actor) -> set[str]:
    return set(ROLE_CAPABILITIES.get(actor.role, frozenset()))


def has_capability(actor: Actor, code: str) -> bool:
    return role_has_capability(actor.role, code)


def require_capability(actor: Actor | None, code: str, *, resource: str | None = None) -> None:
    """
    Enforce a capability gate.

    Raises:
        Unauthorized: no actor
        Forbidden: actor's role lacks the capability
    """
    if actor is None:
        raise Unauthorized("Authentication required")
    if not has_capability(actor, code):
        log_security_event(actor, code, resource=resource)
        raise Forbidden(f"Role {actor.role.value} lacks capability {code}")


def require_role(actor: Actor | None, allowed_roles, *, action: str) -> None:
    """
    Per-state role gate used by the state machine (e.g. only ADMIN may void).
    """
    if actor is None:
        raise Unauthorized("Authentication required")
    if actor.role not in allowed_roles:
        allowed = ", ".join(sorted(r.value for r in allowed_roles))
        log_security_event(actor, action)
        raise Forbidden(f"Role {actor.role.value} cannot {action} (allowed: {allowed})")


def log_security_event(actor: Actor, capability: str, *, resource: str | None = None) -> None:
    current_app.logger.warning(
        "Permission denied: user=%s role=%s capability=%s resource=%s",
        actor.user_id,
        actor.role.value,
        capability,
        resource,
    )
