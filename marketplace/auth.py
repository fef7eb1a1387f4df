"""
Freelance Escrow Marketplace
Identity & capability checks.

Provides:
    - Actor: the (id, role) pair handed to every service operation
    - current_actor(): identity of the caller for the current request
    - require_role() / require_user(): capability checks used *inside* the
      services, so every front end gets the same authorization rules

Security model:
    - Identity is minted upstream and arrives as a Bearer JWT
      (see marketplace.middleware.jwt_auth)
    - Roles: client | freelancer | admin
    - Admin is not a superuser for party actions: an admin cannot accept a
      proposal or submit a deliverable on someone's behalf
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import g

from marketplace.core.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

CLIENT = "client"
FREELANCER = "freelancer"
ADMIN = "admin"

ROLES = frozenset({CLIENT, FREELANCER, ADMIN})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller."""

    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def current_actor() -> Actor:
    """Return the caller set by the JWT middleware, or raise 401-style Unauthorized."""
    actor = getattr(g, "actor", None)
    if actor is None:
        raise UnauthorizedError("Authentication required. Provide a Bearer token.")
    return actor


# ── Capability checks ────────────────────────────────────────────────────────


def require_role(actor: Actor, *roles: str, action: str) -> None:
    """Raise UnauthorizedError unless ``actor.role`` is one of ``roles``."""
    if actor.role not in roles:
        logger.warning(
            "Role '%s' (user %s) denied: %s requires %s",
            actor.role, actor.id, action, "/".join(roles),
        )
        raise UnauthorizedError(
            f"Only {' or '.join(roles)} users can {action}",
            actor_id=actor.id,
            actor_role=actor.role,
            required="/".join(roles),
        )


def require_user(actor: Actor, user_id: int | None, *, role: str, action: str,
                 entity: str | None = None, entity_id: int | None = None) -> None:
    """Raise UnauthorizedError unless ``actor`` is exactly ``user_id`` acting as ``role``."""
    require_role(actor, role, action=action)
    if user_id is None or actor.id != user_id:
        logger.warning(
            "User %s denied: %s is reserved for user %s (%s id=%s)",
            actor.id, action, user_id, entity, entity_id,
        )
        raise UnauthorizedError(
            f"Only the {role} of this {(entity or 'record').lower()} can {action}",
            actor_id=actor.id,
            actor_role=actor.role,
            required=role,
            entity=entity,
            entity_id=entity_id,
        )


def require_party(actor: Actor, user_ids, *, action: str, allow_admin: bool = True,
                  entity: str | None = None, entity_id: int | None = None) -> None:
    """Raise UnauthorizedError unless ``actor`` is one of ``user_ids`` (or an admin)."""
    if allow_admin and actor.is_admin:
        return
    if actor.id in {uid for uid in user_ids if uid is not None}:
        return
    logger.warning(
        "User %s (%s) denied: %s on %s id=%s is limited to its parties",
        actor.id, actor.role, action, entity, entity_id,
    )
    raise UnauthorizedError(
        f"Only parties to this {(entity or 'record').lower()} can {action}",
        actor_id=actor.id,
        actor_role=actor.role,
        entity=entity,
        entity_id=entity_id,
    )
