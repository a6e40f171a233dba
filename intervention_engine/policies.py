from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Set

from flask import request, session

from intervention_engine.errors import AuthorizationDenied
from intervention_engine.team import scoped_team_id


GESTIONNAIRE = "gestionnaire"
PRESTATAIRE = "prestataire"
LOCATAIRE = "locataire"

VALID_ROLES: Set[str] = {GESTIONNAIRE, PRESTATAIRE, LOCATAIRE}


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str
    team_id: str


def normalize_role(role: str | None, default: str = "") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_role() -> str:
    return normalize_role(session.get("user_role") or request.headers.get("X-User-Role"))


def current_actor() -> Actor:
    """Resolve the caller from the session, falling back to identity headers."""
    user_id = str(session.get("user_id") or request.headers.get("X-User-Id") or "").strip()
    role = current_role()
    if not user_id or not role:
        raise AuthorizationDenied(
            code="identity_required",
            message_key="identity_required",
            http_status=401,
        )
    return Actor(user_id=user_id, role=role, team_id=scoped_team_id())


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role)
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalize_role(role) in allowed


def require_roles(actor: Actor, *allowed_roles: str) -> Actor:
    if has_any_role(actor.role, allowed_roles):
        return actor
    raise AuthorizationDenied(
        payload={"role": actor.role, "allowed_roles": sorted(normalize_allowed_roles(allowed_roles))},
    )
