"""Authenticated actor dependency.

The identity service issues bearer session tokens of the form::

    <actor_id>:<role>:<expires_unix>.<hex hmac-sha256 of the part before the dot>

signed with the shared ``identity_signing_key``. This module only verifies
them; how actors log in is the identity service's business.
"""

import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass

from fastapi import Request

from jobbroker.config import settings
from jobbroker.errors import AuthenticationError, AuthorizationError
from jobbroker.models.actor import ActorRole


@dataclass(frozen=True)
class Actor:
    """Container for the verified actor context."""
    actor_id: uuid.UUID
    role: ActorRole

    @property
    def is_operator(self) -> bool:
        return self.role == ActorRole.OPERATOR


def _sign(payload: str) -> str:
    return hmac.new(
        settings.identity_signing_key.encode(), payload.encode(), hashlib.sha256
    ).hexdigest()


def issue_session_token(
    actor_id: uuid.UUID, role: ActorRole, ttl_seconds: int | None = None
) -> str:
    ttl = settings.session_token_ttl_seconds if ttl_seconds is None else ttl_seconds
    expires = int(time.time()) + ttl
    payload = f"{actor_id}:{role.value}:{expires}"
    return f"{payload}.{_sign(payload)}"


def parse_session_token(token: str) -> Actor:
    payload, sep, signature = token.rpartition(".")
    if not sep or not payload:
        raise AuthenticationError("Malformed session token")
    if not hmac.compare_digest(_sign(payload), signature):
        raise AuthenticationError("Invalid session token signature")

    try:
        actor_id_str, role_str, expires_str = payload.split(":")
        actor_id = uuid.UUID(actor_id_str)
        role = ActorRole(role_str)
        expires = int(expires_str)
    except ValueError:
        raise AuthenticationError("Malformed session token")

    if expires < time.time():
        raise AuthenticationError("Session token expired")
    return Actor(actor_id=actor_id, role=role)


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


async def verify_request(request: Request) -> Actor:
    """Resolve the calling actor from the Authorization header."""
    token = bearer_token(request)
    if token is None:
        raise AuthenticationError("Missing bearer session token")
    return parse_session_token(token)


def require_role(actor: Actor, *roles: ActorRole) -> None:
    if actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise AuthorizationError(f"This action requires role: {allowed}")


async def require_operator(request: Request) -> Actor:
    actor = await verify_request(request)
    require_role(actor, ActorRole.OPERATOR)
    return actor
