"""Bearer-token and role checks for request handlers."""

from __future__ import annotations

from typing import Iterable, Optional, Union

from .errors import Forbidden, InsufficientRole, Unauthenticated
from .models import Role, UserRecord
from .sessions import AccessTokenIssuer

BEARER_PREFIX = "bearer"


def parse_bearer(authorization: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        raise Unauthenticated("missing Authorization header")
    parts = authorization.strip().split()
    if len(parts) != 2 or parts[0].lower() != BEARER_PREFIX or not parts[1]:
        raise Unauthenticated("malformed Authorization header")
    return parts[1]


def authenticate(issuer: AccessTokenIssuer, authorization: Optional[str]) -> str:
    """Return the user id carried by the bearer token.

    A missing or malformed header is :class:`Unauthenticated`; a bad signature
    or an expired token is :class:`Forbidden`.
    """
    user_id = issuer.verify(parse_bearer(authorization))
    if user_id is None:
        raise Forbidden("access token rejected")
    return user_id


def require_role(user: UserRecord, allowed: Iterable[Union[Role, str]]) -> UserRecord:
    roles = {Role(r) for r in allowed}
    if user.role not in roles:
        raise InsufficientRole(f"role {user.role.value} not in {sorted(r.value for r in roles)}")
    return user
