"""Principal resolution and role-based authorization dependencies.

Authentication happens upstream: the identity provider in front of this
service forwards the resolved principal in ``X-User-Id``, ``X-User-Role`` and
``X-Family-Id``.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"
FAMILY_ID_HEADER = "X-Family-Id"


class Role(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    TRIP_ADMIN = "TRIP_ADMIN"
    FAMILY = "FAMILY"


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role
    family_id: Optional[int] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN

    def owns_family(self, family_id: int) -> bool:
        return self.role is Role.FAMILY and self.family_id == family_id


class InvalidPrincipal(ValueError):
    """Forwarded identity headers are present but unusable."""


def _parse_principal(request: Request) -> Optional[Principal]:
    user_id = request.headers.get(USER_ID_HEADER)
    if user_id is None:
        return None

    raw_role = request.headers.get(USER_ROLE_HEADER, "")
    try:
        role = Role(raw_role.strip().upper())
    except ValueError as e:
        raise InvalidPrincipal(f"Unknown role '{raw_role}'") from e

    family_id = None
    raw_family = request.headers.get(FAMILY_ID_HEADER)
    if raw_family:
        try:
            family_id = int(raw_family)
        except ValueError as e:
            raise InvalidPrincipal(f"Invalid family id '{raw_family}'") from e

    return Principal(id=user_id, role=role, family_id=family_id)


def resolve_principal(request: Request) -> Optional[Principal]:
    """Return the caller's principal, or None for anonymous or malformed identities.

    The result is memoized on ``request.state`` so the cache key and the
    authorization checks always see the same identity.
    """
    if hasattr(request.state, "principal"):
        return request.state.principal
    try:
        principal = _parse_principal(request)
    except InvalidPrincipal:
        principal = None
    request.state.principal = principal
    return principal


def get_current_user(request: Request) -> Principal:
    """FastAPI dependency requiring an authenticated principal."""
    try:
        principal = _parse_principal(request)
    except InvalidPrincipal as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    request.state.principal = principal
    return principal


def require_roles(*roles: Role):
    """Build a dependency that only lets the given roles through."""
    allowed = frozenset(roles)

    def dependency(user: Principal = Depends(get_current_user)) -> Principal:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return dependency
