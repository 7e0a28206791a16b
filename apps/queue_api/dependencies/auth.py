from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    STAFF = "staff"
    VIEWER = "viewer"


class User:
    """Authenticated caller; ``staff_id`` is set for counter staff accounts."""

    def __init__(self, username: str, roles: tuple[Role, ...], staff_id: int | None = None):
        self.username = username
        self.roles = roles
        self.staff_id = staff_id

    def has_role(self, role: Role) -> bool:
        return role in self.roles


TOKEN_USER_MAP: dict[str, tuple[str, tuple[Role, ...], int | None]] = {
    "admin-token": ("admin", (Role.ADMIN, Role.STAFF, Role.VIEWER), 1),
    "staff-token": ("staff", (Role.STAFF, Role.VIEWER), 2),
    "viewer-token": ("viewer", (Role.VIEWER,), None),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return a user instance associated with the provided bearer token."""

    if token is None:
        return User(username="anonymous", roles=(Role.VIEWER,))

    if token not in TOKEN_USER_MAP:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    username, roles, staff_id = TOKEN_USER_MAP[token]
    return User(username=username, roles=roles, staff_id=staff_id)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Static token authentication stub.

    Tokens map to fixed accounts; a deployment would verify the token against
    its identity provider instead.
    """

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


def role_required(role: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
