"""Role-based access control scoped to a restaurant tenant."""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from tipping.core.security import decode_access_token


class UserRole(str, Enum):
    """User roles for RBAC.

    ``admin`` is a platform operator and may act on any restaurant. The
    other roles are bound to the ``restaurant_id`` in their token.
    """

    ADMIN = "admin"
    OWNER = "owner"
    MANAGER = "manager"
    STAFF = "staff"


# Role hierarchy: admin > owner > manager > staff
ROLE_HIERARCHY = {
    UserRole.ADMIN: 4,
    UserRole.OWNER: 3,
    UserRole.MANAGER: 2,
    UserRole.STAFF: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's ID.
        email: The user's email address.
        role: The user's role.
        restaurant_id: Tenant the token is bound to, None for platform admins.
    """

    def __init__(self, user_id: int, email: str, role: UserRole,
                 restaurant_id: Optional[int] = None):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.restaurant_id = restaurant_id

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def can_access(self, restaurant_id: int) -> bool:
        return self.is_admin or self.restaurant_id == restaurant_id


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated user from the Bearer token or cookie."""
    payload = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    if payload is None:
        cookie_token = request.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    email = payload.get("email")
    role = payload.get("role")

    if user_id is None or email is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        user_role = UserRole(role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in token",
        )

    restaurant_id = payload.get("restaurant_id")
    return TokenData(
        user_id=int(user_id), email=email, role=user_role,
        restaurant_id=int(restaurant_id) if restaurant_id is not None else None,
    )


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


def check_restaurant_access(user: TokenData, restaurant_id: int) -> None:
    """Raise 403 unless the user may act on this restaurant."""
    if not user.can_access(restaurant_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access to this restaurant is not allowed",
        )


# Common role dependencies
RequireAdmin = Annotated[TokenData, Depends(require_role(UserRole.ADMIN))]
RequireManager = Annotated[TokenData, Depends(require_role(UserRole.MANAGER))]
