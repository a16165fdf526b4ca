from collections.abc import Awaitable, Callable

from fastapi import Depends

from app.core.auth import AuthUser, get_current_user
from app.core.errors import ForbiddenError


def require_roles(*roles: str) -> Callable[[AuthUser], Awaitable[AuthUser]]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user.role not in roles:
            raise ForbiddenError(
                f"Role '{user.role}' is not allowed here",
                details={"required_roles": list(roles)},
            )
        return user

    return checker
