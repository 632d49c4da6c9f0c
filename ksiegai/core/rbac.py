from collections.abc import Callable, Iterable
from fnmatch import fnmatchcase

from fastapi import Depends, HTTPException, status

from ksiegai.core.auth import AuthUser, get_current_user

SUPERUSER_ROLE = "admin"


def has_permission(roles: Iterable[str], permission: str) -> bool:
    """Roles may carry wildcard grants such as ``ksef.*`` or ``periods.*``."""
    granted = list(roles)
    if SUPERUSER_ROLE in granted:
        return True
    return any(fnmatchcase(permission, role) for role in granted if "." in role or role == "*")


def require_permissions(*permissions: str) -> Callable[[AuthUser], AuthUser]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        missing_permissions = [permission for permission in permissions if not has_permission(user.roles, permission)]
        if missing_permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing_permissions)}",
            )
        return user

    return checker
