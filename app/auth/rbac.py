from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import ProfileRole

REGISTRAR_ROLES = (ProfileRole.admin, ProfileRole.headteacher, ProfileRole.deputy_headteacher)
FINANCE_ROLES = (ProfileRole.admin,)


def require_roles(*roles: ProfileRole):
    """
    Dependency factory restricting a route to the given profile roles.

    Example:
        Depends(require_roles(ProfileRole.admin))
    """
    allowed = {r.value for r in roles}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker
