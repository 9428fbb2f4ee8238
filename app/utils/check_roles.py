from fastapi import Depends

from app.constants.error_codes import ErrorCode
from app.core.exceptions import AppException
from app.models.users.user_models import User
from app.utils.get_user import get_current_user


def require_role(roles: list[str]):
    """
    Coarse route guard. Per-quotation rules (creator, client, approval level)
    are checked again by the workflow policy inside the services.
    """
    wanted = frozenset(r.lower() for r in roles)

    async def role_checker(user: User = Depends(get_current_user)):
        if not wanted.intersection(r.lower() for r in (user.roles or [])):
            raise AppException(403, "Permission denied", ErrorCode.PERMISSION_DENIED)
        return user
    return role_checker
