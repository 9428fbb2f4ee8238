from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants.activity_codes import ActivityCode
from app.constants.error_codes import ErrorCode
from app.core.exceptions import AppException
from app.core.security import verify_password, create_access_token, unauthorized
from app.models.users.user_models import User
from app.schemas.auth.auth_schemas import LoginOut, LoginUserOut, TokenOut
from app.utils.activity_helpers import emit_activity, actor_labels
from app.utils.datetime_utils import utcnow
from app.utils.logger import get_logger

logger = get_logger("auth.service")


# =====================================================
# LOGIN
# =====================================================
async def login_user(db: AsyncSession, email: str, password: str) -> LoginOut:
    logger.info("Authenticating user", extra={"email": email})

    result = await db.execute(select(User).where(User.username == email))
    user = result.scalars().first()

    if not user or not verify_password(password, user.password_hash):
        logger.warning("Invalid credentials", extra={"email": email})
        raise unauthorized("Invalid credentials")

    if not user.is_active:
        logger.warning("Inactive user login blocked", extra={"email": email})
        raise AppException(403, "User account is inactive", ErrorCode.PERMISSION_DENIED)

    user.last_login = utcnow()
    user.is_online = True

    roles = list(user.roles or [])
    access_token = create_access_token(
        subject=user.username,
        token_version=user.token_version,
        roles=roles,
    )

    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.LOGIN,
        **actor_labels(user),
    )
    await db.commit()

    logger.info("Login successful", extra={"user_id": user.id})

    return LoginOut(
        auth=TokenOut(access_token=access_token),
        user=LoginUserOut(id=user.id, username=user.username, full_name=user.full_name, roles=roles),
    )


# =====================================================
# LOGOUT
# =====================================================
async def logout_user(db: AsyncSession, user: User) -> None:
    # invalidates every access token issued so far
    user.token_version += 1
    user.is_online = False

    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.LOGOUT,
        **actor_labels(user),
    )
    await db.commit()

    logger.info("Logout successful", extra={"user_id": user.id})
