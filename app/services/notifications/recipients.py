# app/services/notifications/recipients.py
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing.quotation_models import Quotation
from app.models.enums.approval_level import ApprovalLevel, levels_above
from app.models.enums.user_role import UserRole
from app.models.users.user_models import User
from app.services.notifications.notifier import Recipient
from app.services.workflow import policy


def _to_recipient(user: User) -> Recipient:
    return Recipient(email=user.username, name=user.full_name)


async def _active_users(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).where(User.is_active.is_(True)).order_by(User.id)
    )
    return list(result.scalars().all())


async def find_approvers(db: AsyncSession, level: ApprovalLevel | str) -> list[Recipient]:
    # roles live in a JSON column, so the level is resolved in Python
    level = ApprovalLevel(level)
    return [
        _to_recipient(u)
        for u in await _active_users(db)
        if policy.has_any_role(u, (UserRole.manager, UserRole.admin, UserRole.super_admin))
        and policy.approval_level_for(u) == level
    ]


async def find_higher_level_approvers(db: AsyncSession, level: ApprovalLevel | str) -> list[Recipient]:
    above = set(levels_above(level))
    return [
        _to_recipient(u)
        for u in await _active_users(db)
        if policy.has_any_role(u, (UserRole.admin, UserRole.super_admin))
        and policy.approval_level_for(u) in above
    ]


async def find_managers(db: AsyncSession) -> list[Recipient]:
    return [
        _to_recipient(u)
        for u in await _active_users(db)
        if policy.has_any_role(u, (UserRole.manager, UserRole.admin))
    ]


async def user_by_id(db: AsyncSession, user_id: int | None) -> list[Recipient]:
    if user_id is None:
        return []
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        return []
    return [_to_recipient(user)]


async def creator_of(db: AsyncSession, q: Quotation) -> list[Recipient]:
    return await user_by_id(db, q.created_by_id)


def client_of(q: Quotation) -> list[Recipient]:
    if not q.client_email:
        return []
    return [Recipient(email=q.client_email, name=q.client_name)]
