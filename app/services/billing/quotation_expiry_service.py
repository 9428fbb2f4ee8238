import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import AsyncSessionLocal
from app.models.billing.quotation_models import Quotation
from app.models.enums.quotation_status import QuotationStatus
from app.constants.activity_codes import ActivityCode
from app.services.billing.quotation_store import get_quotation_for_update, commit_or_conflict
from app.services.workflow.policy import SYSTEM_ACTOR
from app.services.workflow.state_machine import state_machine
from app.utils.activity_helpers import emit_activity, actor_labels
from app.utils.datetime_utils import utcnow, as_utc

logger = logging.getLogger(__name__)


async def _expire_one(db: AsyncSession, quotation_id: int) -> bool:
    q = await get_quotation_for_update(db, quotation_id)
    now = utcnow()
    valid_until = as_utc(q.valid_until)

    # re-check under the row lock; the quotation may have moved on meanwhile
    if q.status != QuotationStatus.sent or valid_until is None or valid_until >= now:
        return False

    state_machine.transition(
        q,
        QuotationStatus.expired,
        SYSTEM_ACTOR,
        {"reason": "Validity period elapsed"},
    )

    await emit_activity(
        db,
        user_id=None,
        username=SYSTEM_ACTOR.username,
        code=ActivityCode.EXPIRE_QUOTATION,
        target_name=q.quotation_number,
        changes=f"valid until {valid_until.date().isoformat()}",
        **actor_labels(SYSTEM_ACTOR),
    )

    await commit_or_conflict(db, q)
    return True


async def auto_expire_quotations(session_factory=AsyncSessionLocal) -> int:
    now = utcnow()

    async with session_factory() as db:
        result = await db.execute(
            select(Quotation.id)
            .where(
                Quotation.is_deleted.is_(False),
                Quotation.status == QuotationStatus.sent,
                Quotation.valid_until.isnot(None),
                Quotation.valid_until < now,
            )
            .order_by(Quotation.valid_until)
        )
        candidates = list(result.scalars().all())

    expired = 0
    for quotation_id in candidates:
        try:
            async with session_factory() as db:
                if await _expire_one(db, quotation_id):
                    expired += 1
        except Exception:
            logger.exception("Error expiring quotation", extra={"quotation_id": quotation_id})

    if candidates:
        logger.info("Quotation expiry sweep finished", extra={"candidates": len(candidates), "expired": expired})
    return expired
