import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.models.billing.quotation_models import Quotation
from app.core.exceptions import AppException
from app.constants.error_codes import ErrorCode
from app.utils.activity_helpers import flush_workflow_changes, discard_workflow_changes

logger = logging.getLogger(__name__)


# =====================================================
# LOAD
# =====================================================
async def get_quotation_row(
    db: AsyncSession,
    quotation_id: int,
) -> Quotation:
    result = await db.execute(
        select(Quotation)
        .where(
            Quotation.id == quotation_id,
            Quotation.is_deleted.is_(False),
        )
    )
    q = result.scalar_one_or_none()
    if not q:
        raise AppException(404, "Quotation not found", ErrorCode.QUOTATION_NOT_FOUND)
    return q


async def get_quotation_for_update(
    db: AsyncSession,
    quotation_id: int,
) -> Quotation:
    # SQLite ignores FOR UPDATE; lock_version still catches lost updates there
    result = await db.execute(
        select(Quotation)
        .where(
            Quotation.id == quotation_id,
            Quotation.is_deleted.is_(False),
        )
        .with_for_update(of=Quotation)
        .execution_options(populate_existing=True)
    )
    q = result.scalar_one_or_none()
    if not q:
        raise AppException(404, "Quotation not found", ErrorCode.QUOTATION_NOT_FOUND)
    return q


def ensure_expected_version(q: Quotation, expected_version: int | None) -> None:
    if expected_version is not None and q.lock_version != expected_version:
        raise AppException(
            409,
            "Quotation modified by another process",
            ErrorCode.QUOTATION_VERSION_CONFLICT,
            details={"current_version": q.lock_version},
        )


# =====================================================
# SAVE
# =====================================================
async def commit_or_conflict(db: AsyncSession, q: Quotation) -> None:
    """
    Flush and commit; a stale lock_version becomes a 409 after rollback.
    Audit records queued on the session are written only once the commit lands.
    """
    quotation_id = q.id
    try:
        await db.flush()
        await db.commit()
    except StaleDataError:
        await db.rollback()
        discard_workflow_changes(db)
        logger.warning(
            "Concurrent quotation update rejected",
            extra={"quotation_id": quotation_id},
        )
        raise AppException(
            409,
            "Quotation modified by another process",
            ErrorCode.QUOTATION_VERSION_CONFLICT,
        )
    except Exception:
        await db.rollback()
        discard_workflow_changes(db)
        raise

    flush_workflow_changes(db)
    # reload server-side defaults (updated_at) without lazy IO later
    await db.refresh(q)
