from decimal import Decimal
from uuid import uuid4
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, asc, desc

from app.models.billing.quotation_models import Quotation, QuotationItem
from app.models.enums.quotation_status import QuotationStatus, QuotationPriority

from app.schemas.billing.quotation_schemas import (
    QuotationCreate,
    QuotationItemCreate,
    QuotationOut,
    QuotationListData,
    QuotationListItem,
    TransitionRequest,
    AvailableTransitionsOut,
    RequiredFieldsOut,
)

from app.core.config import DEFAULT_TAX_RATE
from app.core.exceptions import AppException
from app.constants.error_codes import ErrorCode
from app.constants.activity_codes import ActivityCode
from app.services.billing.quotation_store import (
    get_quotation_row,
    get_quotation_for_update,
    ensure_expected_version,
    commit_or_conflict,
)
from app.services.workflow import policy
from app.services.workflow.policy import QuotationAction
from app.services.workflow.state_machine import state_machine, snapshot
from app.utils.activity_helpers import emit_activity, actor_labels, log_workflow_change
from app.utils.datetime_utils import utcnow
from app.utils.decimal_utils import to_decimal

logger = logging.getLogger(__name__)


# =====================================================
# TOTALS
# =====================================================
def build_items(payload: list[QuotationItemCreate], user) -> list[QuotationItem]:
    return [
        QuotationItem(
            name=i.name,
            description=i.description,
            sku=i.sku,
            quantity=i.quantity,
            unit_price=to_decimal(i.unit_price),
            line_total=to_decimal(Decimal(i.quantity) * i.unit_price),
            created_by_id=user.id,
            updated_by_id=user.id,
        )
        for i in payload
    ]


def recalculate_totals(q: Quotation) -> None:
    q.subtotal_amount = to_decimal(sum((i.line_total for i in q.items if not i.is_deleted), Decimal("0")))
    q.tax_amount = to_decimal(q.subtotal_amount * Decimal(q.tax_rate or 0))
    q.total_amount = to_decimal(q.subtotal_amount + q.tax_amount - Decimal(q.discount_amount or 0))
    if q.total_amount < 0:
        raise AppException(400, "Discount exceeds quotation value", ErrorCode.VALIDATION_ERROR)


def map_quotation(q: Quotation) -> QuotationOut:
    return QuotationOut.model_validate(q)


# =====================================================
# CREATE / READ
# =====================================================
async def create_quotation(
    db: AsyncSession,
    payload: QuotationCreate,
    user,
) -> QuotationOut:
    q = Quotation(
        quotation_number=f"TMP-{uuid4().hex[:12]}",
        title=payload.title,
        status=QuotationStatus.draft,
        priority=payload.priority,
        version="1.0",
        client_id=payload.client_id,
        client_name=payload.client_name,
        client_email=payload.client_email,
        description=payload.description,
        terms=payload.terms,
        notes=payload.notes,
        currency=payload.currency,
        validity_period=payload.validity_period,
        tax_rate=payload.tax_rate if payload.tax_rate is not None else DEFAULT_TAX_RATE,
        discount_amount=to_decimal(payload.discount_amount),
        status_history=[],
        approval_history=[],
        escalation_history=[],
        revision_history=[],
        created_by_id=user.id,
        updated_by_id=user.id,
    )
    q.items = build_items(payload.items, user)
    recalculate_totals(q)

    db.add(q)
    await db.flush()

    q.quotation_number = f"QT-{q.id:06d}"

    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.CREATE_QUOTATION,
        target_name=q.quotation_number,
        **actor_labels(user),
    )

    await commit_or_conflict(db, q)

    logger.info(
        "Quotation created",
        extra={"quotation_id": q.id, "user_id": user.id, "total_amount": str(q.total_amount)},
    )
    return map_quotation(q)


async def get_quotation(
    db: AsyncSession,
    quotation_id: int,
) -> QuotationOut:
    q = await get_quotation_row(db, quotation_id)
    return map_quotation(q)


async def list_quotations(
    db: AsyncSession,
    status: QuotationStatus | None = None,
    priority: QuotationPriority | None = None,
    created_by_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
    sort_by: str = "created_at",
    order: str = "desc",
) -> QuotationListData:
    filters = [Quotation.is_deleted.is_(False)]

    if status:
        filters.append(Quotation.status == status)
    if priority:
        filters.append(Quotation.priority == priority)
    if created_by_id:
        filters.append(Quotation.created_by_id == created_by_id)

    total = await db.scalar(
        select(func.count(Quotation.id)).where(*filters)
    )

    sort_map = {
        "created_at": Quotation.created_at,
        "quotation_number": Quotation.quotation_number,
        "total_amount": Quotation.total_amount,
    }
    sort_col = sort_map.get(sort_by, Quotation.created_at)

    result = await db.execute(
        select(Quotation)
        .where(*filters)
        .order_by(asc(sort_col) if order == "asc" else desc(sort_col), Quotation.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return QuotationListData(
        total=total or 0,
        items=[QuotationListItem.model_validate(q) for q in result.scalars().all()],
    )


# =====================================================
# STATUS WORKFLOW
# =====================================================
async def transition_quotation(
    db: AsyncSession,
    quotation_id: int,
    payload: TransitionRequest,
    user,
) -> QuotationOut:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, payload.expected_version)

    metadata = dict(payload.metadata or {})
    if payload.comments:
        metadata["comments"] = payload.comments
    if payload.reason:
        metadata["reason"] = payload.reason

    previous = QuotationStatus(q.status)
    state_machine.transition(q, payload.target_status, user, metadata)
    q.updated_by_id = user.id

    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.CHANGE_QUOTATION_STATUS,
        target_name=q.quotation_number,
        from_status=previous.value,
        to_status=QuotationStatus(q.status).value,
        **actor_labels(user),
    )

    await commit_or_conflict(db, q)
    return map_quotation(q)


async def get_available_transitions(
    db: AsyncSession,
    quotation_id: int,
    user,
) -> AvailableTransitionsOut:
    q = await get_quotation_row(db, quotation_id)
    return AvailableTransitionsOut(
        quotation_id=q.id,
        current_status=q.status,
        available_transitions=state_machine.get_available_transitions(q, user),
    )


def get_required_fields(status: QuotationStatus) -> RequiredFieldsOut:
    return RequiredFieldsOut(
        status=status,
        required_fields=list(state_machine.get_required_fields(status)),
    )


async def mark_reviewed(
    db: AsyncSession,
    quotation_id: int,
    user,
    expected_version: int | None = None,
) -> QuotationOut:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(user, q, QuotationAction.MARK_REVIEWED, "You cannot review this quotation")

    if q.status != QuotationStatus.pending_review:
        raise AppException(400, "Only quotations pending review can be reviewed", ErrorCode.QUOTATION_INVALID_STATE)

    before = snapshot(q)
    now = utcnow()
    q.reviewed_at = now
    q.reviewed_by_id = user.id
    q.updated_by_id = user.id

    log_workflow_change("mark_reviewed", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.REVIEW_QUOTATION,
        target_name=q.quotation_number,
        **actor_labels(user),
    )

    await commit_or_conflict(db, q)
    return map_quotation(q)


async def record_project_completion(
    db: AsyncSession,
    quotation_id: int,
    user,
    expected_version: int | None = None,
) -> QuotationOut:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(
        user, q, QuotationAction.RECORD_PROJECT_COMPLETION,
        "You cannot record project completion for this quotation",
    )

    if q.status != QuotationStatus.accepted:
        raise AppException(400, "Only accepted quotations can complete a project", ErrorCode.QUOTATION_INVALID_STATE)

    before = snapshot(q)
    now = utcnow()
    q.is_project_completed = True
    q.updated_by_id = user.id

    log_workflow_change("record_project_completion", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.COMPLETE_QUOTATION_PROJECT,
        target_name=q.quotation_number,
        **actor_labels(user),
    )

    await commit_or_conflict(db, q)
    return map_quotation(q)
