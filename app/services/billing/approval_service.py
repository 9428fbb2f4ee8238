from datetime import datetime, timedelta
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, case, asc, desc

from app.models.billing.quotation_models import Quotation
from app.models.enums.quotation_status import QuotationStatus
from app.models.enums.approval_level import (
    ApprovalLevel,
    ApprovalUrgency,
    ApprovalDecision,
    URGENCY_ORDER,
    next_approval_level,
)

from app.schemas.billing.approval_schemas import (
    ApprovalHistoryEntry,
    ApprovalHistoryOut,
    EscalationEntry,
)
from app.schemas.billing.quotation_schemas import QuotationOut, QuotationListItem

from app.core.db import AsyncSessionLocal
from app.core.exceptions import AppException
from app.constants.error_codes import ErrorCode
from app.constants.activity_codes import ActivityCode
from app.services.billing.quotation_store import (
    get_quotation_row,
    get_quotation_for_update,
    ensure_expected_version,
    commit_or_conflict,
)
from app.services.billing.quotation_service import map_quotation
from app.services.notifications import recipients
from app.services.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from app.services.notifications.notifier import NotificationKind, QuotationSnapshot
from app.services.workflow import policy
from app.services.workflow.policy import QuotationAction, SYSTEM_ACTOR
from app.services.workflow.state_machine import state_machine, snapshot
from app.utils.activity_helpers import emit_activity, actor_labels, log_workflow_change
from app.utils.datetime_utils import utcnow, as_utc

logger = logging.getLogger(__name__)

DEFAULT_DEADLINES = {
    ApprovalUrgency.low: timedelta(days=7),
    ApprovalUrgency.medium: timedelta(days=3),
    ApprovalUrgency.high: timedelta(days=1),
    ApprovalUrgency.urgent: timedelta(hours=4),
}

# statuses an approval request is meaningful in
APPROVAL_STATUSES = (QuotationStatus.pending_approval, QuotationStatus.pending_review)

AUTO_ESCALATION_REASON = "Auto-escalated due to deadline"


def default_deadline(urgency: ApprovalUrgency, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + DEFAULT_DEADLINES[ApprovalUrgency(urgency)]


def _ensure_pending(q: Quotation) -> None:
    if q.approval_requested_at is None:
        raise AppException(400, "No approval request pending for this quotation", ErrorCode.APPROVAL_NOT_PENDING)


def _urgency_rank():
    return case(
        {u.value: i for i, u in enumerate(URGENCY_ORDER)},
        value=Quotation.approval_urgency,
        else_=-1,
    )


# =====================================================
# REQUEST
# =====================================================
async def request_approval(
    db: AsyncSession,
    quotation_id: int,
    user,
    level: ApprovalLevel,
    reason: str | None = None,
    urgency: ApprovalUrgency = ApprovalUrgency.medium,
    deadline: datetime | None = None,
    expected_version: int | None = None,
    notifier: NotificationDispatcher | None = None,
) -> QuotationOut:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(user, q, QuotationAction.REQUEST_APPROVAL, "You cannot request approval for this quotation")

    if q.approval_requested_at is not None:
        raise AppException(400, "Approval already requested for this quotation", ErrorCode.APPROVAL_ALREADY_PENDING)

    level = ApprovalLevel(level)
    urgency = ApprovalUrgency(urgency)
    before = snapshot(q)
    now = utcnow()

    q.approval_requested_at = now
    q.approval_requested_by_id = user.id
    q.approval_level = level.value
    q.approval_reason = reason
    q.approval_urgency = urgency.value
    q.approval_deadline = as_utc(deadline) if deadline else default_deadline(urgency, now)
    q.updated_by_id = user.id

    log_workflow_change("request_approval", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.REQUEST_APPROVAL,
        target_name=q.quotation_number,
        level=level.value,
        urgency=urgency.value,
        **actor_labels(user),
    )

    approvers = await recipients.find_approvers(db, level)
    creator = await recipients.creator_of(db, q)

    await commit_or_conflict(db, q)

    logger.info(
        "Approval requested",
        extra={"quotation_id": q.id, "user_id": user.id, "level": level.value, "urgency": urgency.value},
    )

    notifier = notifier or get_dispatcher()
    quote = QuotationSnapshot.from_quotation(q)
    payload = {"level": level.value, "urgency": urgency.value, "reason": reason,
               "deadline": q.approval_deadline}
    notifier.fire(NotificationKind.APPROVAL_REQUEST, approvers, quote, **payload)
    notifier.fire(NotificationKind.APPROVAL_REQUEST, creator, quote, **payload)

    return map_quotation(q)


# =====================================================
# DECIDE
# =====================================================
async def approve(
    db: AsyncSession,
    quotation_id: int,
    user,
    decision: ApprovalDecision,
    comments: str | None = None,
    expected_version: int | None = None,
    notifier: NotificationDispatcher | None = None,
) -> QuotationOut:
    """
    Record one approver's decision.

    Approving below the top of the chain hands the request to the next level
    and leaves the status alone; approving at the top, or rejecting at any
    level, finalizes through the state machine.
    """
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    _ensure_pending(q)
    policy.ensure_allowed(user, q, QuotationAction.DECIDE_APPROVAL, "You cannot approve this quotation")

    decision = ApprovalDecision(decision)
    current_level = ApprovalLevel(q.approval_level)
    next_level = next_approval_level(current_level) if decision is ApprovalDecision.approved else None

    before = snapshot(q)
    now = utcnow()
    entry = ApprovalHistoryEntry(
        level=current_level,
        approved_by_id=user.id,
        approved_at=now,
        decision=decision,
        comments=comments,
    )

    if next_level is not None:
        q.approval_level = next_level.value
        q.approval_requested_at = now
        q.approval_requested_by_id = user.id
        # each rung gets its own deadline, at the urgency reached so far
        q.approval_deadline = default_deadline(q.approval_urgency or ApprovalUrgency.medium, now)
        q.approval_history = [*(q.approval_history or []), entry.model_dump(mode="json")]
        q.updated_by_id = user.id

        log_workflow_change("approval_advanced", quotation_id=q.id, actor_id=user.id,
                            before=before, after=snapshot(q), timestamp=now, session=db)
        await emit_activity(
            db=db,
            user_id=user.id,
            username=user.username,
            code=ActivityCode.ADVANCE_APPROVAL_LEVEL,
            target_name=q.quotation_number,
            level=current_level.value,
            next_level=next_level.value,
            **actor_labels(user),
        )
        next_approvers = await recipients.find_approvers(db, next_level)
    else:
        target = (
            QuotationStatus.approved
            if decision is ApprovalDecision.approved
            else QuotationStatus.rejected
        )
        # raises before any mutation when the transition is not allowed
        state_machine.transition(q, target, user, {"comments": comments})
        q.approval_requested_at = None
        q.approval_requested_by_id = None
        q.approval_history = [*(q.approval_history or []), entry.model_dump(mode="json")]
        q.updated_by_id = user.id

        log_workflow_change("approval_finalized", quotation_id=q.id, actor_id=user.id,
                            before=before, after=snapshot(q), timestamp=now, session=db)
        await emit_activity(
            db=db,
            user_id=user.id,
            username=user.username,
            code=(
                ActivityCode.APPROVE_QUOTATION
                if decision is ApprovalDecision.approved
                else ActivityCode.REJECT_QUOTATION
            ),
            target_name=q.quotation_number,
            **actor_labels(user),
        )
        next_approvers = []

    stakeholders = [*await recipients.creator_of(db, q), *recipients.client_of(q)]

    await commit_or_conflict(db, q)

    logger.info(
        "Approval decision recorded",
        extra={
            "quotation_id": q.id,
            "user_id": user.id,
            "decision": decision.value,
            "next_level": next_level.value if next_level else None,
        },
    )

    notifier = notifier or get_dispatcher()
    quote = QuotationSnapshot.from_quotation(q)
    if next_level is not None:
        notifier.fire(NotificationKind.NEXT_APPROVAL_LEVEL, next_approvers, quote, level=next_level.value)
    notifier.fire(
        NotificationKind.APPROVAL_DECISION,
        stakeholders,
        quote,
        decision=decision.value,
        comments=comments,
        level=current_level.value,
        next_level=next_level.value if next_level else None,
    )

    return map_quotation(q)


# =====================================================
# ESCALATE
# =====================================================
def _escalate(q: Quotation, actor, reason: str, now: datetime, automatic: bool = False) -> EscalationEntry:
    previous = ApprovalUrgency(q.approval_urgency) if q.approval_urgency else None
    if previous is None:
        raised = URGENCY_ORDER[0]
    else:
        rank = URGENCY_ORDER.index(previous)
        raised = URGENCY_ORDER[min(rank + 1, len(URGENCY_ORDER) - 1)]

    entry = EscalationEntry(
        escalated_by_id=actor.id,
        escalated_at=now,
        reason=reason,
        from_urgency=previous,
        to_urgency=raised,
        automatic=automatic,
    )

    q.approval_urgency = raised.value
    q.approval_escalated_at = now
    q.approval_escalated_by_id = actor.id
    q.approval_escalation_reason = reason
    q.escalation_history = [*(q.escalation_history or []), entry.model_dump(mode="json")]
    return entry


async def escalate_approval(
    db: AsyncSession,
    quotation_id: int,
    user,
    reason: str,
    expected_version: int | None = None,
    notifier: NotificationDispatcher | None = None,
) -> QuotationOut:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(user, q, QuotationAction.ESCALATE_APPROVAL, "You cannot escalate this approval")
    _ensure_pending(q)

    before = snapshot(q)
    now = utcnow()
    entry = _escalate(q, user, reason, now)
    q.updated_by_id = user.id

    log_workflow_change("escalate_approval", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.ESCALATE_APPROVAL,
        target_name=q.quotation_number,
        changes=f"urgency {entry.from_urgency.value if entry.from_urgency else '-'} -> {entry.to_urgency.value}",
        **actor_labels(user),
    )

    higher = await recipients.find_higher_level_approvers(db, q.approval_level)

    await commit_or_conflict(db, q)

    logger.info(
        "Approval escalated",
        extra={"quotation_id": q.id, "user_id": user.id, "urgency": q.approval_urgency, "reason": reason},
    )

    notifier = notifier or get_dispatcher()
    notifier.fire(
        NotificationKind.APPROVAL_ESCALATION,
        higher,
        QuotationSnapshot.from_quotation(q),
        reason=reason,
        urgency=q.approval_urgency,
        escalated_by=user.username,
    )
    return map_quotation(q)


# =====================================================
# DEADLINE SWEEP
# =====================================================
def _is_overdue(q: Quotation, now: datetime) -> bool:
    deadline = as_utc(q.approval_deadline)
    if q.approval_requested_at is None or deadline is None or deadline >= now:
        return False
    if q.status not in APPROVAL_STATUSES:
        return False
    # an escalation made for this rung once it was overdue already handled it
    escalated_at = as_utc(q.approval_escalated_at)
    handled_from = max(deadline, as_utc(q.approval_requested_at))
    return escalated_at is None or escalated_at < handled_from


async def _handle_overdue_approval(
    db: AsyncSession,
    quotation_id: int,
    notifier: NotificationDispatcher,
) -> bool:
    q = await get_quotation_for_update(db, quotation_id)
    now = utcnow()
    if not _is_overdue(q, now):
        return False

    before = snapshot(q)
    entry = _escalate(q, SYSTEM_ACTOR, AUTO_ESCALATION_REASON, now, automatic=True)

    log_workflow_change("auto_escalate_approval", quotation_id=q.id, actor_id=None,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=None,
        username=SYSTEM_ACTOR.username,
        code=ActivityCode.ESCALATE_APPROVAL,
        target_name=q.quotation_number,
        changes=f"overdue since {as_utc(q.approval_deadline).isoformat()}, urgency -> {entry.to_urgency.value}",
        **actor_labels(SYSTEM_ACTOR),
    )

    approvers = await recipients.find_approvers(db, q.approval_level)
    higher = await recipients.find_higher_level_approvers(db, q.approval_level)

    await commit_or_conflict(db, q)

    quote = QuotationSnapshot.from_quotation(q)
    notifier.fire(
        NotificationKind.APPROVAL_ESCALATION,
        higher,
        quote,
        reason=AUTO_ESCALATION_REASON,
        urgency=q.approval_urgency,
        escalated_by=SYSTEM_ACTOR.username,
    )
    notifier.fire(NotificationKind.OVERDUE_APPROVAL, approvers, quote, deadline=q.approval_deadline)
    return True


async def check_approval_deadlines(
    session_factory=AsyncSessionLocal,
    notifier: NotificationDispatcher | None = None,
) -> int:
    """Escalate every overdue approval request; one failure never stops the rest."""
    notifier = notifier or get_dispatcher()
    now = utcnow()

    async with session_factory() as db:
        result = await db.execute(
            select(Quotation.id)
            .where(
                Quotation.is_deleted.is_(False),
                Quotation.approval_requested_at.isnot(None),
                Quotation.approval_deadline < now,
                Quotation.status.in_(APPROVAL_STATUSES),
            )
            .order_by(Quotation.approval_deadline)
        )
        overdue_ids = list(result.scalars().all())

    escalated = 0
    for quotation_id in overdue_ids:
        try:
            async with session_factory() as db:
                if await _handle_overdue_approval(db, quotation_id, notifier):
                    escalated += 1
        except Exception:
            logger.exception("Error handling overdue approval", extra={"quotation_id": quotation_id})

    if overdue_ids:
        logger.info(
            "Approval deadline sweep finished",
            extra={"candidates": len(overdue_ids), "escalated": escalated},
        )
    return escalated


# =====================================================
# QUERIES
# =====================================================
async def get_pending_approvals(
    db: AsyncSession,
    user,
) -> list[QuotationListItem]:
    level = policy.approval_level_for(user)

    stmt = (
        select(Quotation)
        .where(
            Quotation.is_deleted.is_(False),
            Quotation.approval_requested_at.isnot(None),
            Quotation.approval_level == level.value,
            Quotation.status.in_(APPROVAL_STATUSES),
        )
        .order_by(
            desc(_urgency_rank()),
            asc(Quotation.approval_deadline),
            asc(Quotation.approval_requested_at),
        )
    )

    if not policy.is_allowed(user, None, QuotationAction.VIEW_ALL_PENDING_APPROVALS):
        stmt = stmt.where(Quotation.created_by_id == user.id)

    result = await db.execute(stmt)
    return [QuotationListItem.model_validate(q) for q in result.scalars().all()]


async def get_approval_history(
    db: AsyncSession,
    quotation_id: int,
) -> ApprovalHistoryOut:
    q = await get_quotation_row(db, quotation_id)
    return ApprovalHistoryOut(
        quotation_id=q.id,
        approvals=[ApprovalHistoryEntry.model_validate(e) for e in (q.approval_history or [])],
        escalations=[EscalationEntry.model_validate(e) for e in (q.escalation_history or [])],
    )
