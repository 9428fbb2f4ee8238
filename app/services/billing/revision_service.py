from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Callable, Optional
from uuid import uuid4
import logging

from pydantic import EmailStr, Field, TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, case, asc, desc

from app.models.billing.quotation_models import Quotation
from app.models.enums.quotation_status import QuotationStatus, QuotationPriority
from app.models.enums.approval_level import ApprovalUrgency, ApprovalDecision, URGENCY_ORDER
from app.models.enums.revision_status import (
    RevisionStatus,
    RevisionReason,
    RevisionImpact,
    OPEN_REVISION_STATUSES,
)

from app.schemas.billing.quotation_schemas import QuotationOut, QuotationItemCreate, QuotationListItem
from app.schemas.billing.revision_schemas import (
    PatchableField,
    RevisionChange,
    RevisionRecord,
    RevisionHistoryOut,
)

from app.core.exceptions import AppException
from app.constants.error_codes import ErrorCode
from app.constants.activity_codes import ActivityCode
from app.services.billing.quotation_store import (
    get_quotation_row,
    get_quotation_for_update,
    ensure_expected_version,
    commit_or_conflict,
)
from app.services.billing.quotation_service import build_items, recalculate_totals, map_quotation
from app.services.notifications import recipients
from app.services.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from app.services.notifications.notifier import NotificationKind, QuotationSnapshot
from app.services.workflow import policy
from app.services.workflow.policy import QuotationAction
from app.services.workflow.state_machine import snapshot
from app.utils.activity_helpers import emit_activity, actor_labels, log_workflow_change
from app.utils.datetime_utils import utcnow, as_utc
from app.utils.decimal_utils import to_decimal

logger = logging.getLogger(__name__)

REVISABLE_STATUSES = frozenset({
    QuotationStatus.draft,
    QuotationStatus.pending_review,
    QuotationStatus.pending_approval,
    QuotationStatus.approved,
    QuotationStatus.active,
    QuotationStatus.sent,
})

# scratch columns describing the revision currently in flight
_ACTIVE_REVISION_FIELDS = (
    "revision_requested_at",
    "revision_requested_by_id",
    "revision_reason",
    "revision_description",
    "revision_urgency",
    "revision_changes",
    "revision_estimated_impact",
    "revision_requires_client_approval",
    "revision_approved_at",
    "revision_approved_by_id",
    "revision_conditions",
)


# =====================================================
# PATCHABLE FIELDS
# =====================================================
@dataclass(frozen=True)
class FieldPatcher:
    adapter: TypeAdapter
    apply: Callable[[Quotation, Any, Any], None]
    affects_totals: bool = False

    def parse(self, value: Any) -> Any:
        return self.adapter.validate_python(value)


def _set(attr: str):
    def apply(q: Quotation, value, user) -> None:
        setattr(q, attr, value)
    return apply


def _set_valid_until(q: Quotation, value, user) -> None:
    q.valid_until = as_utc(value)


def _set_items(q: Quotation, value, user) -> None:
    q.items = build_items(value, user)


def _set_money(attr: str):
    def apply(q: Quotation, value, user) -> None:
        setattr(q, attr, to_decimal(value))
    return apply


_Text = Optional[str]

PATCHERS: dict[PatchableField, FieldPatcher] = {
    PatchableField.title: FieldPatcher(TypeAdapter(Annotated[str, Field(min_length=1, max_length=255)]), _set("title")),
    PatchableField.description: FieldPatcher(TypeAdapter(_Text), _set("description")),
    PatchableField.notes: FieldPatcher(TypeAdapter(_Text), _set("notes")),
    PatchableField.terms: FieldPatcher(TypeAdapter(_Text), _set("terms")),
    PatchableField.priority: FieldPatcher(TypeAdapter(QuotationPriority), _set("priority")),
    PatchableField.currency: FieldPatcher(TypeAdapter(Optional[Annotated[str, Field(max_length=10)]]), _set("currency")),
    PatchableField.validity_period: FieldPatcher(TypeAdapter(Optional[Annotated[int, Field(gt=0)]]), _set("validity_period")),
    PatchableField.valid_until: FieldPatcher(TypeAdapter(Optional[datetime]), _set_valid_until),
    PatchableField.client_name: FieldPatcher(TypeAdapter(_Text), _set("client_name")),
    PatchableField.client_email: FieldPatcher(TypeAdapter(Optional[EmailStr]), _set("client_email")),
    PatchableField.tax_rate: FieldPatcher(
        TypeAdapter(Annotated[Decimal, Field(ge=0, lt=1)]), _set("tax_rate"), affects_totals=True,
    ),
    PatchableField.discount_amount: FieldPatcher(
        TypeAdapter(Annotated[Decimal, Field(ge=0)]), _set_money("discount_amount"), affects_totals=True,
    ),
    PatchableField.items: FieldPatcher(
        TypeAdapter(Annotated[list[QuotationItemCreate], Field(min_length=1)]), _set_items, affects_totals=True,
    ),
}


def _parse_change(change: RevisionChange) -> Any:
    try:
        return PATCHERS[change.field].parse(change.new_value)
    except ValidationError as e:
        raise AppException(
            400,
            f"Invalid value for field '{change.field.value}'",
            ErrorCode.VALIDATION_ERROR,
            details={"field": change.field.value, "errors": [err["msg"] for err in e.errors()]},
        )


def _current_value(q: Quotation, field: PatchableField) -> Any:
    if field is PatchableField.items:
        return [
            {
                "name": i.name,
                "description": i.description,
                "sku": i.sku,
                "quantity": i.quantity,
                "unit_price": str(i.unit_price),
            }
            for i in q.items
            if not i.is_deleted
        ]
    value = getattr(q, field.value)
    return value.value if hasattr(value, "value") else value


def apply_revision_changes(q: Quotation, changes: list[RevisionChange], user) -> None:
    # parse everything first so a bad value leaves the quotation untouched
    parsed = [(PATCHERS[c.field], _parse_change(c)) for c in changes]
    for patcher, value in parsed:
        patcher.apply(q, value, user)
    if any(p.affects_totals for p, _ in parsed):
        recalculate_totals(q)


def bump_version(current: str | None, revision_number: int) -> str:
    major = current.split(".")[0] if current else "1"
    return f"{major}.{revision_number}"


# =====================================================
# HELPERS
# =====================================================
def _records(q: Quotation) -> list[RevisionRecord]:
    return [RevisionRecord.model_validate(r) for r in (q.revision_history or [])]


def _find_record(q: Quotation, revision_id: str) -> tuple[int, RevisionRecord]:
    for index, record in enumerate(_records(q)):
        if record.id == revision_id:
            return index, record
    raise AppException(404, "Revision not found", ErrorCode.REVISION_NOT_FOUND)


def _replace_record(q: Quotation, index: int, record: RevisionRecord) -> None:
    history = list(q.revision_history or [])
    history[index] = record.model_dump(mode="json")
    q.revision_history = history


def _urgency_rank():
    return case(
        {u.value: i for i, u in enumerate(URGENCY_ORDER)},
        value=Quotation.revision_urgency,
        else_=-1,
    )


# =====================================================
# REQUEST
# =====================================================
async def request_revision(
    db: AsyncSession,
    quotation_id: int,
    user,
    reason: RevisionReason,
    description: str,
    changes: list[RevisionChange],
    urgency: ApprovalUrgency = ApprovalUrgency.medium,
    estimated_impact: RevisionImpact = RevisionImpact.medium,
    requires_client_approval: bool = False,
    expected_version: int | None = None,
    notifier: NotificationDispatcher | None = None,
) -> RevisionRecord:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(user, q, QuotationAction.REQUEST_REVISION, "You cannot request revision for this quotation")

    if q.status not in REVISABLE_STATUSES:
        raise AppException(400, "Quotation is not in a revisable state", ErrorCode.QUOTATION_NOT_REVISABLE)

    if q.revision_status in {s.value for s in OPEN_REVISION_STATUSES}:
        raise AppException(400, "Another revision is still open for this quotation", ErrorCode.REVISION_ALREADY_OPEN)

    if not changes:
        raise AppException(400, "A revision needs at least one change", ErrorCode.VALIDATION_ERROR)

    for change in changes:
        _parse_change(change)

    before = snapshot(q)
    now = utcnow()
    history = q.revision_history or []
    record = RevisionRecord(
        id=f"rev_{int(now.timestamp() * 1000)}_{uuid4().hex[:8]}",
        revision_number=len(history) + 1,
        requested_by_id=user.id,
        requested_at=now,
        reason=reason,
        description=description,
        urgency=urgency,
        changes=[
            c if c.old_value is not None else c.model_copy(update={"old_value": _current_value(q, c.field)})
            for c in changes
        ],
        estimated_impact=estimated_impact,
        requires_client_approval=requires_client_approval,
        status=RevisionStatus.pending,
    )
    stored = record.model_dump(mode="json")

    q.revision_history = [*history, stored]
    q.revision_status = RevisionStatus.pending.value
    q.revision_requested_at = now
    q.revision_requested_by_id = user.id
    q.revision_reason = record.reason.value
    q.revision_description = description
    q.revision_urgency = record.urgency.value
    q.revision_changes = stored["changes"]
    q.revision_estimated_impact = record.estimated_impact.value
    q.revision_requires_client_approval = requires_client_approval
    q.revision_approved_at = None
    q.revision_approved_by_id = None
    q.revision_conditions = None
    q.revision_rejected_at = None
    q.revision_rejected_by_id = None
    q.updated_by_id = user.id

    log_workflow_change("request_revision", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.REQUEST_REVISION,
        target_name=q.quotation_number,
        revision_number=record.revision_number,
        reason=record.reason.value,
        **actor_labels(user),
    )

    creator = await recipients.creator_of(db, q)
    managers = (
        await recipients.find_managers(db)
        if record.estimated_impact is RevisionImpact.high
        else []
    )

    await commit_or_conflict(db, q)

    logger.info(
        "Revision requested",
        extra={
            "quotation_id": q.id,
            "user_id": user.id,
            "revision_id": record.id,
            "revision_number": record.revision_number,
            "reason": record.reason.value,
        },
    )

    notifier = notifier or get_dispatcher()
    quote = QuotationSnapshot.from_quotation(q)
    notifier.fire(NotificationKind.REVISION_REQUEST, creator, quote, revision=stored)
    notifier.fire(NotificationKind.REVISION_REQUEST, managers, quote, revision=stored, high_impact=True)

    # hand back what was stored, with old values in their JSON form
    return RevisionRecord.model_validate(stored)


# =====================================================
# DECIDE
# =====================================================
async def approve_revision(
    db: AsyncSession,
    quotation_id: int,
    revision_id: str,
    user,
    decision: ApprovalDecision,
    comments: str | None = None,
    conditions: list[str] | None = None,
    expected_version: int | None = None,
    notifier: NotificationDispatcher | None = None,
) -> RevisionRecord:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(user, q, QuotationAction.APPROVE_REVISION, "You cannot approve revision for this quotation")

    index, record = _find_record(q, revision_id)
    if record.status is not RevisionStatus.pending:
        raise AppException(400, "Revision is not pending approval", ErrorCode.REVISION_INVALID_STATE)

    decision = ApprovalDecision(decision)
    before = snapshot(q)
    now = utcnow()

    record = record.model_copy(update={
        "approved_by_id": user.id,
        "approved_at": now,
        "comments": comments,
    })

    if decision is ApprovalDecision.approved:
        record = record.model_copy(update={"status": RevisionStatus.approved, "conditions": conditions})
        q.revision_status = (
            RevisionStatus.pending_client_approval.value
            if record.requires_client_approval
            else RevisionStatus.approved.value
        )
        q.revision_approved_at = now
        q.revision_approved_by_id = user.id
        q.revision_conditions = conditions
        code = ActivityCode.APPROVE_REVISION
    else:
        record = record.model_copy(update={"status": RevisionStatus.rejected})
        q.revision_status = RevisionStatus.rejected.value
        q.revision_rejected_at = now
        q.revision_rejected_by_id = user.id
        code = ActivityCode.REJECT_REVISION

    _replace_record(q, index, record)
    q.updated_by_id = user.id

    log_workflow_change("revision_decision", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=code,
        target_name=q.quotation_number,
        revision_number=record.revision_number,
        **actor_labels(user),
    )

    requester = await recipients.user_by_id(db, record.requested_by_id)
    client = recipients.client_of(q) if q.revision_status == RevisionStatus.pending_client_approval.value else []

    await commit_or_conflict(db, q)

    logger.info(
        "Revision decision recorded",
        extra={"quotation_id": q.id, "revision_id": revision_id, "user_id": user.id, "decision": decision.value},
    )

    notifier = notifier or get_dispatcher()
    quote = QuotationSnapshot.from_quotation(q)
    payload = {"revision": record.model_dump(mode="json"), "decision": decision.value, "comments": comments}
    notifier.fire(NotificationKind.REVISION_DECISION, requester, quote, **payload)
    notifier.fire(NotificationKind.REVISION_DECISION, client, quote, **payload)

    return record


async def record_client_revision_decision(
    db: AsyncSession,
    quotation_id: int,
    revision_id: str,
    user,
    decision: ApprovalDecision,
    comments: str | None = None,
    expected_version: int | None = None,
    notifier: NotificationDispatcher | None = None,
) -> RevisionRecord:
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(
        user, q, QuotationAction.CLIENT_REVISION_DECISION,
        "You cannot record the client decision for this revision",
    )

    index, record = _find_record(q, revision_id)
    if (
        record.status is not RevisionStatus.approved
        or q.revision_status != RevisionStatus.pending_client_approval.value
    ):
        raise AppException(400, "Revision is not awaiting client approval", ErrorCode.REVISION_INVALID_STATE)

    decision = ApprovalDecision(decision)
    before = snapshot(q)
    now = utcnow()

    record = record.model_copy(update={
        "client_decision": decision,
        "client_decision_at": now,
        "client_decision_by_id": user.id,
    })
    if decision is ApprovalDecision.approved:
        q.revision_status = RevisionStatus.approved.value
    else:
        record = record.model_copy(update={"status": RevisionStatus.rejected, "comments": comments or record.comments})
        q.revision_status = RevisionStatus.rejected.value
        q.revision_rejected_at = now
        q.revision_rejected_by_id = user.id

    _replace_record(q, index, record)
    q.updated_by_id = user.id

    log_workflow_change("client_revision_decision", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.CLIENT_REVISION_DECISION,
        target_name=q.quotation_number,
        revision_number=record.revision_number,
        decision=decision.value,
        **actor_labels(user),
    )

    requester = await recipients.user_by_id(db, record.requested_by_id)

    await commit_or_conflict(db, q)

    notifier = notifier or get_dispatcher()
    notifier.fire(
        NotificationKind.REVISION_DECISION,
        requester,
        QuotationSnapshot.from_quotation(q),
        revision=record.model_dump(mode="json"),
        decision=decision.value,
        comments=comments,
        client_decision=True,
    )
    return record


# =====================================================
# IMPLEMENT
# =====================================================
async def implement_revision(
    db: AsyncSession,
    quotation_id: int,
    revision_id: str,
    user,
    notes: str | None = None,
    expected_version: int | None = None,
    notifier: NotificationDispatcher | None = None,
) -> QuotationOut:
    """
    Apply an approved revision to the quotation.

    Bumps the document version and frees the quotation for the next revision.
    The lifecycle status is left untouched.
    """
    q = await get_quotation_for_update(db, quotation_id)
    ensure_expected_version(q, expected_version)
    policy.ensure_allowed(user, q, QuotationAction.IMPLEMENT_REVISION, "You cannot implement revision for this quotation")

    index, record = _find_record(q, revision_id)
    if record.status is not RevisionStatus.approved:
        raise AppException(400, "Revision is not approved", ErrorCode.REVISION_INVALID_STATE)
    if q.revision_status == RevisionStatus.pending_client_approval.value:
        raise AppException(400, "Revision is still awaiting client approval", ErrorCode.REVISION_INVALID_STATE)

    before = snapshot(q)
    now = utcnow()

    apply_revision_changes(q, record.changes, user)

    record = record.model_copy(update={
        "status": RevisionStatus.implemented,
        "implemented_at": now,
        "implemented_by_id": user.id,
        "implementation_notes": notes,
    })
    _replace_record(q, index, record)

    q.revision_status = RevisionStatus.implemented.value
    q.revision_implemented_at = now
    q.revision_implemented_by_id = user.id
    q.last_modified_at = now
    q.last_modified_by_id = user.id
    q.version = bump_version(q.version, record.revision_number)
    for attr in _ACTIVE_REVISION_FIELDS:
        setattr(q, attr, None)
    q.updated_by_id = user.id

    changed = ", ".join(c.field.value for c in record.changes)
    log_workflow_change("implement_revision", quotation_id=q.id, actor_id=user.id,
                        before=before, after=snapshot(q), timestamp=now, session=db)
    await emit_activity(
        db=db,
        user_id=user.id,
        username=user.username,
        code=ActivityCode.IMPLEMENT_REVISION,
        target_name=q.quotation_number,
        revision_number=record.revision_number,
        changes=changed,
        **actor_labels(user),
    )

    stakeholders = [*recipients.client_of(q), *await recipients.user_by_id(db, record.requested_by_id)]

    await commit_or_conflict(db, q)

    logger.info(
        "Revision implemented",
        extra={
            "quotation_id": q.id,
            "revision_id": revision_id,
            "user_id": user.id,
            "version": q.version,
            "notes": notes,
        },
    )

    notifier = notifier or get_dispatcher()
    notifier.fire(
        NotificationKind.REVISION_IMPLEMENTED,
        stakeholders,
        QuotationSnapshot.from_quotation(q),
        revision=record.model_dump(mode="json"),
        implemented_by=user.username,
    )
    return map_quotation(q)


# =====================================================
# QUERIES
# =====================================================
async def get_pending_revisions(
    db: AsyncSession,
    user,
) -> list[QuotationListItem]:
    stmt = (
        select(Quotation)
        .where(
            Quotation.is_deleted.is_(False),
            Quotation.revision_status == RevisionStatus.pending.value,
        )
        .order_by(desc(_urgency_rank()), asc(Quotation.revision_requested_at))
    )

    if not policy.is_allowed(user, None, QuotationAction.VIEW_ALL_PENDING_REVISIONS):
        stmt = stmt.where(Quotation.created_by_id == user.id)

    result = await db.execute(stmt)
    return [QuotationListItem.model_validate(q) for q in result.scalars().all()]


async def get_revisions_by_reason(
    db: AsyncSession,
    reason: RevisionReason,
) -> list[QuotationListItem]:
    result = await db.execute(
        select(Quotation)
        .where(
            Quotation.is_deleted.is_(False),
            Quotation.revision_reason == RevisionReason(reason).value,
        )
        .order_by(desc(Quotation.revision_requested_at))
    )
    return [QuotationListItem.model_validate(q) for q in result.scalars().all()]


async def get_revisions_by_impact(
    db: AsyncSession,
    impact: RevisionImpact,
) -> list[QuotationListItem]:
    result = await db.execute(
        select(Quotation)
        .where(
            Quotation.is_deleted.is_(False),
            Quotation.revision_estimated_impact == RevisionImpact(impact).value,
        )
        .order_by(desc(Quotation.revision_requested_at))
    )
    return [QuotationListItem.model_validate(q) for q in result.scalars().all()]


async def get_revision_history(
    db: AsyncSession,
    quotation_id: int,
) -> RevisionHistoryOut:
    q = await get_quotation_row(db, quotation_id)
    return RevisionHistoryOut(
        quotation_id=q.id,
        revision_status=q.revision_status,
        revisions=_records(q),
    )
