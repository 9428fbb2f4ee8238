from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.exceptions import AppException
from app.constants.error_codes import ErrorCode
from app.utils.check_roles import require_role
from app.utils.response import success_response, APIResponse
from app.models.enums.revision_status import RevisionReason, RevisionImpact

from app.schemas.billing.quotation_schemas import QuotationOut, QuotationListItem
from app.schemas.billing.revision_schemas import (
    RevisionRequestIn,
    RevisionDecisionIn,
    ClientRevisionDecisionIn,
    RevisionImplementIn,
    RevisionRecord,
    RevisionHistoryOut,
)

from app.services.billing.revision_service import (
    request_revision,
    approve_revision,
    record_client_revision_decision,
    implement_revision,
    get_pending_revisions,
    get_revisions_by_reason,
    get_revisions_by_impact,
    get_revision_history,
)

STAFF = ["sales_rep", "manager", "admin", "super_admin"]
MANAGERS = ["manager", "admin"]

router = APIRouter(tags=["Revisions"])


@router.post(
    "/quotations/{quotation_id}/revisions",
    response_model=APIResponse[RevisionRecord],
)
async def request_revision_api(
    quotation_id: int,
    payload: RevisionRequestIn,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    revision = await request_revision(
        db=db,
        quotation_id=quotation_id,
        user=user,
        reason=payload.reason,
        description=payload.description,
        changes=payload.changes,
        urgency=payload.urgency,
        estimated_impact=payload.estimated_impact,
        requires_client_approval=payload.requires_client_approval,
        expected_version=payload.expected_version,
    )
    return success_response(
        "Revision requested successfully",
        revision,
    )


@router.get(
    "/quotations/{quotation_id}/revisions",
    response_model=APIResponse[RevisionHistoryOut],
)
async def revision_history_api(
    quotation_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    data = await get_revision_history(db, quotation_id)
    return success_response(
        "Revision history retrieved successfully",
        data,
    )


@router.post(
    "/quotations/{quotation_id}/revisions/{revision_id}/decision",
    response_model=APIResponse[RevisionRecord],
)
async def revision_decision_api(
    quotation_id: int,
    revision_id: str,
    payload: RevisionDecisionIn,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(MANAGERS)),
):
    revision = await approve_revision(
        db=db,
        quotation_id=quotation_id,
        revision_id=revision_id,
        user=user,
        decision=payload.decision,
        comments=payload.comments,
        conditions=payload.conditions,
        expected_version=payload.expected_version,
    )
    return success_response(
        "Revision decision recorded",
        revision,
    )


@router.post(
    "/quotations/{quotation_id}/revisions/{revision_id}/client-decision",
    response_model=APIResponse[RevisionRecord],
)
async def client_revision_decision_api(
    quotation_id: int,
    revision_id: str,
    payload: ClientRevisionDecisionIn,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(MANAGERS + ["client"])),
):
    revision = await record_client_revision_decision(
        db=db,
        quotation_id=quotation_id,
        revision_id=revision_id,
        user=user,
        decision=payload.decision,
        comments=payload.comments,
        expected_version=payload.expected_version,
    )
    return success_response(
        "Client decision recorded",
        revision,
    )


@router.post(
    "/quotations/{quotation_id}/revisions/{revision_id}/implement",
    response_model=APIResponse[QuotationOut],
)
async def implement_revision_api(
    quotation_id: int,
    revision_id: str,
    payload: RevisionImplementIn | None = None,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    quotation = await implement_revision(
        db=db,
        quotation_id=quotation_id,
        revision_id=revision_id,
        user=user,
        notes=payload.notes if payload else None,
        expected_version=payload.expected_version if payload else None,
    )
    return success_response(
        "Revision implemented successfully",
        quotation,
    )


@router.get(
    "/revisions/pending",
    response_model=APIResponse[List[QuotationListItem]],
)
async def pending_revisions_api(
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    data = await get_pending_revisions(db, user)
    return success_response(
        "Pending revisions retrieved successfully",
        data,
    )


@router.get(
    "/revisions",
    response_model=APIResponse[List[QuotationListItem]],
)
async def revisions_lookup_api(
    reason: RevisionReason | None = Query(None),
    impact: RevisionImpact | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(MANAGERS)),
):
    if reason is not None:
        data = await get_revisions_by_reason(db, reason)
    elif impact is not None:
        data = await get_revisions_by_impact(db, impact)
    else:
        raise AppException(400, "Filter by reason or impact", ErrorCode.VALIDATION_ERROR)

    return success_response(
        "Revisions retrieved successfully",
        data,
    )
