from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.utils.check_roles import require_role
from app.utils.response import success_response, APIResponse

from app.schemas.billing.quotation_schemas import QuotationOut, QuotationListItem
from app.schemas.billing.approval_schemas import (
    ApprovalRequestIn,
    ApprovalDecisionIn,
    ApprovalEscalationIn,
    ApprovalHistoryOut,
)

from app.services.billing.approval_service import (
    request_approval,
    approve,
    escalate_approval,
    get_pending_approvals,
    get_approval_history,
)

STAFF = ["sales_rep", "manager", "admin", "super_admin"]
APPROVERS = ["manager", "admin", "super_admin"]

router = APIRouter(tags=["Approvals"])


@router.post(
    "/quotations/{quotation_id}/approval",
    response_model=APIResponse[QuotationOut],
)
async def request_approval_api(
    quotation_id: int,
    payload: ApprovalRequestIn,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    quotation = await request_approval(
        db=db,
        quotation_id=quotation_id,
        user=user,
        level=payload.level,
        reason=payload.reason,
        urgency=payload.urgency,
        deadline=payload.deadline,
        expected_version=payload.expected_version,
    )
    return success_response(
        "Approval requested successfully",
        quotation,
    )


@router.post(
    "/quotations/{quotation_id}/approval/decision",
    response_model=APIResponse[QuotationOut],
)
async def approval_decision_api(
    quotation_id: int,
    payload: ApprovalDecisionIn,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(APPROVERS)),
):
    quotation = await approve(
        db=db,
        quotation_id=quotation_id,
        user=user,
        decision=payload.decision,
        comments=payload.comments,
        expected_version=payload.expected_version,
    )
    return success_response(
        "Approval decision recorded",
        quotation,
    )


@router.post(
    "/quotations/{quotation_id}/approval/escalate",
    response_model=APIResponse[QuotationOut],
)
async def escalate_approval_api(
    quotation_id: int,
    payload: ApprovalEscalationIn,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(APPROVERS)),
):
    quotation = await escalate_approval(
        db=db,
        quotation_id=quotation_id,
        user=user,
        reason=payload.reason,
        expected_version=payload.expected_version,
    )
    return success_response(
        "Approval escalated",
        quotation,
    )


@router.get(
    "/quotations/{quotation_id}/approval/history",
    response_model=APIResponse[ApprovalHistoryOut],
)
async def approval_history_api(
    quotation_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    data = await get_approval_history(db, quotation_id)
    return success_response(
        "Approval history retrieved successfully",
        data,
    )


@router.get(
    "/approvals/pending",
    response_model=APIResponse[List[QuotationListItem]],
)
async def pending_approvals_api(
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    data = await get_pending_approvals(db, user)
    return success_response(
        "Pending approvals retrieved successfully",
        data,
    )
