from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.utils.check_roles import require_role
from app.utils.response import success_response, APIResponse
from app.models.enums.quotation_status import QuotationStatus, QuotationPriority

from app.schemas.billing.quotation_schemas import (
    QuotationCreate,
    QuotationOut,
    QuotationListData,
    TransitionRequest,
    AvailableTransitionsOut,
    RequiredFieldsOut,
    VersionedRequest,
)

from app.services.billing.quotation_service import (
    create_quotation,
    get_quotation,
    list_quotations,
    transition_quotation,
    get_available_transitions,
    get_required_fields,
    mark_reviewed,
    record_project_completion,
)

STAFF = ["sales_rep", "manager", "admin", "super_admin"]
APPROVERS = ["manager", "admin", "super_admin"]
EVERYONE = STAFF + ["client", "user"]

router = APIRouter(
    prefix="/quotations",
    tags=["Quotations"],
)


@router.post(
    "",
    response_model=APIResponse[QuotationOut],
)
async def create_quotation_api(
    payload: QuotationCreate,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    quotation = await create_quotation(db, payload, user)
    return success_response(
        "Quotation created successfully",
        quotation,
    )


@router.get(
    "",
    response_model=APIResponse[QuotationListData],
)
async def list_quotations_api(
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
    status: QuotationStatus | None = Query(None, description="Filter by status (e.g., draft, sent)"),
    priority: QuotationPriority | None = Query(None),
    created_by_id: int | None = Query(None, description="Filter by creator"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    order: str = Query("desc"),
):
    data = await list_quotations(
        db=db,
        status=status,
        priority=priority,
        created_by_id=created_by_id,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        order=order,
    )
    return success_response(
        "Quotations retrieved successfully",
        data,
    )


@router.get(
    "/required-fields/{status}",
    response_model=APIResponse[RequiredFieldsOut],
)
async def required_fields_api(
    status: QuotationStatus,
    user=Depends(require_role(EVERYONE)),
):
    return success_response(
        "Required fields retrieved successfully",
        get_required_fields(status),
    )


@router.get(
    "/{quotation_id}",
    response_model=APIResponse[QuotationOut],
)
async def get_quotation_api(
    quotation_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(STAFF)),
):
    quotation = await get_quotation(
        db=db,
        quotation_id=quotation_id,
    )
    return success_response(
        "Quotation retrieved successfully",
        quotation,
    )


@router.get(
    "/{quotation_id}/transitions",
    response_model=APIResponse[AvailableTransitionsOut],
)
async def available_transitions_api(
    quotation_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(EVERYONE)),
):
    data = await get_available_transitions(db, quotation_id, user)
    return success_response(
        "Available transitions retrieved successfully",
        data,
    )


@router.post(
    "/{quotation_id}/transition",
    response_model=APIResponse[QuotationOut],
)
async def transition_quotation_api(
    quotation_id: int,
    payload: TransitionRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(EVERYONE)),
):
    quotation = await transition_quotation(
        db=db,
        quotation_id=quotation_id,
        payload=payload,
        user=user,
    )
    return success_response(
        f"Quotation moved to {payload.target_status.value}",
        quotation,
    )


@router.post(
    "/{quotation_id}/review",
    response_model=APIResponse[QuotationOut],
)
async def mark_reviewed_api(
    quotation_id: int,
    payload: VersionedRequest | None = None,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(APPROVERS)),
):
    quotation = await mark_reviewed(
        db=db,
        quotation_id=quotation_id,
        user=user,
        expected_version=payload.expected_version if payload else None,
    )
    return success_response(
        "Quotation reviewed successfully",
        quotation,
    )


@router.post(
    "/{quotation_id}/project-completed",
    response_model=APIResponse[QuotationOut],
)
async def project_completed_api(
    quotation_id: int,
    payload: VersionedRequest | None = None,
    db: AsyncSession = Depends(get_db),
    user=Depends(require_role(APPROVERS)),
):
    quotation = await record_project_completion(
        db=db,
        quotation_id=quotation_id,
        user=user,
        expected_version=payload.expected_version if payload else None,
    )
    return success_response(
        "Project completion recorded successfully",
        quotation,
    )
