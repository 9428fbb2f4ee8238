from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Any, Dict, List, Optional
from decimal import Decimal
from datetime import datetime

from app.models.enums.quotation_status import QuotationStatus, QuotationPriority
from app.utils.response import PageData

# =====================================================
# ITEM PAYLOADS
# =====================================================

class QuotationItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    sku: Optional[str] = Field(default=None, max_length=100)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


# =====================================================
# ITEM RESPONSES
# =====================================================

class QuotationItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    sku: Optional[str]
    quantity: int
    unit_price: Decimal
    line_total: Decimal


# =====================================================
# QUOTATION CREATE
# =====================================================

class QuotationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    client_email: Optional[EmailStr] = None
    priority: QuotationPriority = QuotationPriority.medium
    description: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    currency: Optional[str] = Field(default="INR", max_length=10)
    validity_period: Optional[int] = Field(default=None, gt=0)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, lt=1)
    discount_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    items: List[QuotationItemCreate] = Field(min_length=1)


# =====================================================
# QUOTATION RESPONSE
# =====================================================

class QuotationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quotation_number: str
    title: str
    status: QuotationStatus
    priority: QuotationPriority
    version: Optional[str]
    lock_version: int

    client_id: Optional[int]
    client_name: Optional[str]
    client_email: Optional[str]
    description: Optional[str]
    terms: Optional[str]
    notes: Optional[str]
    currency: Optional[str]
    validity_period: Optional[int]
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]

    subtotal_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    reviewed_at: Optional[datetime]
    reviewed_by_id: Optional[int]

    approval_requested_at: Optional[datetime]
    approval_requested_by_id: Optional[int]
    approval_level: Optional[str]
    approval_reason: Optional[str]
    approval_urgency: Optional[str]
    approval_deadline: Optional[datetime]
    approved_at: Optional[datetime]
    approved_by_id: Optional[int]
    approval_notes: Optional[str]
    rejected_at: Optional[datetime]
    rejected_by_id: Optional[int]
    rejection_reason: Optional[str]
    approval_escalated_at: Optional[datetime]
    approval_escalated_by_id: Optional[int]
    approval_escalation_reason: Optional[str]

    revision_status: Optional[str]
    revision_reason: Optional[str]
    revision_urgency: Optional[str]
    revision_estimated_impact: Optional[str]
    revision_requires_client_approval: Optional[bool]
    revision_conditions: Optional[List[str]]

    last_status_change_at: Optional[datetime]
    last_status_change_by_id: Optional[int]
    activated_at: Optional[datetime]
    sent_at: Optional[datetime]
    accepted_at: Optional[datetime]
    declined_at: Optional[datetime]
    expired_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    archived_at: Optional[datetime]
    is_project_completed: bool

    created_by_id: Optional[int]
    updated_by_id: Optional[int]
    created_at: datetime
    updated_at: Optional[datetime]

    items: List[QuotationItemOut]


# =====================================================
# QUOTATION LIST RESPONSE
# =====================================================

class QuotationListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quotation_number: str
    title: str
    client_name: Optional[str]
    status: QuotationStatus
    priority: QuotationPriority
    total_amount: Decimal
    valid_until: Optional[datetime]
    version: Optional[str]
    approval_level: Optional[str]
    approval_urgency: Optional[str]
    approval_deadline: Optional[datetime]
    approval_requested_at: Optional[datetime]
    revision_status: Optional[str]
    revision_urgency: Optional[str]
    revision_requested_at: Optional[datetime]
    created_by_id: Optional[int]
    created_at: datetime


class QuotationListData(PageData[QuotationListItem]):
    pass


# =====================================================
# STATUS WORKFLOW
# =====================================================

class VersionedRequest(BaseModel):
    expected_version: Optional[int] = None


class TransitionRequest(VersionedRequest):
    target_status: QuotationStatus
    comments: Optional[str] = None
    reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AvailableTransitionsOut(BaseModel):
    quotation_id: int
    current_status: QuotationStatus
    available_transitions: List[QuotationStatus]


class RequiredFieldsOut(BaseModel):
    status: QuotationStatus
    required_fields: List[str]


class StatusHistoryEntry(BaseModel):
    from_status: QuotationStatus
    to_status: QuotationStatus
    changed_by_id: Optional[int]
    changed_at: datetime
    metadata: Optional[Dict[str, Any]] = None
