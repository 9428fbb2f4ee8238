import enum
from pydantic import BaseModel, Field
from typing import Any, List, Optional
from datetime import datetime

from app.models.enums.approval_level import ApprovalUrgency, ApprovalDecision
from app.models.enums.revision_status import RevisionStatus, RevisionReason, RevisionImpact
from app.schemas.billing.quotation_schemas import VersionedRequest


class PatchableField(str, enum.Enum):
    """Quotation fields a revision is allowed to change."""
    title = "title"
    description = "description"
    notes = "notes"
    terms = "terms"
    priority = "priority"
    currency = "currency"
    validity_period = "validity_period"
    valid_until = "valid_until"
    client_name = "client_name"
    client_email = "client_email"
    tax_rate = "tax_rate"
    discount_amount = "discount_amount"
    items = "items"


# =====================================================
# REQUESTS
# =====================================================

class RevisionChange(BaseModel):
    field: PatchableField
    old_value: Any = None
    new_value: Any = None
    reason: Optional[str] = None


class RevisionRequestIn(VersionedRequest):
    reason: RevisionReason
    description: str = Field(min_length=1)
    urgency: ApprovalUrgency = ApprovalUrgency.medium
    changes: List[RevisionChange] = Field(min_length=1)
    estimated_impact: RevisionImpact = RevisionImpact.medium
    requires_client_approval: bool = False


class RevisionDecisionIn(VersionedRequest):
    decision: ApprovalDecision
    comments: Optional[str] = None
    conditions: Optional[List[str]] = None


class ClientRevisionDecisionIn(VersionedRequest):
    decision: ApprovalDecision
    comments: Optional[str] = None


class RevisionImplementIn(VersionedRequest):
    notes: Optional[str] = None


# =====================================================
# REVISION RECORD (stored as JSON on the quotation)
# =====================================================

class RevisionRecord(BaseModel):
    id: str
    revision_number: int
    requested_by_id: Optional[int]
    requested_at: datetime
    reason: RevisionReason
    description: str
    urgency: ApprovalUrgency
    changes: List[RevisionChange]
    estimated_impact: RevisionImpact
    requires_client_approval: bool = False
    status: RevisionStatus = RevisionStatus.pending

    approved_by_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    comments: Optional[str] = None
    conditions: Optional[List[str]] = None

    client_decision: Optional[ApprovalDecision] = None
    client_decision_at: Optional[datetime] = None
    client_decision_by_id: Optional[int] = None

    implemented_at: Optional[datetime] = None
    implemented_by_id: Optional[int] = None
    implementation_notes: Optional[str] = None


class RevisionHistoryOut(BaseModel):
    quotation_id: int
    revision_status: Optional[RevisionStatus]
    revisions: List[RevisionRecord]
