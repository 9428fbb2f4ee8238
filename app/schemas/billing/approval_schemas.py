from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from app.models.enums.approval_level import ApprovalLevel, ApprovalUrgency, ApprovalDecision
from app.schemas.billing.quotation_schemas import VersionedRequest

# =====================================================
# REQUESTS
# =====================================================

class ApprovalRequestIn(VersionedRequest):
    level: ApprovalLevel
    reason: Optional[str] = None
    urgency: ApprovalUrgency = ApprovalUrgency.medium
    deadline: Optional[datetime] = None


class ApprovalDecisionIn(VersionedRequest):
    decision: ApprovalDecision
    comments: Optional[str] = None


class ApprovalEscalationIn(VersionedRequest):
    reason: str = Field(min_length=1)


# =====================================================
# HISTORY ENTRIES (stored as JSON on the quotation)
# =====================================================

class ApprovalHistoryEntry(BaseModel):
    level: ApprovalLevel
    approved_by_id: Optional[int]
    approved_at: datetime
    decision: ApprovalDecision
    comments: Optional[str] = None


class EscalationEntry(BaseModel):
    escalated_by_id: Optional[int]
    escalated_at: datetime
    reason: str
    from_urgency: Optional[ApprovalUrgency]
    to_urgency: Optional[ApprovalUrgency]
    automatic: bool = False


class ApprovalHistoryOut(BaseModel):
    quotation_id: int
    approvals: list[ApprovalHistoryEntry]
    escalations: list[EscalationEntry]
