# app/models/enums/revision_status.py
import enum


class RevisionStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    pending_client_approval = "pending_client_approval"
    implemented = "implemented"


# Quotation-level revision statuses that block a new revision request.
OPEN_REVISION_STATUSES = frozenset({
    RevisionStatus.pending,
    RevisionStatus.approved,
    RevisionStatus.pending_client_approval,
})


class RevisionReason(str, enum.Enum):
    pricing_update = "pricing_update"
    scope_change = "scope_change"
    terms_update = "terms_update"
    technical_update = "technical_update"
    client_request = "client_request"
    internal_review = "internal_review"
    other = "other"


class RevisionImpact(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
