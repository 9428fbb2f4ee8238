# app/models/enums/quotation_status.py
import enum


class QuotationStatus(str, enum.Enum):
    draft = "draft"
    pending_review = "pending_review"

    pending_approval = "pending_approval"
    approved = "approved"
    rejected = "rejected"

    active = "active"
    sent = "sent"

    accepted = "accepted"
    declined = "declined"
    expired = "expired"

    completed = "completed"
    cancelled = "cancelled"
    archived = "archived"


class QuotationPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"
