from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, Enum, JSON, Index, CheckConstraint, Boolean, DateTime
from sqlalchemy.orm import relationship
from decimal import Decimal
from app.core.db import Base
from app.models.base.mixins import TimestampMixin, SoftDeleteMixin, AuditMixin
from app.models.enums.quotation_status import QuotationStatus, QuotationPriority


class Quotation(Base, TimestampMixin, SoftDeleteMixin, AuditMixin):
    __tablename__ = "quotations"

    id = Column(Integer, primary_key=True)
    quotation_number = Column(String(50), nullable=False, unique=True, index=True)
    title = Column(String(255), nullable=False)
    status = Column(Enum(QuotationStatus), nullable=False, default=QuotationStatus.draft, index=True)
    priority = Column(Enum(QuotationPriority), nullable=False, default=QuotationPriority.medium, index=True)

    # business document version ("1.3"); only revision implementation bumps it
    version = Column(String(20), nullable=True, default="1.0")
    # optimistic lock token, see __mapper_args__
    lock_version = Column(Integer, nullable=False, default=1)

    # ---- client / pricing (owned by CRUD, read-only for the workflow) ----
    client_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    description = Column(String, nullable=True)
    terms = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    currency = Column(String(10), nullable=True)
    validity_period = Column(Integer, nullable=True)  # days
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    subtotal_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    tax_rate = Column(Numeric(5, 4), nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # ---- review ----
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by_id = Column(Integer, nullable=True)

    # ---- approval ----
    approval_requested_at = Column(DateTime(timezone=True), nullable=True, index=True)
    approval_requested_by_id = Column(Integer, nullable=True)
    approval_level = Column(String(20), nullable=True, index=True)
    approval_reason = Column(String, nullable=True)
    approval_urgency = Column(String(20), nullable=True)
    approval_deadline = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by_id = Column(Integer, nullable=True)
    approval_notes = Column(String, nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by_id = Column(Integer, nullable=True)
    rejection_reason = Column(String, nullable=True)
    approval_escalated_at = Column(DateTime(timezone=True), nullable=True)
    approval_escalated_by_id = Column(Integer, nullable=True)
    approval_escalation_reason = Column(String, nullable=True)
    approval_history = Column(JSON, nullable=False, default=list)
    escalation_history = Column(JSON, nullable=False, default=list)

    # ---- active revision scratch fields ----
    revision_status = Column(String(30), nullable=True, index=True)
    revision_requested_at = Column(DateTime(timezone=True), nullable=True)
    revision_requested_by_id = Column(Integer, nullable=True)
    revision_reason = Column(String(30), nullable=True, index=True)
    revision_description = Column(String, nullable=True)
    revision_urgency = Column(String(20), nullable=True)
    revision_changes = Column(JSON, nullable=True)
    revision_estimated_impact = Column(String(20), nullable=True, index=True)
    revision_requires_client_approval = Column(Boolean, nullable=True)
    revision_approved_at = Column(DateTime(timezone=True), nullable=True)
    revision_approved_by_id = Column(Integer, nullable=True)
    revision_conditions = Column(JSON, nullable=True)
    revision_rejected_at = Column(DateTime(timezone=True), nullable=True)
    revision_rejected_by_id = Column(Integer, nullable=True)
    revision_implemented_at = Column(DateTime(timezone=True), nullable=True)
    revision_implemented_by_id = Column(Integer, nullable=True)
    revision_history = Column(JSON, nullable=False, default=list)

    # ---- status tracking ----
    last_status_change_at = Column(DateTime(timezone=True), nullable=True)
    last_status_change_by_id = Column(Integer, nullable=True)
    status_history = Column(JSON, nullable=False, default=list)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    sent_by_id = Column(Integer, nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    accepted_by_id = Column(Integer, nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    declined_by_id = Column(Integer, nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    expired_by_id = Column(Integer, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by_id = Column(Integer, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(Integer, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    archived_by_id = Column(Integer, nullable=True)
    last_modified_at = Column(DateTime(timezone=True), nullable=True)
    last_modified_by_id = Column(Integer, nullable=True)
    is_project_completed = Column(Boolean, nullable=False, default=False)

    additional_data = Column(JSON, nullable=True)

    items = relationship("QuotationItem", back_populates="quotation", cascade="all, delete-orphan", lazy="selectin", order_by="QuotationItem.id")
    client = relationship("User", foreign_keys=[client_id], lazy="selectin")

    __mapper_args__ = {"version_id_col": lock_version, "eager_defaults": True}

    __table_args__ = (
        Index("ix_quotation_approval_pending", "approval_level", "status"),
        Index("ix_quotation_creator_status", "created_by_id", "status"),
        CheckConstraint("subtotal_amount >= 0 AND tax_amount >= 0 AND total_amount >= 0", name="ck_quotation_amounts_non_negative"),
    )

    def __repr__(self):
        return f"<Quotation {self.quotation_number} status={self.status}>"


class QuotationItem(Base, TimestampMixin, SoftDeleteMixin, AuditMixin):
    __tablename__ = "quotation_items"

    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String, nullable=True)
    sku = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(14, 2), nullable=False)

    quotation = relationship("Quotation", back_populates="items", lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_quotation_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_quotation_item_price_non_negative"),
        CheckConstraint("line_total >= 0", name="ck_quotation_item_total_non_negative"),
    )

    def __repr__(self):
        return f"<QuotationItem id={self.id} name={self.name} qty={self.quantity}>"
