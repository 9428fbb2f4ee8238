# app/services/notifications/notifier.py
"""
Outbound email port for the quotation workflow.

Implementations return True when the message was handed off and False when
it was not; raising is tolerated but always logged by the dispatcher.
"""
import abc
import enum
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.models.billing.quotation_models import Quotation

logger = logging.getLogger(__name__)


class Recipient(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    name: str | None = None


class QuotationSnapshot(BaseModel):
    """Read-only copy of the fields an email needs, detached from the session."""
    model_config = ConfigDict(frozen=True)

    id: int
    quotation_number: str
    title: str
    status: str
    version: str | None = None
    total_amount: Decimal
    currency: str | None = None
    client_name: str | None = None
    approval_level: str | None = None
    approval_urgency: str | None = None
    approval_deadline: datetime | None = None
    revision_status: str | None = None

    @classmethod
    def from_quotation(cls, q: Quotation) -> "QuotationSnapshot":
        status = q.status.value if hasattr(q.status, "value") else q.status
        return cls(
            id=q.id,
            quotation_number=q.quotation_number,
            title=q.title,
            status=status,
            version=q.version,
            total_amount=q.total_amount,
            currency=q.currency,
            client_name=q.client_name,
            approval_level=q.approval_level,
            approval_urgency=q.approval_urgency,
            approval_deadline=q.approval_deadline,
            revision_status=q.revision_status,
        )


class NotificationKind(str, enum.Enum):
    APPROVAL_REQUEST = "send_approval_request_email"
    APPROVAL_DECISION = "send_approval_decision_email"
    NEXT_APPROVAL_LEVEL = "send_next_approval_level_email"
    APPROVAL_ESCALATION = "send_approval_escalation_email"
    OVERDUE_APPROVAL = "send_overdue_approval_email"
    REVISION_REQUEST = "send_revision_request_email"
    REVISION_DECISION = "send_revision_decision_email"
    REVISION_IMPLEMENTED = "send_revision_implemented_email"


class EmailNotifier(abc.ABC):

    @abc.abstractmethod
    async def send_approval_request_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...

    @abc.abstractmethod
    async def send_approval_decision_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...

    @abc.abstractmethod
    async def send_next_approval_level_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...

    @abc.abstractmethod
    async def send_approval_escalation_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...

    @abc.abstractmethod
    async def send_overdue_approval_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...

    @abc.abstractmethod
    async def send_revision_request_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...

    @abc.abstractmethod
    async def send_revision_decision_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...

    @abc.abstractmethod
    async def send_revision_implemented_email(
        self, recipient: Recipient, quotation: QuotationSnapshot, **payload: Any
    ) -> bool: ...


class LoggingEmailNotifier(EmailNotifier):
    """Default adapter: no mail transport, every email is written to the log."""

    async def _deliver(self, kind: NotificationKind, recipient, quotation, payload) -> bool:
        logger.info(
            "Email notification would be sent",
            extra={
                "kind": kind.value,
                "to": recipient.email,
                "quotation_id": quotation.id,
                "quotation_number": quotation.quotation_number,
                "payload": payload,
            },
        )
        return True

    async def send_approval_request_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.APPROVAL_REQUEST, recipient, quotation, payload)

    async def send_approval_decision_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.APPROVAL_DECISION, recipient, quotation, payload)

    async def send_next_approval_level_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.NEXT_APPROVAL_LEVEL, recipient, quotation, payload)

    async def send_approval_escalation_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.APPROVAL_ESCALATION, recipient, quotation, payload)

    async def send_overdue_approval_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.OVERDUE_APPROVAL, recipient, quotation, payload)

    async def send_revision_request_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.REVISION_REQUEST, recipient, quotation, payload)

    async def send_revision_decision_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.REVISION_DECISION, recipient, quotation, payload)

    async def send_revision_implemented_email(self, recipient, quotation, **payload):
        return await self._deliver(NotificationKind.REVISION_IMPLEMENTED, recipient, quotation, payload)
