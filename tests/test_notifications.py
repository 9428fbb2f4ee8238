"""
Tests for the background email dispatcher and recipient lookup.
"""
from decimal import Decimal

import pytest

from app.models.enums.approval_level import ApprovalLevel
from app.models.users.user_models import User
from app.services.notifications import recipients
from app.services.notifications.dispatcher import NotificationDispatcher
from app.services.notifications.notifier import (
    LoggingEmailNotifier,
    NotificationKind,
    QuotationSnapshot,
    Recipient,
)

QUOTE = QuotationSnapshot(
    id=1,
    quotation_number="QT-000001",
    title="Office fit-out",
    status="pending_approval",
    total_amount=Decimal("110.00"),
)


class FlakyNotifier(LoggingEmailNotifier):
    """Raises for one address, reports non-delivery for another."""

    def __init__(self):
        self.delivered = []

    async def send_approval_request_email(self, recipient, quotation, **payload):
        if recipient.email == "boom@example.com":
            raise ConnectionError("SMTP down")
        if recipient.email == "bounce@example.com":
            return False
        self.delivered.append(recipient.email)
        return True


class TestDispatcher:

    @pytest.mark.asyncio
    async def test_duplicate_recipients_get_one_email(self, outbox, dispatcher):
        people = [
            Recipient(email="a@example.com", name="A"),
            Recipient(email="a@example.com", name="A again"),
            Recipient(email="b@example.com"),
        ]

        dispatcher.fire(NotificationKind.APPROVAL_REQUEST, people, QUOTE, level="manager")
        await dispatcher.drain()

        assert sorted(m.to for m in outbox.sent) == ["a@example.com", "b@example.com"]
        assert outbox.sent[0].payload == {"level": "manager"}
        assert outbox.sent[0].quotation.quotation_number == "QT-000001"

    @pytest.mark.asyncio
    async def test_failures_are_logged_and_swallowed(self, caplog):
        notifier = FlakyNotifier()
        dispatcher = NotificationDispatcher(notifier)
        people = [
            Recipient(email="boom@example.com"),
            Recipient(email="bounce@example.com"),
            Recipient(email="ok@example.com"),
        ]

        dispatcher.fire(NotificationKind.APPROVAL_REQUEST, people, QUOTE)
        await dispatcher.drain()

        assert notifier.delivered == ["ok@example.com"]
        messages = [r.getMessage() for r in caplog.records]
        assert "Error sending notification" in messages
        assert "Notification not delivered" in messages

    @pytest.mark.asyncio
    async def test_no_recipients_is_a_no_op(self, outbox, dispatcher):
        dispatcher.fire(NotificationKind.OVERDUE_APPROVAL, [], QUOTE)
        await dispatcher.drain()

        assert outbox.sent == []

    @pytest.mark.asyncio
    async def test_logging_notifier_always_delivers(self):
        assert await LoggingEmailNotifier().send_revision_implemented_email(Recipient(email="x@example.com"), QUOTE)


class TestRecipients:

    @pytest.mark.asyncio
    async def test_approvers_by_level(self, db, users):
        assert [r.email for r in await recipients.find_approvers(db, ApprovalLevel.manager)] == [
            "manager@example.com",
        ]
        assert [r.email for r in await recipients.find_approvers(db, "director")] == ["director@example.com"]
        assert [r.email for r in await recipients.find_approvers(db, ApprovalLevel.executive)] == [
            "ceo@example.com",
        ]

    @pytest.mark.asyncio
    async def test_higher_levels(self, db, users):
        above_manager = await recipients.find_higher_level_approvers(db, ApprovalLevel.manager)
        above_executive = await recipients.find_higher_level_approvers(db, ApprovalLevel.executive)

        assert {r.email for r in above_manager} == {"director@example.com", "ceo@example.com"}
        assert above_executive == []

    @pytest.mark.asyncio
    async def test_inactive_users_are_skipped(self, db, users):
        db.add(User(
            username="retired@example.com",
            password_hash="not-a-real-hash",
            roles=["manager"],
            is_active=False,
        ))
        await db.commit()

        assert {r.email for r in await recipients.find_managers(db)} == {
            "manager@example.com",
            "director@example.com",
        }

    @pytest.mark.asyncio
    async def test_user_by_id(self, db, users):
        assert await recipients.user_by_id(db, None) == []
        assert await recipients.user_by_id(db, 12345) == []
        assert await recipients.user_by_id(db, users.sales.id) == [
            Recipient(email="sales@example.com", name="Sam Sales"),
        ]
