"""
Integration tests for the scheduled jobs: approval deadline escalation and
quotation expiry. Each job runs against its own sessions, like the scheduler.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models.enums.approval_level import ApprovalLevel, ApprovalUrgency, ApprovalDecision
from app.models.enums.quotation_status import QuotationStatus
from app.models.support.activity_models import UserActivity
from app.services.billing import approval_service
from app.services.billing.approval_service import (
    request_approval,
    approve,
    check_approval_deadlines,
    AUTO_ESCALATION_REASON,
)
from app.services.billing.quotation_expiry_service import auto_expire_quotations
from app.services.billing.quotation_store import get_quotation_for_update, commit_or_conflict
from app.services.notifications.notifier import NotificationKind
from app.utils.datetime_utils import utcnow, as_utc


async def overdue_request(db, users, make_quotation, urgency=ApprovalUrgency.medium, **overrides):
    q = await make_quotation(QuotationStatus.pending_approval, **overrides)
    await request_approval(
        db, q.id, users.sales,
        level=ApprovalLevel.manager,
        urgency=urgency,
        deadline=utcnow() - timedelta(hours=1),
    )
    return q


# ==================== approval deadlines ====================

class TestApprovalDeadlineSweep:

    @pytest.mark.asyncio
    async def test_overdue_request_is_escalated(self, db, users, make_quotation, session_factory,
                                                dispatcher, outbox, fetch):
        q = await overdue_request(db, users, make_quotation)

        escalated = await check_approval_deadlines(session_factory, notifier=dispatcher)
        await dispatcher.drain()

        assert escalated == 1
        stored = await fetch(q.id)
        assert stored.approval_urgency == "high"
        assert stored.approval_escalated_by_id is None
        assert stored.approval_escalation_reason == AUTO_ESCALATION_REASON
        assert len(stored.escalation_history) == 1
        assert stored.escalation_history[0]["automatic"] is True
        assert stored.escalation_history[0]["from_urgency"] == "medium"
        assert stored.status is QuotationStatus.pending_approval

        assert outbox.recipients(NotificationKind.OVERDUE_APPROVAL) == {"manager@example.com"}
        assert outbox.recipients(NotificationKind.APPROVAL_ESCALATION) == {
            "director@example.com",
            "ceo@example.com",
        }

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, db, users, make_quotation, session_factory, dispatcher, fetch):
        q = await overdue_request(db, users, make_quotation, urgency=ApprovalUrgency.urgent)

        first = await check_approval_deadlines(session_factory, notifier=dispatcher)
        second = await check_approval_deadlines(session_factory, notifier=dispatcher)

        assert (first, second) == (1, 0)
        stored = await fetch(q.id)
        assert stored.approval_urgency == "urgent"
        assert len(stored.escalation_history) == 1

    @pytest.mark.asyncio
    async def test_next_rung_gets_its_own_deadline_and_sweep(self, db, users, make_quotation,
                                                             session_factory, dispatcher, fetch):
        q = await overdue_request(db, users, make_quotation)
        assert await check_approval_deadlines(session_factory, notifier=dispatcher) == 1

        await approve(db, q.id, users.manager, decision=ApprovalDecision.approved)

        stored = await fetch(q.id)
        assert stored.approval_level == "director"
        assert as_utc(stored.approval_deadline) - as_utc(stored.approval_requested_at) == timedelta(days=1)
        assert await check_approval_deadlines(session_factory, notifier=dispatcher) == 0

        director_rung = await get_quotation_for_update(db, q.id)
        director_rung.approval_deadline = utcnow() - timedelta(minutes=1)
        await commit_or_conflict(db, director_rung)

        assert await check_approval_deadlines(session_factory, notifier=dispatcher) == 1
        stored = await fetch(q.id)
        assert stored.approval_urgency == "urgent"
        assert [e["to_urgency"] for e in stored.escalation_history] == ["high", "urgent"]
        assert await check_approval_deadlines(session_factory, notifier=dispatcher) == 0

    @pytest.mark.asyncio
    async def test_requests_within_deadline_are_left_alone(self, db, users, make_quotation,
                                                           session_factory, dispatcher, fetch):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager)

        assert await check_approval_deadlines(session_factory, notifier=dispatcher) == 0
        stored = await fetch(q.id)
        assert stored.escalation_history == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(self, db, users, make_quotation, session_factory,
                                                       dispatcher, fetch, monkeypatch):
        broken = await overdue_request(db, users, make_quotation, title="Broken")
        healthy = await overdue_request(db, users, make_quotation, title="Healthy")

        original = approval_service._handle_overdue_approval

        async def flaky(session, quotation_id, notifier):
            if quotation_id == broken.id:
                raise RuntimeError("mail server on fire")
            return await original(session, quotation_id, notifier)

        monkeypatch.setattr(approval_service, "_handle_overdue_approval", flaky)

        assert await check_approval_deadlines(session_factory, notifier=dispatcher) == 1
        assert (await fetch(broken.id)).escalation_history == []
        assert len((await fetch(healthy.id)).escalation_history) == 1

    @pytest.mark.asyncio
    async def test_escalation_is_logged_as_system_activity(self, db, users, make_quotation,
                                                           session_factory, dispatcher):
        q = await overdue_request(db, users, make_quotation)

        await check_approval_deadlines(session_factory, notifier=dispatcher)

        async with session_factory() as session:
            result = await session.execute(
                select(UserActivity).where(UserActivity.username_snapshot == "system")
            )
            messages = [a.message for a in result.scalars().all()]

        assert len(messages) == 1
        assert messages[0].startswith(f"System (system) escalated approval of quotation QT-{q.id:06d}")


# ==================== expiry ====================

async def backdate_validity(db, quotation_id, days=1):
    q = await get_quotation_for_update(db, quotation_id)
    q.valid_until = utcnow() - timedelta(days=days)
    await commit_or_conflict(db, q)


class TestExpirySweep:

    @pytest.mark.asyncio
    async def test_sent_quotation_past_validity_expires(self, db, make_quotation, session_factory, fetch):
        q = await make_quotation(QuotationStatus.sent)
        await backdate_validity(db, q.id)

        assert await auto_expire_quotations(session_factory) == 1

        stored = await fetch(q.id)
        assert stored.status is QuotationStatus.expired
        assert stored.expired_at is not None
        assert stored.expired_by_id is None
        assert stored.status_history[-1]["from_status"] == "sent"
        assert stored.status_history[-1]["to_status"] == "expired"
        assert stored.status_history[-1]["changed_by_id"] is None

    @pytest.mark.asyncio
    async def test_second_run_finds_nothing(self, db, make_quotation, session_factory):
        q = await make_quotation(QuotationStatus.sent)
        await backdate_validity(db, q.id)

        assert await auto_expire_quotations(session_factory) == 1
        assert await auto_expire_quotations(session_factory) == 0

    @pytest.mark.asyncio
    async def test_valid_and_unsent_quotations_are_kept(self, db, make_quotation, session_factory, fetch):
        valid = await make_quotation(QuotationStatus.sent)
        active = await make_quotation(QuotationStatus.active)
        await backdate_validity(db, active.id)

        assert await auto_expire_quotations(session_factory) == 0
        assert (await fetch(valid.id)).status is QuotationStatus.sent
        assert (await fetch(active.id)).status is QuotationStatus.active
