"""
Integration tests for the approval chain (SQLite, real services).
"""
from datetime import timedelta

import pytest

from app.constants.error_codes import ErrorCode
from app.core.exceptions import AppException
from app.models.enums.approval_level import ApprovalLevel, ApprovalUrgency, ApprovalDecision
from app.models.enums.quotation_status import QuotationStatus
from app.services.billing.approval_service import (
    request_approval,
    approve,
    escalate_approval,
    get_pending_approvals,
    get_approval_history,
    default_deadline,
)
from app.services.notifications.notifier import NotificationKind
from app.utils.datetime_utils import utcnow, as_utc


class TestRequestApproval:

    @pytest.mark.asyncio
    async def test_request_sets_fields_and_notifies(self, db, users, make_quotation, dispatcher, outbox):
        q = await make_quotation(QuotationStatus.pending_approval)
        before = utcnow()

        out = await request_approval(
            db, q.id, users.sales,
            level=ApprovalLevel.manager,
            reason="Large order",
            urgency=ApprovalUrgency.high,
        )
        await dispatcher.drain()

        assert out.approval_level == "manager"
        assert out.approval_urgency == "high"
        assert out.approval_reason == "Large order"
        assert out.approval_requested_by_id == users.sales.id
        assert out.status is QuotationStatus.pending_approval
        deadline = as_utc(out.approval_deadline)
        assert before + timedelta(days=1) <= deadline <= utcnow() + timedelta(days=1)
        assert outbox.recipients(NotificationKind.APPROVAL_REQUEST) == {
            "manager@example.com",
            "sales@example.com",
        }

    @pytest.mark.asyncio
    async def test_explicit_deadline_wins(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        deadline = utcnow() + timedelta(hours=2)

        out = await request_approval(db, q.id, users.manager, level=ApprovalLevel.director, deadline=deadline)

        assert as_utc(out.approval_deadline) == deadline

    @pytest.mark.asyncio
    async def test_second_request_is_rejected(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager)

        with pytest.raises(AppException) as exc:
            await request_approval(db, q.id, users.manager, level=ApprovalLevel.director)

        assert exc.value.status_code == 400
        assert exc.value.error_code is ErrorCode.APPROVAL_ALREADY_PENDING

    @pytest.mark.asyncio
    async def test_other_sales_rep_cannot_request(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)

        with pytest.raises(AppException) as exc:
            await request_approval(db, q.id, users.other_sales, level=ApprovalLevel.manager)

        assert exc.value.status_code == 403
        assert exc.value.error_code is ErrorCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_unknown_quotation(self, db, users):
        with pytest.raises(AppException) as exc:
            await request_approval(db, 999, users.manager, level=ApprovalLevel.manager)

        assert exc.value.status_code == 404
        assert exc.value.error_code is ErrorCode.QUOTATION_NOT_FOUND

    def test_default_deadlines_by_urgency(self):
        now = utcnow()
        assert default_deadline(ApprovalUrgency.low, now) - now == timedelta(days=7)
        assert default_deadline(ApprovalUrgency.medium, now) - now == timedelta(days=3)
        assert default_deadline(ApprovalUrgency.high, now) - now == timedelta(days=1)
        assert default_deadline(ApprovalUrgency.urgent, now) - now == timedelta(hours=4)


class TestApprovalChain:

    @pytest.mark.asyncio
    async def test_each_level_hands_over_to_the_next(self, db, users, make_quotation, dispatcher, outbox):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager)

        out = await approve(db, q.id, users.manager, decision=ApprovalDecision.approved, comments="ok by me")
        assert out.status is QuotationStatus.pending_approval
        assert out.approval_level == "director"
        assert out.approval_requested_at is not None

        out = await approve(db, q.id, users.director, decision=ApprovalDecision.approved)
        assert out.status is QuotationStatus.pending_approval
        assert out.approval_level == "executive"

        out = await approve(db, q.id, users.executive, decision=ApprovalDecision.approved, comments="Go")
        assert out.status is QuotationStatus.approved
        assert out.approval_requested_at is None
        assert out.approved_by_id == users.executive.id
        assert out.approval_notes == "Go"

        history = await get_approval_history(db, q.id)
        assert [e.level for e in history.approvals] == [
            ApprovalLevel.manager,
            ApprovalLevel.director,
            ApprovalLevel.executive,
        ]
        assert [e.approved_by_id for e in history.approvals] == [
            users.manager.id,
            users.director.id,
            users.executive.id,
        ]
        assert history.approvals[0].comments == "ok by me"

        await dispatcher.drain()
        assert "director@example.com" in outbox.recipients(NotificationKind.NEXT_APPROVAL_LEVEL)
        assert "ceo@example.com" in outbox.recipients(NotificationKind.NEXT_APPROVAL_LEVEL)
        assert outbox.recipients(NotificationKind.APPROVAL_DECISION) == {
            "sales@example.com",
            "client@example.com",
        }

    @pytest.mark.asyncio
    async def test_rejection_finalizes_at_any_level(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager)

        out = await approve(db, q.id, users.manager, decision=ApprovalDecision.rejected, comments="Too expensive")

        assert out.status is QuotationStatus.rejected
        assert out.rejected_by_id == users.manager.id
        assert out.rejection_reason == "Too expensive"
        assert out.approval_requested_at is None

        history = await get_approval_history(db, q.id)
        assert history.approvals[-1].decision is ApprovalDecision.rejected

    @pytest.mark.asyncio
    async def test_lower_level_cannot_decide(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.director)

        with pytest.raises(AppException) as exc:
            await approve(db, q.id, users.manager, decision=ApprovalDecision.approved)

        assert exc.value.status_code == 403
        assert exc.value.error_code is ErrorCode.APPROVAL_LEVEL_INSUFFICIENT

    @pytest.mark.asyncio
    async def test_decision_without_request(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)

        with pytest.raises(AppException) as exc:
            await approve(db, q.id, users.executive, decision=ApprovalDecision.approved)

        assert exc.value.status_code == 400
        assert exc.value.error_code is ErrorCode.APPROVAL_NOT_PENDING

    @pytest.mark.asyncio
    async def test_final_approval_still_needs_the_approval_stage(self, db, users, make_quotation, fetch):
        # requested while still in review: the top-level decision cannot finalize yet
        q = await make_quotation(QuotationStatus.pending_review)
        await request_approval(db, q.id, users.manager, level=ApprovalLevel.executive)

        with pytest.raises(AppException) as exc:
            await approve(db, q.id, users.executive, decision=ApprovalDecision.approved)

        assert exc.value.error_code is ErrorCode.TRANSITION_NOT_ALLOWED
        stored = await fetch(q.id)
        assert stored.status is QuotationStatus.pending_review
        assert stored.approval_requested_at is not None
        assert stored.approval_history == []


class TestEscalation:

    @pytest.mark.asyncio
    async def test_manual_escalation_raises_urgency(self, db, users, make_quotation, dispatcher, outbox):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager, urgency=ApprovalUrgency.medium)

        out = await escalate_approval(db, q.id, users.manager, reason="Client is waiting")

        assert out.approval_urgency == "high"
        assert out.approval_escalated_by_id == users.manager.id
        assert out.approval_escalation_reason == "Client is waiting"

        history = await get_approval_history(db, q.id)
        assert len(history.escalations) == 1
        entry = history.escalations[0]
        assert entry.from_urgency is ApprovalUrgency.medium
        assert entry.to_urgency is ApprovalUrgency.high
        assert entry.automatic is False

        await dispatcher.drain()
        assert outbox.recipients(NotificationKind.APPROVAL_ESCALATION) == {
            "director@example.com",
            "ceo@example.com",
        }

    @pytest.mark.asyncio
    async def test_urgency_stops_at_urgent(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager, urgency=ApprovalUrgency.urgent)

        out = await escalate_approval(db, q.id, users.manager, reason="Still waiting")

        assert out.approval_urgency == "urgent"

    @pytest.mark.asyncio
    async def test_sales_rep_cannot_escalate(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager)

        with pytest.raises(AppException) as exc:
            await escalate_approval(db, q.id, users.sales, reason="Hurry")

        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_escalation_without_request(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)

        with pytest.raises(AppException) as exc:
            await escalate_approval(db, q.id, users.manager, reason="Hurry")

        assert exc.value.error_code is ErrorCode.APPROVAL_NOT_PENDING


class TestPendingApprovals:

    @pytest.mark.asyncio
    async def test_queue_is_ordered_by_urgency_then_deadline(self, db, users, make_quotation):
        low = await make_quotation(QuotationStatus.pending_approval, title="Low")
        urgent = await make_quotation(QuotationStatus.pending_approval, title="Urgent")
        medium = await make_quotation(QuotationStatus.pending_approval, title="Medium")
        await request_approval(db, low.id, users.sales, level=ApprovalLevel.manager, urgency=ApprovalUrgency.low)
        await request_approval(db, urgent.id, users.sales, level=ApprovalLevel.manager, urgency=ApprovalUrgency.urgent)
        await request_approval(db, medium.id, users.sales, level=ApprovalLevel.manager, urgency=ApprovalUrgency.medium)

        queue = await get_pending_approvals(db, users.manager)

        assert [item.title for item in queue] == ["Urgent", "Medium", "Low"]

    @pytest.mark.asyncio
    async def test_queue_is_per_level(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.director)

        assert await get_pending_approvals(db, users.manager) == []
        assert [item.id for item in await get_pending_approvals(db, users.director)] == [q.id]

    @pytest.mark.asyncio
    async def test_sales_rep_only_sees_own_quotations(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.pending_approval)
        await request_approval(db, q.id, users.sales, level=ApprovalLevel.manager)

        assert [item.id for item in await get_pending_approvals(db, users.sales)] == [q.id]
        assert await get_pending_approvals(db, users.other_sales) == []
