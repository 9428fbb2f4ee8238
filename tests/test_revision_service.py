"""
Integration tests for revision negotiation (SQLite, real services).
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.constants.error_codes import ErrorCode
from app.core.exceptions import AppException
from app.models.enums.approval_level import ApprovalUrgency, ApprovalDecision
from app.models.enums.quotation_status import QuotationStatus
from app.models.enums.revision_status import RevisionStatus, RevisionReason, RevisionImpact
from app.schemas.billing.quotation_schemas import TransitionRequest
from app.schemas.billing.revision_schemas import RevisionChange
from app.services.billing.quotation_service import transition_quotation
from app.services.billing.revision_service import (
    request_revision,
    approve_revision,
    record_client_revision_decision,
    implement_revision,
    get_pending_revisions,
    get_revisions_by_reason,
    get_revisions_by_impact,
    get_revision_history,
    bump_version,
)
from app.services.notifications.notifier import NotificationKind


def discount(amount: str) -> list[RevisionChange]:
    return [RevisionChange(field="discount_amount", new_value=amount, reason="Loyalty discount")]


async def request(db, users, q, changes=None, **kwargs):
    kwargs.setdefault("reason", RevisionReason.pricing_update)
    kwargs.setdefault("description", "Apply loyalty discount")
    return await request_revision(db, q.id, users.sales, changes=changes or discount("10.00"), **kwargs)


class TestRevisionLifecycle:

    @pytest.mark.asyncio
    async def test_request_approve_implement(self, db, users, make_quotation, dispatcher, outbox):
        q = await make_quotation()

        record = await request(db, users, q, urgency=ApprovalUrgency.high)
        history = await get_revision_history(db, q.id)
        assert len(history.revisions) == 1
        assert history.revision_status is RevisionStatus.pending
        assert record.id.startswith("rev_")
        assert record.revision_number == 1
        assert record.changes[0].old_value == "0.00"

        decided = await approve_revision(db, q.id, record.id, users.manager, decision=ApprovalDecision.approved)
        assert decided.status is RevisionStatus.approved
        assert (await get_revision_history(db, q.id)).revision_status is RevisionStatus.approved

        out = await implement_revision(db, q.id, record.id, users.sales, notes="Done")
        assert out.revision_status == "implemented"
        assert out.version == "1.1"
        assert out.discount_amount == Decimal("10.00")
        assert out.total_amount == Decimal("100.00")
        assert out.status is QuotationStatus.draft
        assert out.revision_reason is None

        stored = (await get_revision_history(db, q.id)).revisions[0]
        assert stored.status is RevisionStatus.implemented
        assert stored.implemented_by_id == users.sales.id
        assert stored.implementation_notes == "Done"

        await dispatcher.drain()
        assert outbox.recipients(NotificationKind.REVISION_REQUEST) == {"sales@example.com"}
        assert outbox.recipients(NotificationKind.REVISION_DECISION) == {"sales@example.com"}
        assert outbox.recipients(NotificationKind.REVISION_IMPLEMENTED) == {
            "client@example.com",
            "sales@example.com",
        }

    @pytest.mark.asyncio
    async def test_version_counts_revisions(self, db, users, make_quotation):
        q = await make_quotation()

        for amount in ("5.00", "7.50"):
            record = await request(db, users, q, changes=discount(amount))
            await approve_revision(db, q.id, record.id, users.manager, decision=ApprovalDecision.approved)
            out = await implement_revision(db, q.id, record.id, users.sales)

        assert out.version == "1.2"
        assert out.total_amount == Decimal("102.50")
        assert [r.revision_number for r in (await get_revision_history(db, q.id)).revisions] == [1, 2]

    @pytest.mark.asyncio
    async def test_items_change_recalculates_totals(self, db, users, make_quotation):
        q = await make_quotation()
        changes = [RevisionChange(field="items", new_value=[
            {"name": "Standing desk", "quantity": 3, "unit_price": "20.00"},
        ])]

        record = await request(db, users, q, changes=changes, reason=RevisionReason.scope_change)
        assert record.changes[0].old_value[0]["name"] == "Workstation"

        await approve_revision(db, q.id, record.id, users.manager, decision=ApprovalDecision.approved)
        out = await implement_revision(db, q.id, record.id, users.manager)

        assert [i.name for i in out.items] == ["Standing desk"]
        assert out.subtotal_amount == Decimal("60.00")
        assert out.tax_amount == Decimal("6.00")
        assert out.total_amount == Decimal("66.00")

    @pytest.mark.asyncio
    async def test_lifecycle_status_is_untouched(self, db, users, make_quotation):
        q = await make_quotation(QuotationStatus.sent)
        changes = [RevisionChange(field="terms", new_value="Net 45")]

        record = await request(db, users, q, changes=changes, reason=RevisionReason.terms_update)
        await approve_revision(db, q.id, record.id, users.manager, decision=ApprovalDecision.approved)
        out = await implement_revision(db, q.id, record.id, users.sales)

        assert out.status is QuotationStatus.sent
        assert out.terms == "Net 45"


class TestRevisionRules:

    @pytest.mark.asyncio
    async def test_only_one_open_revision(self, db, users, make_quotation):
        q = await make_quotation()
        await request(db, users, q)

        with pytest.raises(AppException) as exc:
            await request(db, users, q)

        assert exc.value.error_code is ErrorCode.REVISION_ALREADY_OPEN

    @pytest.mark.asyncio
    async def test_rejected_revision_frees_the_quotation(self, db, users, make_quotation):
        q = await make_quotation()
        record = await request(db, users, q)

        rejected = await approve_revision(
            db, q.id, record.id, users.manager,
            decision=ApprovalDecision.rejected,
            comments="Not this quarter",
        )
        assert rejected.status is RevisionStatus.rejected
        assert rejected.comments == "Not this quarter"

        with pytest.raises(AppException) as exc:
            await implement_revision(db, q.id, record.id, users.sales)
        assert exc.value.error_code is ErrorCode.REVISION_INVALID_STATE

        again = await request(db, users, q)
        assert again.revision_number == 2

    @pytest.mark.asyncio
    async def test_cancelled_quotation_is_not_revisable(self, db, users, make_quotation):
        q = await make_quotation()
        await transition_quotation(
            db, q.id, TransitionRequest(target_status=QuotationStatus.cancelled), users.sales,
        )

        with pytest.raises(AppException) as exc:
            await request(db, users, q)

        assert exc.value.error_code is ErrorCode.QUOTATION_NOT_REVISABLE

    @pytest.mark.asyncio
    async def test_invalid_new_value_is_refused(self, db, users, make_quotation):
        q = await make_quotation()
        changes = [RevisionChange(field="validity_period", new_value=-5)]

        with pytest.raises(AppException) as exc:
            await request(db, users, q, changes=changes)

        assert exc.value.status_code == 400
        assert exc.value.error_code is ErrorCode.VALIDATION_ERROR
        assert exc.value.details["field"] == "validity_period"

    def test_only_whitelisted_fields_can_change(self):
        with pytest.raises(ValidationError):
            RevisionChange(field="status", new_value="approved")

    @pytest.mark.asyncio
    async def test_other_sales_rep_cannot_request(self, db, users, make_quotation):
        q = await make_quotation()

        with pytest.raises(AppException) as exc:
            await request_revision(
                db, q.id, users.other_sales,
                reason=RevisionReason.other,
                description="Not mine",
                changes=discount("1.00"),
            )

        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_requester_cannot_approve(self, db, users, make_quotation):
        q = await make_quotation()
        record = await request(db, users, q)

        with pytest.raises(AppException) as exc:
            await approve_revision(db, q.id, record.id, users.sales, decision=ApprovalDecision.approved)

        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_revision(self, db, users, make_quotation):
        q = await make_quotation()

        with pytest.raises(AppException) as exc:
            await approve_revision(db, q.id, "rev_missing", users.manager, decision=ApprovalDecision.approved)

        assert exc.value.status_code == 404
        assert exc.value.error_code is ErrorCode.REVISION_NOT_FOUND

    def test_bump_version(self):
        assert bump_version("1.0", 1) == "1.1"
        assert bump_version("2.3", 4) == "2.4"
        assert bump_version(None, 1) == "1.1"


class TestClientApproval:

    @pytest.mark.asyncio
    async def test_client_must_agree_before_implementation(self, db, users, make_quotation, dispatcher, outbox):
        q = await make_quotation()
        record = await request(db, users, q, requires_client_approval=True)

        await approve_revision(db, q.id, record.id, users.manager, decision=ApprovalDecision.approved)
        assert (await get_revision_history(db, q.id)).revision_status is RevisionStatus.pending_client_approval

        with pytest.raises(AppException) as exc:
            await implement_revision(db, q.id, record.id, users.sales)
        assert exc.value.error_code is ErrorCode.REVISION_INVALID_STATE

        agreed = await record_client_revision_decision(
            db, q.id, record.id, users.client, decision=ApprovalDecision.approved,
        )
        assert agreed.client_decision is ApprovalDecision.approved
        assert agreed.client_decision_by_id == users.client.id

        out = await implement_revision(db, q.id, record.id, users.sales)
        assert out.version == "1.1"

        await dispatcher.drain()
        assert "client@example.com" in outbox.recipients(NotificationKind.REVISION_DECISION)

    @pytest.mark.asyncio
    async def test_client_refusal_rejects_the_revision(self, db, users, make_quotation):
        q = await make_quotation()
        record = await request(db, users, q, requires_client_approval=True)
        await approve_revision(db, q.id, record.id, users.manager, decision=ApprovalDecision.approved)

        refused = await record_client_revision_decision(
            db, q.id, record.id, users.client,
            decision=ApprovalDecision.rejected,
            comments="Keep the old price",
        )

        assert refused.status is RevisionStatus.rejected
        assert refused.comments == "Keep the old price"
        assert (await get_revision_history(db, q.id)).revision_status is RevisionStatus.rejected

    @pytest.mark.asyncio
    async def test_client_decision_needs_a_pending_client_step(self, db, users, make_quotation):
        q = await make_quotation()
        record = await request(db, users, q)
        await approve_revision(db, q.id, record.id, users.manager, decision=ApprovalDecision.approved)

        with pytest.raises(AppException) as exc:
            await record_client_revision_decision(
                db, q.id, record.id, users.client, decision=ApprovalDecision.approved,
            )

        assert exc.value.error_code is ErrorCode.REVISION_INVALID_STATE


class TestRevisionQueries:

    @pytest.mark.asyncio
    async def test_pending_queue_is_ordered_by_urgency(self, db, users, make_quotation):
        low = await make_quotation(title="Low")
        urgent = await make_quotation(title="Urgent")
        await request(db, users, low, urgency=ApprovalUrgency.low)
        await request(db, users, urgent, urgency=ApprovalUrgency.urgent)

        queue = await get_pending_revisions(db, users.manager)

        assert [item.title for item in queue] == ["Urgent", "Low"]
        assert await get_pending_revisions(db, users.other_sales) == []

    @pytest.mark.asyncio
    async def test_lookup_by_reason_and_impact(self, db, users, make_quotation, dispatcher, outbox):
        pricing = await make_quotation(title="Pricing")
        scope = await make_quotation(title="Scope")
        await request(db, users, pricing, estimated_impact=RevisionImpact.low)
        await request(
            db, users, scope,
            reason=RevisionReason.scope_change,
            estimated_impact=RevisionImpact.high,
        )

        by_reason = await get_revisions_by_reason(db, RevisionReason.scope_change)
        by_impact = await get_revisions_by_impact(db, RevisionImpact.low)

        assert [item.title for item in by_reason] == ["Scope"]
        assert [item.title for item in by_impact] == ["Pricing"]

        # high impact revisions also go to every manager
        await dispatcher.drain()
        assert outbox.recipients(NotificationKind.REVISION_REQUEST) == {
            "sales@example.com",
            "manager@example.com",
            "director@example.com",
        }
