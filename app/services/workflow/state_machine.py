# app/services/workflow/state_machine.py
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import inspect
from sqlalchemy.orm import object_session

from app.constants.error_codes import ErrorCode
from app.core.exceptions import AppException
from app.models.billing.quotation_models import Quotation
from app.models.enums.approval_level import ApprovalLevel
from app.models.enums.quotation_status import QuotationStatus
from app.schemas.billing.quotation_schemas import StatusHistoryEntry
from app.services.workflow import policy
from app.services.workflow.transition_table import DEFAULT_WORKFLOW, WorkflowDefinition
from app.utils.activity_helpers import log_workflow_change
from app.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# owned by the ORM and the database, never by a transition
_UNTRACKED = frozenset({"lock_version", "created_at", "updated_at"})


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    reason: str | None = None
    required_approval: ApprovalLevel | None = None
    error_code: ErrorCode | None = None
    status_code: int = 400


def snapshot(quotation: Quotation) -> dict[str, Any]:
    return {
        attr.key: getattr(quotation, attr.key)
        for attr in inspect(Quotation).column_attrs
        if attr.key not in _UNTRACKED
    }


def restore(quotation: Quotation, state: Mapping[str, Any]) -> None:
    for key, value in state.items():
        if getattr(quotation, key) is not value:
            setattr(quotation, key, value)


class QuotationStateMachine:
    """
    Decides and applies quotation status changes.

    Works on the in-memory aggregate only; persisting the result is the
    caller's job. transition() either applies every change or none.
    """

    def __init__(self, definition: WorkflowDefinition = DEFAULT_WORKFLOW):
        self.definition = definition

    def can_transition(
        self,
        quotation: Quotation,
        target_status: QuotationStatus,
        actor,
    ) -> TransitionCheck:
        current = QuotationStatus(quotation.status)
        target = QuotationStatus(target_status)
        entry = self.definition.find_transition(current, target)

        if entry is None:
            return TransitionCheck(
                allowed=False,
                reason=f"Transition from {current.value} to {target.value} is not allowed",
                error_code=ErrorCode.TRANSITION_NOT_ALLOWED,
            )

        if not policy.has_any_role(actor, entry.allowed_roles):
            roles = ", ".join(sorted(r.value for r in policy.roles_of(actor))) or "none"
            return TransitionCheck(
                allowed=False,
                reason=f"User role ({roles}) is not authorized for this transition",
                error_code=ErrorCode.PERMISSION_DENIED,
                status_code=403,
            )

        if entry.required_approval_level and not policy.has_approval_level(
            actor, entry.required_approval_level
        ):
            return TransitionCheck(
                allowed=False,
                reason=f"Approval level {entry.required_approval_level.value} is required",
                required_approval=entry.required_approval_level,
                error_code=ErrorCode.APPROVAL_LEVEL_INSUFFICIENT,
                status_code=403,
            )

        if entry.condition and not entry.condition(quotation, actor):
            return TransitionCheck(
                allowed=False,
                reason="Business conditions not met for this transition",
                error_code=ErrorCode.TRANSITION_CONDITIONS_NOT_MET,
            )

        return TransitionCheck(allowed=True, required_approval=entry.required_approval_level)

    def transition(
        self,
        quotation: Quotation,
        target_status: QuotationStatus,
        actor,
        metadata: Mapping[str, Any] | None = None,
    ) -> Quotation:
        check = self.can_transition(quotation, target_status, actor)
        if not check.allowed:
            raise AppException(check.status_code, check.reason, check.error_code)

        previous = QuotationStatus(quotation.status)
        target = QuotationStatus(target_status)
        entry = self.definition.find_transition(previous, target)
        metadata = dict(metadata or {})
        before = snapshot(quotation)

        try:
            if entry.action:
                entry.action(quotation, actor, metadata)

            now = utcnow()
            quotation.status = target
            quotation.last_status_change_at = now
            quotation.last_status_change_by_id = actor.id

            log_entry = StatusHistoryEntry(
                from_status=previous,
                to_status=target,
                changed_by_id=actor.id,
                changed_at=now,
                metadata=metadata or None,
            )
            quotation.status_history = [
                *(quotation.status_history or []),
                log_entry.model_dump(mode="json"),
            ]

            rule = self.definition.find_rule(target)
            if rule and rule.auto_actions:
                rule.auto_actions(quotation)
        except Exception:
            restore(quotation, before)
            logger.exception(
                "Error during status transition",
                extra={
                    "quotation_id": quotation.id,
                    "from_status": previous.value,
                    "to_status": target.value,
                    "user_id": actor.id,
                },
            )
            raise

        log_workflow_change(
            "status_transition",
            quotation_id=quotation.id,
            actor_id=actor.id,
            before=before,
            after=snapshot(quotation),
            timestamp=now,
            # attached quotations are audited when their session commits
            session=object_session(quotation),
        )
        logger.info(
            "Quotation status transitioned",
            extra={
                "quotation_id": quotation.id,
                "from_status": previous.value,
                "to_status": target.value,
                "user_id": actor.id,
            },
        )
        return quotation

    def get_available_transitions(self, quotation: Quotation, actor) -> list[QuotationStatus]:
        rule = self.definition.find_rule(quotation.status)
        if rule is None:
            return []

        available = []
        for target in rule.allowed_transitions:
            if self.can_transition(quotation, target, actor).allowed:
                available.append(target)
        return available

    def get_required_fields(self, status: QuotationStatus) -> tuple[str, ...]:
        rule = self.definition.find_rule(status)
        return rule.required_fields if rule else ()


state_machine = QuotationStateMachine()
