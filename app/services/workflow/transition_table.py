# app/services/workflow/transition_table.py
"""
Quotation lifecycle configuration: which status changes exist, who may make
them, and what each one stamps on the quotation.

The tables are frozen at import. Pass another WorkflowDefinition to
QuotationStateMachine to run a different workflow.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Callable, Mapping

from app.core.config import DEFAULT_VALIDITY_DAYS
from app.models.billing.quotation_models import Quotation
from app.models.enums.approval_level import ApprovalLevel
from app.models.enums.quotation_status import QuotationStatus as S
from app.models.enums.user_role import UserRole
from app.utils.datetime_utils import utcnow, as_utc

Condition = Callable[[Quotation, Any], bool]
Action = Callable[[Quotation, Any, Mapping[str, Any]], None]
AutoAction = Callable[[Quotation], None]


@dataclass(frozen=True)
class TransitionEntry:
    from_status: S
    to_status: S
    allowed_roles: frozenset[UserRole]
    required_approval_level: ApprovalLevel | None = None
    condition: Condition | None = None
    action: Action | None = None


@dataclass(frozen=True)
class WorkflowRule:
    status: S
    allowed_transitions: tuple[S, ...]
    required_fields: tuple[str, ...]
    auto_actions: AutoAction | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    transitions: tuple[TransitionEntry, ...]
    rules: tuple[WorkflowRule, ...]
    _by_edge: Mapping[tuple[S, S], TransitionEntry] = field(init=False, repr=False, compare=False)
    _by_status: Mapping[S, WorkflowRule] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        by_edge = {}
        for t in self.transitions:
            key = (t.from_status, t.to_status)
            if key in by_edge:
                raise ValueError(f"Duplicate transition {t.from_status.value} -> {t.to_status.value}")
            by_edge[key] = t
        object.__setattr__(self, "_by_edge", MappingProxyType(by_edge))
        object.__setattr__(self, "_by_status", MappingProxyType({r.status: r for r in self.rules}))

    def find_transition(self, from_status: S, to_status: S) -> TransitionEntry | None:
        return self._by_edge.get((S(from_status), S(to_status)))

    def find_rule(self, status: S) -> WorkflowRule | None:
        return self._by_status.get(S(status))


# =====================================================
# CONDITIONS
# =====================================================

def has_value(quotation: Quotation, field_name: str) -> bool:
    value = getattr(quotation, field_name, None)
    if value is None or value == "":
        return False
    if isinstance(value, (list, tuple)) and not value:
        return False
    return True


def has_required_fields(*field_names: str) -> Condition:
    def check(quotation: Quotation, actor) -> bool:
        return all(has_value(quotation, f) for f in field_names)
    return check


def is_review_complete(quotation: Quotation, actor) -> bool:
    return quotation.reviewed_at is not None and quotation.reviewed_by_id is not None


def is_within_validity_period(quotation: Quotation, actor=None) -> bool:
    valid_from = as_utc(quotation.valid_from)
    valid_until = as_utc(quotation.valid_until)
    if not valid_from or not valid_until:
        return False
    return valid_from <= utcnow() <= valid_until


def is_outside_validity_period(quotation: Quotation, actor=None) -> bool:
    return not is_within_validity_period(quotation, actor)


def is_project_completed(quotation: Quotation, actor) -> bool:
    return quotation.is_project_completed is True


NON_CANCELLABLE = frozenset({S.completed, S.archived, S.cancelled})


def can_be_cancelled(quotation: Quotation, actor) -> bool:
    return S(quotation.status) not in NON_CANCELLABLE


def can_be_archived(quotation: Quotation, actor) -> bool:
    return S(quotation.status) == S.completed


# =====================================================
# ACTIONS
# =====================================================

def _display_name(actor) -> str:
    return getattr(actor, "full_name", None) or getattr(actor, "username", None) or str(actor.id)


def calculate_valid_until(quotation: Quotation):
    days = quotation.validity_period or DEFAULT_VALIDITY_DAYS
    valid_from = as_utc(quotation.valid_from) or utcnow()
    return valid_from + timedelta(days=days)


def stamp_approved(quotation: Quotation, actor, metadata) -> None:
    quotation.approved_by_id = actor.id
    quotation.approved_at = utcnow()
    quotation.approval_notes = metadata.get("comments") or f"Approved by {_display_name(actor)}"


def stamp_rejected(quotation: Quotation, actor, metadata) -> None:
    quotation.rejected_by_id = actor.id
    quotation.rejected_at = utcnow()
    quotation.rejection_reason = metadata.get("comments")


def stamp_activated(quotation: Quotation, actor, metadata) -> None:
    now = utcnow()
    quotation.activated_at = now
    quotation.valid_from = now
    quotation.valid_until = calculate_valid_until(quotation)


def stamp_sent(quotation: Quotation, actor, metadata) -> None:
    quotation.sent_at = utcnow()
    quotation.sent_by_id = actor.id


def stamp_accepted(quotation: Quotation, actor, metadata) -> None:
    quotation.accepted_at = utcnow()
    quotation.accepted_by_id = actor.id


def stamp_declined(quotation: Quotation, actor, metadata) -> None:
    quotation.declined_at = utcnow()
    quotation.declined_by_id = actor.id


def stamp_expired(quotation: Quotation, actor, metadata) -> None:
    quotation.expired_at = utcnow()
    quotation.expired_by_id = actor.id


def stamp_completed(quotation: Quotation, actor, metadata) -> None:
    quotation.completed_at = utcnow()
    quotation.completed_by_id = actor.id


def stamp_cancelled(quotation: Quotation, actor, metadata) -> None:
    quotation.cancelled_at = utcnow()
    quotation.cancelled_by_id = actor.id
    quotation.cancellation_reason = metadata.get("reason") or "Cancelled by user"


def stamp_archived(quotation: Quotation, actor, metadata) -> None:
    quotation.archived_at = utcnow()
    quotation.archived_by_id = actor.id


# =====================================================
# DEFAULT WORKFLOW
# =====================================================

STAFF = frozenset({UserRole.sales_rep, UserRole.manager, UserRole.admin, UserRole.super_admin})
APPROVERS = frozenset({UserRole.manager, UserRole.admin, UserRole.super_admin})
STAFF_AND_CLIENT = STAFF | {UserRole.client}

DEFAULT_TRANSITIONS: tuple[TransitionEntry, ...] = (
    TransitionEntry(S.draft, S.pending_review, STAFF,
                    condition=has_required_fields("items", "total_amount")),
    TransitionEntry(S.pending_review, S.pending_approval, APPROVERS,
                    condition=is_review_complete),
    TransitionEntry(S.pending_approval, S.approved, APPROVERS,
                    required_approval_level=ApprovalLevel.manager,
                    action=stamp_approved),
    TransitionEntry(S.pending_approval, S.rejected, APPROVERS,
                    action=stamp_rejected),
    TransitionEntry(S.approved, S.active, STAFF,
                    action=stamp_activated),
    TransitionEntry(S.active, S.sent, STAFF,
                    action=stamp_sent),
    TransitionEntry(S.sent, S.accepted, STAFF_AND_CLIENT,
                    condition=is_within_validity_period, action=stamp_accepted),
    TransitionEntry(S.sent, S.declined, STAFF_AND_CLIENT,
                    action=stamp_declined),
    TransitionEntry(S.sent, S.expired, STAFF,
                    condition=is_outside_validity_period, action=stamp_expired),
    TransitionEntry(S.accepted, S.completed, STAFF,
                    condition=is_project_completed, action=stamp_completed),
    TransitionEntry(S.draft, S.cancelled, STAFF,
                    condition=can_be_cancelled, action=stamp_cancelled),
    TransitionEntry(S.completed, S.archived, APPROVERS,
                    condition=can_be_archived, action=stamp_archived),
)

_BASE_FIELDS = ("title", "client_id", "items")

DEFAULT_RULES: tuple[WorkflowRule, ...] = (
    WorkflowRule(S.draft, (S.pending_review, S.cancelled),
                 _BASE_FIELDS),
    WorkflowRule(S.pending_review, (S.pending_approval, S.draft),
                 _BASE_FIELDS + ("total_amount", "terms")),
    WorkflowRule(S.pending_approval, (S.approved, S.rejected, S.draft),
                 _BASE_FIELDS + ("total_amount", "terms", "validity_period")),
    WorkflowRule(S.approved, (S.active, S.draft),
                 _BASE_FIELDS + ("total_amount", "terms", "validity_period", "approved_by_id")),
    WorkflowRule(S.active, (S.sent, S.draft),
                 _BASE_FIELDS + ("total_amount", "terms", "validity_period", "approved_by_id", "valid_from")),
    WorkflowRule(S.sent, (S.accepted, S.declined, S.expired, S.draft),
                 _BASE_FIELDS + ("total_amount", "terms", "validity_period", "approved_by_id", "valid_from",
                                 "sent_at")),
    WorkflowRule(S.accepted, (S.completed, S.draft),
                 _BASE_FIELDS + ("total_amount", "terms", "validity_period", "approved_by_id", "valid_from",
                                 "sent_at", "accepted_at")),
    WorkflowRule(S.completed, (S.archived,),
                 _BASE_FIELDS + ("total_amount", "terms", "validity_period", "approved_by_id", "valid_from",
                                 "sent_at", "accepted_at", "completed_at")),
)

DEFAULT_WORKFLOW = WorkflowDefinition(DEFAULT_TRANSITIONS, DEFAULT_RULES)
