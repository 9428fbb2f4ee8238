"""
Role and ownership rules for quotation workflow actions.

Every workflow service asks this module instead of inspecting roles itself, so
each action's allowed-role set lives in exactly one place.
"""
import enum
from dataclasses import dataclass
from typing import Iterable

from app.constants.error_codes import ErrorCode
from app.core.exceptions import AppException
from app.models.enums.approval_level import ApprovalLevel, level_rank
from app.models.enums.user_role import UserRole


@dataclass(frozen=True)
class SystemActor:
    """Actor used by scheduled sweeps; never backed by a users row."""
    id: int | None = None
    username: str = "system"
    full_name: str = "System"
    roles: tuple[str, ...] = (UserRole.super_admin.value,)


SYSTEM_ACTOR = SystemActor()


class QuotationAction(str, enum.Enum):
    REQUEST_APPROVAL = "request_approval"
    DECIDE_APPROVAL = "decide_approval"
    ESCALATE_APPROVAL = "escalate_approval"
    VIEW_ALL_PENDING_APPROVALS = "view_all_pending_approvals"

    REQUEST_REVISION = "request_revision"
    APPROVE_REVISION = "approve_revision"
    CLIENT_REVISION_DECISION = "client_revision_decision"
    IMPLEMENT_REVISION = "implement_revision"
    VIEW_ALL_PENDING_REVISIONS = "view_all_pending_revisions"

    MARK_REVIEWED = "mark_reviewed"
    RECORD_PROJECT_COMPLETION = "record_project_completion"


_MANAGERS = frozenset({UserRole.manager, UserRole.admin})
_APPROVERS = frozenset({UserRole.manager, UserRole.admin, UserRole.super_admin})

# roles that may act on any quotation
_ROLE_GRANTS: dict[QuotationAction, frozenset[UserRole]] = {
    QuotationAction.REQUEST_APPROVAL: _APPROVERS,
    QuotationAction.ESCALATE_APPROVAL: _MANAGERS,
    QuotationAction.VIEW_ALL_PENDING_APPROVALS: _MANAGERS,
    QuotationAction.REQUEST_REVISION: _APPROVERS,
    QuotationAction.APPROVE_REVISION: _MANAGERS,
    QuotationAction.CLIENT_REVISION_DECISION: _MANAGERS,
    QuotationAction.IMPLEMENT_REVISION: _MANAGERS,
    QuotationAction.VIEW_ALL_PENDING_REVISIONS: _MANAGERS,
    QuotationAction.MARK_REVIEWED: _APPROVERS,
    QuotationAction.RECORD_PROJECT_COMPLETION: _APPROVERS,
}

# actions the quotation's creator may always perform
_CREATOR_GRANTS = frozenset({
    QuotationAction.REQUEST_APPROVAL,
    QuotationAction.REQUEST_REVISION,
    QuotationAction.IMPLEMENT_REVISION,
})

# actions the quotation's client may always perform
_CLIENT_GRANTS = frozenset({
    QuotationAction.CLIENT_REVISION_DECISION,
})


def roles_of(actor) -> frozenset[UserRole]:
    roles = set()
    for r in getattr(actor, "roles", None) or ():
        try:
            roles.add(UserRole(r))
        except ValueError:
            continue
    return frozenset(roles)


def has_any_role(actor, roles: Iterable[UserRole]) -> bool:
    return not roles_of(actor).isdisjoint(roles)


def approval_level_for(actor) -> ApprovalLevel:
    roles = roles_of(actor)
    if UserRole.super_admin in roles:
        return ApprovalLevel.executive
    if UserRole.admin in roles:
        return ApprovalLevel.director
    # managers and everybody else sit on the first rung
    return ApprovalLevel.manager


def has_approval_level(actor, required: ApprovalLevel | str | None) -> bool:
    if required is None:
        return False
    return level_rank(approval_level_for(actor)) >= level_rank(required)


def is_creator(actor, quotation) -> bool:
    return quotation is not None and actor.id is not None and quotation.created_by_id == actor.id


def is_client(actor, quotation) -> bool:
    return quotation is not None and actor.id is not None and quotation.client_id == actor.id


def is_allowed(actor, quotation, action: QuotationAction) -> bool:
    if action is QuotationAction.DECIDE_APPROVAL:
        return has_approval_level(actor, getattr(quotation, "approval_level", None))

    if action in _CREATOR_GRANTS and is_creator(actor, quotation):
        return True
    if action in _CLIENT_GRANTS and is_client(actor, quotation):
        return True
    return has_any_role(actor, _ROLE_GRANTS.get(action, frozenset()))


def ensure_allowed(actor, quotation, action: QuotationAction, message: str) -> None:
    if is_allowed(actor, quotation, action):
        return
    error_code = (
        ErrorCode.APPROVAL_LEVEL_INSUFFICIENT
        if action is QuotationAction.DECIDE_APPROVAL
        else ErrorCode.PERMISSION_DENIED
    )
    raise AppException(403, message, error_code)
