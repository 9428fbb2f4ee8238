import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from app.models.support.activity_models import UserActivity
from app.constants.activity_templates import ACTIVITY_TEMPLATES
from app.constants.activity_codes import ActivityCode

audit_logger = logging.getLogger("audit")


def actor_labels(actor) -> dict[str, str]:
    """actor_role / actor_email context for an activity template."""
    if actor.id is None:
        return {"actor_role": "System", "actor_email": actor.username}
    roles = list(getattr(actor, "roles", None) or ["user"])
    return {
        "actor_role": roles[0].replace("_", " ").title(),
        "actor_email": actor.username,
    }


async def emit_activity(
    db: AsyncSession,
    *,
    user_id: int | None,
    username: str,
    code: ActivityCode,
    **context,
):
    template = ACTIVITY_TEMPLATES.get(code)
    if not template:
        raise ValueError(f"No activity template for code {code}")

    try:
        message = template.format(**context)
    except KeyError as e:
        raise ValueError(
            f"Missing activity context key: {e.args[0]} for {code}"
        )

    db.add(
        UserActivity(
            user_id=user_id,
            username_snapshot=username,
            message=message,
        )
    )


# queued on Session.info until commit_or_conflict() knows the write landed
PENDING_AUDIT_KEY = "pending_workflow_audit"


def log_workflow_change(
    action: str,
    *,
    quotation_id: int | None,
    actor_id: int | None,
    before: dict[str, Any],
    after: dict[str, Any],
    timestamp: datetime,
    session=None,
) -> None:
    """
    One audit record per workflow mutation, only the fields that changed.

    With a session the record is held until flush_workflow_changes() runs
    after a successful commit; without one it is written straight away.
    """
    changed = {
        k for k in after
        if not k.endswith("_history") and before.get(k) != after.get(k)
    }
    record = {
        "quotation_id": quotation_id,
        "actor_id": actor_id,
        "before": {k: _plain(before.get(k)) for k in sorted(changed)},
        "after": {k: _plain(after.get(k)) for k in sorted(changed)},
        "timestamp": timestamp.isoformat(),
    }
    if session is None:
        audit_logger.info(action, extra=record)
        return
    session.info.setdefault(PENDING_AUDIT_KEY, []).append((action, record))


def flush_workflow_changes(session) -> None:
    for action, record in session.info.pop(PENDING_AUDIT_KEY, []):
        audit_logger.info(action, extra=record)


def discard_workflow_changes(session) -> None:
    session.info.pop(PENDING_AUDIT_KEY, None)


def _plain(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value
