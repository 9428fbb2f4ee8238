# app/models/enums/approval_level.py
import enum


class ApprovalLevel(str, enum.Enum):
    manager = "manager"
    director = "director"
    executive = "executive"


# Lowest rung first. "Sufficient" means an index >= the required index.
APPROVAL_CHAIN: tuple[ApprovalLevel, ...] = (
    ApprovalLevel.manager,
    ApprovalLevel.director,
    ApprovalLevel.executive,
)


def level_rank(level: ApprovalLevel | str) -> int:
    return APPROVAL_CHAIN.index(ApprovalLevel(level))


def next_approval_level(level: ApprovalLevel | str) -> ApprovalLevel | None:
    rank = level_rank(level)
    if rank + 1 < len(APPROVAL_CHAIN):
        return APPROVAL_CHAIN[rank + 1]
    return None


def levels_above(level: ApprovalLevel | str) -> tuple[ApprovalLevel, ...]:
    return APPROVAL_CHAIN[level_rank(level) + 1:]


class ApprovalUrgency(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


URGENCY_ORDER: tuple[ApprovalUrgency, ...] = (
    ApprovalUrgency.low,
    ApprovalUrgency.medium,
    ApprovalUrgency.high,
    ApprovalUrgency.urgent,
)


class ApprovalDecision(str, enum.Enum):
    approved = "approved"
    rejected = "rejected"
