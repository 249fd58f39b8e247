"""Approval tier selection by credit amount."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from ..models import ApprovalRuleModel
from ..models.enums import ApprovalLevel, TeamRole


@dataclass(frozen=True)
class Route:
    approval_level: ApprovalLevel
    escalation_hours: Optional[int]
    rule_id: Optional[UUID] = None


# (min inclusive, max exclusive or None, level, escalation hours)
DEFAULT_LADDER: tuple[tuple[int, Optional[int], ApprovalLevel, Optional[int]], ...] = (
    (0, 500, ApprovalLevel.AUTO, None),
    (500, 2000, ApprovalLevel.APPROVER, 48),
    (2000, None, ApprovalLevel.ADMIN, 24),
)

APPROVER_SEARCH_ORDER: dict[ApprovalLevel, tuple[frozenset[TeamRole], ...]] = {
    ApprovalLevel.APPROVER: (
        frozenset({TeamRole.APPROVER}),
        frozenset({TeamRole.ADMIN, TeamRole.OWNER}),
    ),
    ApprovalLevel.ADMIN: (frozenset({TeamRole.ADMIN, TeamRole.OWNER}),),
    ApprovalLevel.AUTO: (),
}


def rule_matches(rule: ApprovalRuleModel, credits: int) -> bool:
    if rule.min_credits > credits:
        return False
    return rule.max_credits is None or rule.max_credits >= credits


def select_route(rules: Iterable[ApprovalRuleModel], credits: int) -> Route:
    """Pick the first matching rule (callers pass them priority-ordered),
    falling back to the default ladder."""
    for rule in rules:
        if rule_matches(rule, credits):
            return Route(
                approval_level=rule.approver_role,
                escalation_hours=rule.escalation_hours,
                rule_id=rule.id,
            )

    for lower, upper, level, hours in DEFAULT_LADDER:
        if credits >= lower and (upper is None or credits < upper):
            return Route(approval_level=level, escalation_hours=hours)

    # amounts are validated positive before routing
    return Route(approval_level=ApprovalLevel.AUTO, escalation_hours=None)


def admin_escalation_hours(
    rules: Iterable[ApprovalRuleModel], credits: int, default_hours: int
) -> int:
    for rule in rules:
        if (
            rule.approver_role == ApprovalLevel.ADMIN
            and rule.escalation_hours is not None
            and rule_matches(rule, credits)
        ):
            return rule.escalation_hours
    return default_hours
