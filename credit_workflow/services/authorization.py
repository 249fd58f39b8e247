"""Pure predicates deciding who may act on an approval request."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from ..models import ApprovalRequestModel
from ..models.enums import ADMIN_ROLES, RequestStatus, TeamRole
from .state_machine import can_transition


def is_admin(role: Optional[TeamRole]) -> bool:
    return role in ADMIN_ROLES


def can_user_decide(
    request: ApprovalRequestModel, user_id: UUID, role: Optional[TeamRole]
) -> bool:
    """Approve or deny: the assigned approver, or any team admin/owner."""
    if request.status != RequestStatus.PENDING:
        return False
    if request.requester_id == user_id:
        return False
    if is_admin(role):
        return True
    return request.current_approver_id == user_id and role == TeamRole.APPROVER


def can_user_approve(
    request: ApprovalRequestModel,
    user_id: UUID,
    role: Optional[TeamRole],
    approver_limit: int,
) -> bool:
    if not can_user_decide(request, user_id, role):
        return False
    if role == TeamRole.APPROVER:
        credits = request.actual_credits or request.estimated_credits
        return credits <= approver_limit
    return True


def can_user_cancel(
    request: ApprovalRequestModel, user_id: UUID, role: Optional[TeamRole]
) -> bool:
    if not can_transition(request.status, RequestStatus.CANCELLED):
        return False
    return request.requester_id == user_id or is_admin(role)


def can_user_fulfill(
    request: ApprovalRequestModel, user_id: UUID, role: Optional[TeamRole]
) -> bool:
    if request.status != RequestStatus.APPROVED:
        return False
    if request.decided_by is not None and request.decided_by == user_id:
        return True
    return role == TeamRole.APPROVER or is_admin(role)
