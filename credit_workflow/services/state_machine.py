"""Legal status transitions for approval requests."""
from __future__ import annotations

from ..core.errors import InvalidTransitionError
from ..models.enums import RequestStatus


VALID_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({RequestStatus.PENDING, RequestStatus.CANCELLED}),
    RequestStatus.PENDING: frozenset(
        {
            RequestStatus.APPROVED,
            RequestStatus.DENIED,
            RequestStatus.CANCELLED,
            RequestStatus.EXPIRED,
        }
    ),
    RequestStatus.APPROVED: frozenset({RequestStatus.FULFILLED, RequestStatus.CANCELLED}),
    RequestStatus.DENIED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
    RequestStatus.FULFILLED: frozenset(),
}


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def is_terminal(status: RequestStatus) -> bool:
    return not VALID_TRANSITIONS.get(status)


def ensure_transition(current: RequestStatus, target: RequestStatus, operation: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, operation)
