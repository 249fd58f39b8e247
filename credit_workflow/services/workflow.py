from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.errors import (
    AccountNotFoundError,
    ForbiddenError,
    InvalidArgumentError,
    RequestNotFoundError,
)
from ..models import (
    ApprovalEventRead,
    ApprovalQueue,
    ApprovalQueueItem,
    ApprovalRequestModel,
    ApprovalRequestRead,
    DirectSpendParams,
    RequestFilter,
    RequestPage,
    RequestWithEvents,
    SubmitRequestParams,
    SubmitResult,
    utcnow,
)
from ..models.enums import (
    ApprovalLevel,
    EventType,
    ReferenceType,
    RequestStatus,
    TeamRole,
    TransactionType,
)
from .authorization import (
    can_user_approve,
    can_user_cancel,
    can_user_decide,
    can_user_fulfill,
)
from .ledger import LedgerService
from .repository import ApprovalRepository, LedgerRepository
from .routing import APPROVER_SEARCH_ORDER, select_route
from .state_machine import ensure_transition
from .store import Store


logger = logging.getLogger(__name__)

MAX_REQUESTS_PAGE = 100


def request_key(request_id: UUID) -> str:
    return f"request_{request_id}"


def find_approver(
    repo: ApprovalRepository,
    team_id: UUID,
    level: ApprovalLevel,
    exclude_user_id: UUID,
) -> Optional[UUID]:
    for roles in APPROVER_SEARCH_ORDER.get(level, ()):
        user_id = repo.find_member_with_role(team_id, roles, exclude_user_id)
        if user_id is not None:
            return user_id
    return None


class WorkflowService:
    """Approval request lifecycle.

    Each transition locks the request row, checks the transition table and
    the caller's team role, writes exactly one event and performs the
    matching hold or ledger operation, all in one transaction.
    """

    def __init__(
        self,
        store: Store,
        ledger: Optional[LedgerService] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.clock = clock
        self.ledger = ledger or LedgerService(store, clock=clock)
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _lock_request(self, repo: ApprovalRepository, request_id: UUID) -> ApprovalRequestModel:
        request = repo.lock_request(request_id)
        if request is None:
            raise RequestNotFoundError(f"Request {request_id} not found")
        return request

    def _approval_queue_item(
        self, request: ApprovalRequestModel, now: datetime
    ) -> ApprovalQueueItem:
        hours = None
        if request.expires_at is not None:
            hours = round((request.expires_at - now).total_seconds() / 3600, 2)
        return ApprovalQueueItem(
            request=ApprovalRequestRead.model_validate(request),
            hours_until_escalation=hours,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit_request(self, params: SubmitRequestParams) -> SubmitResult:
        def work(session: Session) -> SubmitResult:
            repo = ApprovalRepository(session)
            team = repo.get_team(params.team_id)
            if team is None or team.company_id != params.company_id:
                raise InvalidArgumentError("Team does not belong to company")

            account = LedgerRepository(session).find_account_for_company(params.company_id)
            if account is None:
                raise AccountNotFoundError(
                    f"No credit account for company {params.company_id}"
                )

            route = select_route(
                repo.list_active_rules(params.company_id), params.estimated_credits
            )
            auto_approved = route.approval_level == ApprovalLevel.AUTO
            now = self.clock()

            approver_id = None
            if not auto_approved:
                approver_id = find_approver(
                    repo, params.team_id, route.approval_level, params.requester_id
                )
                if approver_id is None:
                    logger.warning(
                        "request.no_approver",
                        extra={
                            "team_id": str(params.team_id),
                            "approval_level": route.approval_level.value,
                        },
                    )

            expires_at = None
            if route.escalation_hours is not None:
                expires_at = now + timedelta(hours=route.escalation_hours)

            request = repo.add_request(
                ApprovalRequestModel(
                    company_id=params.company_id,
                    team_id=params.team_id,
                    requester_id=params.requester_id,
                    request_type=params.request_type,
                    title=params.title,
                    description=params.description,
                    context=params.context,
                    estimated_credits=params.estimated_credits,
                    status=RequestStatus.APPROVED if auto_approved else RequestStatus.PENDING,
                    approval_level=route.approval_level,
                    current_approver_id=approver_id,
                    submitted_at=now,
                    decided_at=now if auto_approved else None,
                    expires_at=expires_at,
                    created_at=now,
                    updated_at=now,
                )
            )

            hold_id = None
            if auto_approved:
                repo.add_event(
                    request_id=request.id,
                    event_type=EventType.AUTO_APPROVED,
                    performed_by=params.requester_id,
                    performed_by_system=True,
                    to_status=RequestStatus.APPROVED,
                    reason="Auto-approved (under threshold)",
                    metadata={
                        "approvalLevel": route.approval_level.value,
                        "estimatedCredits": params.estimated_credits,
                    },
                    created_at=now,
                )
                self.ledger.direct_spend_in_tx(
                    session,
                    DirectSpendParams(
                        account_id=account.id,
                        amount=params.estimated_credits,
                        transaction_type=TransactionType.SPEND,
                        reference_type=ReferenceType.REQUEST,
                        reference_id=request.id,
                        description=f"Auto-approved: {params.title}",
                        idempotency_key=request_key(request.id),
                        user_id=params.requester_id,
                    ),
                )
            else:
                repo.add_event(
                    request_id=request.id,
                    event_type=EventType.SUBMITTED,
                    performed_by=params.requester_id,
                    to_status=RequestStatus.PENDING,
                    metadata={
                        "approvalLevel": route.approval_level.value,
                        "estimatedCredits": params.estimated_credits,
                        "approverId": str(approver_id) if approver_id else None,
                    },
                    created_at=now,
                )
                hold = self.ledger.create_hold_in_tx(
                    session,
                    account.id,
                    request.id,
                    params.estimated_credits,
                    request_key(request.id),
                )
                hold_id = hold.hold_id

            logger.info(
                "request.submitted",
                extra={
                    "request_id": str(request.id),
                    "status": request.status.value,
                    "approval_level": route.approval_level.value,
                    "rule_id": str(route.rule_id) if route.rule_id else None,
                    "estimated_credits": params.estimated_credits,
                },
            )
            return SubmitResult(
                request=ApprovalRequestRead.model_validate(request),
                status=request.status,
                approval_level=route.approval_level,
                hold_id=hold_id,
                auto_approved=auto_approved,
            )

        return self.store.run_in_transaction(work)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def approve_request(
        self, request_id: UUID, approver_id: UUID, reason: Optional[str] = None
    ) -> ApprovalRequestRead:
        def work(session: Session) -> ApprovalRequestRead:
            repo = ApprovalRepository(session)
            request = self._lock_request(repo, request_id)
            ensure_transition(request.status, RequestStatus.APPROVED, "approve")

            role = repo.get_member_role(request.team_id, approver_id)
            if not can_user_approve(
                request, approver_id, role, self.settings.approver_approval_limit
            ):
                raise ForbiddenError("User is not allowed to approve this request")

            now = self.clock()
            previous = request.status
            request.status = RequestStatus.APPROVED
            request.decided_at = now
            request.decided_by = approver_id
            request.decision_reason = reason
            request.updated_at = now
            session.add(request)
            repo.add_event(
                request_id=request.id,
                event_type=EventType.APPROVED,
                performed_by=approver_id,
                from_status=previous,
                to_status=RequestStatus.APPROVED,
                reason=reason,
                created_at=now,
            )

            hold = LedgerRepository(session).lock_active_hold_for_request(request.id)
            if hold is not None:
                self.ledger.convert_locked_hold(
                    session, hold, approver_id, description=f"Approved: {request.title}"
                )

            logger.info(
                "request.approved",
                extra={"request_id": str(request.id), "approver_id": str(approver_id)},
            )
            return ApprovalRequestRead.model_validate(request)

        return self.store.run_in_transaction(work)

    def deny_request(
        self, request_id: UUID, approver_id: UUID, reason: str
    ) -> ApprovalRequestRead:
        if not reason or not reason.strip():
            raise InvalidArgumentError("A reason is required to deny a request")

        def work(session: Session) -> ApprovalRequestRead:
            repo = ApprovalRepository(session)
            request = self._lock_request(repo, request_id)
            ensure_transition(request.status, RequestStatus.DENIED, "deny")

            role = repo.get_member_role(request.team_id, approver_id)
            if not can_user_decide(request, approver_id, role):
                raise ForbiddenError("User is not allowed to deny this request")

            now = self.clock()
            previous = request.status
            request.status = RequestStatus.DENIED
            request.decided_at = now
            request.decided_by = approver_id
            request.decision_reason = reason
            request.updated_at = now
            session.add(request)
            repo.add_event(
                request_id=request.id,
                event_type=EventType.DENIED,
                performed_by=approver_id,
                from_status=previous,
                to_status=RequestStatus.DENIED,
                reason=reason,
                created_at=now,
            )

            hold = LedgerRepository(session).lock_active_hold_for_request(request.id)
            if hold is not None:
                self.ledger.release_locked_hold(session, hold)

            logger.info(
                "request.denied",
                extra={"request_id": str(request.id), "approver_id": str(approver_id)},
            )
            return ApprovalRequestRead.model_validate(request)

        return self.store.run_in_transaction(work)

    def cancel_request(
        self, request_id: UUID, user_id: UUID, reason: Optional[str] = None
    ) -> ApprovalRequestRead:
        def work(session: Session) -> ApprovalRequestRead:
            repo = ApprovalRepository(session)
            request = self._lock_request(repo, request_id)
            ensure_transition(request.status, RequestStatus.CANCELLED, "cancel")

            role = repo.get_member_role(request.team_id, user_id)
            if not can_user_cancel(request, user_id, role):
                raise ForbiddenError("Only the requester or a team admin can cancel")

            now = self.clock()
            previous = request.status
            request.status = RequestStatus.CANCELLED
            request.updated_at = now
            session.add(request)
            repo.add_event(
                request_id=request.id,
                event_type=EventType.CANCELLED,
                performed_by=user_id,
                from_status=previous,
                to_status=RequestStatus.CANCELLED,
                reason=reason,
                created_at=now,
            )

            # an approved request's hold is already converted; the debit stays
            hold = LedgerRepository(session).lock_active_hold_for_request(request.id)
            if hold is not None:
                self.ledger.release_locked_hold(session, hold)

            logger.info(
                "request.cancelled",
                extra={
                    "request_id": str(request.id),
                    "user_id": str(user_id),
                    "from_status": previous.value,
                },
            )
            return ApprovalRequestRead.model_validate(request)

        return self.store.run_in_transaction(work)

    def fulfill_request(
        self,
        request_id: UUID,
        user_id: UUID,
        actual_credits: Optional[int] = None,
    ) -> ApprovalRequestRead:
        if actual_credits is not None and actual_credits < 0:
            raise InvalidArgumentError("actual_credits must not be negative")

        def work(session: Session) -> ApprovalRequestRead:
            repo = ApprovalRepository(session)
            request = self._lock_request(repo, request_id)
            ensure_transition(request.status, RequestStatus.FULFILLED, "fulfill")

            role = repo.get_member_role(request.team_id, user_id)
            if not can_user_fulfill(request, user_id, role):
                raise ForbiddenError("User is not allowed to fulfill this request")

            now = self.clock()
            actual = request.estimated_credits if actual_credits is None else actual_credits
            previous = request.status
            request.status = RequestStatus.FULFILLED
            request.actual_credits = actual
            request.fulfilled_at = now
            request.updated_at = now
            session.add(request)
            repo.add_event(
                request_id=request.id,
                event_type=EventType.FULFILLED,
                performed_by=user_id,
                from_status=previous,
                to_status=RequestStatus.FULFILLED,
                metadata={
                    "actualCredits": actual,
                    "estimatedCredits": request.estimated_credits,
                    "variance": actual - request.estimated_credits,
                },
                created_at=now,
            )

            logger.info(
                "request.fulfilled",
                extra={
                    "request_id": str(request.id),
                    "actual_credits": actual,
                    "estimated_credits": request.estimated_credits,
                },
            )
            return ApprovalRequestRead.model_validate(request)

        return self.store.run_in_transaction(work)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_request(self, request_id: UUID) -> Optional[ApprovalRequestRead]:
        with self.store.session() as session:
            request = ApprovalRepository(session).get_request(request_id)
            return None if request is None else ApprovalRequestRead.model_validate(request)

    def get_request_with_events(self, request_id: UUID) -> Optional[RequestWithEvents]:
        with self.store.session() as session:
            repo = ApprovalRepository(session)
            request = repo.get_request(request_id)
            if request is None:
                return None
            return RequestWithEvents(
                request=ApprovalRequestRead.model_validate(request),
                events=[
                    ApprovalEventRead.model_validate(event)
                    for event in repo.list_events(request_id)
                ],
            )

    def get_requests(self, filters: RequestFilter) -> RequestPage:
        limit = min(filters.limit, MAX_REQUESTS_PAGE)
        with self.store.session() as session:
            requests, total = ApprovalRepository(session).list_requests(
                user_id=filters.user_id,
                as_approver=filters.role == "approver",
                statuses=filters.statuses,
                limit=limit,
                offset=filters.offset,
            )
            return RequestPage(
                requests=[ApprovalRequestRead.model_validate(r) for r in requests],
                total=total,
                has_more=filters.offset + len(requests) < total,
            )

    def get_approval_queue(self, approver_id: UUID) -> ApprovalQueue:
        now = self.clock()
        window = self.settings.escalation_window_hours
        with self.store.session() as session:
            pending = [
                self._approval_queue_item(request, now)
                for request in ApprovalRepository(session).list_pending_for_approver(approver_id)
            ]
        nearing = [
            item
            for item in pending
            if item.hours_until_escalation is not None
            and 0 < item.hours_until_escalation <= window
        ]
        return ApprovalQueue(
            pending=pending,
            total_pending=len(pending),
            nearing_escalation=nearing,
        )

    def get_member_role(self, team_id: UUID, user_id: UUID) -> Optional[TeamRole]:
        with self.store.session() as session:
            return ApprovalRepository(session).get_member_role(team_id, user_id)
