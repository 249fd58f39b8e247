from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.errors import CreditWorkflowError, NoEligibleApproverError
from ..models import EscalationPassResult, ExpirationPassResult, utcnow
from ..models.enums import ApprovalLevel, EventType, RequestStatus
from .ledger import LedgerService
from .repository import ApprovalRepository, LedgerRepository
from .routing import admin_escalation_hours
from .state_machine import can_transition
from .store import Store
from .workflow import find_approver


logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Scheduler:
    """Periodic passes over pending requests.

    Candidates are read up front, then every request is handled in its own
    transaction and re-checked under its row lock, so a request decided
    between the scan and the step is left alone.
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

    def process_expirations(self, now: Optional[datetime] = None) -> ExpirationPassResult:
        now = _as_utc(now or self.clock())
        with self.store.session() as session:
            candidates = ApprovalRepository(session).find_expired_ids(now)

        expired_ids: list[UUID] = []
        for request_id in candidates:
            try:
                if self.store.run_in_transaction(
                    lambda session, rid=request_id: self._expire_one(session, rid, now)
                ):
                    expired_ids.append(request_id)
            except (CreditWorkflowError, SQLAlchemyError):
                logger.exception(
                    "scheduler.expiration.failed", extra={"request_id": str(request_id)}
                )

        logger.info(
            "scheduler.expirations.completed",
            extra={"candidates": len(candidates), "expired_count": len(expired_ids)},
        )
        return ExpirationPassResult(expired_count=len(expired_ids), expired_ids=expired_ids)

    def process_escalations(self, now: Optional[datetime] = None) -> EscalationPassResult:
        now = _as_utc(now or self.clock())
        window_end = now + timedelta(hours=self.settings.escalation_window_hours)
        with self.store.session() as session:
            candidates = ApprovalRepository(session).find_escalation_ids(now, window_end)

        escalated_ids: list[UUID] = []
        for request_id in candidates:
            try:
                if self.store.run_in_transaction(
                    lambda session, rid=request_id: self._escalate_one(
                        session, rid, now, window_end
                    )
                ):
                    escalated_ids.append(request_id)
            except NoEligibleApproverError:
                logger.warning(
                    "scheduler.escalation.no_admin", extra={"request_id": str(request_id)}
                )
            except (CreditWorkflowError, SQLAlchemyError):
                logger.exception(
                    "scheduler.escalation.failed", extra={"request_id": str(request_id)}
                )

        logger.info(
            "scheduler.escalations.completed",
            extra={"candidates": len(candidates), "escalated_count": len(escalated_ids)},
        )
        return EscalationPassResult(
            escalated_count=len(escalated_ids), escalated_ids=escalated_ids
        )

    def _expire_one(self, session: Session, request_id: UUID, now: datetime) -> bool:
        repo = ApprovalRepository(session)
        request = repo.lock_request(request_id)
        if (
            request is None
            or request.status != RequestStatus.PENDING
            or request.expires_at is None
            or request.expires_at > now
        ):
            return False
        if not can_transition(request.status, RequestStatus.EXPIRED):
            return False

        request.status = RequestStatus.EXPIRED
        request.updated_at = now
        session.add(request)
        repo.add_event(
            request_id=request.id,
            event_type=EventType.EXPIRED,
            performed_by=None,
            performed_by_system=True,
            from_status=RequestStatus.PENDING,
            to_status=RequestStatus.EXPIRED,
            reason="Request expired due to SLA deadline",
            created_at=now,
        )

        hold = LedgerRepository(session).lock_active_hold_for_request(request.id)
        if hold is not None:
            self.ledger.release_locked_hold(session, hold)

        logger.info("request.expired", extra={"request_id": str(request.id)})
        return True

    def _escalate_one(
        self,
        session: Session,
        request_id: UUID,
        now: datetime,
        window_end: datetime,
    ) -> bool:
        repo = ApprovalRepository(session)
        request = repo.lock_request(request_id)
        if (
            request is None
            or request.status != RequestStatus.PENDING
            or request.approval_level != ApprovalLevel.APPROVER
            or request.expires_at is None
            or not (now < request.expires_at <= window_end)
        ):
            return False

        admin_id = find_approver(
            repo, request.team_id, ApprovalLevel.ADMIN, request.requester_id
        )
        if admin_id is None:
            raise NoEligibleApproverError(f"No admin available for team {request.team_id}")

        hours = admin_escalation_hours(
            repo.list_active_rules(request.company_id),
            request.estimated_credits,
            self.settings.admin_escalation_hours,
        )
        previous_approver = request.current_approver_id
        request.approval_level = ApprovalLevel.ADMIN
        request.current_approver_id = admin_id
        request.expires_at = now + timedelta(hours=hours)
        request.escalation_count += 1
        request.updated_at = now
        session.add(request)
        repo.add_event(
            request_id=request.id,
            event_type=EventType.ESCALATED,
            performed_by=None,
            performed_by_system=True,
            from_status=RequestStatus.PENDING,
            to_status=RequestStatus.PENDING,
            metadata={
                "previousApprover": str(previous_approver) if previous_approver else None,
                "newApprover": str(admin_id),
                "reason": "Escalated due to approaching SLA deadline",
            },
            created_at=now,
        )

        logger.info(
            "request.escalated",
            extra={
                "request_id": str(request.id),
                "new_approver_id": str(admin_id),
                "escalation_hours": hours,
            },
        )
        return True
