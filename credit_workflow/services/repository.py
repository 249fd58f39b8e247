from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from ..models import (
    ApprovalEventModel,
    ApprovalRequestModel,
    ApprovalRuleModel,
    CreditAccountModel,
    CreditHoldModel,
    LedgerEntryModel,
    TeamMembershipModel,
    TeamModel,
)
from ..models.enums import (
    ApprovalLevel,
    EntryType,
    EventType,
    HoldStatus,
    ReferenceType,
    RequestStatus,
    TeamRole,
    TransactionType,
)


class LedgerRepository:
    """Thin data access layer for accounts, ledger entries and holds."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Accounts -----------------------------------------------------------
    def get_account(self, account_id: UUID) -> Optional[CreditAccountModel]:
        return self.session.get(CreditAccountModel, account_id)

    def lock_account(self, account_id: UUID) -> Optional[CreditAccountModel]:
        stmt = (
            select(CreditAccountModel)
            .where(CreditAccountModel.id == account_id)
            .with_for_update()
        )
        return self.session.exec(stmt).first()

    def find_account_for_company(self, company_id: UUID) -> Optional[CreditAccountModel]:
        stmt = (
            select(CreditAccountModel)
            .where(CreditAccountModel.company_id == company_id)
            .order_by(CreditAccountModel.created_at.desc())
        )
        return self.session.exec(stmt).first()

    def find_account_for_user(self, user_id: UUID) -> Optional[CreditAccountModel]:
        stmt = (
            select(CreditAccountModel)
            .join(TeamModel, TeamModel.company_id == CreditAccountModel.company_id)
            .join(TeamMembershipModel, TeamMembershipModel.team_id == TeamModel.id)
            .where(TeamMembershipModel.user_id == user_id)
            .order_by(CreditAccountModel.created_at.desc())
        )
        return self.session.exec(stmt).first()

    # Aggregates ---------------------------------------------------------
    def sum_entries(self, account_id: UUID, entry_type: EntryType) -> int:
        stmt = (
            select(func.coalesce(func.sum(LedgerEntryModel.amount), 0))
            .where(LedgerEntryModel.account_id == account_id)
            .where(LedgerEntryModel.entry_type == entry_type)
        )
        return int(self.session.exec(stmt).one())

    def sum_active_holds(self, account_id: UUID) -> int:
        stmt = (
            select(func.coalesce(func.sum(CreditHoldModel.amount), 0))
            .where(CreditHoldModel.account_id == account_id)
            .where(CreditHoldModel.status == HoldStatus.ACTIVE)
        )
        return int(self.session.exec(stmt).one())

    # Ledger entries -----------------------------------------------------
    def find_entry_by_key(
        self, account_id: UUID, idempotency_key: str
    ) -> Optional[LedgerEntryModel]:
        stmt = (
            select(LedgerEntryModel)
            .where(LedgerEntryModel.account_id == account_id)
            .where(LedgerEntryModel.idempotency_key == idempotency_key)
        )
        return self.session.exec(stmt).first()

    def add_entry(
        self,
        *,
        account_id: UUID,
        entry_type: EntryType,
        amount: int,
        transaction_type: TransactionType,
        reference_type: Optional[ReferenceType],
        reference_id: Optional[UUID],
        description: str,
        performed_by: Optional[UUID],
        idempotency_key: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> LedgerEntryModel:
        entry = LedgerEntryModel(
            account_id=account_id,
            entry_type=entry_type,
            amount=amount,
            transaction_type=transaction_type,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            performed_by=performed_by,
            idempotency_key=idempotency_key,
        )
        if created_at is not None:
            entry.created_at = created_at
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_entries(
        self,
        account_id: UUID,
        *,
        limit: int,
        offset: int,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> tuple[list[LedgerEntryModel], int]:
        conditions: list[Any] = [LedgerEntryModel.account_id == account_id]
        if start_date is not None:
            conditions.append(LedgerEntryModel.created_at >= start_date)
        if end_date is not None:
            conditions.append(LedgerEntryModel.created_at <= end_date)
        if transaction_type is not None:
            conditions.append(LedgerEntryModel.transaction_type == transaction_type)

        total_stmt = select(func.count()).select_from(LedgerEntryModel).where(*conditions)
        total = int(self.session.exec(total_stmt).one())

        stmt = (
            select(LedgerEntryModel)
            .where(*conditions)
            .order_by(LedgerEntryModel.created_at.desc(), LedgerEntryModel.id)
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.exec(stmt)), total

    # Holds --------------------------------------------------------------
    def get_hold(self, hold_id: UUID) -> Optional[CreditHoldModel]:
        return self.session.get(CreditHoldModel, hold_id)

    def lock_hold(self, hold_id: UUID) -> Optional[CreditHoldModel]:
        stmt = (
            select(CreditHoldModel)
            .where(CreditHoldModel.id == hold_id)
            .with_for_update()
        )
        return self.session.exec(stmt).first()

    def lock_active_hold_for_request(self, request_id: UUID) -> Optional[CreditHoldModel]:
        stmt = (
            select(CreditHoldModel)
            .where(CreditHoldModel.request_id == request_id)
            .where(CreditHoldModel.status == HoldStatus.ACTIVE)
            .with_for_update()
        )
        return self.session.exec(stmt).first()

    def find_hold_for_request(
        self, account_id: UUID, request_id: UUID
    ) -> Optional[CreditHoldModel]:
        stmt = (
            select(CreditHoldModel)
            .where(CreditHoldModel.account_id == account_id)
            .where(CreditHoldModel.request_id == request_id)
        )
        return self.session.exec(stmt).first()

    def find_hold_by_key(
        self, account_id: UUID, idempotency_key: str
    ) -> Optional[CreditHoldModel]:
        stmt = (
            select(CreditHoldModel)
            .where(CreditHoldModel.account_id == account_id)
            .where(CreditHoldModel.idempotency_key == idempotency_key)
        )
        return self.session.exec(stmt).first()

    def add_hold(
        self,
        *,
        account_id: UUID,
        request_id: UUID,
        amount: int,
        idempotency_key: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> CreditHoldModel:
        hold = CreditHoldModel(
            account_id=account_id,
            request_id=request_id,
            amount=amount,
            idempotency_key=idempotency_key,
        )
        if created_at is not None:
            hold.created_at = created_at
        self.session.add(hold)
        self.session.flush()
        return hold

    def list_active_holds(self, account_id: UUID) -> list[CreditHoldModel]:
        stmt = (
            select(CreditHoldModel)
            .where(CreditHoldModel.account_id == account_id)
            .where(CreditHoldModel.status == HoldStatus.ACTIVE)
            .order_by(CreditHoldModel.created_at.desc())
        )
        return list(self.session.exec(stmt))


class ApprovalRepository:
    """Data access for approval requests, their events, rules and team roles."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Requests -----------------------------------------------------------
    def get_request(self, request_id: UUID) -> Optional[ApprovalRequestModel]:
        return self.session.get(ApprovalRequestModel, request_id)

    def lock_request(self, request_id: UUID) -> Optional[ApprovalRequestModel]:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .with_for_update()
        )
        return self.session.exec(stmt).first()

    def add_request(self, request: ApprovalRequestModel) -> ApprovalRequestModel:
        self.session.add(request)
        self.session.flush()
        return request

    def list_requests(
        self,
        *,
        user_id: UUID,
        as_approver: bool,
        statuses: Optional[Iterable[RequestStatus]],
        limit: int,
        offset: int,
    ) -> tuple[list[ApprovalRequestModel], int]:
        if as_approver:
            conditions: list[Any] = [ApprovalRequestModel.current_approver_id == user_id]
        else:
            conditions = [ApprovalRequestModel.requester_id == user_id]
        if statuses:
            conditions.append(ApprovalRequestModel.status.in_(list(statuses)))

        total_stmt = select(func.count()).select_from(ApprovalRequestModel).where(*conditions)
        total = int(self.session.exec(total_stmt).one())

        stmt = (
            select(ApprovalRequestModel)
            .where(*conditions)
            .order_by(ApprovalRequestModel.created_at.desc(), ApprovalRequestModel.id)
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.exec(stmt)), total

    def list_pending_for_approver(self, approver_id: UUID) -> list[ApprovalRequestModel]:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.current_approver_id == approver_id)
            .where(ApprovalRequestModel.status == RequestStatus.PENDING)
            .order_by(ApprovalRequestModel.submitted_at.asc())
        )
        return list(self.session.exec(stmt))

    def find_expired_ids(self, now: datetime) -> list[UUID]:
        stmt = (
            select(ApprovalRequestModel.id)
            .where(ApprovalRequestModel.status == RequestStatus.PENDING)
            .where(ApprovalRequestModel.expires_at.is_not(None))
            .where(ApprovalRequestModel.expires_at <= now)
            .order_by(ApprovalRequestModel.expires_at.asc())
        )
        return list(self.session.exec(stmt))

    def find_escalation_ids(self, now: datetime, window_end: datetime) -> list[UUID]:
        stmt = (
            select(ApprovalRequestModel.id)
            .where(ApprovalRequestModel.status == RequestStatus.PENDING)
            .where(ApprovalRequestModel.approval_level == ApprovalLevel.APPROVER)
            .where(ApprovalRequestModel.expires_at > now)
            .where(ApprovalRequestModel.expires_at <= window_end)
            .order_by(ApprovalRequestModel.expires_at.asc())
        )
        return list(self.session.exec(stmt))

    # Events -------------------------------------------------------------
    def add_event(
        self,
        *,
        request_id: UUID,
        event_type: EventType,
        performed_by: Optional[UUID],
        performed_by_system: bool = False,
        from_status: Optional[RequestStatus] = None,
        to_status: Optional[RequestStatus] = None,
        reason: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> ApprovalEventModel:
        event = ApprovalEventModel(
            request_id=request_id,
            event_type=event_type,
            performed_by=performed_by,
            performed_by_system=performed_by_system,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            event_metadata=metadata,
        )
        if created_at is not None:
            event.created_at = created_at
        self.session.add(event)
        self.session.flush()
        return event

    def list_events(self, request_id: UUID) -> list[ApprovalEventModel]:
        stmt = (
            select(ApprovalEventModel)
            .where(ApprovalEventModel.request_id == request_id)
            .order_by(ApprovalEventModel.created_at.asc())
        )
        return list(self.session.exec(stmt))

    # Teams and rules ----------------------------------------------------
    def get_team(self, team_id: UUID) -> Optional[TeamModel]:
        return self.session.get(TeamModel, team_id)

    def get_member_role(self, team_id: UUID, user_id: UUID) -> Optional[TeamRole]:
        stmt = (
            select(TeamMembershipModel.role)
            .where(TeamMembershipModel.team_id == team_id)
            .where(TeamMembershipModel.user_id == user_id)
        )
        return self.session.exec(stmt).first()

    def find_member_with_role(
        self,
        team_id: UUID,
        roles: Iterable[TeamRole],
        exclude_user_id: Optional[UUID] = None,
    ) -> Optional[UUID]:
        stmt = (
            select(TeamMembershipModel.user_id)
            .where(TeamMembershipModel.team_id == team_id)
            .where(TeamMembershipModel.role.in_(list(roles)))
        )
        if exclude_user_id is not None:
            stmt = stmt.where(TeamMembershipModel.user_id != exclude_user_id)
        stmt = stmt.order_by(
            TeamMembershipModel.created_at.asc(), TeamMembershipModel.user_id.asc()
        )
        return self.session.exec(stmt).first()

    def list_active_rules(self, company_id: UUID) -> list[ApprovalRuleModel]:
        stmt = (
            select(ApprovalRuleModel)
            .where(ApprovalRuleModel.company_id == company_id)
            .where(ApprovalRuleModel.is_active.is_(True))
            .order_by(ApprovalRuleModel.priority.asc(), ApprovalRuleModel.created_at.asc())
        )
        return list(self.session.exec(stmt))
