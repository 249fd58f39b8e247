from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

from .enums import (
    ApprovalLevel,
    EntryType,
    EventType,
    HoldStatus,
    ReferenceType,
    RequestStatus,
    RequestType,
    TeamRole,
    TransactionType,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Stores instants as UTC and always hands back timezone-aware values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _enum(enum_cls: type[Enum]) -> SAEnum:
    # persist the lowercase values, not the member names
    return SAEnum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        length=32,
    )


# Externally owned organization tables ---------------------------------
class Company(SQLModel, table=True):
    __tablename__ = "companies"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str
    slug: str = Field(unique=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Team(SQLModel, table=True):
    __tablename__ = "teams"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    company_id: UUID = Field(foreign_key="companies.id", index=True)
    name: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class TeamMembership(SQLModel, table=True):
    __tablename__ = "team_memberships"
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_memberships_team_user"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    team_id: UUID = Field(foreign_key="teams.id", index=True)
    user_id: UUID = Field(index=True)
    role: TeamRole = Field(default=TeamRole.MEMBER, sa_type=_enum(TeamRole))
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


# Credit ledger ----------------------------------------------------------
class CreditAccount(SQLModel, table=True):
    __tablename__ = "credit_accounts"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    company_id: UUID = Field(foreign_key="companies.id", index=True)
    subscription_tier: str
    total_credits: int = Field(ge=0)
    bonus_credits: int = Field(default=0, ge=0)
    subscription_start: date
    subscription_end: date
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class LedgerEntry(SQLModel, table=True):
    """Append-only. Rows are never updated or deleted."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("account_id", "idempotency_key", name="uq_ledger_idempotency"),
        Index("ix_ledger_entries_account_created", "account_id", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="credit_accounts.id")
    entry_type: EntryType = Field(sa_type=_enum(EntryType))
    amount: int = Field(gt=0)
    transaction_type: TransactionType = Field(sa_type=_enum(TransactionType))
    reference_type: Optional[ReferenceType] = Field(default=None, sa_type=_enum(ReferenceType))
    reference_id: Optional[UUID] = None
    description: str
    performed_by: Optional[UUID] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class CreditHold(SQLModel, table=True):
    __tablename__ = "credit_holds"
    __table_args__ = (
        UniqueConstraint("account_id", "request_id", name="uq_credit_holds_request"),
        UniqueConstraint("account_id", "idempotency_key", name="uq_credit_holds_idempotency"),
        Index("ix_credit_holds_account_status", "account_id", "status"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="credit_accounts.id")
    request_id: UUID
    amount: int = Field(gt=0)
    status: HoldStatus = Field(default=HoldStatus.ACTIVE, sa_type=_enum(HoldStatus))
    idempotency_key: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    released_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    converted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


# Approval workflow ------------------------------------------------------
class ApprovalRequest(SQLModel, table=True):
    __tablename__ = "approval_requests"
    __table_args__ = (
        Index("ix_approval_requests_status_expires", "status", "expires_at"),
        Index("ix_approval_requests_approver_status", "current_approver_id", "status"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    company_id: UUID = Field(foreign_key="companies.id")
    team_id: UUID = Field(foreign_key="teams.id")
    requester_id: UUID = Field(index=True)
    request_type: RequestType = Field(sa_type=_enum(RequestType))
    title: str = Field(max_length=255)
    description: Optional[str] = None
    context: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    estimated_credits: int = Field(gt=0)
    actual_credits: Optional[int] = None
    status: RequestStatus = Field(default=RequestStatus.DRAFT, sa_type=_enum(RequestStatus))
    approval_level: Optional[ApprovalLevel] = Field(default=None, sa_type=_enum(ApprovalLevel))
    current_approver_id: Optional[UUID] = None
    escalation_count: int = 0
    decided_by: Optional[UUID] = None
    decision_reason: Optional[str] = None
    submitted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    decided_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    fulfilled_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    expires_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ApprovalEvent(SQLModel, table=True):
    """Append-only audit trail, one row per transition."""

    __tablename__ = "approval_events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_id: UUID = Field(foreign_key="approval_requests.id", index=True)
    event_type: EventType = Field(sa_type=_enum(EventType))
    performed_by: Optional[UUID] = None
    performed_by_system: bool = False
    from_status: Optional[RequestStatus] = Field(default=None, sa_type=_enum(RequestStatus))
    to_status: Optional[RequestStatus] = Field(default=None, sa_type=_enum(RequestStatus))
    reason: Optional[str] = None
    # "metadata" is reserved on declarative classes
    event_metadata: Optional[dict[str, Any]] = Field(
        default=None, sa_column=Column("metadata", JSON)
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ApprovalRule(SQLModel, table=True):
    __tablename__ = "approval_rules"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    company_id: UUID = Field(foreign_key="companies.id", index=True)
    min_credits: int = Field(ge=0)
    max_credits: Optional[int] = None
    approver_role: ApprovalLevel = Field(sa_type=_enum(ApprovalLevel))
    escalation_hours: Optional[int] = None
    priority: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
