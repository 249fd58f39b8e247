from datetime import date, datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .enums import (
    ApprovalLevel,
    EntryType,
    EventType,
    HoldStatus,
    ReferenceType,
    RequestStatus,
    RequestType,
    TransactionType,
)


class _ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Ledger ---------------------------------------------------------------
class AccountRead(_ORMModel):
    id: UUID
    company_id: UUID
    subscription_tier: str
    total_credits: int
    bonus_credits: int
    subscription_start: date
    subscription_end: date
    created_at: datetime


class Balance(BaseModel):
    account_id: UUID
    company_id: UUID
    total_credits: int
    bonus_credits: int
    ledger_credits: int
    ledger_debits: int
    used_credits: int = Field(..., description="Same as ledger_debits")
    reserved_credits: int
    available_credits: int
    subscription_tier: str
    subscription_end: str = Field(..., description="YYYY-MM-DD, UTC")
    days_remaining: int


class LedgerEntryRead(_ORMModel):
    id: UUID
    account_id: UUID
    entry_type: EntryType
    amount: int
    transaction_type: TransactionType
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[UUID] = None
    description: str
    performed_by: Optional[UUID] = None
    idempotency_key: Optional[str] = None
    created_at: datetime


class HoldRead(_ORMModel):
    id: UUID
    account_id: UUID
    request_id: UUID
    amount: int
    status: HoldStatus
    created_at: datetime
    released_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None


class CreateHoldRequest(BaseModel):
    request_id: UUID
    amount: int = Field(..., ge=1, description="Credits to reserve (must be >= 1)")
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class HoldResult(BaseModel):
    hold_id: UUID
    amount: int
    status: HoldStatus
    available_credits: int
    created: bool = Field(..., description="False when an existing hold was returned")


class ReleaseResult(BaseModel):
    hold_id: UUID
    amount: int
    status: Literal["released"] = "released"
    available_credits: int


class ConvertResult(BaseModel):
    hold_id: UUID
    amount: int
    status: Literal["converted"] = "converted"
    ledger_entry_id: UUID
    available_credits: int


class DirectSpendParams(BaseModel):
    account_id: UUID
    amount: int = Field(..., ge=1)
    transaction_type: TransactionType
    reference_type: ReferenceType
    reference_id: UUID
    description: str = Field(..., min_length=1)
    idempotency_key: str = Field(..., min_length=1, max_length=255)
    user_id: UUID


class DirectSpendRequest(BaseModel):
    """Body of the spend route; the account and user come from the caller."""

    amount: int = Field(..., ge=1)
    transaction_type: TransactionType
    reference_type: ReferenceType
    reference_id: UUID
    description: str = Field(..., min_length=1)
    idempotency_key: str = Field(..., min_length=1, max_length=255)


class SpendResult(BaseModel):
    ledger_entry_id: UUID
    amount: int
    available_credits: int


class RecordCreditParams(BaseModel):
    account_id: UUID
    amount: int = Field(..., ge=1)
    transaction_type: TransactionType
    reference_type: ReferenceType
    reference_id: Optional[UUID] = None
    description: str = Field(..., min_length=1)
    idempotency_key: str = Field(..., min_length=1, max_length=255)
    user_id: Optional[UUID] = None


class CreditResult(BaseModel):
    ledger_entry_id: UUID
    amount: int
    available_credits: int


class TransactionQuery(BaseModel):
    limit: int = Field(default=10, ge=1)
    offset: int = Field(default=0, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    transaction_type: Optional[TransactionType] = None


class TransactionsPage(BaseModel):
    entries: list[LedgerEntryRead]
    total: int
    has_more: bool


# Approval workflow ----------------------------------------------------
class ApprovalRequestRead(_ORMModel):
    id: UUID
    company_id: UUID
    team_id: UUID
    requester_id: UUID
    request_type: RequestType
    title: str
    description: Optional[str] = None
    context: Optional[dict[str, Any]] = None
    estimated_credits: int
    actual_credits: Optional[int] = None
    status: RequestStatus
    approval_level: Optional[ApprovalLevel] = None
    current_approver_id: Optional[UUID] = None
    escalation_count: int = 0
    decided_by: Optional[UUID] = None
    decision_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ApprovalEventRead(_ORMModel):
    id: UUID
    request_id: UUID
    event_type: EventType
    performed_by: Optional[UUID] = None
    performed_by_system: bool
    from_status: Optional[RequestStatus] = None
    to_status: Optional[RequestStatus] = None
    reason: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("event_metadata", "metadata")
    )
    created_at: datetime


class SubmitRequestParams(BaseModel):
    company_id: UUID
    team_id: UUID
    requester_id: UUID
    request_type: RequestType
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    context: Optional[dict[str, Any]] = None
    estimated_credits: int = Field(..., gt=0)


class SubmitRequestBody(BaseModel):
    company_id: UUID
    team_id: UUID
    request_type: RequestType
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    context: Optional[dict[str, Any]] = None
    estimated_credits: int = Field(..., gt=0)


class SubmitResult(BaseModel):
    request: ApprovalRequestRead
    status: RequestStatus
    approval_level: ApprovalLevel
    hold_id: Optional[UUID] = None
    auto_approved: bool


class RequestWithEvents(BaseModel):
    request: ApprovalRequestRead
    events: list[ApprovalEventRead]


class RequestFilter(BaseModel):
    user_id: UUID
    role: Literal["requester", "approver"] = "requester"
    statuses: Optional[list[RequestStatus]] = None
    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)


class RequestPage(BaseModel):
    requests: list[ApprovalRequestRead]
    total: int
    has_more: bool


class ApprovalQueueItem(BaseModel):
    request: ApprovalRequestRead
    hours_until_escalation: Optional[float] = None


class ApprovalQueue(BaseModel):
    pending: list[ApprovalQueueItem]
    total_pending: int
    nearing_escalation: list[ApprovalQueueItem]


class DecisionBody(BaseModel):
    reason: Optional[str] = None


class DenyBody(BaseModel):
    reason: str = Field(..., min_length=1)


class FulfillBody(BaseModel):
    actual_credits: Optional[int] = Field(default=None, ge=0)


# Scheduler ------------------------------------------------------------
class EscalationPassResult(BaseModel):
    success: bool = True
    escalated_count: int
    escalated_ids: list[UUID]


class ExpirationPassResult(BaseModel):
    success: bool = True
    expired_count: int
    expired_ids: list[UUID]
