"""Closed enumerations shared by the ledger and the approval workflow."""
from enum import Enum


class EntryType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionType(str, Enum):
    ALLOCATION = "allocation"
    SPEND = "spend"
    HOLD_CONVERSION = "hold_conversion"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    EXPIRY = "expiry"
    ROLLOVER = "rollover"


class ReferenceType(str, Enum):
    REQUEST = "request"
    SUBSCRIPTION = "subscription"
    ADMIN = "admin"
    SYSTEM = "system"


class HoldStatus(str, Enum):
    """Only ACTIVE is non-terminal."""
    ACTIVE = "active"
    RELEASED = "released"
    CONVERTED = "converted"
    EXPIRED = "expired"


class RequestType(str, Enum):
    REPORT_UPGRADE = "report_upgrade"
    ANALYST_QA = "analyst_qa"
    ANALYST_CALL = "analyst_call"
    EXPERT_CONSULT = "expert_consult"
    EXPERT_DEEPDIVE = "expert_deepdive"
    BESPOKE_PROJECT = "bespoke_project"


class RequestStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FULFILLED = "fulfilled"


class ApprovalLevel(str, Enum):
    AUTO = "auto"
    APPROVER = "approver"
    ADMIN = "admin"


class EventType(str, Enum):
    SUBMITTED = "submitted"
    AUTO_APPROVED = "auto_approved"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ESCALATED = "escalated"
    FULFILLED = "fulfilled"


class TeamRole(str, Enum):
    MEMBER = "member"
    APPROVER = "approver"
    ADMIN = "admin"
    OWNER = "owner"


# Fixed partition of transaction types by direction.
DEBIT_TRANSACTION_TYPES = frozenset(
    {TransactionType.SPEND, TransactionType.ADJUSTMENT, TransactionType.EXPIRY}
)
CREDIT_TRANSACTION_TYPES = frozenset(
    {TransactionType.ALLOCATION, TransactionType.REFUND, TransactionType.ROLLOVER}
)

ADMIN_ROLES = frozenset({TeamRole.ADMIN, TeamRole.OWNER})


def entry_type_for(transaction_type: TransactionType) -> EntryType:
    if transaction_type in CREDIT_TRANSACTION_TYPES:
        return EntryType.CREDIT
    # hold_conversion is always a debit
    return EntryType.DEBIT
