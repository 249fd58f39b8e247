from .db import ApprovalEvent as ApprovalEventModel
from .db import ApprovalRequest as ApprovalRequestModel
from .db import ApprovalRule as ApprovalRuleModel
from .db import Company as CompanyModel
from .db import CreditAccount as CreditAccountModel
from .db import CreditHold as CreditHoldModel
from .db import LedgerEntry as LedgerEntryModel
from .db import Team as TeamModel
from .db import TeamMembership as TeamMembershipModel
from .db import utcnow
from .schemas import (
    AccountRead,
    ApprovalEventRead,
    ApprovalQueue,
    ApprovalQueueItem,
    ApprovalRequestRead,
    Balance,
    ConvertResult,
    CreateHoldRequest,
    CreditResult,
    DecisionBody,
    DenyBody,
    DirectSpendParams,
    DirectSpendRequest,
    EscalationPassResult,
    ExpirationPassResult,
    FulfillBody,
    HoldRead,
    HoldResult,
    LedgerEntryRead,
    RecordCreditParams,
    ReleaseResult,
    RequestFilter,
    RequestPage,
    RequestWithEvents,
    SpendResult,
    SubmitRequestBody,
    SubmitRequestParams,
    SubmitResult,
    TransactionQuery,
    TransactionsPage,
)

__all__ = [
    "AccountRead",
    "ApprovalEventRead",
    "ApprovalQueue",
    "ApprovalQueueItem",
    "ApprovalRequestRead",
    "Balance",
    "ConvertResult",
    "CreateHoldRequest",
    "CreditResult",
    "DecisionBody",
    "DenyBody",
    "DirectSpendParams",
    "DirectSpendRequest",
    "EscalationPassResult",
    "ExpirationPassResult",
    "FulfillBody",
    "HoldRead",
    "HoldResult",
    "LedgerEntryRead",
    "RecordCreditParams",
    "ReleaseResult",
    "RequestFilter",
    "RequestPage",
    "RequestWithEvents",
    "SpendResult",
    "SubmitRequestBody",
    "SubmitRequestParams",
    "SubmitResult",
    "TransactionQuery",
    "TransactionsPage",
    "ApprovalEventModel",
    "ApprovalRequestModel",
    "ApprovalRuleModel",
    "CompanyModel",
    "CreditAccountModel",
    "CreditHoldModel",
    "LedgerEntryModel",
    "TeamModel",
    "TeamMembershipModel",
    "utcnow",
]
