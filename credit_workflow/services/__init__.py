from .ledger import LedgerService
from .repository import ApprovalRepository, LedgerRepository
from .scheduler import Scheduler
from .store import Store
from .workflow import WorkflowService

__all__ = [
    "ApprovalRepository",
    "LedgerRepository",
    "LedgerService",
    "Scheduler",
    "Store",
    "WorkflowService",
]
