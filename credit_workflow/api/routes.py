from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Response, status

from ..core.dependencies import (
    get_current_account_id,
    get_current_user_id,
    get_ledger_service,
    get_scheduler,
    get_workflow_service,
    verify_cron_secret,
)
from ..core.errors import (
    AccountNotFoundError,
    HoldNotFoundError,
    InvalidArgumentError,
    InvalidStateError,
    RequestNotFoundError,
)
from ..models import (
    ApprovalQueue,
    ApprovalRequestRead,
    Balance,
    ConvertResult,
    CreateHoldRequest,
    DecisionBody,
    DenyBody,
    DirectSpendParams,
    DirectSpendRequest,
    EscalationPassResult,
    ExpirationPassResult,
    FulfillBody,
    HoldRead,
    HoldResult,
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
from ..models.enums import RequestStatus, TransactionType
from ..services import LedgerService, Scheduler, WorkflowService


credits_router = APIRouter(prefix="/credits", tags=["credits"])


def _owned_hold(service: LedgerService, hold_id: UUID, account_id: UUID) -> HoldRead:
    hold = service.get_hold_by_id(hold_id)
    if hold is None or hold.account_id != account_id:
        raise HoldNotFoundError(f"Hold {hold_id} not found")
    return hold


def _ensure_not_awaiting_approval(workflow: WorkflowService, hold: HoldRead) -> None:
    # holds of pending requests are settled by approve, deny, cancel or expiry
    request = workflow.get_request(hold.request_id)
    if request is not None and request.status == RequestStatus.PENDING:
        raise InvalidStateError(
            f"Hold {hold.id} belongs to pending request {request.id}"
        )


@credits_router.get("/balance", response_model=Balance)
def get_balance(
    account_id: UUID = Depends(get_current_account_id),
    service: LedgerService = Depends(get_ledger_service),
) -> Balance:
    balance = service.get_balance(account_id)
    if balance is None:
        raise AccountNotFoundError(f"Account {account_id} not found")
    return balance

@credits_router.get("/transactions", response_model=TransactionsPage)
def get_transactions(
    limit: int = Query(default=10, ge=1),
    offset: int = Query(default=0, ge=0),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    transaction_type: Optional[TransactionType] = Query(default=None, alias="type"),
    account_id: UUID = Depends(get_current_account_id),
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionsPage:
    query = TransactionQuery(
        limit=limit,
        offset=offset,
        start_date=start_date,
        end_date=end_date,
        transaction_type=transaction_type,
    )
    return service.get_transactions(account_id, query)

@credits_router.get("/holds", response_model=list[HoldRead])
def get_active_holds(
    account_id: UUID = Depends(get_current_account_id),
    service: LedgerService = Depends(get_ledger_service),
) -> list[HoldRead]:
    return service.get_active_holds(account_id)

@credits_router.post("/hold", response_model=HoldResult, status_code=status.HTTP_201_CREATED)
def create_hold(
    payload: CreateHoldRequest,
    response: Response,
    account_id: UUID = Depends(get_current_account_id),
    service: LedgerService = Depends(get_ledger_service),
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
) -> HoldResult:
    result = service.create_hold(
        account_id,
        payload.request_id,
        payload.amount,
        payload.idempotency_key or idempotency_key,
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return result

@credits_router.post("/hold/{hold_id}/convert", response_model=ConvertResult)
def convert_hold(
    hold_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    account_id: UUID = Depends(get_current_account_id),
    service: LedgerService = Depends(get_ledger_service),
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ConvertResult:
    hold = _owned_hold(service, hold_id, account_id)
    _ensure_not_awaiting_approval(workflow, hold)
    return service.convert_hold(hold_id, user_id)

@credits_router.post("/hold/{hold_id}/release", response_model=ReleaseResult)
def release_hold(
    hold_id: UUID,
    account_id: UUID = Depends(get_current_account_id),
    service: LedgerService = Depends(get_ledger_service),
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ReleaseResult:
    hold = _owned_hold(service, hold_id, account_id)
    _ensure_not_awaiting_approval(workflow, hold)
    return service.release_hold(hold_id)

@credits_router.post("/spend", response_model=SpendResult, status_code=status.HTTP_201_CREATED)
def direct_spend(
    payload: DirectSpendRequest,
    user_id: UUID = Depends(get_current_user_id),
    account_id: UUID = Depends(get_current_account_id),
    service: LedgerService = Depends(get_ledger_service),
) -> SpendResult:
    params = DirectSpendParams(account_id=account_id, user_id=user_id, **payload.model_dump())
    return service.direct_spend(params)


requests_router = APIRouter(prefix="/requests", tags=["requests"])


def _parse_statuses(raw: Optional[str]) -> Optional[list[RequestStatus]]:
    if not raw:
        return None
    statuses = []
    for tag in raw.split(","):
        tag = tag.strip()
        try:
            statuses.append(RequestStatus(tag))
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown request status: {tag}") from exc
    return statuses


@requests_router.get("", response_model=RequestPage)
def list_requests(
    role: Literal["requester", "approver"] = "requester",
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1),
    offset: int = Query(default=0, ge=0),
    user_id: UUID = Depends(get_current_user_id),
    service: WorkflowService = Depends(get_workflow_service),
) -> RequestPage:
    filters = RequestFilter(
        user_id=user_id,
        role=role,
        statuses=_parse_statuses(status_filter),
        limit=limit,
        offset=offset,
    )
    return service.get_requests(filters)

@requests_router.post("", response_model=SubmitResult, status_code=status.HTTP_201_CREATED)
def submit_request(
    payload: SubmitRequestBody,
    user_id: UUID = Depends(get_current_user_id),
    service: WorkflowService = Depends(get_workflow_service),
) -> SubmitResult:
    params = SubmitRequestParams(requester_id=user_id, **payload.model_dump())
    return service.submit_request(params)

@requests_router.get("/queue", response_model=ApprovalQueue)
def get_approval_queue(
    user_id: UUID = Depends(get_current_user_id),
    service: WorkflowService = Depends(get_workflow_service),
) -> ApprovalQueue:
    return service.get_approval_queue(user_id)

@requests_router.get("/{request_id}", response_model=RequestWithEvents)
def get_request(
    request_id: UUID,
    service: WorkflowService = Depends(get_workflow_service),
) -> RequestWithEvents:
    result = service.get_request_with_events(request_id)
    if result is None:
        raise RequestNotFoundError(f"Request {request_id} not found")
    return result

@requests_router.post("/{request_id}/approve", response_model=ApprovalRequestRead)
def approve_request(
    request_id: UUID,
    payload: Optional[DecisionBody] = None,
    user_id: UUID = Depends(get_current_user_id),
    service: WorkflowService = Depends(get_workflow_service),
) -> ApprovalRequestRead:
    reason = payload.reason if payload else None
    return service.approve_request(request_id, user_id, reason)

@requests_router.post("/{request_id}/deny", response_model=ApprovalRequestRead)
def deny_request(
    request_id: UUID,
    payload: DenyBody,
    user_id: UUID = Depends(get_current_user_id),
    service: WorkflowService = Depends(get_workflow_service),
) -> ApprovalRequestRead:
    return service.deny_request(request_id, user_id, payload.reason)

@requests_router.post("/{request_id}/cancel", response_model=ApprovalRequestRead)
def cancel_request(
    request_id: UUID,
    payload: Optional[DecisionBody] = None,
    user_id: UUID = Depends(get_current_user_id),
    service: WorkflowService = Depends(get_workflow_service),
) -> ApprovalRequestRead:
    reason = payload.reason if payload else None
    return service.cancel_request(request_id, user_id, reason)

@requests_router.post("/{request_id}/fulfill", response_model=ApprovalRequestRead)
def fulfill_request(
    request_id: UUID,
    payload: Optional[FulfillBody] = None,
    user_id: UUID = Depends(get_current_user_id),
    service: WorkflowService = Depends(get_workflow_service),
) -> ApprovalRequestRead:
    actual_credits = payload.actual_credits if payload else None
    return service.fulfill_request(request_id, user_id, actual_credits)


jobs_router = APIRouter(
    prefix="/jobs", tags=["jobs"], dependencies=[Depends(verify_cron_secret)]
)

@jobs_router.post("/escalations", response_model=EscalationPassResult)
def run_escalations(scheduler: Scheduler = Depends(get_scheduler)) -> EscalationPassResult:
    return scheduler.process_escalations()

@jobs_router.post("/expirations", response_model=ExpirationPassResult)
def run_expirations(scheduler: Scheduler = Depends(get_scheduler)) -> ExpirationPassResult:
    return scheduler.process_expirations()

__all__ = ["credits_router", "requests_router", "jobs_router"]
