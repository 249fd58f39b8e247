import secrets
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header

from ..services import LedgerService, Scheduler, Store, WorkflowService
from .config import Settings, get_settings
from .db import get_engine
from .errors import AccountNotFoundError, ForbiddenError


def get_store() -> Store:
    return Store(get_engine())


def get_ledger_service(store: Store = Depends(get_store)) -> LedgerService:
    return LedgerService(store)


def get_workflow_service(
    store: Store = Depends(get_store),
    ledger: LedgerService = Depends(get_ledger_service),
    settings: Settings = Depends(get_settings),
) -> WorkflowService:
    return WorkflowService(store, ledger=ledger, settings=settings)


def get_scheduler(
    store: Store = Depends(get_store),
    ledger: LedgerService = Depends(get_ledger_service),
    settings: Settings = Depends(get_settings),
) -> Scheduler:
    return Scheduler(store, ledger=ledger, settings=settings)


def get_current_user_id(
    user_id: UUID = Header(..., convert_underscores=False, alias="X-User-Id"),
) -> UUID:
    # set by the authenticating proxy in front of this service
    return user_id


def get_current_account_id(
    user_id: UUID = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
) -> UUID:
    account = ledger.get_account_for_user(user_id)
    if account is None:
        raise AccountNotFoundError("No credit account found for user")
    return account.id


def verify_cron_secret(
    cron_secret: Optional[str] = Header(
        default=None, convert_underscores=False, alias="X-Cron-Secret"
    ),
    settings: Settings = Depends(get_settings),
) -> None:
    if settings.cron_secret is None:
        return
    if cron_secret is None or not secrets.compare_digest(cron_secret, settings.cron_secret):
        raise ForbiddenError("Invalid cron secret")
