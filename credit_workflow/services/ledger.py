from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional, Tuple
from uuid import UUID

from sqlmodel import Session

from ..core.errors import (
    AccountNotFoundError,
    DuplicateRequestError,
    HoldNotFoundError,
    InsufficientCreditsError,
    InvalidArgumentError,
    InvalidHoldStateError,
    InvalidTransactionTypeError,
)
from ..models import (
    AccountRead,
    Balance,
    ConvertResult,
    CreditAccountModel,
    CreditHoldModel,
    CreditResult,
    DirectSpendParams,
    HoldRead,
    HoldResult,
    LedgerEntryModel,
    LedgerEntryRead,
    RecordCreditParams,
    ReleaseResult,
    SpendResult,
    TransactionQuery,
    TransactionsPage,
    utcnow,
)
from ..models.enums import (
    CREDIT_TRANSACTION_TYPES,
    DEBIT_TRANSACTION_TYPES,
    EntryType,
    HoldStatus,
    ReferenceType,
    TransactionType,
)
from .repository import LedgerRepository
from .store import Store


logger = logging.getLogger(__name__)

MAX_TRANSACTIONS_PAGE = 100


def conversion_key(hold_id: UUID) -> str:
    return f"hold_convert_{hold_id}"


class LedgerService:
    """Balances, holds and ledger writes.

    Every write locks the account row first, so concurrent writers for the
    same account are serialized and the availability check cannot race.
    The ``*_in_tx`` methods do the work inside a caller-owned session; the
    workflow engine uses them to combine ledger writes with request
    transitions in one transaction.
    """

    def __init__(
        self,
        store: Store,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.clock = clock

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _lock_account(self, repo: LedgerRepository, account_id: UUID) -> CreditAccountModel:
        account = repo.lock_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def _available(self, repo: LedgerRepository, account: CreditAccountModel) -> int:
        credits = repo.sum_entries(account.id, EntryType.CREDIT)
        debits = repo.sum_entries(account.id, EntryType.DEBIT)
        reserved = repo.sum_active_holds(account.id)
        return account.total_credits + account.bonus_credits + credits - debits - reserved

    def _balance(self, repo: LedgerRepository, account: CreditAccountModel) -> Balance:
        credits = repo.sum_entries(account.id, EntryType.CREDIT)
        debits = repo.sum_entries(account.id, EntryType.DEBIT)
        reserved = repo.sum_active_holds(account.id)
        today = self.clock().date()
        return Balance(
            account_id=account.id,
            company_id=account.company_id,
            total_credits=account.total_credits,
            bonus_credits=account.bonus_credits,
            ledger_credits=credits,
            ledger_debits=debits,
            used_credits=debits,
            reserved_credits=reserved,
            available_credits=(
                account.total_credits + account.bonus_credits + credits - debits - reserved
            ),
            subscription_tier=account.subscription_tier,
            subscription_end=account.subscription_end.isoformat(),
            days_remaining=max(0, (account.subscription_end - today).days),
        )

    def _entry_signature(self, entry: LedgerEntryModel) -> Tuple[Any, ...]:
        return (
            entry.entry_type,
            entry.amount,
            entry.transaction_type,
            entry.reference_type,
            entry.reference_id,
        )

    def _check_replay(
        self,
        repo: LedgerRepository,
        account_id: UUID,
        idempotency_key: str,
        request_signature: Tuple[Any, ...],
    ) -> Optional[LedgerEntryModel]:
        entry = repo.find_entry_by_key(account_id, idempotency_key)
        if entry is None:
            return None
        if self._entry_signature(entry) != request_signature:
            raise DuplicateRequestError(
                "Idempotency key was previously used with different parameters"
            )
        return entry

    def _require_positive(self, amount: int) -> None:
        if amount < 1:
            raise InvalidArgumentError("Amount must be a positive integer")

    # ------------------------------------------------------------------
    # In-transaction operations
    # ------------------------------------------------------------------
    def create_hold_in_tx(
        self,
        session: Session,
        account_id: UUID,
        request_id: UUID,
        amount: int,
        idempotency_key: Optional[str] = None,
    ) -> HoldResult:
        self._require_positive(amount)
        repo = LedgerRepository(session)
        account = self._lock_account(repo, account_id)

        existing = repo.find_hold_for_request(account_id, request_id)
        if existing is not None:
            logger.info(
                "idempotent.hold.hit",
                extra={"hold_id": str(existing.id), "request_id": str(request_id)},
            )
            return HoldResult(
                hold_id=existing.id,
                amount=existing.amount,
                status=existing.status,
                available_credits=self._available(repo, account),
                created=False,
            )

        if idempotency_key is not None:
            keyed = repo.find_hold_by_key(account_id, idempotency_key)
            if keyed is not None:
                raise DuplicateRequestError(
                    "Idempotency key was previously used for a different request"
                )

        available = self._available(repo, account)
        if available < amount:
            raise InsufficientCreditsError(available=available, required=amount)

        hold = repo.add_hold(
            account_id=account_id,
            request_id=request_id,
            amount=amount,
            idempotency_key=idempotency_key,
            created_at=self.clock(),
        )
        logger.info(
            "hold.created",
            extra={
                "hold_id": str(hold.id),
                "account_id": str(account_id),
                "request_id": str(request_id),
                "amount": amount,
            },
        )
        return HoldResult(
            hold_id=hold.id,
            amount=hold.amount,
            status=hold.status,
            available_credits=available - amount,
            created=True,
        )

    def release_locked_hold(self, session: Session, hold: CreditHoldModel) -> ReleaseResult:
        """Release a hold the caller has already locked."""
        repo = LedgerRepository(session)
        account = self._lock_account(repo, hold.account_id)
        if hold.status != HoldStatus.ACTIVE:
            raise InvalidHoldStateError(hold.status, "release")

        available = self._available(repo, account)
        hold.status = HoldStatus.RELEASED
        hold.released_at = self.clock()
        session.add(hold)
        session.flush()
        logger.info(
            "hold.released",
            extra={"hold_id": str(hold.id), "amount": hold.amount},
        )
        return ReleaseResult(
            hold_id=hold.id,
            amount=hold.amount,
            available_credits=available + hold.amount,
        )

    def convert_locked_hold(
        self,
        session: Session,
        hold: CreditHoldModel,
        user_id: Optional[UUID],
        description: Optional[str] = None,
    ) -> ConvertResult:
        """Convert a hold the caller has already locked into a ledger debit."""
        repo = LedgerRepository(session)
        account = self._lock_account(repo, hold.account_id)

        key = conversion_key(hold.id)
        existing = repo.find_entry_by_key(hold.account_id, key)
        if existing is not None:
            logger.info("idempotent.convert.hit", extra={"hold_id": str(hold.id)})
            return ConvertResult(
                hold_id=hold.id,
                amount=hold.amount,
                ledger_entry_id=existing.id,
                available_credits=self._available(repo, account),
            )
        if hold.status != HoldStatus.ACTIVE:
            raise InvalidHoldStateError(hold.status, "convert")

        # the hold already reserved its amount, so availability is unchanged
        available = self._available(repo, account)
        now = self.clock()
        hold.status = HoldStatus.CONVERTED
        hold.converted_at = now
        session.add(hold)
        entry = repo.add_entry(
            account_id=hold.account_id,
            entry_type=EntryType.DEBIT,
            amount=hold.amount,
            transaction_type=TransactionType.HOLD_CONVERSION,
            reference_type=ReferenceType.REQUEST,
            reference_id=hold.request_id,
            description=description or f"Hold conversion for request {hold.request_id}",
            performed_by=user_id,
            idempotency_key=key,
            created_at=now,
        )
        logger.info(
            "hold.converted",
            extra={
                "hold_id": str(hold.id),
                "ledger_entry_id": str(entry.id),
                "amount": hold.amount,
            },
        )
        return ConvertResult(
            hold_id=hold.id,
            amount=hold.amount,
            ledger_entry_id=entry.id,
            available_credits=available,
        )

    def direct_spend_in_tx(self, session: Session, params: DirectSpendParams) -> SpendResult:
        if params.transaction_type not in DEBIT_TRANSACTION_TYPES:
            raise InvalidTransactionTypeError(
                f"Transaction type {params.transaction_type.value} is not a debit type"
            )
        self._require_positive(params.amount)
        repo = LedgerRepository(session)
        account = self._lock_account(repo, params.account_id)

        request_signature = (
            EntryType.DEBIT,
            params.amount,
            params.transaction_type,
            params.reference_type,
            params.reference_id,
        )
        replay = self._check_replay(
            repo, params.account_id, params.idempotency_key, request_signature
        )
        if replay is not None:
            logger.info(
                "idempotent.spend.hit",
                extra={
                    "account_id": str(params.account_id),
                    "idempotency_key": params.idempotency_key,
                },
            )
            return SpendResult(
                ledger_entry_id=replay.id,
                amount=replay.amount,
                available_credits=self._available(repo, account),
            )

        available = self._available(repo, account)
        if available < params.amount:
            raise InsufficientCreditsError(available=available, required=params.amount)

        entry = repo.add_entry(
            account_id=params.account_id,
            entry_type=EntryType.DEBIT,
            amount=params.amount,
            transaction_type=params.transaction_type,
            reference_type=params.reference_type,
            reference_id=params.reference_id,
            description=params.description,
            performed_by=params.user_id,
            idempotency_key=params.idempotency_key,
            created_at=self.clock(),
        )
        logger.info(
            "ledger.spend",
            extra={
                "account_id": str(params.account_id),
                "ledger_entry_id": str(entry.id),
                "amount": params.amount,
                "transaction_type": params.transaction_type.value,
            },
        )
        return SpendResult(
            ledger_entry_id=entry.id,
            amount=entry.amount,
            available_credits=available - params.amount,
        )

    def record_credit_in_tx(self, session: Session, params: RecordCreditParams) -> CreditResult:
        if params.transaction_type not in CREDIT_TRANSACTION_TYPES:
            raise InvalidTransactionTypeError(
                f"Transaction type {params.transaction_type.value} is not a credit type"
            )
        self._require_positive(params.amount)
        repo = LedgerRepository(session)
        account = self._lock_account(repo, params.account_id)

        request_signature = (
            EntryType.CREDIT,
            params.amount,
            params.transaction_type,
            params.reference_type,
            params.reference_id,
        )
        replay = self._check_replay(
            repo, params.account_id, params.idempotency_key, request_signature
        )
        if replay is not None:
            logger.info(
                "idempotent.credit.hit",
                extra={
                    "account_id": str(params.account_id),
                    "idempotency_key": params.idempotency_key,
                },
            )
            return CreditResult(
                ledger_entry_id=replay.id,
                amount=replay.amount,
                available_credits=self._available(repo, account),
            )

        available = self._available(repo, account)
        entry = repo.add_entry(
            account_id=params.account_id,
            entry_type=EntryType.CREDIT,
            amount=params.amount,
            transaction_type=params.transaction_type,
            reference_type=params.reference_type,
            reference_id=params.reference_id,
            description=params.description,
            performed_by=params.user_id,
            idempotency_key=params.idempotency_key,
            created_at=self.clock(),
        )
        logger.info(
            "ledger.credit",
            extra={
                "account_id": str(params.account_id),
                "ledger_entry_id": str(entry.id),
                "amount": params.amount,
                "transaction_type": params.transaction_type.value,
            },
        )
        return CreditResult(
            ledger_entry_id=entry.id,
            amount=entry.amount,
            available_credits=available + params.amount,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_hold(
        self,
        account_id: UUID,
        request_id: UUID,
        amount: int,
        idempotency_key: Optional[str] = None,
    ) -> HoldResult:
        return self.store.run_in_transaction(
            lambda session: self.create_hold_in_tx(
                session, account_id, request_id, amount, idempotency_key
            )
        )

    def release_hold(self, hold_id: UUID) -> ReleaseResult:
        def work(session: Session) -> ReleaseResult:
            hold = LedgerRepository(session).lock_hold(hold_id)
            if hold is None:
                raise HoldNotFoundError(f"Hold {hold_id} not found")
            return self.release_locked_hold(session, hold)

        return self.store.run_in_transaction(work)

    def convert_hold(self, hold_id: UUID, user_id: Optional[UUID]) -> ConvertResult:
        def work(session: Session) -> ConvertResult:
            hold = LedgerRepository(session).lock_hold(hold_id)
            if hold is None:
                raise HoldNotFoundError(f"Hold {hold_id} not found")
            return self.convert_locked_hold(session, hold, user_id)

        return self.store.run_in_transaction(work)

    def direct_spend(self, params: DirectSpendParams) -> SpendResult:
        return self.store.run_in_transaction(
            lambda session: self.direct_spend_in_tx(session, params)
        )

    def record_credit(self, params: RecordCreditParams) -> CreditResult:
        return self.store.run_in_transaction(
            lambda session: self.record_credit_in_tx(session, params)
        )

    def get_account(self, account_id: UUID) -> AccountRead:
        with self.store.session() as session:
            account = LedgerRepository(session).get_account(account_id)
            if account is None:
                raise AccountNotFoundError(f"Account {account_id} not found")
            return AccountRead.model_validate(account)

    def get_account_for_user(self, user_id: UUID) -> Optional[AccountRead]:
        with self.store.session() as session:
            account = LedgerRepository(session).find_account_for_user(user_id)
            if account is None:
                return None
            return AccountRead.model_validate(account)

    def get_balance(self, account_id: UUID) -> Optional[Balance]:
        with self.store.session() as session:
            repo = LedgerRepository(session)
            account = repo.get_account(account_id)
            if account is None:
                return None
            return self._balance(repo, account)

    def get_transactions(
        self, account_id: UUID, query: Optional[TransactionQuery] = None
    ) -> TransactionsPage:
        query = query or TransactionQuery()
        limit = min(query.limit, MAX_TRANSACTIONS_PAGE)
        with self.store.session() as session:
            repo = LedgerRepository(session)
            if repo.get_account(account_id) is None:
                raise AccountNotFoundError(f"Account {account_id} not found")
            entries, total = repo.list_entries(
                account_id,
                limit=limit,
                offset=query.offset,
                start_date=query.start_date,
                end_date=query.end_date,
                transaction_type=query.transaction_type,
            )
            return TransactionsPage(
                entries=[LedgerEntryRead.model_validate(entry) for entry in entries],
                total=total,
                has_more=query.offset + len(entries) < total,
            )

    def get_active_holds(self, account_id: UUID) -> list[HoldRead]:
        with self.store.session() as session:
            holds = LedgerRepository(session).list_active_holds(account_id)
            return [HoldRead.model_validate(hold) for hold in holds]

    def get_hold_by_id(self, hold_id: UUID) -> Optional[HoldRead]:
        with self.store.session() as session:
            hold = LedgerRepository(session).get_hold(hold_id)
            if hold is None:
                return None
            return HoldRead.model_validate(hold)
