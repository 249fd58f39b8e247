from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlmodel import Session
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import get_settings
from ..core.errors import DuplicateRequestError, TransientStoreError


logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})
_UNIQUE_VIOLATION_SQLSTATE = "23505"


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_transient(exc: BaseException) -> bool:
    """Serialization failures, deadlocks and a busy SQLite file."""
    if not isinstance(exc, DBAPIError):
        return False
    if _sqlstate(exc) in _TRANSIENT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(exc.orig)


def is_unique_violation(exc: BaseException) -> bool:
    if not isinstance(exc, IntegrityError):
        return False
    if _sqlstate(exc) == _UNIQUE_VIOLATION_SQLSTATE:
        return True
    return "UNIQUE constraint failed" in str(exc.orig)


class Store:
    """Owns the engine and the single write primitive every engine uses."""

    def __init__(
        self,
        engine: Engine,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.engine = engine
        self.max_attempts = max_attempts or settings.tx_max_attempts
        self.backoff_seconds = (
            settings.tx_backoff_seconds if backoff_seconds is None else backoff_seconds
        )

    def session(self) -> Session:
        return Session(self.engine)

    def run_in_transaction(self, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` in one transaction and commit, retrying transient failures.

        ``fn`` may be invoked more than once, so it must not have side effects
        outside the session. Anything it raises other than a transient
        database error aborts the transaction and propagates unchanged.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=2),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    return self._run_once(fn)
        except DBAPIError as exc:
            if is_transient(exc):
                logger.error(
                    "store.transaction.exhausted",
                    extra={"attempts": self.max_attempts},
                )
                raise TransientStoreError(
                    f"Transaction failed after {self.max_attempts} attempts"
                ) from exc
            raise
        raise TransientStoreError("Transaction did not run")

    def _run_once(self, fn: Callable[[Session], T]) -> T:
        with Session(self.engine) as session:
            try:
                result = fn(session)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if is_unique_violation(exc):
                    raise DuplicateRequestError(
                        "Request conflicts with an existing record"
                    ) from exc
                raise
            except BaseException:
                session.rollback()
                raise
            return result
