from datetime import timedelta
from types import SimpleNamespace
from typing import Optional
from uuid import UUID, uuid4

import pytest
from sqlmodel import Session, SQLModel, select

from ..core.db import create_engine_for_url
from ..models import (
    ApprovalEventModel,
    ApprovalRequestModel,
    ApprovalRuleModel,
    CompanyModel,
    CreditAccountModel,
    CreditHoldModel,
    LedgerEntryModel,
    TeamMembershipModel,
    TeamModel,
    utcnow,
)
from ..models.enums import ApprovalLevel, TeamRole
from ..services import LedgerService, Scheduler, Store, WorkflowService


@pytest.fixture
def engine(tmp_path):
    test_engine = create_engine_for_url(f"sqlite:///{tmp_path / 'test.db'}")
    SQLModel.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def store(engine) -> Store:
    return Store(engine, max_attempts=3, backoff_seconds=0)


@pytest.fixture
def ledger(store: Store) -> LedgerService:
    return LedgerService(store)


@pytest.fixture
def workflow(store: Store, ledger: LedgerService) -> WorkflowService:
    return WorkflowService(store, ledger=ledger)


@pytest.fixture
def scheduler(store: Store, ledger: LedgerService) -> Scheduler:
    return Scheduler(store, ledger=ledger)


class Seeder:
    """Inserts the organization rows the engines read but never own."""

    def __init__(self, engine) -> None:
        self.engine = engine

    def _insert(self, row):
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            return row.id

    def company(self, name: str = "Acme") -> UUID:
        return self._insert(CompanyModel(name=name, slug=f"{name.lower()}-{uuid4().hex[:8]}"))

    def team(self, company_id: UUID, name: str = "Research") -> UUID:
        return self._insert(TeamModel(company_id=company_id, name=name))

    def member(
        self,
        team_id: UUID,
        role: TeamRole = TeamRole.MEMBER,
        user_id: Optional[UUID] = None,
    ) -> UUID:
        user_id = user_id or uuid4()
        self._insert(TeamMembershipModel(team_id=team_id, user_id=user_id, role=role))
        return user_id

    def account(
        self,
        company_id: UUID,
        total_credits: int = 10000,
        bonus_credits: int = 2000,
        days_left: int = 30,
    ) -> UUID:
        today = utcnow().date()
        return self._insert(
            CreditAccountModel(
                company_id=company_id,
                subscription_tier="professional",
                total_credits=total_credits,
                bonus_credits=bonus_credits,
                subscription_start=today - timedelta(days=335),
                subscription_end=today + timedelta(days=days_left),
            )
        )

    def rule(
        self,
        company_id: UUID,
        min_credits: int,
        max_credits: Optional[int],
        approver_role: ApprovalLevel,
        escalation_hours: Optional[int] = None,
        priority: int = 0,
        is_active: bool = True,
    ) -> UUID:
        return self._insert(
            ApprovalRuleModel(
                company_id=company_id,
                min_credits=min_credits,
                max_credits=max_credits,
                approver_role=approver_role,
                escalation_hours=escalation_hours,
                priority=priority,
                is_active=is_active,
            )
        )


@pytest.fixture
def seed(engine) -> Seeder:
    return Seeder(engine)


@pytest.fixture
def world(seed: Seeder) -> SimpleNamespace:
    """One company, one team with a member, an approver and an admin, and a
    10000 + 2000 credit account."""
    company_id = seed.company()
    team_id = seed.team(company_id)
    requester_id = seed.member(team_id, TeamRole.MEMBER)
    approver_id = seed.member(team_id, TeamRole.APPROVER)
    admin_id = seed.member(team_id, TeamRole.ADMIN)
    account_id = seed.account(company_id)
    return SimpleNamespace(
        company_id=company_id,
        team_id=team_id,
        requester_id=requester_id,
        approver_id=approver_id,
        admin_id=admin_id,
        account_id=account_id,
    )


class Inspector:
    """Read-only helpers; every call opens and closes its own session."""

    def __init__(self, engine) -> None:
        self.engine = engine

    def _all(self, stmt):
        with Session(self.engine) as session:
            rows = list(session.exec(stmt))
            for row in rows:
                session.expunge(row)
            return rows

    def entries(self, account_id: UUID) -> list[LedgerEntryModel]:
        return self._all(
            select(LedgerEntryModel).where(LedgerEntryModel.account_id == account_id)
        )

    def holds(self, request_id: UUID) -> list[CreditHoldModel]:
        return self._all(select(CreditHoldModel).where(CreditHoldModel.request_id == request_id))

    def requests(self) -> list[ApprovalRequestModel]:
        return self._all(select(ApprovalRequestModel))

    def events(self, request_id: UUID) -> list[ApprovalEventModel]:
        return self._all(
            select(ApprovalEventModel)
            .where(ApprovalEventModel.request_id == request_id)
            .order_by(ApprovalEventModel.created_at)
        )

    def all_events(self) -> list[ApprovalEventModel]:
        return self._all(select(ApprovalEventModel))


@pytest.fixture
def inspect(engine) -> Inspector:
    return Inspector(engine)
