"""Pytest configuration: one SQLite file database per test."""

import os

# Set before any import from treasury so the global engine never touches a real database
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_BUREAU_CHAT_ID"] = ""

from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402

from treasury.models import (  # noqa: E402
    Association,
    AssociationMember,
    Base,
    LedgerEntry,
    LedgerEntryStatus,
)
from treasury.services import build_engine, build_session_factory  # noqa: E402
from treasury.services.events import EventBus  # noqa: E402
from treasury.services.expense_request_service import (  # noqa: E402
    ExpenseRequestService,
    RequestLockRegistry,
)
from treasury.services.loan_service import LoanService  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    """Async engine on a fresh SQLite file (separate connections per session)."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'treasury.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def users():
    """Member ids by role."""
    return SimpleNamespace(
        president=1,
        tresorier=2,
        secretaire=3,
        member=4,
        second_president=5,
        inactive=6,
        outsider=99,
    )


@pytest.fixture
async def association(session, users) -> Association:
    """Association with a full bureau, per-type rules and one capped subtype."""
    association = Association(
        name="Entraide Solidaire",
        currency="EUR",
        workflow_rules={
            "aide_membre": {"validators": ["president", "tresorier"]},
            "depense_operationnelle": {"validators": ["tresorier"]},
            "pret_partenariat": {"validators": ["president", "tresorier"]},
        },
        expense_types={
            "aide_membre": {"aide_mariage": {"max_amount": 300}, "aide_sante": {}},
            "depense_operationnelle": {},
            "pret_partenariat": {},
            "projet_special": {},
        },
    )
    session.add(association)
    await session.flush()
    for user_id, role, active in (
        (users.president, "president", True),
        (users.tresorier, "tresorier", True),
        (users.secretaire, "secretaire", True),
        (users.member, "membre", True),
        (users.second_president, "president", True),
        (users.inactive, "tresorier", False),
    ):
        session.add(
            AssociationMember(
                association_id=association.id, user_id=user_id, role=role, is_active=active
            )
        )
    await session.commit()
    return association


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def locks():
    return RequestLockRegistry()


@pytest.fixture
def service(session, bus, locks) -> ExpenseRequestService:
    return ExpenseRequestService(session, events=bus, locks=locks)


@pytest.fixture
def loan_service(session, bus, locks) -> LoanService:
    return LoanService(session, events=bus, locks=locks)


@pytest.fixture
def add_income(session, association):
    """Record a completed income entry (cotisation by default)."""

    async def _add(amount, type: str = "cotisation", status=LedgerEntryStatus.COMPLETED):
        entry = LedgerEntry(
            association_id=association.id,
            type=type,
            amount=Decimal(str(amount)),
            net_amount=Decimal(str(amount)),
            status=status,
        )
        session.add(entry)
        await session.commit()
        return entry

    return _add


@pytest.fixture
def approved_request(service, association, users):
    """Create an aide_membre request approved by president and treasurer."""

    async def _create(amount, title: str = "Aide obsèques", **kwargs):
        request = await service.create_request(
            association_id=association.id,
            requester_id=users.member,
            expense_type=kwargs.pop("expense_type", "aide_membre"),
            title=title,
            amount_requested=amount,
            **kwargs,
        )
        await service.decide(association.id, request.id, users.president, "approved")
        return await service.decide(association.id, request.id, users.tresorier, "approved")

    return _create


@pytest.fixture
def paid_loan(service, association, users):
    """Create and pay a loan of amount over duration_months."""

    async def _create(amount, duration_months: int = 12, **terms):
        request = await service.create_request(
            association_id=association.id,
            requester_id=users.president,
            expense_type="pret_partenariat",
            title="Prêt partenaire",
            amount_requested=amount,
            beneficiary_external={"name": "Coopérative du quartier"},
            is_loan=True,
            loan_terms={"duration_months": duration_months, "interest_rate": 0, **terms},
        )
        await service.decide(association.id, request.id, users.president, "approved")
        await service.decide(association.id, request.id, users.tresorier, "approved")
        return await service.confirm_payment(association.id, request.id, users.tresorier)

    return _create
