from datetime import date, datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from errors import NotFound, ValidationFailed
from models import LogLevel, RequestLog, TransactionType
from scheduler import SchedulerManager
from schemas import TransactionIn, UserIn
from services import RequestLogService, TransactionService, UserService
from tokens import issue_token, read_token, user_id_from_header


class FixedClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def now(self) -> datetime:
        return self.moment


def make_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_user(session, user_id: int = 1, email=None):
    return UserService(session).create(
        UserIn(
            id=user_id,
            first_name="Jane",
            last_name="Roe",
            birthday=date(1992, 4, 2),
            email=email,
        )
    )


def test_create_user_rejects_duplicate_id_and_email():
    session = make_factory()()
    make_user(session, 1, email="jane@example.com")

    with pytest.raises(ValidationFailed, match="already exists"):
        make_user(session, 1)
    with pytest.raises(ValidationFailed, match="Email"):
        make_user(session, 2, email="JANE@example.com")


def test_user_input_validation():
    with pytest.raises(ValidationError):
        UserIn(id=3, first_name=" ", last_name="Roe", birthday=date(1990, 1, 1))
    with pytest.raises(ValidationError):
        UserIn(
            id=3,
            first_name="A",
            last_name="B",
            birthday=date(1990, 1, 1),
            phone_number="0501234567",
        )
    user = UserIn(
        id=3,
        first_name="A",
        last_name="B",
        birthday=date(1990, 1, 1),
        phone_number="050-1234567",
    )
    assert user.phone_number == "050-1234567"


def test_get_unknown_user_raises_not_found():
    session = make_factory()()
    with pytest.raises(NotFound):
        UserService(session).get(42)


def test_transaction_requires_existing_user():
    session = make_factory()()
    service = TransactionService(session, clock=FixedClock(datetime(2025, 6, 1, 9)))
    with pytest.raises(NotFound):
        service.create(TransactionIn(userid=5, category="food", sum=3, description="Tea"))


def test_transaction_defaults_to_now_and_rejects_past_dates():
    session = make_factory()()
    make_user(session)
    clock = FixedClock(datetime(2025, 6, 1, 9, 0))
    service = TransactionService(session, clock=clock)

    txn = service.create(
        TransactionIn(userid=1, category="Food", sum=3, description="Tea")
    )
    assert txn.created_at == clock.moment
    assert txn.category == "food"
    assert txn.type == TransactionType.expense

    with pytest.raises(ValidationFailed, match="past"):
        service.create(
            TransactionIn(
                userid=1,
                category="food",
                sum=3,
                description="Yesterday's tea",
                created_at=datetime(2025, 5, 31, 9, 0),
            )
        )


def test_category_must_match_transaction_type():
    with pytest.raises(ValidationError):
        TransactionIn(userid=1, category="salary", sum=10, description="x")
    with pytest.raises(ValidationError):
        TransactionIn(
            userid=1, type=TransactionType.income, category="food", sum=10, description="x"
        )
    with pytest.raises(ValidationError):
        TransactionIn(userid=1, category="food", sum=-1, description="x")
    ok = TransactionIn(
        userid=1, type=TransactionType.income, category="Freelance", sum=10, description="x"
    )
    assert ok.category == "freelance"


def test_user_totals_cover_all_transactions():
    session = make_factory()()
    make_user(session)
    clock = FixedClock(datetime(2025, 6, 1, 9, 0))
    txns = TransactionService(session, clock=clock)
    txns.create(TransactionIn(userid=1, type=TransactionType.income, category="salary", sum=2000, description="Pay"))
    txns.create(TransactionIn(userid=1, category="housing", sum=800, description="Rent"))
    clock.moment = datetime(2025, 7, 3, 9, 0)
    txns.create(TransactionIn(userid=1, category="food", sum=45.5, description="Market"))

    totals = UserService(session).totals(1)
    assert totals == {
        "id": 1,
        "first_name": "Jane",
        "last_name": "Roe",
        "total": 845.5,
        "total_income": 2000.0,
        "total_expenses": 845.5,
        "balance": 1154.5,
    }
    assert [t.description for t in txns.list_for_user(1)] == ["Market", "Rent", "Pay"]
    assert len(txns.list_for_user(1, TransactionType.income)) == 1


def test_user_totals_without_transactions_are_zero():
    session = make_factory()()
    make_user(session)
    totals = UserService(session).totals(1)
    assert totals["total"] == 0
    assert totals["balance"] == 0


def test_request_log_levels_and_order():
    session = make_factory()()
    logs = RequestLogService(session)
    logs.record("GET", "/api/report", 200, userid=1, duration_ms=3.2)
    logs.record("GET", "/api/report", 404, userid=999)

    newest, oldest = logs.recent()
    assert newest.status_code == 404
    assert newest.level == LogLevel.error
    assert oldest.level == LogLevel.info
    assert oldest.message == "GET /api/report - Response 200 (3ms)"


def test_log_retention_job_purges_old_rows():
    factory = make_factory()
    session = factory()
    session.add_all(
        [
            RequestLog(
                message="old",
                level=LogLevel.info,
                endpoint="/api/logs",
                method="GET",
                timestamp=datetime.utcnow() - timedelta(days=90),
            ),
            RequestLog(
                message="fresh",
                level=LogLevel.info,
                endpoint="/api/logs",
                method="GET",
                timestamp=datetime.utcnow(),
            ),
        ]
    )
    session.commit()

    manager = SchedulerManager(session_factory=factory)
    manager.retention_days = 30
    assert manager._run_job("test") == 1
    assert [entry.message for entry in RequestLogService(factory()).recent()] == ["fresh"]


def test_tokens_round_trip_and_reject_tampering():
    token = issue_token(7)
    assert read_token(token) == 7
    assert user_id_from_header(f"Bearer {token}") == 7
    assert user_id_from_header(token) is None
    assert read_token(token[:-2] + "xx") is None
    assert read_token(issue_token(7, max_age_hours=-1)) is None
