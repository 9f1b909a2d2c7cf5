from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from errors import NotFound, ValidationFailed
from models import Transaction, TransactionType, User
from services import AnalyticsService


class FixedClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def now(self) -> datetime:
        return self.moment


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def seed(session):
    session.add(User(id=1, first_name="Dana", last_name="Levi", birthday=date(1988, 8, 8)))
    session.add(User(id=2, first_name="Omer", last_name="Katz", birthday=date(1991, 1, 1)))
    rows = [
        (datetime(2025, 1, 5, 9), TransactionType.income, "salary", 1000, 1),
        (datetime(2025, 1, 10, 9), TransactionType.expense, "food", 200, 1),
        (datetime(2025, 2, 1, 0, 0), TransactionType.income, "salary", 1200, 1),
        (datetime(2025, 2, 28, 23, 59, 59), TransactionType.expense, "food", 100, 1),
        (datetime(2025, 2, 14, 12), TransactionType.expense, "housing", 300, 1),
        (datetime(2024, 12, 31, 23, 59, 59), TransactionType.expense, "health", 50, 1),
        (datetime(2025, 2, 3, 9), TransactionType.expense, "sports", 999, 2),
    ]
    for when, txn_type, category, amount, userid in rows:
        session.add(
            Transaction(
                userid=userid,
                type=txn_type,
                category=category,
                sum=amount,
                description=category,
                created_at=when,
            )
        )
    session.commit()


def test_summary_counts_and_averages():
    session = make_session()
    seed(session)
    summary = AnalyticsService(session).summary(1)

    assert summary["total_income"] == 2200
    assert summary["total_expenses"] == 650
    assert summary["balance"] == 1550
    assert (summary["income_count"], summary["expense_count"]) == (2, 4)
    assert summary["transaction_count"] == 6
    assert summary["average_income_per_transaction"] == 1100
    assert summary["average_expense_per_transaction"] == 162.5


def test_summary_without_transactions_is_zero():
    session = make_session()
    session.add(User(id=3, first_name="A", last_name="B", birthday=date(2000, 1, 1)))
    session.commit()
    summary = AnalyticsService(session).summary(3)
    assert summary["balance"] == 0
    assert summary["average_expense_per_transaction"] == 0


def test_trends_cover_twelve_months_and_default_to_clock_year():
    session = make_session()
    seed(session)
    service = AnalyticsService(session, clock=FixedClock(datetime(2025, 6, 18, 12)))

    result = service.trends(1)
    assert result["year"] == 2025
    trends = result["trends"]
    assert [row["month"] for row in trends] == list(range(1, 13))
    assert trends[0] == {"month": 1, "year": 2025, "income": 1000, "expenses": 200, "balance": 800}
    assert trends[1]["expenses"] == 400
    assert all(row["income"] == 0 and row["expenses"] == 0 for row in trends[2:])

    december = service.trends(1, 2024)["trends"][11]
    assert december["expenses"] == 50


def test_categories_breakdown_sorted_by_sum():
    session = make_session()
    seed(session)
    service = AnalyticsService(session)

    result = service.categories(1, TransactionType.expense)
    assert result["type"] == "expense"
    assert result["total"] == 650
    assert [row["category"] for row in result["breakdown"]] == [
        "food",
        "housing",
        "health",
    ]
    food = result["breakdown"][0]
    assert (food["sum"], food["count"], food["percentage"]) == (300, 2, 46.15)

    february = service.categories(1, year=2025, month=2)
    assert february["type"] == "all"
    assert [row["category"] for row in february["breakdown"]] == [
        "salary",
        "housing",
        "food",
    ]


def test_categories_needs_year_and_month_together():
    session = make_session()
    seed(session)
    with pytest.raises(ValidationFailed):
        AnalyticsService(session).categories(1, year=2025)


def test_comparison_against_previous_month():
    session = make_session()
    seed(session)
    result = AnalyticsService(session).comparison(1, 2025, 1)

    assert result["previous_month"] == {
        "year": 2024,
        "month": 12,
        "income": 0,
        "expenses": 50,
        "balance": -50,
    }
    assert result["current_month"]["balance"] == 800
    assert result["changes"] == {
        "income_change_percentage": 100.0,
        "expense_change_percentage": 300.0,
        "balance_change_percentage": 1700.0,
    }


def test_yearly_breakdown():
    session = make_session()
    seed(session)
    result = AnalyticsService(session).yearly(1, 2025)

    assert result["summary"] == {
        "total_income": 2200,
        "total_expenses": 600,
        "balance": 1600,
        "transaction_count": 5,
    }
    assert result["monthly_breakdown"][1]["transactions"] == 3
    assert result["category_breakdown"]["food"] == {"income": 0, "expenses": 300}
    assert result["category_breakdown"]["salary"] == {"income": 2200, "expenses": 0}
    assert "sports" not in result["category_breakdown"]


def test_analytics_validates_before_looking_up_user():
    session = make_session()
    service = AnalyticsService(session)
    with pytest.raises(ValidationFailed):
        service.comparison(1, 2025, 13)
    with pytest.raises(ValidationFailed):
        service.yearly(1, 0)
    with pytest.raises(NotFound):
        service.summary(404)


def test_trends_for_last_representable_year():
    session = make_session()
    seed(session)
    result = AnalyticsService(session).trends(1, 9999)
    assert result["trends"][11] == {
        "month": 12,
        "year": 9999,
        "income": 0,
        "expenses": 0,
        "balance": 0,
    }
