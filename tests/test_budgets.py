from datetime import date, datetime

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from errors import NotFound, ValidationFailed
from models import BudgetScope, Currency, GoalStatus, Transaction, TransactionType, User
from schemas import BudgetIn, GoalIn, GoalUpdate
from services import BudgetService, GoalService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def add_user(session, user_id: int = 1) -> None:
    session.add(User(id=user_id, first_name="Noa", last_name="Bar", birthday=date(1993, 3, 3)))
    session.commit()


def add_expense(session, when: datetime, category: str, amount: float) -> None:
    session.add(
        Transaction(
            userid=1,
            type=TransactionType.expense,
            category=category,
            sum=amount,
            description=category,
            created_at=when,
        )
    )
    session.commit()


def test_budget_upsert_updates_existing_scope():
    session = make_session()
    add_user(session)
    service = BudgetService(session)

    first = service.upsert(BudgetIn(userid=1, year=2025, month=3, type="total", amount=2000))
    again = service.upsert(
        BudgetIn(userid=1, year=2025, month=3, type="total", amount=2500, currency="USD")
    )
    food = service.upsert(
        BudgetIn(userid=1, year=2025, month=3, type="category", category="Food", amount=600)
    )

    assert again.id == first.id
    assert again.amount == 2500
    assert again.currency == Currency.USD
    assert food.category == "food"
    assert [b.type for b in service.list_for_user(1, 2025, 3)] == [
        BudgetScope.category,
        BudgetScope.total,
    ]


def test_budget_input_rules():
    with pytest.raises(ValidationError):
        BudgetIn(userid=1, year=2025, month=3, type="category", amount=10)
    with pytest.raises(ValidationError):
        BudgetIn(userid=1, year=2025, month=3, type="category", category="salary", amount=10)
    with pytest.raises(ValidationError):
        BudgetIn(userid=1, year=1999, month=3, type="total", amount=10)
    with pytest.raises(ValidationError):
        BudgetIn(userid=1, year=2025, month=3, type="weekly", amount=10)
    total = BudgetIn(userid=1, year=2025, month=3, type="total", category="food", amount=10)
    assert total.category is None


def test_budget_for_unknown_user():
    session = make_session()
    with pytest.raises(NotFound):
        BudgetService(session).upsert(
            BudgetIn(userid=9, year=2025, month=3, type="total", amount=1)
        )


def test_budget_status_tracks_spending_in_month():
    session = make_session()
    add_user(session)
    add_expense(session, datetime(2025, 3, 1, 0, 0), "food", 150)
    add_expense(session, datetime(2025, 3, 31, 23, 59, 59), "food", 100)
    add_expense(session, datetime(2025, 3, 12, 9), "housing", 900)
    add_expense(session, datetime(2025, 4, 1, 0, 0), "food", 500)
    service = BudgetService(session)
    service.upsert(BudgetIn(userid=1, year=2025, month=3, type="total", amount=2000))
    service.upsert(BudgetIn(userid=1, year=2025, month=3, type="category", category="food", amount=200))
    service.upsert(BudgetIn(userid=1, year=2025, month=3, type="category", category="health", amount=0))

    status = service.status(1, 2025, 3)

    assert status["total"] == {
        "allocated": 2000,
        "spent": 1150,
        "remaining": 850,
        "percentage_used": 57.5,
    }
    assert status["categories"] == [
        {"category": "food", "allocated": 200, "spent": 250, "remaining": -50, "percentage_used": 125.0},
        {"category": "health", "allocated": 0, "spent": 0.0, "remaining": 0, "percentage_used": 0.0},
    ]


def test_budget_status_without_budgets():
    session = make_session()
    add_user(session)
    status = BudgetService(session).status(1, 2025, 3)
    assert status["total"] is None
    assert status["categories"] == []
    with pytest.raises(ValidationFailed):
        BudgetService(session).status(1, 2025, 13)


def test_delete_budget():
    session = make_session()
    add_user(session)
    service = BudgetService(session)
    budget = service.upsert(BudgetIn(userid=1, year=2025, month=3, type="total", amount=5))
    service.delete(budget.id)
    assert service.list_for_user(1) == []
    with pytest.raises(NotFound):
        service.delete(budget.id)


def test_goal_lifecycle_and_progress():
    session = make_session()
    add_user(session)
    service = GoalService(session)

    goal = service.create(
        GoalIn(userid=1, title="  Emergency fund ", target_amount=1000, current_amount=250, category="Emergency_Fund")
    )
    assert goal.title == "Emergency fund"
    assert goal.category == "emergency_fund"
    assert goal.status == GoalStatus.active

    progress = service.progress(goal.id)
    assert progress["progress_percentage"] == 25.0
    assert progress["remaining"] == 750
    assert progress["is_completed"] is False

    service.update(goal.id, GoalUpdate(current_amount=1200, status="completed"))
    progress = service.progress(goal.id)
    assert progress["progress_percentage"] == 100.0
    assert progress["remaining"] == 0
    assert progress["is_completed"] is True
    assert progress["status"] == "completed"

    assert service.list_for_user(1, GoalStatus.active) == []
    assert [g.id for g in service.list_for_user(1)] == [goal.id]

    service.delete(goal.id)
    with pytest.raises(NotFound):
        service.progress(goal.id)


def test_goal_update_only_touches_sent_fields():
    session = make_session()
    add_user(session)
    service = GoalService(session)
    goal = service.create(
        GoalIn(userid=1, title="Bike", target_amount=900, deadline=date(2026, 5, 1))
    )

    updated = service.update(goal.id, GoalUpdate(deadline=None))
    assert updated.deadline is None
    assert updated.target_amount == 900
    assert updated.title == "Bike"

    with pytest.raises(ValidationError):
        GoalUpdate(status=None)
    with pytest.raises(ValidationError):
        GoalUpdate(category="cinema")
    with pytest.raises(ValidationFailed):
        service.update(goal.id, GoalUpdate(title="   "))


def test_goal_with_zero_target():
    session = make_session()
    add_user(session)
    service = GoalService(session)
    goal = service.create(GoalIn(userid=1, title="Nothing", target_amount=0))
    progress = service.progress(goal.id)
    assert progress["progress_percentage"] == 0.0
    assert progress["is_completed"] is True
