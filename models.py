from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class ExpenseCategory(str, Enum):
    food = "food"
    health = "health"
    housing = "housing"
    sports = "sports"
    education = "education"


class IncomeCategory(str, Enum):
    salary = "salary"
    freelance = "freelance"
    investment = "investment"
    business = "business"
    gift = "gift"
    other = "other"


CATEGORIES_BY_TYPE: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.expense: tuple(c.value for c in ExpenseCategory),
    TransactionType.income: tuple(c.value for c in IncomeCategory),
}


class BudgetScope(str, Enum):
    total = "total"
    category = "category"


class Currency(str, Enum):
    ILS = "ILS"
    USD = "USD"
    EUR = "EUR"


class GoalStatus(str, Enum):
    active = "active"
    completed = "completed"
    paused = "paused"


GOAL_CATEGORIES: tuple[str, ...] = (
    CATEGORIES_BY_TYPE[TransactionType.expense]
    + CATEGORIES_BY_TYPE[TransactionType.income]
    + ("savings", "debt_payment", "emergency_fund")
)


class LogLevel(str, Enum):
    info = "info"
    error = "error"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    birthday: Mapped[date] = mapped_column(Date, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(254), unique=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="user"
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    userid: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    sum: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Naive local time in the configured timezone; decides the report period.
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_created", "userid", "created_at"),
        Index("ix_transactions_user_type_created", "userid", "type", "created_at"),
        CheckConstraint("sum >= 0", name="ck_transactions_sum_positive"),
    )


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        UniqueConstraint("userid", "year", "month", name="uq_report_user_month"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_report_month_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    userid: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    saved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class RequestLog(Base):
    __tablename__ = "request_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[LogLevel] = mapped_column(SAEnum(LogLevel), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(200), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[Optional[int]] = mapped_column(Integer)
    userid: Mapped[Optional[int]] = mapped_column(Integer)
    duration_ms: Mapped[Optional[float]] = mapped_column(Float)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_request_logs_timestamp", "timestamp"),
        Index("ix_request_logs_endpoint", "endpoint"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    userid: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[BudgetScope] = mapped_column(SAEnum(BudgetScope), nullable=False)
    # Null for the whole-month total.
    category: Mapped[Optional[str]] = mapped_column(String(40))
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[Currency] = mapped_column(
        SAEnum(Currency), nullable=False, default=Currency.ILS
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_budgets_amount_positive"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_budgets_month_range"),
        UniqueConstraint(
            "userid", "year", "month", "type", "category", name="uq_budget_scope_month"
        ),
        Index("ix_budgets_user_month", "userid", "year", "month"),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    userid: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    target_amount: Mapped[float] = mapped_column(Float, nullable=False)
    current_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    deadline: Mapped[Optional[date]] = mapped_column(Date)
    category: Mapped[Optional[str]] = mapped_column(String(40))
    currency: Mapped[Currency] = mapped_column(
        SAEnum(Currency), nullable=False, default=Currency.ILS
    )
    status: Mapped[GoalStatus] = mapped_column(
        SAEnum(GoalStatus), nullable=False, default=GoalStatus.active
    )

    __table_args__ = (
        CheckConstraint("target_amount >= 0", name="ck_goals_target_positive"),
        CheckConstraint("current_amount >= 0", name="ck_goals_current_positive"),
        Index("ix_goals_user_status", "userid", "status"),
        Index("ix_goals_user_deadline", "userid", "deadline"),
    )
