from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import NotFound, ValidationFailed
from models import (
    Budget,
    BudgetScope,
    Goal,
    GoalStatus,
    LogLevel,
    RequestLog,
    Transaction,
    TransactionType,
    User,
)
from periods import Clock, Period, SystemClock
from reports import MAX_YEAR, MIN_YEAR
from schemas import BudgetIn, GoalIn, GoalUpdate, TransactionIn, UserIn

logger = logging.getLogger(__name__)

MAX_LOG_ROWS = 1000


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[User]:
        return list(self.session.scalars(select(User).order_by(User.id)))

    def exists(self, user_id: int) -> bool:
        return self.session.get(User, user_id) is not None

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def create(self, data: UserIn) -> User:
        conditions = [User.id == data.id]
        if data.email:
            conditions.append(User.email == data.email)
        clash = self.session.scalar(select(User).where(or_(*conditions)).limit(1))
        if clash:
            if clash.id == data.id:
                raise ValidationFailed(f"User with id {data.id} already exists")
            raise ValidationFailed("Email is already registered")

        user = User(
            id=data.id,
            first_name=data.first_name,
            last_name=data.last_name,
            birthday=data.birthday,
            email=data.email,
            phone_number=data.phone_number,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationFailed("User already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user

    def totals(self, user_id: int) -> dict[str, object]:
        user = self.get(user_id)
        income_sum = func.coalesce(
            func.sum(
                case((Transaction.type == TransactionType.income, Transaction.sum))
            ),
            0,
        )
        expense_sum = func.coalesce(
            func.sum(
                case((Transaction.type == TransactionType.expense, Transaction.sum))
            ),
            0,
        )
        total_income, total_expenses = self.session.execute(
            select(income_sum, expense_sum).where(Transaction.userid == user_id)
        ).one()
        total_income = float(total_income or 0)
        total_expenses = float(total_expenses or 0)
        return {
            "id": user.id,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "total": total_expenses,
            "total_income": total_income,
            "total_expenses": total_expenses,
            "balance": total_income - total_expenses,
        }


class TransactionService:
    def __init__(self, session: Session, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or SystemClock()

    def create(self, data: TransactionIn) -> Transaction:
        if not UserService(self.session).exists(data.userid):
            raise NotFound("User not found")

        now = self.clock.now()
        created_at = data.created_at or now
        if created_at < now:
            raise ValidationFailed("Cannot add transactions with dates in the past")

        txn = Transaction(
            userid=data.userid,
            type=data.type,
            category=data.category,
            sum=data.sum,
            description=data.description,
            created_at=created_at,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} user={txn.userid} "
            f"type={txn.type.value} category={txn.category}"
        )
        return txn

    def list_for_user(
        self, user_id: int, txn_type: Optional[TransactionType] = None
    ) -> list[Transaction]:
        UserService(self.session).get(user_id)
        stmt = select(Transaction).where(Transaction.userid == user_id)
        if txn_type:
            stmt = stmt.where(Transaction.type == txn_type)
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        return list(self.session.scalars(stmt))


class RequestLogService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self,
        method: str,
        endpoint: str,
        status_code: Optional[int],
        *,
        userid: Optional[int] = None,
        duration_ms: Optional[float] = None,
    ) -> RequestLog:
        failed = status_code is None or status_code >= 400
        message = f"{method} {endpoint} - Response {status_code}"
        if duration_ms is not None:
            message += f" ({duration_ms:.0f}ms)"
        entry = RequestLog(
            message=message,
            level=LogLevel.error if failed else LogLevel.info,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            userid=userid,
            duration_ms=duration_ms,
            timestamp=datetime.utcnow(),
        )
        self.session.add(entry)
        self.session.commit()
        return entry

    def recent(self, limit: int = MAX_LOG_ROWS) -> list[RequestLog]:
        limit = min(max(limit, 1), MAX_LOG_ROWS)
        stmt = (
            select(RequestLog)
            .order_by(RequestLog.timestamp.desc(), RequestLog.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def purge_older_than(self, cutoff: datetime) -> int:
        result = self.session.execute(
            delete(RequestLog).where(RequestLog.timestamp < cutoff)
        )
        self.session.commit()
        return int(result.rowcount or 0)


def _check_year(year: int) -> int:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationFailed(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")
    return year


def _checked_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValidationFailed("Month must be between 1 and 12")
    _check_year(year)
    return Period(year, month)


def _year_window(year: int) -> tuple[datetime, datetime]:
    return Period(year, 1).window()[0], Period(year, 12).window()[1]


def _percent(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _change(current: float, previous: float) -> float:
    if previous > 0:
        return round((current - previous) / previous * 100, 2)
    return 100.0 if current > 0 else 0.0


def _balance_change(current: float, previous: float) -> float:
    if previous:
        return round((current - previous) / abs(previous) * 100, 2)
    if current > 0:
        return 100.0
    return -100.0 if current < 0 else 0.0


class AnalyticsService:
    """Totals, monthly trends and category breakdowns over a user's transactions."""

    def __init__(self, session: Session, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or SystemClock()

    def _totals_by_type(
        self, user_id: int, window: Optional[tuple[datetime, datetime]] = None
    ) -> dict[TransactionType, tuple[float, int]]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.sum), 0),
                func.count(Transaction.id),
            )
            .where(Transaction.userid == user_id)
            .group_by(Transaction.type)
        )
        if window:
            stmt = stmt.where(Transaction.created_at.between(*window))
        return {
            txn_type: (float(total or 0), int(count))
            for txn_type, total, count in self.session.execute(stmt)
        }

    def _monthly_totals(
        self, user_id: int, year: int
    ) -> dict[tuple[int, TransactionType], tuple[float, int]]:
        stmt = (
            select(
                func.strftime("%m", Transaction.created_at).label("month"),
                Transaction.type,
                func.coalesce(func.sum(Transaction.sum), 0),
                func.count(Transaction.id),
            )
            .where(
                Transaction.userid == user_id,
                Transaction.created_at.between(*_year_window(year)),
            )
            .group_by("month", Transaction.type)
        )
        return {
            (int(month), txn_type): (float(total or 0), int(count))
            for month, txn_type, total, count in self.session.execute(stmt)
        }

    def _flow(self, user_id: int, period: Period) -> dict[str, float]:
        totals = self._totals_by_type(user_id, period.window())
        income = totals.get(TransactionType.income, (0.0, 0))[0]
        expenses = totals.get(TransactionType.expense, (0.0, 0))[0]
        return {"income": income, "expenses": expenses, "balance": income - expenses}

    def summary(self, user_id: int) -> dict[str, object]:
        UserService(self.session).get(user_id)
        totals = self._totals_by_type(user_id)
        income, income_count = totals.get(TransactionType.income, (0.0, 0))
        expenses, expense_count = totals.get(TransactionType.expense, (0.0, 0))
        return {
            "userid": user_id,
            "total_income": income,
            "total_expenses": expenses,
            "balance": income - expenses,
            "transaction_count": income_count + expense_count,
            "income_count": income_count,
            "expense_count": expense_count,
            "average_income_per_transaction": (
                round(income / income_count, 2) if income_count else 0.0
            ),
            "average_expense_per_transaction": (
                round(expenses / expense_count, 2) if expense_count else 0.0
            ),
        }

    def trends(self, user_id: int, year: Optional[int] = None) -> dict[str, object]:
        year = _check_year(year if year is not None else self.clock.now().year)
        UserService(self.session).get(user_id)
        monthly = self._monthly_totals(user_id, year)
        trends = []
        for month in range(1, 13):
            income = monthly.get((month, TransactionType.income), (0.0, 0))[0]
            expenses = monthly.get((month, TransactionType.expense), (0.0, 0))[0]
            trends.append(
                {
                    "month": month,
                    "year": year,
                    "income": income,
                    "expenses": expenses,
                    "balance": income - expenses,
                }
            )
        return {"userid": user_id, "year": year, "trends": trends}

    def categories(
        self,
        user_id: int,
        txn_type: Optional[TransactionType] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> dict[str, object]:
        if (year is None) != (month is None):
            raise ValidationFailed("year and month must be given together")
        window = _checked_period(year, month).window() if year is not None else None
        UserService(self.session).get(user_id)

        stmt = (
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.sum), 0),
                func.count(Transaction.id),
            )
            .where(Transaction.userid == user_id)
            .group_by(Transaction.category)
        )
        if txn_type:
            stmt = stmt.where(Transaction.type == txn_type)
        if window:
            stmt = stmt.where(Transaction.created_at.between(*window))
        rows = [
            (category, float(total or 0), int(count))
            for category, total, count in self.session.execute(stmt)
        ]
        total = sum(row[1] for row in rows)
        rows.sort(key=lambda row: (-row[1], row[0]))
        return {
            "userid": user_id,
            "type": txn_type.value if txn_type else "all",
            "total": total,
            "breakdown": [
                {
                    "category": category,
                    "sum": amount,
                    "count": count,
                    "percentage": _percent(amount, total),
                }
                for category, amount, count in rows
            ],
        }

    def comparison(self, user_id: int, year: int, month: int) -> dict[str, object]:
        period = _checked_period(year, month)
        if period == Period(MIN_YEAR, 1):
            raise ValidationFailed(f"No month precedes {period.label()}")
        UserService(self.session).get(user_id)
        previous = period.previous()
        current_flow = self._flow(user_id, period)
        previous_flow = self._flow(user_id, previous)
        return {
            "userid": user_id,
            "current_month": {"year": period.year, "month": period.month, **current_flow},
            "previous_month": {
                "year": previous.year,
                "month": previous.month,
                **previous_flow,
            },
            "changes": {
                "income_change_percentage": _change(
                    current_flow["income"], previous_flow["income"]
                ),
                "expense_change_percentage": _change(
                    current_flow["expenses"], previous_flow["expenses"]
                ),
                "balance_change_percentage": _balance_change(
                    current_flow["balance"], previous_flow["balance"]
                ),
            },
        }

    def yearly(self, user_id: int, year: int) -> dict[str, object]:
        _check_year(year)
        UserService(self.session).get(user_id)
        monthly = self._monthly_totals(user_id, year)

        months = []
        total_income = total_expenses = 0.0
        transaction_count = 0
        for month in range(1, 13):
            income, income_count = monthly.get((month, TransactionType.income), (0.0, 0))
            expenses, expense_count = monthly.get(
                (month, TransactionType.expense), (0.0, 0)
            )
            months.append(
                {
                    "month": month,
                    "income": income,
                    "expenses": expenses,
                    "transactions": income_count + expense_count,
                    "balance": income - expenses,
                }
            )
            total_income += income
            total_expenses += expenses
            transaction_count += income_count + expense_count

        stmt = (
            select(
                Transaction.category,
                Transaction.type,
                func.coalesce(func.sum(Transaction.sum), 0),
            )
            .where(
                Transaction.userid == user_id,
                Transaction.created_at.between(*_year_window(year)),
            )
            .group_by(Transaction.category, Transaction.type)
        )
        by_category: dict[str, dict[str, float]] = {}
        for category, txn_type, total in self.session.execute(stmt):
            entry = by_category.setdefault(category, {"income": 0.0, "expenses": 0.0})
            key = "income" if txn_type == TransactionType.income else "expenses"
            entry[key] += float(total or 0)

        return {
            "userid": user_id,
            "year": year,
            "summary": {
                "total_income": total_income,
                "total_expenses": total_expenses,
                "balance": total_income - total_expenses,
                "transaction_count": transaction_count,
            },
            "monthly_breakdown": months,
            "category_breakdown": by_category,
        }


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert(self, data: BudgetIn) -> Budget:
        UserService(self.session).get(data.userid)
        stmt = select(Budget).where(
            Budget.userid == data.userid,
            Budget.year == data.year,
            Budget.month == data.month,
            Budget.type == data.type,
            Budget.category.is_(None)
            if data.category is None
            else Budget.category == data.category,
        )
        existing = self.session.scalar(stmt)
        if existing:
            existing.amount = data.amount
            existing.currency = data.currency
            self.session.commit()
            self.session.refresh(existing)
            logger.info(f"budget_updated: id={existing.id} amount={existing.amount}")
            return existing

        budget = Budget(
            userid=data.userid,
            year=data.year,
            month=data.month,
            type=data.type,
            category=data.category,
            amount=data.amount,
            currency=data.currency,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: id={budget.id} user={budget.userid} "
            f"period={budget.year:04d}-{budget.month:02d} type={budget.type.value}"
        )
        return budget

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget:
            raise NotFound("Budget not found")
        return budget

    def list_for_user(
        self, user_id: int, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[Budget]:
        UserService(self.session).get(user_id)
        stmt = select(Budget).where(Budget.userid == user_id)
        if year is not None:
            stmt = stmt.where(Budget.year == year)
        if month is not None:
            stmt = stmt.where(Budget.month == month)
        stmt = stmt.order_by(
            Budget.year.desc(), Budget.month.desc(), Budget.type, Budget.category
        )
        return list(self.session.scalars(stmt))

    def delete(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: id={budget_id}")
        return budget

    def spent_by_category_for_month(
        self, user_id: int, period: Period
    ) -> dict[Optional[str], float]:
        stmt = (
            select(Transaction.category, func.coalesce(func.sum(Transaction.sum), 0))
            .where(
                Transaction.userid == user_id,
                Transaction.type == TransactionType.expense,
                Transaction.created_at.between(*period.window()),
            )
            .group_by(Transaction.category)
        )
        spent: dict[Optional[str], float] = {
            category: float(total or 0) for category, total in self.session.execute(stmt)
        }
        # None holds the month's total across categories.
        spent[None] = sum(spent.values())
        return spent

    def status(self, user_id: int, year: int, month: int) -> dict[str, object]:
        period = _checked_period(year, month)
        budgets = self.list_for_user(user_id, year, month)
        spent = self.spent_by_category_for_month(user_id, period)

        total: Optional[dict[str, float]] = None
        categories = []
        for budget in budgets:
            used = spent.get(budget.category, 0.0)
            entry = {
                "allocated": budget.amount,
                "spent": used,
                "remaining": budget.amount - used,
                "percentage_used": _percent(used, budget.amount),
            }
            if budget.type == BudgetScope.total:
                total = entry
            else:
                categories.append({"category": budget.category, **entry})
        return {
            "userid": user_id,
            "year": year,
            "month": month,
            "total": total,
            "categories": categories,
        }


class GoalService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: GoalIn) -> Goal:
        UserService(self.session).get(data.userid)
        goal = Goal(**data.model_dump())
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(f"goal_created: id={goal.id} user={goal.userid}")
        return goal

    def get(self, goal_id: int) -> Goal:
        goal = self.session.get(Goal, goal_id)
        if not goal:
            raise NotFound("Goal not found")
        return goal

    def list_for_user(
        self, user_id: int, status: Optional[GoalStatus] = None
    ) -> list[Goal]:
        UserService(self.session).get(user_id)
        stmt = select(Goal).where(Goal.userid == user_id)
        if status:
            stmt = stmt.where(Goal.status == status)
        stmt = stmt.order_by(Goal.created_at.desc(), Goal.id.desc())
        return list(self.session.scalars(stmt))

    def update(self, goal_id: int, data: GoalUpdate) -> Goal:
        goal = self.get(goal_id)
        changes = data.model_dump(exclude_unset=True)
        if "title" in changes:
            changes["title"] = changes["title"].strip()
            if not changes["title"]:
                raise ValidationFailed("title must not be blank")
        for name, value in changes.items():
            setattr(goal, name, value)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(f"goal_updated: id={goal.id} fields={sorted(changes)}")
        return goal

    def delete(self, goal_id: int) -> Goal:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()
        logger.info(f"goal_deleted: id={goal_id}")
        return goal

    def progress(self, goal_id: int) -> dict[str, object]:
        goal = self.get(goal_id)
        target, current = goal.target_amount, goal.current_amount
        return {
            "goal_id": goal.id,
            "title": goal.title,
            "current_amount": current,
            "target_amount": target,
            "progress_percentage": min(_percent(current, target), 100.0),
            "remaining": max(target - current, 0.0),
            "status": goal.status.value,
            "is_completed": current >= target,
        }
