"""Monthly reports grouped by category, cached once a month has elapsed.

A report for a past month is computed at most once per user and stored in the
``reports`` table; later requests get the stored body back verbatim. The
current month (and any month that has not started yet) is always computed
from the live transactions and never stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from errors import NotFound, ServerError, ValidationFailed
from models import (
    CATEGORIES_BY_TYPE,
    Report,
    Transaction,
    TransactionType,
    User,
)
from periods import Clock, Period, PeriodState, SystemClock, classify_period

logger = logging.getLogger(__name__)

MIN_YEAR = 1
MAX_YEAR = 9999


@dataclass(frozen=True)
class ReportLayout:
    name: str
    expense_categories: tuple[str, ...]
    income_categories: tuple[str, ...]
    expense_fields: tuple[str, ...]
    include_summary: bool = False

    @property
    def tracks_income(self) -> bool:
        return bool(self.income_categories)


BASIC_LAYOUT = ReportLayout(
    name="basic",
    expense_categories=CATEGORIES_BY_TYPE[TransactionType.expense],
    income_categories=(),
    expense_fields=("costs",),
)

EXTENDED_LAYOUT = ReportLayout(
    name="extended",
    expense_categories=CATEGORIES_BY_TYPE[TransactionType.expense],
    income_categories=CATEGORIES_BY_TYPE[TransactionType.income],
    expense_fields=("expenses", "costs"),
    include_summary=True,
)

LAYOUTS = {layout.name: layout for layout in (BASIC_LAYOUT, EXTENDED_LAYOUT)}


def get_layout(name: Optional[str] = None) -> ReportLayout:
    name = name or get_settings().report_layout
    try:
        return LAYOUTS[name]
    except KeyError:
        raise ValueError(
            f"Unknown report layout {name!r}; expected one of {sorted(LAYOUTS)}"
        ) from None


def _bucket(
    categories: Sequence[str], entries: Iterable[Transaction]
) -> list[dict[str, list[dict[str, Any]]]]:
    by_category: dict[str, list[dict[str, Any]]] = {c: [] for c in categories}
    for txn in entries:
        items = by_category.get(txn.category)
        if items is None:
            continue
        items.append(
            {
                "sum": txn.sum,
                "description": txn.description,
                "day": txn.created_at.day,
            }
        )
    return [{category: by_category[category]} for category in categories]


def build_report(
    layout: ReportLayout,
    userid: int,
    year: int,
    month: int,
    transactions: Sequence[Transaction],
) -> dict[str, Any]:
    """Assemble the report body from the transactions of one month.

    Every category of the layout's vocabulary is present, in vocabulary
    order, even when it has no entries. Entries keep the order of
    ``transactions``.
    """
    expenses = [t for t in transactions if t.type == TransactionType.expense]
    body: dict[str, Any] = {"userid": userid, "year": year, "month": month}

    expense_buckets = _bucket(layout.expense_categories, expenses)
    for field in layout.expense_fields:
        body[field] = expense_buckets

    if layout.tracks_income:
        incomes = [t for t in transactions if t.type == TransactionType.income]
        body["income"] = _bucket(layout.income_categories, incomes)
        if layout.include_summary:
            total_income = sum(t.sum for t in incomes)
            total_expenses = sum(t.sum for t in expenses)
            body["summary"] = {
                "total_income": total_income,
                "total_expenses": total_expenses,
                "balance": total_income - total_expenses,
            }
    return body


class ReportGenerator:
    def __init__(self, session: Session, layout: ReportLayout) -> None:
        self.session = session
        self.layout = layout

    def transactions_for(self, userid: int, period: Period) -> list[Transaction]:
        start, end = period.window()
        stmt = (
            select(Transaction)
            .where(
                Transaction.userid == userid,
                Transaction.created_at.between(start, end),
            )
            .order_by(Transaction.created_at, Transaction.id)
        )
        return list(self.session.scalars(stmt))

    def generate(self, userid: int, year: int, month: int) -> dict[str, Any]:
        transactions = self.transactions_for(userid, Period(year, month))
        return build_report(self.layout, userid, year, month, transactions)


class ReportCache:
    """Decides between the stored report and a fresh computation."""

    def __init__(
        self, session: Session, generator: ReportGenerator, clock: Clock
    ) -> None:
        self.session = session
        self.generator = generator
        self.clock = clock

    def find(self, userid: int, year: int, month: int) -> Optional[Report]:
        return self.session.scalar(
            select(Report).where(
                Report.userid == userid,
                Report.year == year,
                Report.month == month,
            )
        )

    def store(self, userid: int, year: int, month: int, data: dict[str, Any]) -> bool:
        """Insert the report row; False when another writer got there first.

        The insert runs in a savepoint, so a lost race only discards the
        report row and leaves other pending work on the session intact.
        """
        row = Report(
            userid=userid,
            year=year,
            month=month,
            data=data,
            saved_at=self.clock.now(),
        )
        stored = True
        try:
            with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError:
            logger.info(
                f"report_cache_conflict: user={userid} period={year:04d}-{month:02d}"
            )
            stored = False
        self.session.commit()
        return stored

    def get(self, userid: int, year: int, month: int) -> dict[str, Any]:
        period = Period(year, month)
        state = classify_period(period, self.clock)
        if state != PeriodState.past:
            logger.info(
                f"report_on_the_fly: user={userid} period={period.label()} "
                f"state={state.value}"
            )
            return self.generator.generate(userid, year, month)

        cached = self.find(userid, year, month)
        if cached is not None:
            logger.info(f"report_cache_hit: user={userid} period={period.label()}")
            return cached.data

        logger.info(f"report_cache_miss: user={userid} period={period.label()}")
        data = self.generator.generate(userid, year, month)
        self.store(userid, year, month, data)
        return data


def _parse_int(raw: object, name: str) -> int:
    if isinstance(raw, bool):
        raise ValidationFailed(f"Invalid query parameter: {name} must be a number")
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationFailed(
            f"Invalid query parameter: {name} must be a number"
        ) from None


def _is_missing(raw: object) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


class ReportService:
    def __init__(
        self,
        session: Session,
        clock: Optional[Clock] = None,
        layout: Optional[ReportLayout] = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.layout = layout or get_layout()
        self.cache = ReportCache(
            session, ReportGenerator(session, self.layout), self.clock
        )

    def get_report(
        self, raw_userid: object, raw_year: object, raw_month: object
    ) -> dict[str, Any]:
        if any(_is_missing(raw) for raw in (raw_userid, raw_year, raw_month)):
            raise ValidationFailed(
                "Missing required parameters: id, year and month are required"
            )
        userid = _parse_int(raw_userid, "id")
        year = _parse_int(raw_year, "year")
        month = _parse_int(raw_month, "month")
        if not 1 <= month <= 12:
            raise ValidationFailed("Month must be between 1 and 12")
        if not MIN_YEAR <= year <= MAX_YEAR:
            raise ValidationFailed(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")

        try:
            if self.session.get(User, userid) is None:
                raise NotFound("User not found")
            return self.cache.get(userid, year, month)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                f"report_failed: user={userid} period={year:04d}-{month:02d}"
            )
            raise ServerError("Could not build the report") from exc
