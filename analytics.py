from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from pydantic import ValidationError

from models import TransactionType
from periods import local_now, month_index, to_local_naive
from schemas import TransactionRecord

logger = logging.getLogger(__name__)

NO_EXPENSES_LABEL = "No Expenses"
UNCATEGORIZED_LABEL = "Uncategorized"
TREND_MONTHS = 6
MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)
WEEKDAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
ZERO = Decimal("0")


class MalformedRecord(ValueError):
    pass


@dataclass(frozen=True)
class RecordBatch:
    records: list[TransactionRecord]
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MonthlyTrend:
    months: tuple[tuple[int, int], ...]
    labels: tuple[str, ...]
    income: tuple[Decimal, ...]
    expense: tuple[Decimal, ...]


@dataclass(frozen=True)
class DailySpending:
    labels: tuple[str, ...]
    amounts: tuple[Decimal, ...]
    has_data: bool


@dataclass(frozen=True)
class AggregateResult:
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    # First-seen order. Holds only the "No Expenses" sentinel when
    # has_expenses is False.
    category_breakdown: dict[str, Decimal]
    has_expenses: bool
    monthly_trend: MonthlyTrend
    daily_spending: DailySpending
    skipped_records: int = 0

    @property
    def savings_rate(self) -> Optional[Decimal]:
        if self.total_income <= 0:
            return None
        return self.balance / self.total_income * 100


def field_value(row: object, name: str) -> object:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def parse_amount(value: object) -> Decimal:
    if value is None or isinstance(value, bool):
        raise MalformedRecord("Missing amount")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise MalformedRecord(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise MalformedRecord(f"Invalid amount: {value!r}")
    if amount < 0:
        raise MalformedRecord("Amount must be positive")
    return amount


def parse_timestamp(value: object) -> Optional[datetime]:
    """Best-effort date parsing; unparseable values become ``None``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_local_naive(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_local_naive(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_record(row: object) -> TransactionRecord:
    raw_type = field_value(row, "type")
    if isinstance(raw_type, TransactionType):
        txn_type = raw_type
    else:
        try:
            txn_type = TransactionType(str(raw_type).strip().lower())
        except ValueError as exc:
            raise MalformedRecord(f"Invalid type: {raw_type!r}") from exc

    category = field_value(row, "category")
    description = field_value(row, "description")
    try:
        return TransactionRecord(
            id=field_value(row, "id"),
            type=txn_type,
            amount=parse_amount(field_value(row, "amount")),
            category=str(category).strip() if category is not None else "",
            description=str(description) if description is not None else None,
            date=parse_timestamp(field_value(row, "date")),
        )
    except ValidationError as exc:
        raise MalformedRecord(str(exc)) from exc


def parse_records(rows: Iterable[object]) -> RecordBatch:
    records: list[TransactionRecord] = []
    errors: list[str] = []
    for idx, row in enumerate(rows, start=1):
        try:
            records.append(parse_record(row))
        except MalformedRecord as exc:
            errors.append(f"Row {idx}: {exc}")
    if errors:
        logger.warning(
            f"records_skipped: count={len(errors)} first_error={errors[0]!r}"
        )
    return RecordBatch(records=records, skipped=len(errors), errors=errors)


def trend_months(now: datetime) -> list[tuple[int, int]]:
    first = month_index(now) - (TREND_MONTHS - 1)
    months: list[tuple[int, int]] = []
    for idx in range(first, first + TREND_MONTHS):
        year, month0 = divmod(idx, 12)
        months.append((year, month0 + 1))
    return months


def aggregate(
    transactions: Iterable[TransactionRecord],
    *,
    now: Optional[datetime] = None,
    skipped_records: int = 0,
) -> AggregateResult:
    now = now or local_now()
    first_bucket = month_index(now) - (TREND_MONTHS - 1)

    total_income = ZERO
    total_expense = ZERO
    categories: dict[str, Decimal] = {}
    trend_income = [ZERO] * TREND_MONTHS
    trend_expense = [ZERO] * TREND_MONTHS
    weekday_totals = [ZERO] * 7
    dated_expenses = 0

    for txn in transactions:
        is_expense = txn.type == TransactionType.expense
        if is_expense:
            total_expense += txn.amount
            key = txn.category or UNCATEGORIZED_LABEL
            categories[key] = categories.get(key, ZERO) + txn.amount
        else:
            total_income += txn.amount

        if txn.date is None:
            continue
        offset = month_index(txn.date) - first_bucket
        if 0 <= offset < TREND_MONTHS:
            if is_expense:
                trend_expense[offset] += txn.amount
            else:
                trend_income[offset] += txn.amount
        if is_expense:
            # date.weekday() is Monday=0; buckets start on Sunday.
            weekday_totals[(txn.date.weekday() + 1) % 7] += txn.amount
            dated_expenses += 1

    has_expenses = bool(categories)
    if not has_expenses:
        categories = {NO_EXPENSES_LABEL: ZERO}

    months = trend_months(now)
    return AggregateResult(
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
        category_breakdown=categories,
        has_expenses=has_expenses,
        monthly_trend=MonthlyTrend(
            months=tuple(months),
            labels=tuple(MONTH_LABELS[month - 1] for _, month in months),
            income=tuple(trend_income),
            expense=tuple(trend_expense),
        ),
        daily_spending=DailySpending(
            labels=WEEKDAY_LABELS,
            amounts=tuple(weekday_totals),
            has_data=dated_expenses > 0,
        ),
        skipped_records=skipped_records,
    )
