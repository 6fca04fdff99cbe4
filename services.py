from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from analytics import ZERO, AggregateResult, RecordBatch, aggregate, parse_records
from insights import Insight, generate
from limits import (
    EvaluationMode,
    LatchTransition,
    LimitCheck,
    LimitConfig,
    evaluate,
    limit_config_from_rows,
)
from models import ExpenseLimit, LimitScope, LimitState, Transaction, TransactionType
from periods import (
    DateLike,
    Window,
    current_month_window,
    local_now,
    resolve_window,
    select_window,
    shift_months,
    to_local_naive,
)
from schemas import CategoryLimitIn, MonthlyLimitIn, TransactionIn

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class TransactionNotFound(ValueError):
    pass


class LimitNotFound(ValueError):
    pass


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount=data.amount,
            category=data.category.strip(),
            description=data.description,
            date=to_local_naive(data.date) if data.date else local_now(),
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} "
            f"type={txn.type.value} amount={txn.amount}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise TransactionNotFound("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        txn.type = data.type
        txn.amount = data.amount
        txn.category = data.category.strip()
        txn.description = data.description
        if data.date is not None:
            txn.date = to_local_naive(data.date)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")

    def list(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        txn_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if start is not None:
            stmt = stmt.where(Transaction.date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.date <= end)
        if txn_type is not None:
            stmt = stmt.where(Transaction.type == txn_type)
        if category is not None:
            stmt = stmt.where(Transaction.category == category)
        if newest_first:
            stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        else:
            stmt = stmt.order_by(Transaction.date.asc(), Transaction.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit).offset(offset)
        return list(self.session.scalars(stmt).all())

    def recent(self, limit: int = 5) -> list[Transaction]:
        return self.list(limit=limit)

    def categories(
        self, txn_type: TransactionType = TransactionType.expense
    ) -> list[str]:
        stmt = (
            select(Transaction.category)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == txn_type,
                Transaction.category != "",
            )
            .group_by(Transaction.category)
            .order_by(func.min(Transaction.id))
        )
        return list(self.session.scalars(stmt).all())

    def records(
        self,
        window: Optional[Window] = None,
        *,
        txn_type: Optional[TransactionType] = None,
    ) -> RecordBatch:
        rows = self.list(
            start=window.start if window else None,
            end=window.end if window else None,
            txn_type=txn_type,
            newest_first=False,
        )
        return parse_records(rows)


class LimitService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _rows(self, *, for_update: bool = False) -> list[ExpenseLimit]:
        stmt = (
            select(ExpenseLimit)
            .where(ExpenseLimit.user_id == self.user_id)
            .order_by(ExpenseLimit.id.asc())
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.scalars(stmt).all())

    def _get_row(self, scope: LimitScope, name: str = "") -> Optional[ExpenseLimit]:
        return self.session.scalar(
            select(ExpenseLimit).where(
                ExpenseLimit.user_id == self.user_id,
                ExpenseLimit.scope == scope,
                ExpenseLimit.category_name == name,
            )
        )

    def _monthly_row(self) -> ExpenseLimit:
        row = self._get_row(LimitScope.monthly)
        if row is None:
            row = ExpenseLimit(
                user_id=self.user_id,
                scope=LimitScope.monthly,
                category_name="",
                amount=ZERO,
                state=LimitState.armed,
            )
            self.session.add(row)
            self.session.flush()
        return row

    def get_config(self) -> LimitConfig:
        self._monthly_row()
        self.session.commit()
        config, _ = limit_config_from_rows(self._rows())
        return config or LimitConfig()

    def set_monthly(self, data: MonthlyLimitIn) -> LimitConfig:
        row = self._monthly_row()
        row.amount = data.amount
        # any edit re-arms, even to the same amount
        row.state = LimitState.armed
        self.session.commit()
        logger.info(
            f"limit_updated: user_id={self.user_id} scope=monthly amount={data.amount}"
        )
        return self.get_config()

    def _known_categories(self) -> list[str]:
        known = TransactionService(self.session, self.user_id).categories()
        for row in self._rows():
            if row.scope == LimitScope.category and row.category_name not in known:
                known.append(row.category_name)
        return known

    def resolve_category_name(self, name: str) -> str:
        """Reuse the stored spelling of a category that differs only in case."""
        cleaned = name.strip()
        input_lower = cleaned.lower()
        for candidate in self._known_categories():
            if candidate.lower() == input_lower:
                return candidate
        return cleaned

    def suggest_category(self, name: str) -> Optional[str]:
        """Return the single known category one edit away from ``name``.

        Only a hint for the caller; limit names are never rewritten to it.
        """
        input_lower = name.strip().lower()
        best_distance: Optional[int] = None
        best: list[str] = []
        for candidate in self._known_categories():
            if candidate.lower() == input_lower:
                return None
            dist = int(Levenshtein.distance(input_lower, candidate.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [candidate]
            elif dist == best_distance:
                best.append(candidate)

        if best_distance == 1 and len(best) == 1:
            return best[0]
        return None

    def upsert_category(self, data: CategoryLimitIn) -> LimitConfig:
        name = self.resolve_category_name(data.name)
        row = self._get_row(LimitScope.category, name)
        if row is None:
            row = ExpenseLimit(
                user_id=self.user_id,
                scope=LimitScope.category,
                category_name=name,
            )
            self.session.add(row)
        row.amount = data.amount
        row.state = LimitState.armed
        self.session.commit()
        logger.info(
            f"limit_updated: user_id={self.user_id} scope=category "
            f"category={name!r} amount={data.amount}"
        )
        return self.get_config()

    def delete_category(self, name: str) -> LimitConfig:
        row = self._get_row(LimitScope.category, name.strip())
        if row is None:
            raise LimitNotFound("Category limit not found")
        self.session.delete(row)
        self.session.commit()
        logger.info(f"limit_deleted: user_id={self.user_id} category={name!r}")
        return self.get_config()

    def _compare_and_set(self, transition: LatchTransition) -> bool:
        limit = transition.limit
        result = self.session.execute(
            update(ExpenseLimit)
            .where(
                ExpenseLimit.id == limit.id,
                ExpenseLimit.user_id == self.user_id,
                ExpenseLimit.state == limit.state,
                ExpenseLimit.amount == limit.amount,
            )
            .values(state=transition.to_state)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def check(
        self,
        mode: Union[EvaluationMode, str] = EvaluationMode.live,
        *,
        now: Optional[datetime] = None,
    ) -> LimitCheck:
        mode = EvaluationMode(mode)
        latched = mode == EvaluationMode.latched
        batch = TransactionService(self.session, self.user_id).records(
            current_month_window(now), txn_type=TransactionType.expense
        )
        config, skipped = limit_config_from_rows(self._rows(for_update=latched))
        result = evaluate(batch.records, config, mode, skipped_limits=skipped)
        if not latched or not result.transitions:
            return result

        released = []
        for transition in result.transitions:
            if not self._compare_and_set(transition):
                # another check already moved this latch
                logger.info(
                    f"limit_latch_conflict: user_id={self.user_id} "
                    f"limit_id={transition.limit.id}"
                )
                continue
            if transition.notification is not None:
                released.append(transition.notification)
        self.session.commit()
        return replace(result, notifications=released)


def check_all_users(session: Session) -> int:
    """Run the latched check for every user with an active limit."""
    user_ids = session.scalars(
        select(ExpenseLimit.user_id)
        .where(ExpenseLimit.amount > 0)
        .group_by(ExpenseLimit.user_id)
        .order_by(ExpenseLimit.user_id)
    ).all()
    sent = 0
    for user_id in user_ids:
        result = LimitService(session, user_id).check(EvaluationMode.latched)
        for notification in result.notifications:
            logger.info(
                f"limit_notification: user_id={user_id} "
                f"type={notification.type.value} category={notification.category} "
                f"limit={notification.limit} current={notification.current}"
            )
        sent += len(result.notifications)
    return sent


@dataclass(frozen=True)
class AnalyticsSummary:
    window: Window
    result: AggregateResult
    insights: list[Insight]
    errors: list[str] = field(default_factory=list)


class AnalyticsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.transactions = TransactionService(session, self.user_id)

    def previous_month_expense(self, now: datetime) -> Decimal:
        window = current_month_window(shift_months(now, -1))
        batch = self.transactions.records(window, txn_type=TransactionType.expense)
        return sum((txn.amount for txn in batch.records), ZERO)

    @staticmethod
    def covers_last_two_months(window: Window, now: datetime) -> bool:
        previous_start = current_month_window(shift_months(now, -1)).start
        current_end = current_month_window(now).end
        if window.start is not None and window.start > previous_start:
            return False
        if window.end is not None and window.end < current_end:
            return False
        return True

    def summary(
        self,
        period: Optional[str] = "month",
        start: DateLike = None,
        end: DateLike = None,
        *,
        now: Optional[datetime] = None,
    ) -> AnalyticsSummary:
        now = now or local_now()
        window = resolve_window(period, start, end, now=now)
        batch = self.transactions.records(window)
        records = select_window(batch.records, window)
        result = aggregate(records, now=now, skipped_records=batch.skipped)
        if self.covers_last_two_months(window, now):
            insights = generate(result, self.previous_month_expense(now))
        else:
            insights = generate(result, month_over_month=False)
        return AnalyticsSummary(
            window=window, result=result, insights=insights, errors=batch.errors
        )
