from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from analytics import NO_EXPENSES_LABEL
from database import Base
from models import TransactionType
from periods import InvalidRange, date_bounds, resolve_window
from schemas import TransactionIn
from services import AnalyticsService, TransactionNotFound, TransactionService

NOW = datetime(2025, 3, 15, 12, 0)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _add(service, txn_type, amount, category, moment):
    return service.create(
        TransactionIn(
            type=txn_type, amount=Decimal(amount), category=category, date=moment
        )
    )


def test_create_update_delete_roundtrip() -> None:
    with _session() as session:
        service = TransactionService(session)
        txn = _add(service, TransactionType.expense, "12.5", " Groceries ", NOW)
        assert txn.category == "Groceries"
        assert txn.amount == Decimal("12.50")

        updated = service.update(
            txn.id,
            TransactionIn(type=TransactionType.income, amount=Decimal("20"), date=None),
        )
        assert updated.type == TransactionType.income
        assert updated.date == NOW

        service.delete(txn.id)
        with pytest.raises(TransactionNotFound):
            service.get(txn.id)


def test_other_users_transactions_are_not_found() -> None:
    with _session() as session:
        txn = _add(
            TransactionService(session, 2), TransactionType.expense, "5", "X", NOW
        )
        with pytest.raises(TransactionNotFound):
            TransactionService(session, 1).get(txn.id)


def test_list_filters_and_orders() -> None:
    with _session() as session:
        service = TransactionService(session)
        old = _add(service, TransactionType.expense, "1", "A", datetime(2025, 1, 1))
        mid = _add(service, TransactionType.income, "2", "B", datetime(2025, 2, 1))
        new = _add(service, TransactionType.expense, "3", "A", datetime(2025, 3, 1))

        assert [t.id for t in service.list()] == [new.id, mid.id, old.id]
        assert [t.id for t in service.recent(2)] == [new.id, mid.id]
        assert [t.id for t in service.list(txn_type=TransactionType.expense)] == [
            new.id,
            old.id,
        ]
        assert [t.id for t in service.list(start=datetime(2025, 2, 1))] == [
            new.id,
            mid.id,
        ]
        assert service.categories() == ["A"]


def test_records_respect_the_window() -> None:
    with _session() as session:
        service = TransactionService(session)
        _add(service, TransactionType.expense, "1", "A", datetime(2025, 2, 28, 23, 59))
        _add(service, TransactionType.expense, "2", "A", datetime(2025, 3, 1))

        batch = service.records(resolve_window("month", now=NOW))
        assert batch.skipped == 0
        assert [r.amount for r in batch.records] == [Decimal("2.00")]


def test_summary_for_an_empty_store() -> None:
    with _session() as session:
        summary = AnalyticsService(session).summary("month", now=NOW)

        assert summary.window.slug == "month"
        assert summary.result.category_breakdown == {NO_EXPENSES_LABEL: 0}
        assert summary.result.has_expenses is False
        assert [i.title for i in summary.insights] == ["Getting Started"]


def test_summary_for_the_current_month() -> None:
    with _session() as session:
        service = TransactionService(session)
        _add(service, TransactionType.expense, "400", "Rent", datetime(2025, 2, 3))
        _add(service, TransactionType.income, "500", "Salary", datetime(2025, 3, 1))
        _add(service, TransactionType.income, "300", "Side", datetime(2025, 3, 2))
        _add(service, TransactionType.expense, "200", "Food", datetime(2025, 3, 3))

        analytics = AnalyticsService(session)
        assert analytics.previous_month_expense(NOW) == Decimal("400")

        summary = analytics.summary("month", now=NOW)
        result = summary.result
        assert result.total_income == Decimal("800")
        assert result.total_expense == Decimal("200")
        assert result.balance == Decimal("600")
        assert result.category_breakdown == {"Food": Decimal("200")}
        titles = [i.title for i in summary.insights]
        assert "Healthy Savings Rate" in titles
        # the month view alone cannot compare against February
        assert "Spending Decrease" not in titles

        summary = analytics.summary("3months", now=NOW)
        titles = [i.title for i in summary.insights]
        assert "Spending Decrease" in titles


def test_summary_all_includes_everything() -> None:
    with _session() as session:
        service = TransactionService(session)
        _add(service, TransactionType.expense, "10", "A", datetime(2020, 5, 1))
        _add(service, TransactionType.expense, "5", "B", datetime(2025, 3, 1))

        summary = AnalyticsService(session).summary("all", now=NOW)
        assert summary.result.total_expense == Decimal("15")
        assert summary.window.start is None


def test_summary_rejects_incomplete_custom_range() -> None:
    with _session() as session:
        with pytest.raises(InvalidRange):
            AnalyticsService(session).summary("custom", "2025-03-01", None, now=NOW)


def test_past_custom_range_skips_month_over_month() -> None:
    with _session() as session:
        service = TransactionService(session)
        _add(service, TransactionType.expense, "100", "Rent", datetime(2025, 2, 10))
        _add(service, TransactionType.expense, "500", "Rent", datetime(2025, 3, 10))

        summary = AnalyticsService(session).summary(
            "custom", "2025-02-01", "2025-02-28", now=NOW
        )
        titles = [i.title for i in summary.insights]
        assert summary.result.total_expense == Decimal("100")
        assert "Spending Decrease" not in titles
        assert "Spending Increase" not in titles


def test_aware_dates_are_stored_in_local_time() -> None:
    with _session() as session:
        service = TransactionService(session)
        eastern = timezone(timedelta(hours=-5))
        txn = _add(
            service,
            TransactionType.expense,
            "10",
            "Late",
            datetime(2025, 2, 28, 23, 30, tzinfo=eastern),
        )
        # Europe/Berlin is UTC+1 in winter
        assert txn.date == datetime(2025, 3, 1, 5, 30)

        service.update(
            txn.id,
            TransactionIn(
                type=TransactionType.expense,
                amount=Decimal("10"),
                category="Late",
                date=datetime(2025, 3, 1, 4, 0, tzinfo=timezone.utc),
            ),
        )
        assert service.get(txn.id).date == datetime(2025, 3, 1, 5, 0)

        summary = AnalyticsService(session).summary("month", now=NOW)
        assert summary.result.total_expense == Decimal("10")


def test_list_filters_by_category_and_inclusive_days() -> None:
    with _session() as session:
        service = TransactionService(session)
        expense = TransactionType.expense
        food = _add(service, expense, "1", "Food", datetime(2025, 3, 2, 22))
        _add(service, expense, "2", "Rent", datetime(2025, 3, 2, 9))
        _add(service, expense, "3", "Food", datetime(2025, 3, 3, 0, 0))

        bounds = date_bounds("2025-03-01", "2025-03-02")
        listed = service.list(start=bounds.start, end=bounds.end, category="Food")
        assert [t.id for t in listed] == [food.id]
