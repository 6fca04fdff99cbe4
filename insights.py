from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from analytics import NO_EXPENSES_LABEL, AggregateResult

SAVINGS_TARGET_PCT = Decimal("20")
TREND_THRESHOLD = Decimal("0.1")


class InsightSeverity(str, Enum):
    info = "info"
    warning = "warning"
    success = "success"


@dataclass(frozen=True)
class Insight:
    title: str
    body: str
    severity: InsightSeverity


def _top_category(result: AggregateResult) -> Optional[Insight]:
    if not result.category_breakdown:
        return None
    # max() keeps the first of equal entries, like the breakdown order
    name, amount = max(result.category_breakdown.items(), key=lambda kv: kv[1])
    if amount <= 0 or name == NO_EXPENSES_LABEL:
        return None
    return Insight(
        title="Highest Spending Category",
        body=(
            f"Your highest spending is in {name} ({amount:,.2f}). Consider "
            "reviewing these expenses to identify potential savings."
        ),
        severity=InsightSeverity.warning,
    )


def _savings_rate(result: AggregateResult) -> Optional[Insight]:
    rate = result.savings_rate
    if rate is None:
        return None
    if rate < SAVINGS_TARGET_PCT:
        return Insight(
            title="Low Savings Rate",
            body=(
                f"Your current savings rate is {rate:.1f}%. Aim to save at least "
                f"{SAVINGS_TARGET_PCT}% of your income by increasing income or "
                "reducing expenses."
            ),
            severity=InsightSeverity.warning,
        )
    return Insight(
        title="Healthy Savings Rate",
        body=(
            f"Great job! Your savings rate is {rate:.1f}%, which meets or exceeds "
            f"the recommended {SAVINGS_TARGET_PCT}%. Keep it up!"
        ),
        severity=InsightSeverity.success,
    )


def _month_over_month(
    result: AggregateResult, previous_month_expense: Optional[Decimal]
) -> Optional[Insight]:
    expenses = result.monthly_trend.expense
    if len(expenses) < 2:
        return None
    current = expenses[-1]
    previous = (
        expenses[-2] if previous_month_expense is None else previous_month_expense
    )
    if previous <= 0:
        return None

    change = (current - previous) / previous
    if change > TREND_THRESHOLD:
        return Insight(
            title="Spending Increase",
            body=(
                f"Your spending has increased by {change * 100:.1f}% compared to "
                "last month. Review your recent expenses to understand what changed."
            ),
            severity=InsightSeverity.warning,
        )
    if -change > TREND_THRESHOLD:
        return Insight(
            title="Spending Decrease",
            body=(
                f"Your spending has decreased by {-change * 100:.1f}% compared to "
                "last month. Great job controlling your expenses!"
            ),
            severity=InsightSeverity.success,
        )
    return None


def generate(
    result: AggregateResult,
    previous_month_expense: Optional[Decimal] = None,
    *,
    month_over_month: bool = True,
) -> list[Insight]:
    """Derive insights from an aggregate.

    ``previous_month_expense`` overrides the second-to-last trend bucket as
    the month-over-month baseline. Pass ``month_over_month=False`` when the
    aggregate does not hold both whole months.
    """
    found = [
        insight
        for insight in (
            _top_category(result),
            _savings_rate(result),
            _month_over_month(result, previous_month_expense)
            if month_over_month
            else None,
        )
        if insight is not None
    ]
    if not found:
        found.append(
            Insight(
                title="Getting Started",
                body=(
                    "Add more transactions to get personalized financial "
                    "insights based on your spending patterns."
                ),
                severity=InsightSeverity.info,
            )
        )
    return found
