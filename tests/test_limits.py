from decimal import Decimal

from limits import (
    EvaluationMode,
    LimitConfig,
    LimitSpec,
    evaluate,
    limit_config_from_rows,
    parse_limit_config,
)
from models import LimitScope, LimitState, TransactionType
from schemas import TransactionRecord


def _expense(amount, category="Food & Dining") -> TransactionRecord:
    return TransactionRecord(
        type=TransactionType.expense, amount=Decimal(amount), category=category
    )


def _monthly(amount, state=LimitState.armed) -> LimitSpec:
    return LimitSpec(scope=LimitScope.monthly, amount=Decimal(amount), state=state)


def _category(name, amount, state=LimitState.armed) -> LimitSpec:
    return LimitSpec(
        scope=LimitScope.category, amount=Decimal(amount), state=state, category=name
    )


def _persist(config: LimitConfig, result) -> LimitConfig:
    """Apply latch transitions the way the service would."""
    moved = {id(t.limit): t.to_state for t in result.transitions}

    def apply(limit):
        if id(limit) in moved:
            return LimitSpec(
                scope=limit.scope,
                amount=limit.amount,
                state=moved[id(limit)],
                category=limit.category,
            )
        return limit

    return LimitConfig(
        monthly=apply(config.monthly) if config.monthly else None,
        categories=tuple(apply(c) for c in config.categories),
    )


def test_monthly_breach_notifies_once_per_episode() -> None:
    config = LimitConfig(monthly=_monthly("1000"))
    spending = [_expense("700"), _expense("500", "Rent")]

    first = evaluate(spending, config, EvaluationMode.latched)
    assert first.exceeded is True
    assert len(first.notifications) == 1
    notification = first.notifications[0]
    assert notification.type == LimitScope.monthly
    assert notification.limit == Decimal("1000")
    assert notification.current == Decimal("1200")
    assert [t.to_state for t in first.transitions] == [LimitState.breached]

    config = _persist(config, first)
    assert config.monthly.notified is True

    second = evaluate(spending, config, EvaluationMode.latched)
    assert second.notifications == []
    assert second.transitions == []


def test_live_mode_reports_every_breach_and_never_moves_the_latch() -> None:
    config = LimitConfig(
        monthly=_monthly("1000", LimitState.breached),
        categories=(_category("Food & Dining", "100"),),
    )
    spending = [_expense("1200")]

    first = evaluate(spending, config, EvaluationMode.live)
    second = evaluate(spending, config, EvaluationMode.live)

    assert [n.type for n in first.notifications] == [
        LimitScope.monthly,
        LimitScope.category,
    ]
    assert first.notifications == second.notifications
    assert first.transitions == []
    assert config.monthly.state == LimitState.breached


def test_category_under_limit_stays_quiet() -> None:
    config = LimitConfig(categories=(_category("Food & Dining", "500"),))
    result = evaluate([_expense("300")], config, EvaluationMode.latched)

    assert result.exceeded is False
    assert result.transitions == []


def test_category_spend_equal_to_limit_is_not_a_breach() -> None:
    config = LimitConfig(categories=(_category("Food & Dining", "300"),))
    result = evaluate([_expense("300")], config, EvaluationMode.live)
    assert result.notifications == []


def test_income_never_counts_toward_limits() -> None:
    config = LimitConfig(monthly=_monthly("100"))
    income = TransactionRecord(type=TransactionType.income, amount=Decimal("5000"))
    result = evaluate([income, _expense("50")], config, EvaluationMode.live)
    assert result.exceeded is False


def test_breached_limit_stays_quiet_until_rearmed() -> None:
    spending = [_expense("1200")]

    breached = _monthly("1000", LimitState.breached)
    quiet = evaluate(spending, LimitConfig(monthly=breached), EvaluationMode.latched)
    assert quiet.notifications == []

    armed = _monthly("1000")
    again = evaluate(spending, LimitConfig(monthly=armed), EvaluationMode.latched)
    assert len(again.notifications) == 1


def test_cleared_breach_rearms_without_notifying() -> None:
    config = LimitConfig(categories=(_category("Travel", "200", LimitState.breached),))
    result = evaluate([_expense("50", "Travel")], config, EvaluationMode.latched)

    assert result.notifications == []
    assert len(result.transitions) == 1
    assert result.transitions[0].to_state == LimitState.armed
    assert result.transitions[0].notification is None


def test_unset_limits_are_ignored() -> None:
    config = LimitConfig(monthly=_monthly("0"))
    assert config.monthly.is_set is False
    result = evaluate([_expense("10")], config, EvaluationMode.latched)
    assert result.notifications == []


def test_missing_config_yields_empty_result() -> None:
    result = evaluate([_expense("10")], None, "live")
    assert result.mode == EvaluationMode.live
    assert result.exceeded is False
    assert result.notifications == []


def test_notifications_follow_config_order() -> None:
    config = LimitConfig(
        monthly=_monthly("10"),
        categories=(_category("Rent", "1"), _category("Food & Dining", "1")),
    )
    spending = [_expense("5"), _expense("20", "Rent")]
    result = evaluate(spending, config, EvaluationMode.live)

    assert [n.category for n in result.notifications] == [
        None,
        "Rent",
        "Food & Dining",
    ]
    assert "Rent" in result.notifications[1].message
    assert "1.00" in result.notifications[1].message


def test_parse_limit_config_skips_malformed_entries() -> None:
    config, skipped = parse_limit_config(
        {
            "monthly": {"amount": "abc"},
            "category": [
                {"name": "Food", "amount": 100, "notified": True},
                {"name": "", "amount": 5},
                {"name": "Travel", "amount": "x"},
                {"name": "Food", "amount": 40},
            ],
        }
    )

    assert skipped == 4
    assert config.monthly is None
    assert len(config.categories) == 1
    food = config.categories[0]
    assert food.category == "Food"
    assert food.amount == Decimal("100")
    assert food.state == LimitState.breached


def test_parse_limit_config_passes_none_through() -> None:
    assert parse_limit_config(None) == (None, 0)
    assert limit_config_from_rows([]) == (None, 0)


def test_limit_config_from_rows_groups_by_scope() -> None:
    rows = [
        {"id": 2, "scope": LimitScope.category, "category_name": "Rent", "amount": 900},
        {"id": 1, "scope": LimitScope.monthly, "amount": "1500", "state": "breached"},
    ]
    config, skipped = limit_config_from_rows(rows)

    assert skipped == 0
    assert config.monthly.id == 1
    assert config.monthly.state == LimitState.breached
    assert config.categories[0].category == "Rent"
    assert config.categories[0].id == 2
