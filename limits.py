"""Expense limit breach detection.

Both check modes share the same breach arithmetic:

* ``live`` reports every limit currently in breach and never touches the
  notification latch. The dashboard banner uses it.
* ``latched`` reports only breaches of ``armed`` limits and returns the
  latch transitions the caller has to persist. Push notifications use it
  so that each breach episode is announced once.

Nothing in this module mutates its inputs; persistence of transitions is
the job of :class:`services.LimitService`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Union

from analytics import ZERO, MalformedRecord, field_value, parse_amount
from models import LimitScope, LimitState, TransactionType
from schemas import TransactionRecord

logger = logging.getLogger(__name__)


class EvaluationMode(str, Enum):
    live = "live"
    latched = "latched"


class InvalidLimit(ValueError):
    pass


@dataclass(frozen=True)
class LimitSpec:
    scope: LimitScope
    amount: Decimal
    state: LimitState = LimitState.armed
    category: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_set(self) -> bool:
        # amount 0 means "no limit configured", not "limit of zero"
        return self.amount > 0

    @property
    def notified(self) -> bool:
        return self.state == LimitState.breached


@dataclass(frozen=True)
class LimitConfig:
    monthly: Optional[LimitSpec] = None
    categories: tuple[LimitSpec, ...] = ()

    def limits(self) -> list[LimitSpec]:
        ordered = [self.monthly] if self.monthly is not None else []
        ordered.extend(self.categories)
        return ordered


@dataclass(frozen=True)
class SpendingSnapshot:
    total: Decimal
    by_category: dict[str, Decimal]

    def current_for(self, limit: LimitSpec) -> Decimal:
        if limit.scope == LimitScope.monthly:
            return self.total
        return self.by_category.get(limit.category or "", ZERO)


@dataclass(frozen=True)
class Notification:
    type: LimitScope
    limit: Decimal
    current: Decimal
    category: Optional[str] = None
    limit_id: Optional[int] = None

    @property
    def message(self) -> str:
        if self.type == LimitScope.monthly:
            return (
                f"Your monthly expenses of {self.current:,.2f} have exceeded "
                f"your limit of {self.limit:,.2f}!"
            )
        return (
            f"Your expenses of {self.current:,.2f} in category "
            f'"{self.category}" have exceeded your limit of {self.limit:,.2f}!'
        )


@dataclass(frozen=True)
class LatchTransition:
    limit: LimitSpec
    to_state: LimitState
    # Set when the transition arms -> breached releases a notification.
    notification: Optional[Notification] = None


@dataclass(frozen=True)
class LimitCheck:
    mode: EvaluationMode
    notifications: list[Notification] = field(default_factory=list)
    transitions: list[LatchTransition] = field(default_factory=list)
    skipped_limits: int = 0

    @property
    def exceeded(self) -> bool:
        return bool(self.notifications)


def measure(transactions: Iterable[TransactionRecord]) -> SpendingSnapshot:
    total = ZERO
    by_category: dict[str, Decimal] = {}
    for txn in transactions:
        if txn.type != TransactionType.expense:
            continue
        total += txn.amount
        by_category[txn.category] = by_category.get(txn.category, ZERO) + txn.amount
    return SpendingSnapshot(total=total, by_category=by_category)


def _notification(limit: LimitSpec, current: Decimal) -> Notification:
    return Notification(
        type=limit.scope,
        limit=limit.amount,
        current=current,
        category=limit.category,
        limit_id=limit.id,
    )


def evaluate(
    transactions: Iterable[TransactionRecord],
    config: Optional[LimitConfig],
    mode: Union[EvaluationMode, str] = EvaluationMode.latched,
    *,
    skipped_limits: int = 0,
) -> LimitCheck:
    mode = EvaluationMode(mode)
    if config is None:
        return LimitCheck(mode=mode, skipped_limits=skipped_limits)

    snapshot = measure(transactions)
    notifications: list[Notification] = []
    transitions: list[LatchTransition] = []
    for limit in config.limits():
        if not limit.is_set:
            continue
        current = snapshot.current_for(limit)
        in_breach = current > limit.amount

        if mode == EvaluationMode.live:
            if in_breach:
                notifications.append(_notification(limit, current))
            continue

        if in_breach and limit.state == LimitState.armed:
            notification = _notification(limit, current)
            notifications.append(notification)
            transitions.append(
                LatchTransition(limit, LimitState.breached, notification)
            )
            logger.info(
                f"limit_breach: scope={limit.scope.value} "
                f"category={limit.category} limit={limit.amount} current={current}"
            )
        elif not in_breach and limit.state == LimitState.breached:
            transitions.append(LatchTransition(limit, LimitState.armed))
            logger.info(
                f"limit_cleared: scope={limit.scope.value} "
                f"category={limit.category} limit={limit.amount} current={current}"
            )

    return LimitCheck(
        mode=mode,
        notifications=notifications,
        transitions=transitions,
        skipped_limits=skipped_limits,
    )


def _parse_state(item: object) -> LimitState:
    raw_state = field_value(item, "state")
    if raw_state is not None:
        try:
            return LimitState(raw_state)
        except ValueError as exc:
            raise InvalidLimit(f"Invalid state: {raw_state!r}") from exc
    if field_value(item, "notified"):
        return LimitState.breached
    return LimitState.armed


def parse_limit(item: object, scope: LimitScope) -> LimitSpec:
    try:
        amount = parse_amount(field_value(item, "amount"))
    except MalformedRecord as exc:
        raise InvalidLimit(str(exc)) from exc

    category = None
    if scope == LimitScope.category:
        name = field_value(item, "name")
        if name is None:
            name = field_value(item, "category_name")
        category = str(name).strip() if name is not None else ""
        if not category:
            raise InvalidLimit("Category limit requires a name")

    return LimitSpec(
        scope=scope,
        amount=amount,
        state=_parse_state(item),
        category=category,
        id=field_value(item, "id"),
    )


def parse_limit_config(
    raw: Optional[Mapping],
) -> tuple[Optional[LimitConfig], int]:
    """Build a config from the ``{monthly, category[]}`` document shape.

    Malformed limits are skipped and counted; ``None`` stays ``None``.
    """
    if raw is None:
        return None, 0

    skipped = 0
    monthly: Optional[LimitSpec] = None
    raw_monthly = raw.get("monthly")
    if raw_monthly is not None:
        try:
            monthly = parse_limit(raw_monthly, LimitScope.monthly)
        except InvalidLimit as exc:
            skipped += 1
            logger.warning(f"limit_skipped: scope=monthly reason={exc}")

    categories: list[LimitSpec] = []
    seen: set[str] = set()
    for item in raw.get("category") or []:
        try:
            spec = parse_limit(item, LimitScope.category)
        except InvalidLimit as exc:
            skipped += 1
            logger.warning(f"limit_skipped: scope=category reason={exc}")
            continue
        if spec.category in seen:
            skipped += 1
            logger.warning(
                f"limit_skipped: scope=category reason=duplicate name={spec.category}"
            )
            continue
        seen.add(spec.category)
        categories.append(spec)

    return LimitConfig(monthly=monthly, categories=tuple(categories)), skipped


def limit_config_from_rows(
    rows: Iterable[object],
) -> tuple[Optional[LimitConfig], int]:
    """Regroup persisted limit rows (one per scope) into the document shape."""
    raw_monthly = None
    raw_categories: list[object] = []
    seen_any = False
    for row in rows:
        seen_any = True
        if field_value(row, "scope") == LimitScope.monthly:
            raw_monthly = row
        else:
            raw_categories.append(row)
    if not seen_any:
        return None, 0
    return parse_limit_config({"monthly": raw_monthly, "category": raw_categories})
