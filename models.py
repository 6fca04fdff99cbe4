from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class LimitScope(str, Enum):
    monthly = "monthly"
    category = "category"


class LimitState(str, Enum):
    """Notification latch of a single expense limit.

    ``armed`` limits notify on their next breach, ``breached`` limits have
    already notified and stay quiet until the breach clears or the amount
    is edited.
    """

    armed = "armed"
    breached = "breached"


AMOUNT = Numeric(12, 2, asdecimal=True)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )


class ExpenseLimit(Base, TimestampMixin):
    __tablename__ = "expense_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    scope: Mapped[LimitScope] = mapped_column(SAEnum(LimitScope), nullable=False)
    # Empty for the monthly limit so the unique constraint covers it.
    category_name: Mapped[str] = mapped_column(
        String(100), nullable=False, default=""
    )
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=0)
    state: Mapped[LimitState] = mapped_column(
        SAEnum(LimitState), nullable=False, default=LimitState.armed
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "scope", "category_name", name="uq_expense_limit_scope"
        ),
        CheckConstraint("amount >= 0", name="ck_expense_limit_amount_positive"),
        Index("ix_expense_limits_user", "user_id"),
    )
