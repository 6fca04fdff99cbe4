from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models import LimitScope, LimitState, TransactionType


class TransactionIn(BaseModel):
    type: TransactionType
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    category: str = Field(default="", max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    amount: float
    category: str
    description: Optional[str]
    date: datetime


class TransactionRecord(BaseModel):
    """Parsed, read-only view of a transaction used by the analytics core."""

    model_config = ConfigDict(frozen=True)

    id: Optional[Union[int, str]] = None
    type: TransactionType
    amount: Decimal = Field(..., ge=0)
    category: str = ""
    description: Optional[str] = None
    date: Optional[datetime] = None


class MonthlyLimitIn(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class CategoryLimitIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class LimitOut(BaseModel):
    scope: LimitScope
    name: Optional[str] = None
    amount: float
    state: LimitState
    notified: bool


class LimitConfigOut(BaseModel):
    monthly: LimitOut
    category: list[LimitOut] = Field(default_factory=list)
    # known category one edit away from a newly set limit name
    suggestion: Optional[str] = None


class NotificationOut(BaseModel):
    type: LimitScope
    category: Optional[str] = None
    message: str
    limit: float
    current: float


class LimitCheckOut(BaseModel):
    mode: Literal["live", "latched"]
    exceeded: bool
    notifications: list[NotificationOut] = Field(default_factory=list)
    skipped_limits: int = 0


class InsightOut(BaseModel):
    title: str
    body: str
    severity: Literal["info", "warning", "success"]


class MonthlyTrendOut(BaseModel):
    labels: list[str]
    income: list[float]
    expense: list[float]


class DailySpendingOut(BaseModel):
    labels: list[str]
    data: list[float]
    has_data: bool


class AnalyticsOut(BaseModel):
    period: str
    start: Optional[datetime]
    end: Optional[datetime]
    total_income: float
    total_expense: float
    balance: float
    savings_rate: Optional[float]
    categories: dict[str, float]
    has_expenses: bool
    monthly_trend: MonthlyTrendOut
    daily_spending: DailySpendingOut
    insights: list[InsightOut]
    skipped_records: int
    errors: list[str] = Field(default_factory=list)
