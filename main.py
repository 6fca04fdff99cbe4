import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db, init_db
from limits import EvaluationMode, LimitCheck, LimitConfig, LimitSpec
from models import LimitScope, TransactionType
from periods import InvalidRange, date_bounds
from scheduler import SchedulerManager
from schemas import (
    AnalyticsOut,
    CategoryLimitIn,
    DailySpendingOut,
    InsightOut,
    LimitCheckOut,
    LimitConfigOut,
    LimitOut,
    MonthlyLimitIn,
    MonthlyTrendOut,
    NotificationOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AnalyticsService,
    AnalyticsSummary,
    LimitNotFound,
    LimitService,
    TransactionNotFound,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")


def _load_app_version() -> str:
    try:
        import tomllib
    except ImportError:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"startup: version={APP_VERSION}")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def limit_out(limit: LimitSpec) -> LimitOut:
    return LimitOut(
        scope=limit.scope,
        name=limit.category,
        amount=limit.amount,
        state=limit.state,
        notified=limit.notified,
    )


def limit_config_out(config: LimitConfig) -> LimitConfigOut:
    monthly = config.monthly or LimitSpec(scope=LimitScope.monthly, amount=0)
    return LimitConfigOut(
        monthly=limit_out(monthly),
        category=[limit_out(limit) for limit in config.categories],
    )


def limit_check_out(result: LimitCheck) -> LimitCheckOut:
    return LimitCheckOut(
        mode=result.mode.value,
        exceeded=result.exceeded,
        notifications=[
            NotificationOut(
                type=n.type,
                category=n.category,
                message=n.message,
                limit=n.limit,
                current=n.current,
            )
            for n in result.notifications
        ],
        skipped_limits=result.skipped_limits,
    )


def analytics_out(summary: AnalyticsSummary) -> AnalyticsOut:
    result = summary.result
    return AnalyticsOut(
        period=summary.window.slug,
        start=summary.window.start,
        end=summary.window.end,
        total_income=result.total_income,
        total_expense=result.total_expense,
        balance=result.balance,
        savings_rate=result.savings_rate,
        categories=result.category_breakdown,
        has_expenses=result.has_expenses,
        monthly_trend=MonthlyTrendOut(
            labels=list(result.monthly_trend.labels),
            income=list(result.monthly_trend.income),
            expense=list(result.monthly_trend.expense),
        ),
        daily_spending=DailySpendingOut(
            labels=list(result.daily_spending.labels),
            data=list(result.daily_spending.amounts),
            has_data=result.daily_spending.has_data,
        ),
        insights=[
            InsightOut(title=i.title, body=i.body, severity=i.severity.value)
            for i in summary.insights
        ],
        skipped_records=result.skipped_records,
        errors=summary.errors,
    )


@app.get("/api/transactions", response_model=list[TransactionOut])
def api_list_transactions(request: Request, db: Session = Depends(get_db)):
    params = request.query_params
    type_param = params.get("type")
    txn_type = None
    if type_param and type_param != "all":
        try:
            txn_type = TransactionType(type_param)
        except ValueError:
            txn_type = None
    category = params.get("category") or None
    if category == "all":
        category = None
    try:
        window = date_bounds(params.get("dateFrom"), params.get("dateTo"))
    except InvalidRange as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    page = max(int(params.get("page", "1")), 1)
    limit = min(max(int(params.get("limit", "50")), 1), 100)
    return TransactionService(db).list(
        start=window.start,
        end=window.end,
        txn_type=txn_type,
        category=category,
        limit=limit,
        offset=(page - 1) * limit,
    )


@app.get("/api/transactions/recent", response_model=list[TransactionOut])
def api_recent_transactions(limit: int = 5, db: Session = Depends(get_db)):
    return TransactionService(db).recent(min(max(limit, 1), 100))


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def api_get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).get(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def api_update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        return TransactionService(db).update(transaction_id, data)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/analytics", response_model=AnalyticsOut)
def api_analytics(
    period: Optional[str] = "month",
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        summary = AnalyticsService(db).summary(period, start, end)
    except InvalidRange as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return analytics_out(summary)


@app.get("/api/limits/check", response_model=LimitCheckOut)
def api_check_limits_live(db: Session = Depends(get_db)):
    return limit_check_out(LimitService(db).check(EvaluationMode.live))


@app.post("/api/limits/check", response_model=LimitCheckOut)
def api_check_limits_latched(db: Session = Depends(get_db)):
    return limit_check_out(LimitService(db).check(EvaluationMode.latched))


@app.get("/api/settings/expense-limits", response_model=LimitConfigOut)
def api_get_limits(db: Session = Depends(get_db)):
    return limit_config_out(LimitService(db).get_config())


@app.put("/api/settings/expense-limits/monthly", response_model=LimitConfigOut)
def api_set_monthly_limit(data: MonthlyLimitIn, db: Session = Depends(get_db)):
    return limit_config_out(LimitService(db).set_monthly(data))


@app.put("/api/settings/expense-limits/category", response_model=LimitConfigOut)
def api_set_category_limit(data: CategoryLimitIn, db: Session = Depends(get_db)):
    service = LimitService(db)
    suggestion = service.suggest_category(data.name)
    out = limit_config_out(service.upsert_category(data))
    out.suggestion = suggestion
    return out


@app.delete(
    "/api/settings/expense-limits/category/{name}", response_model=LimitConfigOut
)
def api_delete_category_limit(name: str, db: Session = Depends(get_db)):
    try:
        config = LimitService(db).delete_category(name)
    except LimitNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return limit_config_out(config)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
