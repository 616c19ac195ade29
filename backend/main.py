"""
Module: main.py
Description: FastAPI application exposing fraud alerting and expense forecasting.

This module provides REST API endpoints for:
    - Running the z-score fraud check over the ledger
    - Reviewing unresolved fraud alerts and the transactions behind them
    - Resolving alerts (managers and admins only, audit-logged)
    - The linear expense forecast for the dashboard chart

Author: Spend Sentinel Team

Dependencies:
    - FastAPI for REST API framework
    - SQLAlchemy for database operations

Usage:
    uvicorn main:app --reload --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from auth import get_current_actor, require_resolver
from config import CORS_ORIGINS
from database import get_db, init_db
from schemas import (
    DetectionResponse, AlertOut, ResolveResponse, TransactionDetailOut,
    HistoricalPointOut, ForecastPointOut, ForecastResponse, HealthResponse,
)
from services import (
    LedgerStore, AnomalyDetector, AlertService, ExpenseForecaster,
    StoreUnavailable, NotFoundError, ValidationError,
)
from services.observability import logger, metrics
from services.records import Actor


# =============================================================================
# Application Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed the chart of accounts on startup."""
    logger.info("Starting Spend Sentinel API")
    init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Spend Sentinel API")


# =============================================================================
# FastAPI Application Configuration
# =============================================================================

app = FastAPI(
    title="Spend Sentinel API",
    description="""
    Fraud alerting and expense forecasting for the finance ledger.

    ## Features
    - Per-user daily spend baselines with z-score anomaly alerts
    - Alert review queue with transaction drill-down
    - Linear expense forecast with a +/-15% band
    """,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Dependency Injection
# =============================================================================

def get_store(db: DBSession = Depends(get_db)) -> LedgerStore:
    """Dependency: store bound to the request's database session."""
    return LedgerStore(db)


def get_alert_service(store: LedgerStore = Depends(get_store)) -> AlertService:
    return AlertService(store)


def _store_unavailable(operation: str, error: StoreUnavailable) -> HTTPException:
    logger.error("Request failed, store unavailable", operation=operation, error=str(error))
    metrics.increment("http.store_unavailable", tags={"operation": operation})
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="The ledger database is unavailable. Please retry shortly.",
        headers={"Retry-After": "30"},
    )


# =============================================================================
# System Endpoints
# =============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint",
)
async def health_check(db: DBSession = Depends(get_db)) -> HealthResponse:
    """
    Check that the API is up and the database answers.

    Example:
        GET /health
        Response: {"status": "healthy", "database": "connected", "version": "1.0.0"}
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        db_status = f"error: {e.__class__.__name__}"

    overall_status = "healthy" if db_status == "connected" else "degraded"
    return HealthResponse(status=overall_status, database=db_status)


@app.get(
    "/metrics",
    tags=["System"],
    summary="Get application metrics",
)
async def get_metrics():
    """Counters, gauges and timing summaries collected since startup."""
    return metrics.get_summary()


# =============================================================================
# Fraud Alert Endpoints
# =============================================================================

@app.post(
    "/fraud-alerts/run",
    response_model=DetectionResponse,
    tags=["Fraud Alerts"],
    summary="Run the fraud check",
    description="Recompute spending baselines for every user and raise alerts for new anomalous days.",
)
def run_fraud_check(
    store: LedgerStore = Depends(get_store),
    actor: Actor = Depends(get_current_actor),
) -> DetectionResponse:
    """
    Run z-score anomaly detection over the whole ledger.

    Re-running on unchanged data creates no new alerts.

    Raises:
        HTTPException: 503 if the database fails; nothing is committed.

    Example:
        POST /fraud-alerts/run
        Response: {"message": "Fraud check complete.", "new_alerts_count": 2}
    """
    logger.info("Fraud check requested", actor_id=actor.user_id)
    try:
        result = AnomalyDetector(store).run()
    except StoreUnavailable as e:
        raise _store_unavailable("run_fraud_check", e)

    return DetectionResponse(new_alerts_count=result.new_alerts_count)


@app.get(
    "/fraud-alerts",
    response_model=List[AlertOut],
    tags=["Fraud Alerts"],
    summary="List unresolved alerts",
)
def list_fraud_alerts(
    service: AlertService = Depends(get_alert_service),
    actor: Actor = Depends(get_current_actor),
) -> List[AlertOut]:
    """Unresolved alerts with the user's name, most recent day first."""
    try:
        alerts = service.list_unresolved()
    except StoreUnavailable as e:
        raise _store_unavailable("list_fraud_alerts", e)

    return [AlertOut(**asdict(alert)) for alert in alerts]


@app.get(
    "/fraud-alerts/transactions",
    response_model=List[TransactionDetailOut],
    tags=["Fraud Alerts"],
    summary="Transactions behind a flagged day",
)
def get_alert_transactions(
    user_id: Optional[str] = None,
    day: Optional[str] = None,
    service: AlertService = Depends(get_alert_service),
    actor: Actor = Depends(get_current_actor),
) -> List[TransactionDetailOut]:
    """
    Expense debits of one user on one day, oldest first.

    Example:
        GET /fraud-alerts/transactions?user_id=1&day=2025-09-04
    """
    try:
        details = service.transaction_detail(user_id, day)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StoreUnavailable as e:
        raise _store_unavailable("get_alert_transactions", e)

    return [TransactionDetailOut(**asdict(d)) for d in details]


@app.put(
    "/fraud-alerts/{alert_id}",
    response_model=ResolveResponse,
    tags=["Fraud Alerts"],
    summary="Resolve an alert",
)
def resolve_fraud_alert(
    alert_id: int,
    service: AlertService = Depends(get_alert_service),
    actor: Actor = Depends(require_resolver),
) -> ResolveResponse:
    """
    Mark an alert resolved and record it in the audit log.

    Resolving an alert that is already resolved succeeds without change.

    Raises:
        HTTPException: 403 for employees, 404 for unknown ids, 503 if the
            database fails.
    """
    try:
        outcome = service.resolve(alert_id, actor)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreUnavailable as e:
        raise _store_unavailable("resolve_fraud_alert", e)

    if outcome.already_resolved:
        return ResolveResponse(
            message="Alert was already resolved.",
            alert_id=alert_id,
            already_resolved=True,
            audit_logged=False,
        )

    audit_logged = service.record_resolution(alert_id, actor)
    return ResolveResponse(
        message="Alert resolved successfully!",
        alert_id=alert_id,
        audit_logged=audit_logged,
    )


# =============================================================================
# Forecast Endpoint
# =============================================================================

@app.get(
    "/expense-forecast",
    response_model=ForecastResponse,
    tags=["Forecast"],
    summary="Three-month expense forecast",
)
def get_expense_forecast(
    store: LedgerStore = Depends(get_store),
    actor: Actor = Depends(get_current_actor),
) -> ForecastResponse:
    """
    Fit a trend through the last twelve complete months and project ahead.

    Example:
        GET /expense-forecast
        Response: {"historical": [...], "forecast": [{"label": "Oct 25",
                   "predicted": 400.0, "range": [340.0, 460.0]}, ...],
                   "chart_max": 1000, ...}
    """
    try:
        result = ExpenseForecaster(store).forecast()
    except StoreUnavailable as e:
        raise _store_unavailable("get_expense_forecast", e)

    return ForecastResponse(
        historical=[HistoricalPointOut(**asdict(p)) for p in result.historical],
        forecast=[
            ForecastPointOut(
                month_start=p.month_start,
                label=p.label,
                predicted=p.predicted,
                range=(p.low, p.high),
            )
            for p in result.forecast
        ],
        slope=result.slope,
        intercept=result.intercept,
        chart_max=result.chart_max,
    )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
