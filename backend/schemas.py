"""Pydantic request/response schemas for type safety."""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional, List, Tuple


# Fraud alert schemas
class DetectionResponse(BaseModel):
    message: str = "Fraud check complete."
    new_alerts_count: int = Field(ge=0)


class AlertOut(BaseModel):
    alert_id: int
    user_id: int
    user_name: str
    day: date
    spend: float
    average: float
    z_score: float
    created_at: datetime

    class Config:
        from_attributes = True


class ResolveResponse(BaseModel):
    message: str
    alert_id: int
    already_resolved: bool = False
    audit_logged: bool = True


class TransactionDetailOut(BaseModel):
    transaction_id: int
    description: Optional[str] = None
    amount: float
    trans_type: str
    occurred_at: datetime

    class Config:
        from_attributes = True


# Forecast schemas
class HistoricalPointOut(BaseModel):
    month_start: date
    label: str
    total: float

    class Config:
        from_attributes = True


class ForecastPointOut(BaseModel):
    month_start: date
    label: str
    predicted: float = Field(ge=0)
    range: Tuple[float, float]


class ForecastResponse(BaseModel):
    historical: List[HistoricalPointOut]
    forecast: List[ForecastPointOut]
    slope: float
    intercept: float
    chart_max: int = Field(ge=0)


# System schemas
class HealthResponse(BaseModel):
    status: str
    database: str
    version: str = "1.0.0"
