"""
Module: records.py
Description: Typed records passed between the store adapter and the services.

Rows coming out of the store are converted into these records once, at the
store boundary, so the detector and forecaster never deal with raw query
results or dialect-specific numeric types.

Author: Spend Sentinel Team
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional


ALERT_TYPE_ZSCORE = "z_score_anomaly"


# =============================================================================
# Anomaly Detection
# =============================================================================

@dataclass(frozen=True)
class DailySpend:
    """Total debit spend against expense accounts for one user on one day."""
    user_id: int
    day: date
    total: Decimal


@dataclass(frozen=True)
class UserBaseline:
    """Population statistics of a user's daily spend."""
    user_id: int
    mean: float
    stddev: float
    days: int


@dataclass(frozen=True)
class AnomalyCandidate:
    """A day classified as anomalous, before deduplication."""
    user_id: int
    day: date
    spend: float
    average: float
    z_score: float

    def to_details(self) -> dict:
        """Serialise into the alert's JSON detail payload."""
        return {
            "day": self.day.isoformat(),
            "spend": round(self.spend, 2),
            "average": round(self.average, 2),
            "z_score": round(self.z_score, 4),
        }


@dataclass
class DetectionResult:
    """Outcome of one detector run."""
    new_alerts_count: int
    candidates: int = 0
    users_scanned: int = 0
    skipped_existing: int = 0


# =============================================================================
# Alert Review
# =============================================================================

@dataclass(frozen=True)
class AlertView:
    """Unresolved alert joined with the triggering user's display name."""
    alert_id: int
    user_id: int
    user_name: str
    day: date
    spend: float
    average: float
    z_score: float
    created_at: datetime


@dataclass(frozen=True)
class ResolveOutcome:
    alert_id: int
    already_resolved: bool


@dataclass(frozen=True)
class TransactionDetail:
    """One ledger line contributing to a flagged day's total."""
    transaction_id: int
    description: Optional[str]
    amount: Decimal
    trans_type: str
    occurred_at: datetime


@dataclass(frozen=True)
class Actor:
    """Identity of whoever is calling a service operation."""
    user_id: int
    role: str
    name: Optional[str] = None


# =============================================================================
# Forecasting
# =============================================================================

@dataclass(frozen=True)
class MonthlyExpensePoint:
    month_start: date
    total: Decimal


@dataclass(frozen=True)
class HistoricalPoint:
    month_start: date
    label: str
    total: float


@dataclass(frozen=True)
class ForecastPoint:
    month_start: date
    label: str
    predicted: float
    low: float
    high: float


@dataclass
class Forecast:
    """Fitted trend, projected months and the suggested chart ceiling."""
    historical: List[HistoricalPoint] = field(default_factory=list)
    forecast: List[ForecastPoint] = field(default_factory=list)
    slope: float = 0.0
    intercept: float = 0.0
    chart_max: int = 0
