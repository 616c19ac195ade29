"""Backend services for fraud alerting and expense forecasting."""

from .errors import SentinelError, StoreUnavailable, NotFoundError, ValidationError
from .ledger_store import LedgerStore
from .anomaly_detector import AnomalyDetector
from .alert_service import AlertService
from .expense_forecaster import ExpenseForecaster, compute_forecast

__all__ = [
    "SentinelError",
    "StoreUnavailable",
    "NotFoundError",
    "ValidationError",
    "LedgerStore",
    "AnomalyDetector",
    "AlertService",
    "ExpenseForecaster",
    "compute_forecast",
]
