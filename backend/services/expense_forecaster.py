"""
Module: expense_forecaster.py
Description: Linear expense forecast over recent monthly totals.

Fits an ordinary-least-squares line through the last complete months of
company-wide expense (x = month index, y = total) and extends it a few
months ahead with a fixed +/- band around each projection. The band is a
display aid, not a statistical interval.

Author: Spend Sentinel Team

Usage:
    forecaster = ExpenseForecaster(store)
    forecast = forecaster.forecast()
"""

import math
from datetime import date
from typing import List, Optional, Sequence, Tuple

import numpy as np

from config import (
    FORECAST_HISTORY_MONTHS, FORECAST_HORIZON_MONTHS, FORECAST_BAND, CHART_STEP,
)
from services.observability import timed, log_forecast_generated
from services.records import (
    Forecast, ForecastPoint, HistoricalPoint, MonthlyExpensePoint,
)


MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def month_label(month_start: date) -> str:
    """Short chart label, e.g. 'Sep 25'. English regardless of locale."""
    return f"{MONTH_ABBREVIATIONS[month_start.month - 1]} {month_start.year % 100:02d}"


def add_months(month_start: date, months: int) -> date:
    index = month_start.year * 12 + (month_start.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def fit_trend(values: Sequence[float]) -> Tuple[float, float]:
    """
    OLS slope and intercept of values against their 0-based index.

    With no points the line is flat at zero; with one point it is flat at
    that point's value.
    """
    y = np.asarray(values, dtype=float)
    n = y.size
    if n == 0:
        return 0.0, 0.0
    if n == 1:
        return 0.0, float(y[0])

    x = np.arange(n, dtype=float)
    sum_x = x.sum()
    sum_y = y.sum()
    sum_xy = (x * y).sum()
    sum_xx = (x * x).sum()

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    return float(slope), float(intercept)


def chart_ceiling(values: Sequence[float], step: int = CHART_STEP) -> int:
    """Smallest multiple of step that is >= every value (and >= 0)."""
    top = max([0.0, *values])
    return int(math.ceil(top / step) * step)


def compute_forecast(history: List[MonthlyExpensePoint],
                     as_of: Optional[date] = None,
                     horizon: int = FORECAST_HORIZON_MONTHS,
                     band: float = FORECAST_BAND,
                     window: int = FORECAST_HISTORY_MONTHS) -> Forecast:
    """
    Project monthly expense from an ascending history.

    Args:
        history: Monthly totals, oldest first, excluding the current month.
        as_of: Reference date; only used to place the projected months when
            history is empty. Defaults to today.
        horizon: Number of months to project.
        band: Relative half-width of the range around each projection.
        window: Only the last `window` months of history are fitted.

    Returns:
        Forecast with the historical points, the projected points, the
        fitted line and a chart ceiling. Never raises on empty history.
    """
    history = list(history)[-window:] if window > 0 else []
    totals = [float(point.total) for point in history]
    slope, intercept = fit_trend(totals)

    historical = [
        HistoricalPoint(
            month_start=point.month_start,
            label=month_label(point.month_start),
            total=round(total, 2),
        )
        for point, total in zip(history, totals)
    ]

    if history:
        anchor = history[-1].month_start
    else:
        anchor = (as_of or date.today()).replace(day=1)

    n = len(history)
    projected = []
    for step in range(1, horizon + 1):
        # Expenses cannot go negative, even on a falling trend
        predicted = max(0.0, slope * (n + step - 1) + intercept)
        month_start = add_months(anchor, step)
        projected.append(ForecastPoint(
            month_start=month_start,
            label=month_label(month_start),
            predicted=round(predicted, 2),
            low=round(max(0.0, predicted * (1 - band)), 2),
            high=round(predicted * (1 + band), 2),
        ))

    ceiling = chart_ceiling([p.total for p in historical] + [p.high for p in projected])

    return Forecast(
        historical=historical,
        forecast=projected,
        slope=slope,
        intercept=intercept,
        chart_max=ceiling,
    )


class ExpenseForecaster:
    """Reads monthly history from the store and returns a Forecast."""

    def __init__(self, store, history_months: int = FORECAST_HISTORY_MONTHS):
        self.store = store
        self.history_months = history_months

    @timed("expense_forecast")
    def forecast(self, as_of: Optional[date] = None) -> Forecast:
        history = self.store.fetch_monthly_expense_history(limit=self.history_months, as_of=as_of)
        result = compute_forecast(history, as_of=as_of, window=self.history_months)
        log_forecast_generated(len(history), result.slope, result.chart_max)
        return result
