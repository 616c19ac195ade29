"""
Module: ledger_store.py
Description: SQLAlchemy-backed store used by the detector, the alert review
service and the forecaster.

Every query result is converted into a typed record here. Aggregates come
back from the driver as str, float, int or Decimal depending on dialect, so
all numeric and date coercion lives in the helpers at the top of this module.

Any SQLAlchemyError other than the expected unique violation on alert insert
is re-raised as StoreUnavailable.

Author: Spend Sentinel Team
"""

import functools
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from models import (
    Account, AuditLog, FraudAlert, Transaction, User,
    EXPENSE_ACCOUNT_TYPE, DEBIT,
)
from services.errors import StoreUnavailable
from services.observability import logger, metrics
from services.records import (
    AlertView, DailySpend, MonthlyExpensePoint, TransactionDetail,
)


CENT = Decimal("0.01")


# =============================================================================
# Coercion Helpers
# =============================================================================

def to_decimal(value) -> Decimal:
    """Convert an aggregate value into a Decimal rounded to cents."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(CENT)
    try:
        # str() first so floats keep their printed value, not their binary one
        return Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a numeric amount: {value!r}") from e


def to_date(value) -> date:
    """Convert a DATE() result (date, datetime or ISO string) into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise ValueError(f"Not a calendar day: {value!r}")


def to_float(value) -> float:
    if value is None:
        return 0.0
    return float(value)


def _store_operation(name: str):
    """Translate driver failures into StoreUnavailable."""
    def decorator(func_):
        @functools.wraps(func_)
        def wrapper(self, *args, **kwargs):
            try:
                return func_(self, *args, **kwargs)
            except SQLAlchemyError as e:
                logger.error("Store operation failed", operation=name, error=str(e))
                metrics.increment("store.errors", tags={"operation": name})
                raise StoreUnavailable(name, e) from e
        return wrapper
    return decorator


# =============================================================================
# Ledger Store
# =============================================================================

class LedgerStore:
    """
    Store operations over one database session.

    The caller owns the session; this class never closes it. Writes are
    flushed but only made durable by commit().
    """

    def __init__(self, db: DBSession):
        self.db = db

    # -------------------------------------------------------------------------
    # Detection inputs
    # -------------------------------------------------------------------------

    @_store_operation("fetch_daily_debit_spend")
    def fetch_daily_debit_spend(self) -> List[DailySpend]:
        """Debit spend against expense accounts, summed per user per day."""
        day_col = func.date(Transaction.date)
        rows = (
            self.db.query(
                Transaction.user_id,
                day_col.label("day"),
                func.sum(Transaction.amount).label("total"),
            )
            .join(Account, Transaction.account_id == Account.id)
            .filter(Account.account_type == EXPENSE_ACCOUNT_TYPE)
            .filter(Transaction.trans_type == DEBIT)
            .group_by(Transaction.user_id, day_col)
            .order_by(Transaction.user_id, day_col)
            .all()
        )
        return [
            DailySpend(user_id=int(row.user_id), day=to_date(row.day), total=to_decimal(row.total))
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    @_store_operation("unresolved_alert_exists")
    def unresolved_alert_exists(self, user_id: int, day: date) -> bool:
        existing = (
            self.db.query(FraudAlert.id)
            .filter(FraudAlert.user_id == user_id)
            .filter(FraudAlert.day == day)
            .filter(FraudAlert.is_resolved.is_(False))
            .first()
        )
        return existing is not None

    @_store_operation("insert_alert")
    def insert_alert(self, user_id: int, alert_type: str, details: dict,
                     effective_date: date) -> bool:
        """
        Insert an unresolved alert dated to the anomalous day.

        Returns False when the open (user_id, day) slot was taken by a
        concurrent run between the existence check and this insert.
        """
        alert = FraudAlert(
            user_id=user_id,
            alert_type=alert_type,
            day=effective_date,
            open_day=effective_date,
            details=details,
            created_at=datetime.combine(effective_date, datetime.min.time()),
            is_resolved=False,
        )
        try:
            with self.db.begin_nested():
                self.db.add(alert)
        except IntegrityError:
            logger.warning("Open alert already exists", user_id=user_id,
                           day=effective_date.isoformat())
            metrics.increment("alerts.insert_conflicts")
            return False
        return True

    @_store_operation("fetch_unresolved_alerts")
    def fetch_unresolved_alerts(self) -> List[AlertView]:
        rows = (
            self.db.query(FraudAlert, User.name)
            .join(User, FraudAlert.user_id == User.id)
            .filter(FraudAlert.is_resolved.is_(False))
            .order_by(FraudAlert.created_at.desc(), FraudAlert.id.desc())
            .all()
        )
        views = []
        for alert, user_name in rows:
            details = alert.details or {}
            views.append(AlertView(
                alert_id=alert.id,
                user_id=alert.user_id,
                user_name=user_name,
                day=alert.day,
                spend=to_float(details.get("spend")),
                average=to_float(details.get("average")),
                z_score=to_float(details.get("z_score")),
                created_at=alert.created_at,
            ))
        return views

    @_store_operation("resolve_alert")
    def resolve_alert(self, alert_id: int) -> Optional[bool]:
        """
        Mark an alert resolved.

        Returns None if the alert does not exist, False if it was already
        resolved and True if this call resolved it.
        """
        alert = self.db.get(FraudAlert, alert_id)
        if alert is None:
            return None
        if alert.is_resolved:
            return False
        alert.mark_resolved()
        self.db.flush()
        return True

    # -------------------------------------------------------------------------
    # Review detail
    # -------------------------------------------------------------------------

    @_store_operation("fetch_transactions_for_user_day")
    def fetch_transactions_for_user_day(self, user_id: int, day: date) -> List[TransactionDetail]:
        """Ledger lines behind one DailySpend row, oldest first."""
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1)
        rows = (
            self.db.query(Transaction)
            .join(Account, Transaction.account_id == Account.id)
            .filter(Transaction.user_id == user_id)
            .filter(Transaction.date >= start)
            .filter(Transaction.date < end)
            .filter(Account.account_type == EXPENSE_ACCOUNT_TYPE)
            .filter(Transaction.trans_type == DEBIT)
            .order_by(Transaction.date.asc(), Transaction.id.asc())
            .all()
        )
        return [
            TransactionDetail(
                transaction_id=t.id,
                description=t.description,
                amount=to_decimal(t.amount),
                trans_type=t.trans_type,
                occurred_at=t.date,
            )
            for t in rows
        ]

    # -------------------------------------------------------------------------
    # Forecast inputs
    # -------------------------------------------------------------------------

    @_store_operation("fetch_monthly_expense_history")
    def fetch_monthly_expense_history(self, limit: int = 12,
                                      as_of: Optional[date] = None) -> List[MonthlyExpensePoint]:
        """
        Total expense per calendar month, oldest first.

        Only complete months are returned: anything dated in the month of
        as_of (default: today) or later is excluded, and only the last
        `limit` months are read. Every month from the first one with
        expense up to the last complete month gets a point, 0 if empty.
        """
        if limit <= 0:
            return []

        reference = as_of or date.today()
        current = pd.Period(year=reference.year, month=reference.month, freq="M")
        since = (current - limit).start_time.to_pydatetime()
        cutoff = current.start_time.to_pydatetime()
        rows = (
            self.db.query(Transaction.date, Transaction.amount)
            .join(Account, Transaction.account_id == Account.id)
            .filter(Account.account_type == EXPENSE_ACCOUNT_TYPE)
            .filter(Transaction.trans_type == DEBIT)
            .filter(Transaction.date >= since)
            .filter(Transaction.date < cutoff)
            .all()
        )
        if not rows:
            return []

        df = pd.DataFrame(
            [{"date": r.date, "amount": to_float(r.amount)} for r in rows]
        )
        df["month"] = pd.to_datetime(df["date"]).dt.to_period("M")
        monthly = df.groupby("month")["amount"].sum()

        months = pd.period_range(monthly.index.min(), current - 1, freq="M")
        monthly = monthly.reindex(months, fill_value=0.0).tail(limit)

        return [
            MonthlyExpensePoint(month_start=period.start_time.date(), total=to_decimal(round(total, 2)))
            for period, total in monthly.items()
        ]

    # -------------------------------------------------------------------------
    # Audit + unit of work
    # -------------------------------------------------------------------------

    @_store_operation("record_audit")
    def record_audit(self, user_id: int, action: str) -> None:
        self.db.add(AuditLog(user_id=user_id, action=action))
        self.db.commit()

    @_store_operation("commit")
    def commit(self) -> None:
        self.db.commit()

    @_store_operation("rollback")
    def rollback(self) -> None:
        self.db.rollback()
