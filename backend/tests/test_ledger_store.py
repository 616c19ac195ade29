"""
Tests for the SQLAlchemy store against an in-memory SQLite database.

Covers aggregation, the one-open-alert-per-day index, review queries,
monthly history and translation of driver errors.

Run with: pytest tests/test_ledger_store.py -v
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import CreateIndex

from models import AuditLog, FraudAlert
from services.anomaly_detector import AnomalyDetector
from services.errors import StoreUnavailable
from services.expense_forecaster import ExpenseForecaster
from services.ledger_store import LedgerStore, to_date, to_decimal
from services.observability import metrics
from services.records import ALERT_TYPE_ZSCORE, DailySpend


DETAILS = {"day": "2025-03-01", "spend": 600.0, "average": 112.2, "z_score": 6.27}


def steady_values(normal_days=40, spike=600):
    return [90 if i % 2 == 0 else 110 for i in range(normal_days)] + [spike]


# =============================================================================
# Coercion Helpers
# =============================================================================

class TestCoercion:
    def test_to_decimal(self):
        assert to_decimal(None) == Decimal("0.00")
        assert to_decimal(10) == Decimal("10.00")
        assert to_decimal("19.5") == Decimal("19.50")
        assert to_decimal(0.1 + 0.2) == Decimal("0.30")
        assert to_decimal(Decimal("7.1")) == Decimal("7.10")

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_decimal("twelve")

    def test_to_date(self):
        assert to_date("2025-03-04") == date(2025, 3, 4)
        assert to_date(datetime(2025, 3, 4, 22, 15)) == date(2025, 3, 4)
        assert to_date(date(2025, 3, 4)) == date(2025, 3, 4)

    def test_to_date_rejects_other_types(self):
        with pytest.raises(ValueError):
            to_date(20250304)


# =============================================================================
# Daily Spend Aggregation
# =============================================================================

class TestDailyDebitSpend:
    def test_sums_expense_debits_per_user_day(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        ledger.txn(alice, "10.10", datetime(2025, 3, 1, 9, 0))
        ledger.txn(alice, "20.20", datetime(2025, 3, 1, 17, 30), account="Utilities")
        ledger.txn(alice, "5.00", date(2025, 3, 2))
        db_session.commit()

        rows = LedgerStore(db_session).fetch_daily_debit_spend()

        assert rows == [
            DailySpend(user_id=alice.id, day=date(2025, 3, 1), total=Decimal("30.30")),
            DailySpend(user_id=alice.id, day=date(2025, 3, 2), total=Decimal("5.00")),
        ]

    def test_ignores_credits_and_non_expense_accounts(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        ledger.txn(alice, "40.00", date(2025, 3, 1))
        ledger.txn(alice, "999.00", date(2025, 3, 1), trans_type="Credit")
        ledger.txn(alice, "5000.00", date(2025, 3, 1), account="Sales Revenue")
        ledger.txn(alice, "250.00", date(2025, 3, 2), account="Operating Cash")
        db_session.commit()

        rows = LedgerStore(db_session).fetch_daily_debit_spend()

        assert [(r.day, r.total) for r in rows] == [(date(2025, 3, 1), Decimal("40.00"))]

    def test_ordered_by_user_then_day(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        mark = ledger.user("Mark Manager", "Manager")
        ledger.txn(mark, "1.00", date(2025, 1, 2))
        ledger.txn(alice, "1.00", date(2025, 1, 3))
        ledger.txn(mark, "1.00", date(2025, 1, 1))
        ledger.txn(alice, "1.00", date(2025, 1, 1))
        db_session.commit()

        rows = LedgerStore(db_session).fetch_daily_debit_spend()

        assert [(r.user_id, r.day.day) for r in rows] == [
            (alice.id, 1), (alice.id, 3), (mark.id, 1), (mark.id, 2),
        ]

    def test_empty_ledger(self, db_session):
        assert LedgerStore(db_session).fetch_daily_debit_spend() == []


# =============================================================================
# Alerts
# =============================================================================

class TestAlertPersistence:
    def test_insert_dates_alert_to_anomalous_day(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        store = LedgerStore(db_session)

        assert store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 3, 1)) is True
        store.commit()

        alert = db_session.query(FraudAlert).one()
        assert alert.created_at == datetime(2025, 3, 1, 0, 0)
        assert alert.day == date(2025, 3, 1)
        assert alert.is_resolved is False
        assert alert.details["z_score"] == 6.27

    def test_second_open_alert_for_same_day_rejected(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        store = LedgerStore(db_session)
        day = date(2025, 3, 1)

        assert store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, day) is True
        assert store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, day) is False
        store.commit()

        assert db_session.query(FraudAlert).count() == 1
        assert metrics.counters["alerts.insert_conflicts"] == 1

    def test_rejected_insert_keeps_earlier_work(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        store = LedgerStore(db_session)

        store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 3, 1))
        store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 3, 1))
        store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 3, 2))
        store.commit()

        assert sorted(a.day.day for a in db_session.query(FraudAlert).all()) == [1, 2]

    def test_resolved_alert_frees_the_day(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        store = LedgerStore(db_session)
        day = date(2025, 3, 1)

        store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, day)
        store.commit()
        first = db_session.query(FraudAlert).one()
        store.resolve_alert(first.id)
        store.commit()

        assert store.unresolved_alert_exists(alice.id, day) is False
        assert store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, day) is True
        store.commit()
        assert store.unresolved_alert_exists(alice.id, day) is True
        assert db_session.query(FraudAlert).count() == 2

    def test_resolve_alert_states(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        store = LedgerStore(db_session)
        store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 3, 1))
        store.commit()
        alert_id = db_session.query(FraudAlert.id).scalar()

        assert store.resolve_alert(9999) is None
        assert store.resolve_alert(alert_id) is True
        store.commit()
        assert store.resolve_alert(alert_id) is False

    def test_unresolved_alerts_joined_with_user(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        mark = ledger.user("Mark Manager", "Manager")
        store = LedgerStore(db_session)
        store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 3, 1))
        store.insert_alert(mark.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 6, 9))
        store.insert_alert(mark.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 1, 4))
        store.commit()
        resolved = db_session.query(FraudAlert).filter(FraudAlert.day == date(2025, 1, 4)).one()
        store.resolve_alert(resolved.id)
        store.commit()

        views = store.fetch_unresolved_alerts()

        assert [(v.user_name, v.day) for v in views] == [
            ("Mark Manager", date(2025, 6, 9)),
            ("Alice Admin", date(2025, 3, 1)),
        ]
        assert views[0].spend == 600.0
        assert views[0].average == 112.2

    def test_resolving_clears_open_day(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        store = LedgerStore(db_session)
        store.insert_alert(alice.id, ALERT_TYPE_ZSCORE, DETAILS, date(2025, 3, 1))
        store.commit()
        alert = db_session.query(FraudAlert).one()
        assert alert.open_day == date(2025, 3, 1)

        store.resolve_alert(alert.id)
        store.commit()

        assert db_session.query(FraudAlert).one().open_day is None


class TestOpenAlertIndex:
    """The one-open-alert index must not depend on dialect-specific filters."""

    @pytest.fixture
    def index(self):
        return next(
            idx for idx in FraudAlert.__table__.indexes
            if idx.name == "uq_fraud_alerts_open_user_day"
        )

    @pytest.mark.parametrize("dialect", [sqlite.dialect(), postgresql.dialect(), mysql.dialect()])
    def test_plain_unique_index_on_every_dialect(self, index, dialect):
        ddl = str(CreateIndex(index).compile(dialect=dialect))

        assert ddl.startswith("CREATE UNIQUE INDEX uq_fraud_alerts_open_user_day")
        assert "open_day" in ddl
        assert "WHERE" not in ddl.upper()

    def test_index_columns(self, index):
        assert index.unique is True
        assert [c.name for c in index.columns] == ["user_id", "open_day"]


# =============================================================================
# Review Detail
# =============================================================================

class TestTransactionsForUserDay:
    def test_expense_debits_oldest_first(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        mark = ledger.user("Mark Manager", "Manager")
        ledger.txn(alice, "600.00", datetime(2025, 3, 1, 23, 41), description="LATE")
        ledger.txn(alice, "25.00", datetime(2025, 3, 1, 0, 5), description="EARLY")
        ledger.txn(alice, "80.00", datetime(2025, 3, 1, 12, 0), trans_type="Credit")
        ledger.txn(alice, "70.00", datetime(2025, 3, 2, 0, 0))
        ledger.txn(mark, "30.00", datetime(2025, 3, 1, 10, 0))
        db_session.commit()

        lines = LedgerStore(db_session).fetch_transactions_for_user_day(alice.id, date(2025, 3, 1))

        assert [line.description for line in lines] == ["EARLY", "LATE"]
        assert lines[1].amount == Decimal("600.00")
        assert lines[1].occurred_at == datetime(2025, 3, 1, 23, 41)
        assert sum(line.amount for line in lines) == Decimal("625.00")

    def test_no_lines(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        db_session.commit()

        assert LedgerStore(db_session).fetch_transactions_for_user_day(alice.id, date(2025, 3, 1)) == []


# =============================================================================
# Monthly History
# =============================================================================

class TestMonthlyExpenseHistory:
    @pytest.fixture
    def quarter(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        ledger.txn(alice, "100.00", date(2025, 1, 3))
        ledger.txn(alice, "50.00", date(2025, 1, 28), account="Utilities")
        ledger.txn(alice, "200.00", date(2025, 2, 14))
        ledger.txn(alice, "300.00", date(2025, 3, 31))
        ledger.txn(alice, "999.00", date(2025, 4, 2))
        ledger.txn(alice, "5000.00", date(2025, 2, 1), account="Sales Revenue", trans_type="Credit")
        db_session.commit()
        return LedgerStore(db_session)

    def test_complete_months_only(self, quarter):
        history = quarter.fetch_monthly_expense_history(as_of=date(2025, 4, 15))

        assert [(p.month_start, p.total) for p in history] == [
            (date(2025, 1, 1), Decimal("150.00")),
            (date(2025, 2, 1), Decimal("200.00")),
            (date(2025, 3, 1), Decimal("300.00")),
        ]

    def test_limit_keeps_most_recent(self, quarter):
        history = quarter.fetch_monthly_expense_history(limit=2, as_of=date(2025, 4, 15))

        assert [p.month_start.month for p in history] == [2, 3]

    def test_empty(self, db_session):
        assert LedgerStore(db_session).fetch_monthly_expense_history(as_of=date(2025, 4, 15)) == []

    def test_month_without_expense_counts_as_zero(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        ledger.txn(alice, "100.00", date(2025, 1, 10))
        ledger.txn(alice, "300.00", date(2025, 3, 10))
        db_session.commit()
        store = LedgerStore(db_session)

        history = store.fetch_monthly_expense_history(as_of=date(2025, 4, 15))

        assert [(p.month_start, p.total) for p in history] == [
            (date(2025, 1, 1), Decimal("100.00")),
            (date(2025, 2, 1), Decimal("0.00")),
            (date(2025, 3, 1), Decimal("300.00")),
        ]

        forecast = ExpenseForecaster(store).forecast(as_of=date(2025, 4, 15))
        assert forecast.slope == pytest.approx(100.0)
        assert [p.label for p in forecast.historical] == ["Jan 25", "Feb 25", "Mar 25"]

    def test_quiet_recent_months_are_filled_up_to_cutoff(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        ledger.txn(alice, "400.00", date(2025, 1, 10))
        db_session.commit()

        history = LedgerStore(db_session).fetch_monthly_expense_history(as_of=date(2025, 4, 15))

        assert [(p.month_start.month, p.total) for p in history] == [
            (1, Decimal("400.00")), (2, Decimal("0.00")), (3, Decimal("0.00")),
        ]

    def test_expense_older_than_window_is_not_read(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        ledger.txn(alice, "9999.00", date(2024, 3, 31))
        ledger.txn(alice, "250.00", date(2024, 4, 1))
        ledger.txn(alice, "350.00", date(2025, 3, 5))
        db_session.commit()

        history = LedgerStore(db_session).fetch_monthly_expense_history(as_of=date(2025, 4, 15))

        assert len(history) == 12
        assert history[0].month_start == date(2024, 4, 1)
        assert history[0].total == Decimal("250.00")
        assert history[-1].total == Decimal("350.00")
        assert sum(p.total for p in history) == Decimal("600.00")


# =============================================================================
# Audit Log
# =============================================================================

class TestAudit:
    def test_record_audit_commits(self, db_session, ledger):
        mark = ledger.user("Mark Manager", "Manager")
        LedgerStore(db_session).record_audit(mark.id, "Resolved fraud alert ID: 3.")

        entry = db_session.query(AuditLog).one()
        assert entry.user_id == mark.id
        assert entry.action == "Resolved fraud alert ID: 3."


# =============================================================================
# Error Translation
# =============================================================================

class TestStoreErrors:
    def test_driver_error_becomes_store_unavailable(self):
        db = MagicMock()
        db.query.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))

        with pytest.raises(StoreUnavailable) as exc_info:
            LedgerStore(db).fetch_daily_debit_spend()

        assert exc_info.value.operation == "fetch_daily_debit_spend"
        assert isinstance(exc_info.value.cause, OperationalError)
        assert metrics.counters["store.errors:operation=fetch_daily_debit_spend"] == 1

    def test_commit_failure(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with pytest.raises(StoreUnavailable):
            LedgerStore(db).commit()


# =============================================================================
# Detector Against SQLite
# =============================================================================

class TestDetectorOnDatabase:
    def test_run_rerun_resolve_rerun(self, db_session, ledger):
        alice = ledger.user("Alice Admin", "Admin")
        ledger.daily(alice, steady_values(), start=date(2025, 1, 1))
        store = LedgerStore(db_session)
        detector = AnomalyDetector(store)

        assert detector.run().new_alerts_count == 1
        assert detector.run().new_alerts_count == 0

        views = store.fetch_unresolved_alerts()
        assert len(views) == 1
        assert views[0].day == date(2025, 2, 10)
        assert views[0].spend == 600.0
        assert views[0].user_name == "Alice Admin"

        store.resolve_alert(views[0].alert_id)
        store.commit()

        assert detector.run().new_alerts_count == 1
        assert db_session.query(FraudAlert).count() == 2
        assert len(store.fetch_unresolved_alerts()) == 1

    def test_revenue_activity_does_not_trigger_alerts(self, db_session, ledger):
        sam = ledger.user("Sam Sales")
        ledger.daily(sam, [100] * 10, start=date(2025, 1, 1))
        ledger.daily(sam, [90, 110] * 10 + [50000], start=date(2025, 1, 1), account="Sales Revenue")

        result = AnomalyDetector(LedgerStore(db_session), flag_zero_variance=False).run()

        assert result.new_alerts_count == 0
        assert result.users_scanned == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
