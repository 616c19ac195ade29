"""
Pytest configuration and shared fixtures for Spend Sentinel tests.

This file is automatically loaded by pytest and provides:
    - An in-memory store double for detector and service tests
    - A SQLite in-memory database for store and API tests
    - Ledger builders for users, transactions and daily spend

Author: Spend Sentinel Team
"""

import pytest
import sys
from pathlib import Path
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database import build_engine, init_db
from models import Account, Transaction, User
from services.observability import metrics
from services.records import AlertView, DailySpend, MonthlyExpensePoint


# =============================================================================
# In-Memory Store
# =============================================================================

class InMemoryStore:
    """
    Store double with the same operations as LedgerStore.

    Inserted alerts stay pending until commit(); rollback() drops them.
    """

    def __init__(self, daily=None, users=None, monthly=None, transactions=None):
        self.daily = list(daily or [])
        self.users = dict(users or {})
        self.monthly = list(monthly or [])
        self.transactions = dict(transactions or {})
        self.alerts = []
        self.pending = []
        self.audit = []
        self.commits = 0
        self.rollbacks = 0
        self._next_id = 1

    def fetch_daily_debit_spend(self):
        return list(self.daily)

    def unresolved_alert_exists(self, user_id, day):
        return any(
            a["user_id"] == user_id and a["day"] == day and not a["is_resolved"]
            for a in self.alerts + self.pending
        )

    def insert_alert(self, user_id, alert_type, details, effective_date):
        self.pending.append({
            "id": self._next_id,
            "user_id": user_id,
            "alert_type": alert_type,
            "details": details,
            "day": effective_date,
            "created_at": datetime.combine(effective_date, time.min),
            "is_resolved": False,
        })
        self._next_id += 1
        return True

    def fetch_unresolved_alerts(self):
        open_alerts = [a for a in self.alerts if not a["is_resolved"]]
        open_alerts.sort(key=lambda a: (a["created_at"], a["id"]), reverse=True)
        return [
            AlertView(
                alert_id=a["id"],
                user_id=a["user_id"],
                user_name=self.users.get(a["user_id"], "Unknown"),
                day=a["day"],
                spend=a["details"]["spend"],
                average=a["details"]["average"],
                z_score=a["details"]["z_score"],
                created_at=a["created_at"],
            )
            for a in open_alerts
        ]

    def resolve_alert(self, alert_id):
        for alert in self.alerts:
            if alert["id"] == alert_id:
                if alert["is_resolved"]:
                    return False
                alert["is_resolved"] = True
                return True
        return None

    def fetch_transactions_for_user_day(self, user_id, day):
        return list(self.transactions.get((user_id, day), []))

    def fetch_monthly_expense_history(self, limit=12, as_of=None):
        return self.monthly[-limit:]

    def record_audit(self, user_id, action):
        self.audit.append((user_id, action))

    def commit(self):
        self.alerts.extend(self.pending)
        self.pending = []
        self.commits += 1

    def rollback(self):
        self.pending = []
        self.rollbacks += 1

    def open_alerts(self):
        return [a for a in self.alerts if not a["is_resolved"]]


# =============================================================================
# Daily Spend Builders
# =============================================================================

def daily_series(user_id, values, start=date(2025, 1, 1)):
    """DailySpend rows on consecutive days starting at `start`."""
    return [
        DailySpend(user_id=user_id, day=start + timedelta(days=i), total=Decimal(str(v)))
        for i, v in enumerate(values)
    ]


def steady_with_spike(user_id, normal_days=40, spike=600, start=date(2025, 1, 1)):
    """
    Alternating 90/110 spend followed by one spike day.

    With the defaults the spike scores z ~ 6.3 and every normal day stays
    well inside one standard deviation.
    """
    values = [90 if i % 2 == 0 else 110 for i in range(normal_days)] + [spike]
    return daily_series(user_id, values, start)


def monthly_series(values, start=date(2025, 1, 1)):
    points = []
    for i, v in enumerate(values):
        index = start.year * 12 + (start.month - 1) + i
        month_start = date(index // 12, index % 12 + 1, 1)
        points.append(MonthlyExpensePoint(month_start=month_start, total=Decimal(str(v))))
    return points


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def memory_store():
    return InMemoryStore(users={1: "Alice Admin", 2: "Mark Manager"})


@pytest.fixture
def mock_store():
    """MagicMock store with empty results for every read."""
    store = MagicMock()
    store.fetch_daily_debit_spend.return_value = []
    store.unresolved_alert_exists.return_value = False
    store.insert_alert.return_value = True
    store.fetch_unresolved_alerts.return_value = []
    store.fetch_transactions_for_user_day.return_value = []
    store.fetch_monthly_expense_history.return_value = []
    return store


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with the default chart of accounts."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


class LedgerBuilder:
    """Small helper for writing users and ledger lines in tests."""

    def __init__(self, db):
        self.db = db
        self.accounts = {a.name: a.id for a in db.query(Account).all()}

    def user(self, name, role="Employee"):
        user = User(name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role)
        self.db.add(user)
        self.db.flush()
        return user

    def txn(self, user, amount, when, account="Travel", trans_type="Debit", description="TEST"):
        if isinstance(when, date) and not isinstance(when, datetime):
            when = datetime.combine(when, time(12, 0))
        txn = Transaction(
            user_id=user.id,
            account_id=self.accounts[account],
            trans_type=trans_type,
            amount=Decimal(str(amount)),
            date=when,
            description=description,
        )
        self.db.add(txn)
        return txn

    def daily(self, user, values, start=date(2025, 1, 1), account="Travel"):
        for i, v in enumerate(values):
            self.txn(user, v, start + timedelta(days=i), account=account)
        self.db.commit()


@pytest.fixture
def ledger(db_session):
    return LedgerBuilder(db_session)
