"""
SQLAlchemy ORM models for Spend Sentinel.

Includes:
    - User, Account (chart of accounts)
    - Transaction (the ledger)
    - FraudAlert (z-score anomaly alerts and their review state)
    - AuditLog (who did what)

Author: Spend Sentinel Team
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Date, DateTime,
    ForeignKey, Text, JSON, Index
)
from sqlalchemy.orm import relationship
from database import Base


ACCOUNT_TYPES = ("Asset", "Liability", "Equity", "Revenue", "Expense")
TRANSACTION_TYPES = ("Debit", "Credit")
ROLES = ("Admin", "Manager", "Employee")

EXPENSE_ACCOUNT_TYPE = "Expense"
DEBIT = "Debit"


class User(Base):
    """Application user. Transactions and alerts are scoped per user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    role = Column(String, nullable=False, default="Employee")  # Admin|Manager|Employee
    created_at = Column(DateTime, default=datetime.utcnow)

    transactions = relationship("Transaction", back_populates="user")
    fraud_alerts = relationship("FraudAlert", back_populates="user")


class Account(Base):
    """Reference table for ledger accounts."""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False)
    account_type = Column(String, nullable=False)  # Asset|Liability|Equity|Revenue|Expense

    transactions = relationship("Transaction", back_populates="account")


class Transaction(Base):
    """Core ledger entry."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    trans_type = Column(String, nullable=False)  # Debit|Credit
    amount = Column(Numeric(12, 2), nullable=False)
    date = Column(DateTime, nullable=False)
    description = Column(String)

    user = relationship("User", back_populates="transactions")
    account = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
    )


class FraudAlert(Base):
    """
    Spending anomaly raised by the detector.

    created_at carries the anomalous day rather than the detection time.
    At most one unresolved alert may exist per (user_id, day). open_day
    mirrors day while the alert is open and is NULL once resolved, so a
    plain unique index on (user_id, open_day) enforces this on every
    dialect, even when detector runs overlap.
    """
    __tablename__ = "fraud_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    alert_type = Column(String, nullable=False)  # 'z_score_anomaly'
    day = Column(Date, nullable=False)
    open_day = Column(Date, nullable=True)
    details = Column(JSON, nullable=False)  # {day, spend, average, z_score}
    created_at = Column(DateTime, nullable=False)
    is_resolved = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="fraud_alerts")

    __table_args__ = (
        Index("uq_fraud_alerts_open_user_day", "user_id", "open_day", unique=True),
        Index("ix_fraud_alerts_resolved_created", "is_resolved", "created_at"),
    )

    def mark_resolved(self) -> None:
        self.is_resolved = True
        self.open_day = None


class AuditLog(Base):
    """Append-only record of privileged actions."""
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    action = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
