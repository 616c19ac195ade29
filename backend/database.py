"""Database setup for the finance ledger and fraud alert tables."""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from config import DATABASE_URL, DATABASE_ECHO


def configure_sqlite(engine):
    """
    Let SQLAlchemy own transaction boundaries on pysqlite connections.

    The driver otherwise defers BEGIN until the first DML statement, which
    breaks SAVEPOINT-based alert inserts.
    """
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(url: str, **kwargs):
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return configure_sqlite(create_engine(url, connect_args=connect_args, **kwargs))
    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = build_engine(DATABASE_URL, echo=DATABASE_ECHO)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables and seed the default chart of accounts."""
    from models import Account

    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    db = SessionLocal(bind=bind)
    try:
        existing = db.query(Account).count()
        if existing == 0:
            default_accounts = [
                Account(name="Operating Cash", account_type="Asset"),
                Account(name="Accounts Payable", account_type="Liability"),
                Account(name="Sales Revenue", account_type="Revenue"),
                Account(name="Office Supplies", account_type="Expense"),
                Account(name="Travel", account_type="Expense"),
                Account(name="Meals & Entertainment", account_type="Expense"),
                Account(name="Software Subscriptions", account_type="Expense"),
                Account(name="Utilities", account_type="Expense"),
            ]
            db.add_all(default_accounts)
            db.commit()
    finally:
        db.close()
