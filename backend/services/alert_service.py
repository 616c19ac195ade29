"""
Alert Service - review workflow for raised fraud alerts.

Covers the human side of the alert lifecycle: the queue of unresolved
alerts, the ledger lines behind a flagged day, and the one-way resolve
transition. Role checks happen before these methods are called.
"""

from datetime import date, datetime
from typing import List, Union

from services.errors import NotFoundError, StoreUnavailable, ValidationError
from services.observability import logger, metrics, timed, log_alert_resolved
from services.records import Actor, AlertView, ResolveOutcome, TransactionDetail


def parse_user_id(value) -> int:
    """Validate a user identifier coming from a request."""
    if value is None or isinstance(value, bool):
        raise ValidationError("user_id is required")
    try:
        user_id = int(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"user_id must be an integer, got {value!r}") from e
    if user_id <= 0:
        raise ValidationError(f"user_id must be positive, got {user_id}")
    return user_id


def parse_day(value: Union[str, date, None]) -> date:
    """Validate a calendar day given as a date or an ISO YYYY-MM-DD string."""
    if value is None or value == "":
        raise ValidationError("day is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"day must be an ISO date (YYYY-MM-DD), got {value!r}") from e


class AlertService:
    """Service for alert review operations."""

    def __init__(self, store):
        self.store = store

    @timed("alerts.list")
    def list_unresolved(self) -> List[AlertView]:
        """Unresolved alerts, most recent anomalous day first."""
        alerts = self.store.fetch_unresolved_alerts()
        metrics.gauge("alerts.unresolved", len(alerts))
        return alerts

    @timed("alerts.resolve")
    def resolve(self, alert_id: int, actor: Actor) -> ResolveOutcome:
        """
        Mark an alert resolved.

        Resolution is terminal. Resolving an alert twice is not an error;
        the outcome reports already_resolved=True and nothing changes.

        Raises:
            NotFoundError: No alert with this id.
        """
        resolved = self.store.resolve_alert(alert_id)
        if resolved is None:
            self.store.rollback()
            raise NotFoundError("Alert", alert_id)

        if resolved:
            self.store.commit()

        outcome = ResolveOutcome(alert_id=alert_id, already_resolved=not resolved)
        log_alert_resolved(alert_id, actor.user_id, outcome.already_resolved)
        return outcome

    def record_resolution(self, alert_id: int, actor: Actor) -> bool:
        """
        Write the audit entry for a resolve.

        The audit trail is a side channel: a failed write is logged and
        reported through the return value, never raised.
        """
        try:
            self.store.record_audit(actor.user_id, f"Resolved fraud alert ID: {alert_id}.")
        except StoreUnavailable as e:
            logger.error("Audit log write failed", alert_id=alert_id, error=str(e))
            metrics.increment("audit.errors")
            return False
        return True

    @timed("alerts.transaction_detail")
    def transaction_detail(self, user_id, day) -> List[TransactionDetail]:
        """
        Ledger lines that make up a user's debit spend on one day.

        Raises:
            ValidationError: user_id or day is missing or malformed.
        """
        return self.store.fetch_transactions_for_user_day(parse_user_id(user_id), parse_day(day))
