"""Exceptions raised by the detection, review and forecasting services."""


class SentinelError(Exception):
    """Base class for service-level failures."""


class StoreUnavailable(SentinelError):
    """
    The backing store could not be reached or rejected the operation.

    Retryable: a detection run that fails with this error has committed
    nothing, and re-running it will not duplicate alerts.
    """

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        message = f"Store unavailable during {operation}"
        if cause is not None:
            message = f"{message}: {cause.__class__.__name__}"
        super().__init__(message)


class NotFoundError(SentinelError):
    """Requested entity does not exist."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class ValidationError(SentinelError):
    """Malformed or missing identifiers in a request."""
