"""Exception hierarchy shared by the service layer."""

from __future__ import annotations


class SummaryHubError(RuntimeError):
    """Base class for errors raised by the services."""


class ValidationError(SummaryHubError):
    """Raised when a submission or edit carries missing or invalid data."""


class PayloadTooLargeError(ValidationError):
    """Raised when an uploaded file exceeds the configured size limit."""


class NotFoundError(SummaryHubError):
    """Raised when a record, message or log entry does not exist."""


class StorageError(SummaryHubError):
    """Raised when a JSON document or an artifact cannot be read or written."""


class NotificationError(SummaryHubError):
    """Raised by notifiers; dispatchers log it and never propagate it."""


__all__ = [
    "NotFoundError",
    "NotificationError",
    "PayloadTooLargeError",
    "StorageError",
    "SummaryHubError",
    "ValidationError",
]
