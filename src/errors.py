"""Exception hierarchy for gitlab-chat-relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay errors."""


class FatalStartupError(RelayError):
    """A required invariant could not be established during bootstrap.

    Only the bootstrap path raises this. Request handlers never see it.
    """


class StorageError(RelayError):
    """Raised when the durable key-value store fails a read or write."""

    def __init__(self, operation: str, recipient_id: int, key: str, cause: Exception) -> None:
        self.operation = operation
        self.recipient_id = recipient_id
        self.key = key
        self.cause = cause
        super().__init__(f"storage {operation} failed for {recipient_id}/{key}: {cause}")


class RandomSourceError(RelayError):
    """Raised when the operating system's secure random source fails."""


class EventDecodeError(RelayError):
    """Raised when a webhook body cannot be decoded for its event type."""

    def __init__(self, event_type: str, reason: str) -> None:
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"cannot decode {event_type or 'event'}: {reason}")


class EditError(RelayError):
    """Raised when appending to an existing chat message is not possible."""
