"""
Newsletter component models.

Data models for newsletter subscription state management.

Lifecycle: (absent) → pending_validation → confirmed → unsubscribed,
with unsubscribed → pending_validation on re-subscription.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# --- Lifecycle ---


class SubscriberStatus(Enum):
    """
    Persisted subscriber status.

    A subscriber that has no record is "absent"; the state machine
    represents that as ``None`` rather than a stored value.
    """

    PENDING_VALIDATION = "pending_validation"  # Awaiting confirmation link
    CONFIRMED = "confirmed"  # Address confirmed, active subscriber
    UNSUBSCRIBED = "unsubscribed"  # Opted out, revivable by subscribing again


# --- Entity ---


@dataclass
class SubscriberRecord:
    """
    Subscriber record, one per normalized email address.

    ``id`` and ``email`` never change after creation. Records are never
    deleted; unsubscribing is a status change.
    """

    id: str
    email: str
    status: SubscriberStatus = SubscriberStatus.PENDING_VALIDATION
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    validation_token: str | None = None  # Issued by the validation consumer
    token_expires_at: datetime | None = None


@dataclass(frozen=True)
class ValidationJob:
    """Queued request to send a confirmation email for a pending subscriber."""

    record_id: str
    email: str

    def to_message(self) -> dict[str, str]:
        return {"record_id": self.record_id, "email": self.email}


# --- Input Models ---


@dataclass(frozen=True)
class SubscribeInput:
    """Input for a subscribe request."""

    email: str


@dataclass(frozen=True)
class UnsubscribeInput:
    """Input for an unsubscribe request."""

    email: str


@dataclass(frozen=True)
class ConfirmInput:
    """Input for a confirmation link. Links carry the record id, not the email."""

    id: str
    token: str | None = None


@dataclass(frozen=True)
class ValidateInput:
    """Input for one consumed validation job."""

    job: ValidationJob


# --- Output Models ---


@dataclass(frozen=True)
class HandlerOutput:
    """Result of a handled request, ready to be mapped to a response."""

    success: bool
    message: str
    status_code: int = 200
    outcome: str | None = None
    subscriber_id: str | None = None

    def to_response(self) -> dict[str, Any]:
        """Public response body. Never exposes the subscriber id."""
        return {"success": self.success, "message": self.message}


# --- Configuration ---


@dataclass(frozen=True)
class NewsletterConfig:
    """Newsletter handler configuration."""

    base_url: str = "http://localhost:8000"
    confirmation_path: str = "/confirm"
    token_ttl_hours: int = 24
    require_token: bool = False
    max_email_length: int = 254
    blocked_domains: frozenset[str] = frozenset()


# --- Error Types ---


class NewsletterError(Exception):
    """Base newsletter error."""

    status_code = 500
    retryable = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInputError(NewsletterError):
    """Malformed email address or request body."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class NotFoundError(NewsletterError):
    """Confirmation for an identifier that resolves to no record."""

    status_code = 404

    def __init__(self, message: str = "Subscriber not found") -> None:
        super().__init__(message)


class StoreUnavailableError(NewsletterError):
    """Transient record store failure. Safe for the caller to retry."""

    retryable = True

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("Subscriber store is temporarily unavailable")


class QueueUnavailableError(NewsletterError):
    """Transient validation queue failure. Safe for the caller to retry."""

    retryable = True

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("Validation queue is temporarily unavailable")
