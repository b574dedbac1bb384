"""
Newsletter component ports.

Protocol interfaces for the record store, the validation queue,
the confirmation email sender and the clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from src.components.newsletter.models import SubscriberRecord, ValidationJob


class SubscriberStorePort(Protocol):
    """
    Subscriber record store interface.

    Keyed by record id with a secondary lookup by normalized email.
    All writes are full-record overwrites; callers read-modify-write.

    Raises:
        StoreUnavailableError: on transient backend failure
    """

    def get_by_email(self, email: str) -> SubscriberRecord | None:
        """Get record by normalized email."""
        ...

    def get_by_id(self, record_id: str) -> SubscriberRecord | None:
        """Get record by id."""
        ...

    def put(self, record: SubscriberRecord) -> None:
        """Insert or overwrite the full record."""
        ...

    def put_if_absent_by_email(self, record: SubscriberRecord) -> SubscriberRecord:
        """
        Create the record only if no record exists for its email.

        Returns:
            The stored record: ``record`` when inserted, otherwise the
            record that already holds the email.
        """
        ...


class ValidationQueuePort(Protocol):
    """
    Producer side of the validation queue.

    Delivery is at-least-once with no ordering guarantee, even for
    jobs about the same email.
    """

    def enqueue(self, job: ValidationJob) -> None:
        """
        Enqueue a validation job.

        Raises:
            QueueUnavailableError: on transient backend failure
        """
        ...


@dataclass(frozen=True)
class QueueMessage:
    """A delivered queue message awaiting ack or nack."""

    message_id: str
    body: str
    attempts: int = 1


class ValidationQueueConsumerPort(Protocol):
    """
    Consumer side of the validation queue.

    Received messages stay invisible until acked, nacked, or until
    their visibility timeout lapses, after which they are redelivered.
    """

    def receive(self, max_messages: int, now: datetime) -> list[QueueMessage]:
        """Claim up to ``max_messages`` visible messages."""
        ...

    def ack(self, message_id: str) -> None:
        """Remove a processed message."""
        ...

    def nack(self, message_id: str, error: str) -> None:
        """Return a message for redelivery (or dead-letter it)."""
        ...


class ConfirmationSenderPort(Protocol):
    """Sends the double opt-in confirmation email."""

    def send_confirmation_email(self, recipient_email: str, confirmation_url: str) -> bool:
        """
        Send a confirmation email.

        Args:
            recipient_email: Email to send to
            confirmation_url: Full URL carrying the record id and token

        Returns:
            True if the email was accepted for delivery
        """
        ...


class ClockPort(Protocol):
    """Time source. All timestamps are UTC."""

    def now_utc(self) -> datetime:
        ...
