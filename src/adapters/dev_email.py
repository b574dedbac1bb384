"""
Dev Email Adapter.

Logs confirmation emails instead of sending them.
Used for local development and testing.

Production would hand the message to a real provider (SMTP/SES);
this keeps the validation flow observable without sending mail.

Key behaviors:
- Logs email details at a configurable level
- Stores emails in memory for test assertions
- Can be told to refuse sends, to exercise redelivery
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

logger = logging.getLogger(__name__)

CONFIRMATION_SUBJECT = "Please confirm your newsletter subscription"


@dataclass
class SentEmail:
    """Record of a logged email for test assertions."""

    id: str
    recipient: str
    subject: str
    body_text: str
    confirmation_url: str
    logged_at: datetime


@dataclass
class DevEmailAdapter:
    """
    Dev email adapter that logs instead of sending.

    Implements ConfirmationSenderPort.
    """

    # In-memory storage for test assertions
    sent_emails: list[SentEmail] = field(default_factory=list)

    # Configuration
    log_level: int = logging.INFO
    accept: bool = True  # False simulates a provider rejecting the send

    def send_confirmation_email(self, recipient_email: str, confirmation_url: str) -> bool:
        """
        Log a confirmation email.

        Args:
            recipient_email: Email address of recipient
            confirmation_url: Link carrying the record id and token

        Returns:
            True unless configured to refuse
        """
        if not self.accept:
            logger.warning("EMAIL (dev): refused send to %s", recipient_email)
            return False

        message_id = f"dev-{uuid4().hex[:12]}"
        body = (
            "Thanks for subscribing! Confirm your address by visiting:\n"
            f"{confirmation_url}\n"
        )

        self.sent_emails.append(
            SentEmail(
                id=message_id,
                recipient=recipient_email,
                subject=CONFIRMATION_SUBJECT,
                body_text=body,
                confirmation_url=confirmation_url,
                logged_at=datetime.now(UTC),
            )
        )

        logger.log(
            self.log_level,
            "EMAIL (dev): To=%s, Subject=%s, URL=%s, MessageID=%s",
            recipient_email,
            CONFIRMATION_SUBJECT,
            confirmation_url,
            message_id,
        )
        return True

    # --- Test Helper Methods ---

    def get_last_email(self) -> SentEmail | None:
        """Get the most recently logged email."""
        return self.sent_emails[-1] if self.sent_emails else None

    def get_emails_to(self, recipient: str) -> list[SentEmail]:
        """Get all emails logged to a specific recipient."""
        return [e for e in self.sent_emails if e.recipient == recipient]

    def clear(self) -> None:
        self.sent_emails.clear()
