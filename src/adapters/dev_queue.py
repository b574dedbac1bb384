"""
Dev Validation Queue Adapter.

In-process validation queue for development and testing. Implements
both the producer (ValidationQueuePort) and consumer
(ValidationQueueConsumerPort) sides with the same at-least-once
semantics as the SQLite queue:

- Received messages are hidden until acked, nacked or their
  visibility timeout lapses
- Nacked messages become visible again until max_attempts, then
  move to the dead-letter list
- Messages delivered max_attempts times without an ack are also
  dead-lettered on the next receive
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from src.components.newsletter.models import QueueUnavailableError, ValidationJob
from src.components.newsletter.ports import QueueMessage

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    message_id: str
    body: str
    enqueued_at: datetime
    attempts: int = 0
    invisible_until: datetime | None = None
    last_error: str | None = None


class InMemoryValidationQueue:
    """List-backed validation queue."""

    def __init__(
        self,
        visibility_timeout_seconds: int = 30,
        max_attempts: int = 5,
    ) -> None:
        self._entries: list[_Entry] = []
        self.dead_letters: list[_Entry] = []
        self._visibility_timeout = timedelta(seconds=visibility_timeout_seconds)
        self._max_attempts = max_attempts
        self._lock = threading.Lock()
        self.available = True  # Flip to simulate an outage

    def enqueue(self, job: ValidationJob) -> None:
        if not self.available:
            raise QueueUnavailableError("in-memory queue marked unavailable")
        entry = _Entry(
            message_id=uuid4().hex,
            body=json.dumps(job.to_message()),
            enqueued_at=datetime.now(UTC),
        )
        with self._lock:
            self._entries.append(entry)
        logger.debug("Enqueued validation job %s for record %s", entry.message_id, job.record_id)

    def receive(self, max_messages: int, now: datetime) -> list[QueueMessage]:
        if not self.available:
            raise QueueUnavailableError("in-memory queue marked unavailable")
        messages: list[QueueMessage] = []
        with self._lock:
            for entry in list(self._entries):
                if len(messages) >= max_messages:
                    break
                if entry.invisible_until is not None and entry.invisible_until > now:
                    continue
                if entry.attempts >= self._max_attempts:
                    # Delivered max_attempts times without an ack
                    self._entries.remove(entry)
                    self.dead_letters.append(entry)
                    logger.warning(
                        "Validation job %s dead-lettered after %d deliveries without ack",
                        entry.message_id,
                        entry.attempts,
                    )
                    continue
                entry.attempts += 1
                entry.invisible_until = now + self._visibility_timeout
                messages.append(
                    QueueMessage(
                        message_id=entry.message_id,
                        body=entry.body,
                        attempts=entry.attempts,
                    )
                )
        return messages

    def ack(self, message_id: str) -> None:
        with self._lock:
            self._entries = [e for e in self._entries if e.message_id != message_id]

    def nack(self, message_id: str, error: str) -> None:
        with self._lock:
            for entry in self._entries:
                if entry.message_id != message_id:
                    continue
                entry.last_error = error
                if entry.attempts >= self._max_attempts:
                    self._entries.remove(entry)
                    self.dead_letters.append(entry)
                    logger.warning(
                        "Validation job %s dead-lettered after %d attempts: %s",
                        message_id,
                        entry.attempts,
                        error,
                    )
                else:
                    entry.invisible_until = None
                return

    # --- Test Helper Methods ---

    def jobs(self) -> list[ValidationJob]:
        """Decoded jobs still in the queue, in enqueue order."""
        with self._lock:
            bodies = [json.loads(e.body) for e in self._entries]
        return [ValidationJob(record_id=b["record_id"], email=b["email"]) for b in bodies]

    def __len__(self) -> int:
        return len(self._entries)
