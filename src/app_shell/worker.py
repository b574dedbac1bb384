"""
Validation queue worker.

Consumes validation jobs and runs the validate handler for each one.

Key behaviors:
- Ack on success or skip (record gone / no longer pending)
- Ack and drop poison messages that cannot be decoded
- Nack on transient failures so the message is redelivered
- Never raises out of a batch; one bad message does not stop others
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from src.components.newsletter.component import run_validate
from src.components.newsletter.models import (
    InvalidInputError,
    NewsletterConfig,
    NewsletterError,
    ValidateInput,
    ValidationJob,
)
from src.components.newsletter.ports import (
    ClockPort,
    ConfirmationSenderPort,
    QueueMessage,
    SubscriberStorePort,
    ValidationQueueConsumerPort,
)
from src.components.newsletter.state import Outcome

logger = logging.getLogger(__name__)


class MessageStatus(Enum):
    """Per-message processing result."""

    PROCESSED = "processed"
    SKIPPED = "skipped"
    DROPPED = "dropped"  # Undecodable, acked without processing
    RETRY = "retry"  # Nacked for redelivery
    NO_MESSAGES = "no_messages"


@dataclass
class MessageResult:
    status: MessageStatus
    message_id: str | None = None
    detail: str = ""
    execution_time_ms: int = 0


@dataclass
class BatchResult:
    """Result of processing a batch of messages."""

    total_processed: int = 0
    succeeded: int = 0
    retried: int = 0
    dropped: int = 0
    results: list[MessageResult] = field(default_factory=list)


def decode_job(body: str) -> ValidationJob:
    """
    Decode a queue message body into a ValidationJob.

    Accepts ``{"record_id", "email"}`` and the legacy
    ``{"action": "validate_email", "subscriber_id", "email"}`` shape.

    Raises:
        InvalidInputError: on malformed JSON or missing fields
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Malformed validation message: {e}") from e

    if not isinstance(data, dict):
        raise InvalidInputError("Validation message must be a JSON object")

    action = data.get("action")
    if action is not None and action != "validate_email":
        raise InvalidInputError(f"Unsupported action: {action}")

    record_id = data.get("record_id") or data.get("subscriber_id")
    email = data.get("email")
    if not isinstance(record_id, str) or not record_id:
        raise InvalidInputError("Validation message is missing record_id", "record_id")
    if not isinstance(email, str) or not email:
        raise InvalidInputError("Validation message is missing email", "email")

    return ValidationJob(record_id=record_id, email=email)


class ValidationWorker:
    """Pulls validation jobs and processes them one batch at a time."""

    def __init__(
        self,
        queue: ValidationQueueConsumerPort,
        store: SubscriberStorePort,
        *,
        email_sender: ConfirmationSenderPort | None = None,
        config: NewsletterConfig | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        self._queue = queue
        self._store = store
        self._email_sender = email_sender
        self._config = config or NewsletterConfig()
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock.now_utc() if self._clock else datetime.now(UTC)

    def handle_body(self, body: str) -> MessageResult:
        """
        Run the validate handler for one message body.

        Returns a MessageResult; transient failures come back as RETRY
        rather than raising.
        """
        start_time = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - start_time) * 1000)

        try:
            job = decode_job(body)
        except InvalidInputError as e:
            logger.warning("Dropping undecodable validation message: %s", e.message)
            return MessageResult(MessageStatus.DROPPED, detail=e.message, execution_time_ms=elapsed())

        try:
            output = run_validate(
                ValidateInput(job=job),
                self._store,
                email_sender=self._email_sender,
                config=self._config,
                clock=self._clock,
            )
        except NewsletterError as e:
            if not e.retryable:
                logger.warning("Dropping validation job for %s: %s", job.record_id, e.message)
                return MessageResult(MessageStatus.DROPPED, detail=e.message, execution_time_ms=elapsed())
            logger.warning("Validation job for %s will be retried: %s", job.record_id, e)
            return MessageResult(MessageStatus.RETRY, detail=str(e), execution_time_ms=elapsed())
        except Exception as e:
            # Unexpected failure; the queue's attempt limit dead-letters it if it persists
            logger.exception("Validation job for %s failed unexpectedly", job.record_id)
            return MessageResult(MessageStatus.RETRY, detail=repr(e), execution_time_ms=elapsed())

        if not output.success:
            return MessageResult(MessageStatus.RETRY, detail=output.message, execution_time_ms=elapsed())
        if output.outcome == Outcome.VALIDATION_SKIPPED.value:
            return MessageResult(MessageStatus.SKIPPED, detail=output.message, execution_time_ms=elapsed())
        return MessageResult(MessageStatus.PROCESSED, detail=output.message, execution_time_ms=elapsed())

    def _settle(self, message: QueueMessage, result: MessageResult) -> None:
        if result.status is MessageStatus.RETRY:
            self._queue.nack(message.message_id, result.detail)
        else:
            self._queue.ack(message.message_id)

    def process_batch(self, max_messages: int = 10) -> BatchResult:
        """
        Receive and process up to ``max_messages`` messages.

        Returns:
            BatchResult with outcomes for all processed messages
        """
        messages = self._queue.receive(max_messages, self._now())
        if not messages:
            return BatchResult(results=[MessageResult(MessageStatus.NO_MESSAGES, detail="No messages")])

        batch = BatchResult()
        for message in messages:
            result = self.handle_body(message.body)
            result.message_id = message.message_id
            self._settle(message, result)

            batch.results.append(result)
            batch.total_processed += 1
            if result.status is MessageStatus.RETRY:
                batch.retried += 1
            elif result.status is MessageStatus.DROPPED:
                batch.dropped += 1
            else:
                batch.succeeded += 1

        return batch


def handle_sqs_event(event: dict[str, Any], worker: ValidationWorker) -> dict[str, Any]:
    """
    Process an SQS-shaped batch event.

    Args:
        event: ``{"Records": [{"messageId": ..., "body": ...}, ...]}``
        worker: Worker whose handler runs each message body

    Returns:
        Partial batch response listing messages to redeliver
    """
    failures: list[dict[str, str]] = []
    records = event.get("Records") or []
    logger.info("Processing %d queue records", len(records))

    for record in records:
        message_id = str(record.get("messageId", ""))
        result = worker.handle_body(record.get("body", ""))
        if result.status is MessageStatus.RETRY:
            failures.append({"itemIdentifier": message_id})

    return {"batchItemFailures": failures}


class ValidationWorkerLoop:
    """
    Background polling loop around a ValidationWorker.

    Runs a daemon thread that processes a batch every poll interval.
    """

    def __init__(
        self,
        worker: ValidationWorker,
        poll_interval_seconds: float = 5.0,
        batch_size: int = 10,
    ) -> None:
        self._worker = worker
        self._poll_interval = poll_interval_seconds
        self._batch_size = batch_size
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False

    def start(self) -> None:
        """Start the background loop."""
        if self._running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._thread.start()
        self._running = True
        logger.info("Validation worker started (poll interval: %.1fs)", self._poll_interval)

    def stop(self) -> None:
        """Stop the loop gracefully."""
        if not self._running:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
        self._running = False
        logger.info("Validation worker stopped")

    def trigger_now(self) -> BatchResult:
        """Process one batch immediately."""
        return self._worker.process_batch(self._batch_size)

    @property
    def is_running(self) -> bool:
        return self._running

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(timeout=self._poll_interval):
            try:
                result = self._worker.process_batch(self._batch_size)
                if result.total_processed > 0:
                    logger.info(
                        "Worker processed %d messages: %d succeeded, %d retried, %d dropped",
                        result.total_processed,
                        result.succeeded,
                        result.retried,
                        result.dropped,
                    )
            except Exception:
                logger.exception("Error in validation worker poll loop")
