"""
Unit tests for the validation worker.

Covers decode, ack/nack settlement, redelivery, dead-lettering and
the SQS-shaped batch entry point.
"""

from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import pytest

from src.adapters.clock import FixedClock
from src.adapters.dev_email import DevEmailAdapter
from src.adapters.dev_queue import InMemoryValidationQueue
from src.adapters.memory_store import InMemorySubscriberStore
from src.app_shell.worker import (
    MessageStatus,
    ValidationWorker,
    ValidationWorkerLoop,
    decode_job,
    handle_sqs_event,
)
from src.components.newsletter.component import run_confirm, run_subscribe
from src.components.newsletter.models import (
    ConfirmInput,
    InvalidInputError,
    NewsletterConfig,
    SubscribeInput,
    SubscriberRecord,
    SubscriberStatus,
    ValidationJob,
)


class CorruptRowStore(InMemorySubscriberStore):
    """Store whose lookup of selected ids fails with an unexpected error."""

    def __init__(self) -> None:
        super().__init__()
        self.corrupt_ids: set[str] = set()

    def get_by_id(self, record_id: str) -> SubscriberRecord | None:
        if record_id in self.corrupt_ids:
            raise ValueError("corrupt row")
        return super().get_by_id(record_id)


@pytest.fixture
def worker(
    memory_queue: InMemoryValidationQueue,
    memory_store: InMemorySubscriberStore,
    email_adapter: DevEmailAdapter,
    config: NewsletterConfig,
    clock: FixedClock,
) -> ValidationWorker:
    return ValidationWorker(
        memory_queue,
        memory_store,
        email_sender=email_adapter,
        config=config,
        clock=clock,
    )


def _subscribe(
    store: InMemorySubscriberStore,
    queue: InMemoryValidationQueue,
    clock: FixedClock,
    email: str = "reader@example.com",
) -> str:
    result = run_subscribe(SubscribeInput(email=email), store, queue, clock=clock)
    return result.subscriber_id or ""


class TestDecodeJob:
    def test_current_shape(self) -> None:
        body = json.dumps({"record_id": "r1", "email": "a@x.com"})
        assert decode_job(body) == ValidationJob(record_id="r1", email="a@x.com")

    def test_legacy_shape(self) -> None:
        body = json.dumps({"action": "validate_email", "subscriber_id": "r1", "email": "a@x.com"})
        assert decode_job(body) == ValidationJob(record_id="r1", email="a@x.com")

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            "[]",
            json.dumps({"email": "a@x.com"}),
            json.dumps({"record_id": "r1"}),
            json.dumps({"action": "delete", "record_id": "r1", "email": "a@x.com"}),
        ],
    )
    def test_rejects_bad_bodies(self, body: str) -> None:
        with pytest.raises(InvalidInputError):
            decode_job(body)


class TestProcessBatch:
    def test_empty_queue(self, worker: ValidationWorker) -> None:
        result = worker.process_batch()
        assert result.total_processed == 0
        assert result.results[0].status is MessageStatus.NO_MESSAGES

    def test_sends_confirmation_and_acks(
        self,
        worker: ValidationWorker,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        email_adapter: DevEmailAdapter,
        clock: FixedClock,
    ) -> None:
        record_id = _subscribe(memory_store, memory_queue, clock)

        result = worker.process_batch()

        assert result.total_processed == 1
        assert result.succeeded == 1
        assert result.results[0].status is MessageStatus.PROCESSED
        assert len(memory_queue) == 0

        email = email_adapter.get_last_email()
        assert email is not None
        assert email.recipient == "reader@example.com"
        url = urlparse(email.confirmation_url)
        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://news.example.com/confirm"
        params = parse_qs(url.query)
        record = memory_store.get_by_id(record_id)
        assert record is not None
        assert params["id"] == [record_id]
        assert params["token"] == [record.validation_token]
        assert record.status is SubscriberStatus.PENDING_VALIDATION

    def test_skips_confirmed_record(
        self,
        worker: ValidationWorker,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        email_adapter: DevEmailAdapter,
        clock: FixedClock,
    ) -> None:
        record_id = _subscribe(memory_store, memory_queue, clock)
        run_confirm(ConfirmInput(id=record_id), memory_store, clock=clock)

        result = worker.process_batch()

        assert result.results[0].status is MessageStatus.SKIPPED
        assert len(memory_queue) == 0
        assert email_adapter.sent_emails == []

    def test_duplicate_jobs_send_same_link(
        self,
        worker: ValidationWorker,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        email_adapter: DevEmailAdapter,
        clock: FixedClock,
    ) -> None:
        _subscribe(memory_store, memory_queue, clock)
        _subscribe(memory_store, memory_queue, clock)

        result = worker.process_batch()

        assert result.succeeded == 2
        urls = {e.confirmation_url for e in email_adapter.sent_emails}
        assert len(urls) == 1

    def test_refused_send_is_redelivered(
        self,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        config: NewsletterConfig,
        clock: FixedClock,
    ) -> None:
        sender = DevEmailAdapter(accept=False)
        worker = ValidationWorker(memory_queue, memory_store, email_sender=sender, config=config, clock=clock)
        _subscribe(memory_store, memory_queue, clock)

        first = worker.process_batch()
        assert first.retried == 1
        assert len(memory_queue) == 1

        sender.accept = True
        second = worker.process_batch()
        assert second.succeeded == 1
        assert len(memory_queue) == 0
        assert len(sender.sent_emails) == 1

    def test_dead_letters_after_max_attempts(
        self,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        config: NewsletterConfig,
        clock: FixedClock,
    ) -> None:
        worker = ValidationWorker(
            memory_queue,
            memory_store,
            email_sender=DevEmailAdapter(accept=False),
            config=config,
            clock=clock,
        )
        _subscribe(memory_store, memory_queue, clock)

        for _ in range(3):
            worker.process_batch()

        assert len(memory_queue) == 0
        assert len(memory_queue.dead_letters) == 1
        assert memory_queue.dead_letters[0].attempts == 3

    def test_store_outage_is_retried(
        self,
        worker: ValidationWorker,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        clock: FixedClock,
    ) -> None:
        _subscribe(memory_store, memory_queue, clock)
        memory_store.available = False

        result = worker.process_batch()

        assert result.results[0].status is MessageStatus.RETRY
        assert len(memory_queue) == 1

    def test_unexpected_error_does_not_stop_batch(
        self,
        memory_queue: InMemoryValidationQueue,
        email_adapter: DevEmailAdapter,
        config: NewsletterConfig,
        clock: FixedClock,
    ) -> None:
        store = CorruptRowStore()
        worker = ValidationWorker(memory_queue, store, email_sender=email_adapter, config=config, clock=clock)
        broken_id = _subscribe(store, memory_queue, clock, "broken@example.com")
        _subscribe(store, memory_queue, clock, "healthy@example.com")
        store.corrupt_ids.add(broken_id)

        result = worker.process_batch()

        assert result.total_processed == 2
        assert result.retried == 1
        assert result.succeeded == 1
        assert [e.recipient for e in email_adapter.sent_emails] == ["healthy@example.com"]
        # The failed message was nacked and is immediately visible again
        assert [j.record_id for j in memory_queue.jobs()] == [broken_id]
        again = memory_queue.receive(10, clock.now_utc())
        assert [m.attempts for m in again] == [2]

    def test_unacked_message_returns_after_visibility_timeout(
        self,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        clock: FixedClock,
    ) -> None:
        _subscribe(memory_store, memory_queue, clock)

        first = memory_queue.receive(10, clock.now_utc())
        assert len(first) == 1
        assert memory_queue.receive(10, clock.advance(seconds=10)) == []

        again = memory_queue.receive(10, clock.advance(seconds=25))
        assert [m.message_id for m in again] == [first[0].message_id]
        assert again[0].attempts == 2

    def test_unacked_message_dead_lettered_after_max_deliveries(
        self,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        clock: FixedClock,
    ) -> None:
        _subscribe(memory_store, memory_queue, clock)

        attempts: list[int] = []
        for _ in range(6):
            attempts.extend(m.attempts for m in memory_queue.receive(10, clock.now_utc()))
            clock.advance(seconds=31)

        assert attempts == [1, 2, 3]
        assert len(memory_queue) == 0
        assert len(memory_queue.dead_letters) == 1


class TestHandleBody:
    def test_poison_message_dropped(self, worker: ValidationWorker) -> None:
        assert worker.handle_body("garbage").status is MessageStatus.DROPPED

    def test_unknown_record_skipped(self, worker: ValidationWorker) -> None:
        body = json.dumps({"record_id": "missing", "email": "a@x.com"})
        assert worker.handle_body(body).status is MessageStatus.SKIPPED

    def test_unexpected_error_is_retry(
        self,
        memory_queue: InMemoryValidationQueue,
        config: NewsletterConfig,
        clock: FixedClock,
    ) -> None:
        store = CorruptRowStore()
        store.corrupt_ids.add("r1")
        worker = ValidationWorker(memory_queue, store, config=config, clock=clock)

        result = worker.handle_body(json.dumps({"record_id": "r1", "email": "a@x.com"}))

        assert result.status is MessageStatus.RETRY
        assert "corrupt row" in result.detail


class TestSqsEvent:
    def test_reports_only_retryable_failures(
        self,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        config: NewsletterConfig,
        clock: FixedClock,
    ) -> None:
        record_id = _subscribe(memory_store, memory_queue, clock)
        worker = ValidationWorker(
            memory_queue,
            memory_store,
            email_sender=DevEmailAdapter(accept=False),
            config=config,
            clock=clock,
        )
        event = {
            "Records": [
                {"messageId": "m1", "body": json.dumps({"record_id": record_id, "email": "reader@example.com"})},
                {"messageId": "m2", "body": "garbage"},
                {"messageId": "m3", "body": json.dumps({"record_id": "gone", "email": "x@x.com"})},
            ]
        }

        response = handle_sqs_event(event, worker)

        assert response == {"batchItemFailures": [{"itemIdentifier": "m1"}]}

    def test_empty_event(self, worker: ValidationWorker) -> None:
        assert handle_sqs_event({}, worker) == {"batchItemFailures": []}


class TestWorkerLoop:
    def test_trigger_now(
        self,
        worker: ValidationWorker,
        memory_store: InMemorySubscriberStore,
        memory_queue: InMemoryValidationQueue,
        clock: FixedClock,
    ) -> None:
        _subscribe(memory_store, memory_queue, clock)
        loop = ValidationWorkerLoop(worker, poll_interval_seconds=60, batch_size=5)

        result = loop.trigger_now()

        assert result.succeeded == 1

    def test_start_stop(self, worker: ValidationWorker) -> None:
        loop = ValidationWorkerLoop(worker, poll_interval_seconds=60)
        loop.start()
        assert loop.is_running
        loop.stop()
        assert not loop.is_running
