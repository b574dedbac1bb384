"""
In-memory subscriber store.

Implements SubscriberStorePort for development and tests. Records are
copied on the way in and out so callers cannot mutate stored state.
"""

from __future__ import annotations

import threading
from dataclasses import replace

from src.components.newsletter.models import StoreUnavailableError, SubscriberRecord


class InMemorySubscriberStore:
    """Dict-backed store with a unique email index."""

    def __init__(self) -> None:
        self._records: dict[str, SubscriberRecord] = {}
        self._by_email: dict[str, str] = {}
        self._lock = threading.Lock()
        self.available = True  # Flip to simulate an outage
        self.put_count = 0

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError("in-memory store marked unavailable")

    def get_by_email(self, email: str) -> SubscriberRecord | None:
        self._check()
        with self._lock:
            record_id = self._by_email.get(email)
            record = self._records.get(record_id) if record_id else None
            return replace(record) if record else None

    def get_by_id(self, record_id: str) -> SubscriberRecord | None:
        self._check()
        with self._lock:
            record = self._records.get(record_id)
            return replace(record) if record else None

    def put(self, record: SubscriberRecord) -> None:
        self._check()
        with self._lock:
            self._records[record.id] = replace(record)
            self._by_email[record.email] = record.id
            self.put_count += 1

    def put_if_absent_by_email(self, record: SubscriberRecord) -> SubscriberRecord:
        self._check()
        with self._lock:
            existing_id = self._by_email.get(record.email)
            if existing_id is not None:
                return replace(self._records[existing_id])
            self._records[record.id] = replace(record)
            self._by_email[record.email] = record.id
            self.put_count += 1
            return replace(record)

    # --- Test Helper Methods ---

    def all(self) -> list[SubscriberRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values()]

    def __len__(self) -> int:
        return len(self._records)
