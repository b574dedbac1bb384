from collections.abc import Generator
from datetime import UTC, datetime

import pytest

from src.adapters.clock import FixedClock
from src.adapters.dev_email import DevEmailAdapter
from src.adapters.dev_queue import InMemoryValidationQueue
from src.adapters.memory_store import InMemorySubscriberStore
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.components.newsletter.models import NewsletterConfig


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 6, 1, 9, 30, tzinfo=UTC))


@pytest.fixture
def config() -> NewsletterConfig:
    return NewsletterConfig(base_url="https://news.example.com")


@pytest.fixture
def memory_store() -> InMemorySubscriberStore:
    return InMemorySubscriberStore()


@pytest.fixture
def memory_queue() -> InMemoryValidationQueue:
    return InMemoryValidationQueue(visibility_timeout_seconds=30, max_attempts=3)


@pytest.fixture
def email_adapter() -> DevEmailAdapter:
    return DevEmailAdapter()


@pytest.fixture
def db_path(tmp_path) -> Generator[str, None, None]:
    """Temporary SQLite database with all migrations applied."""
    path = str(tmp_path / "newsletter.db")
    SQLiteMigrator(path).run_migrations()
    yield path
