import os
from functools import lru_cache
from pathlib import Path

from fastapi import Depends

from src.adapters.clock import SystemClock
from src.adapters.sqlite.queue import SQLiteValidationQueue
from src.adapters.sqlite.repos import SQLiteSubscriberStore
from src.app_shell.config import build_newsletter_config
from src.components.newsletter.models import NewsletterConfig
from src.rules.loader import load_rules
from src.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("NEWSLETTER_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "newsletter.db")
        self.rules_path = Path(
            os.environ.get("NEWSLETTER_RULES_PATH", str(self.base_dir / "newsletter.yaml"))
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def _load_rules(rules_path: Path) -> Rules:
    return load_rules(rules_path)


def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return _load_rules(settings.rules_path)


def get_newsletter_config(rules: Rules = Depends(get_rules)) -> NewsletterConfig:
    return build_newsletter_config(rules)


# --- Adapters ---
def get_subscriber_store(settings: Settings = Depends(get_settings)) -> SQLiteSubscriberStore:
    return SQLiteSubscriberStore(settings.db_path)


def get_validation_queue(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
) -> SQLiteValidationQueue:
    return SQLiteValidationQueue(
        settings.db_path,
        visibility_timeout_seconds=rules.queue.visibility_timeout_seconds,
        max_attempts=rules.queue.max_attempts,
    )


# Time adapter for deterministic time operations
_clock_instance: SystemClock | None = None


def get_clock() -> SystemClock:
    """Get clock singleton."""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = SystemClock()
    return _clock_instance
