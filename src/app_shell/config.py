import logging
import os
from collections.abc import Mapping
from pathlib import Path

from src.components.newsletter.models import NewsletterConfig
from src.rules.models import Rules

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Startup configuration is unusable."""


def validate_ops_rules(
    rules: Rules,
    data_dir: Path,
    environ: Mapping[str, str] | None = None,
) -> None:
    """
    Validate operational requirements before startup.
    Raises ConfigurationError on the first unmet requirement.
    """
    env = os.environ if environ is None else environ
    ops = rules.ops

    # 1. Data dir must be creatable and writable
    if ops.data_dir_required:
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Data directory {data_dir} is not usable: {e}") from e
        if not os.access(data_dir, os.W_OK):
            raise ConfigurationError(f"Data directory {data_dir} is not writable")

    # 2. Required env
    missing = [name for name in ops.required_env if name not in env]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    logger.info("Configuration validated (data dir %s)", data_dir)


def build_newsletter_config(
    rules: Rules,
    environ: Mapping[str, str] | None = None,
) -> NewsletterConfig:
    """Map rules (plus env overrides) to the component configuration."""
    env = os.environ if environ is None else environ
    return NewsletterConfig(
        base_url=env.get("NEWSLETTER_BASE_URL", rules.confirmation.base_url),
        confirmation_path=rules.confirmation.path,
        token_ttl_hours=rules.confirmation.token_ttl_hours,
        require_token=rules.confirmation.require_token,
        max_email_length=rules.email.max_length,
        blocked_domains=frozenset(d.strip().lower() for d in rules.email.blocked_domains),
    )
