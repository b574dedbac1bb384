"""
Newsletter component.

Subscription lifecycle management: subscribe, unsubscribe,
validation-job consumption and confirmation.
"""

from src.components.newsletter.component import (
    EMAIL_REGEX,
    MESSAGES,
    build_confirmation_url,
    normalize_email,
    run,
    run_confirm,
    run_subscribe,
    run_unsubscribe,
    run_validate,
    validate_email,
)
from src.components.newsletter.models import (
    ConfirmInput,
    HandlerOutput,
    InvalidInputError,
    NewsletterConfig,
    NewsletterError,
    NotFoundError,
    QueueUnavailableError,
    StoreUnavailableError,
    SubscribeInput,
    SubscriberRecord,
    SubscriberStatus,
    UnsubscribeInput,
    ValidateInput,
    ValidationJob,
)
from src.components.newsletter.ports import (
    ClockPort,
    ConfirmationSenderPort,
    QueueMessage,
    SubscriberStorePort,
    ValidationQueueConsumerPort,
    ValidationQueuePort,
)
from src.components.newsletter.state import (
    TRANSITIONS,
    Action,
    Effect,
    Outcome,
    Rejection,
    Transition,
    apply,
    decide,
    is_token_expired,
    issue_validation_token,
)

__all__ = [
    # Component
    "run",
    "run_subscribe",
    "run_unsubscribe",
    "run_confirm",
    "run_validate",
    # Pure functions
    "normalize_email",
    "validate_email",
    "build_confirmation_url",
    "decide",
    "apply",
    "issue_validation_token",
    "is_token_expired",
    # Constants
    "EMAIL_REGEX",
    "MESSAGES",
    "TRANSITIONS",
    # State machine
    "Action",
    "Effect",
    "Outcome",
    "Rejection",
    "Transition",
    # Models
    "SubscriberRecord",
    "SubscriberStatus",
    "ValidationJob",
    "NewsletterConfig",
    # Input/Output
    "SubscribeInput",
    "UnsubscribeInput",
    "ConfirmInput",
    "ValidateInput",
    "HandlerOutput",
    # Errors
    "NewsletterError",
    "InvalidInputError",
    "NotFoundError",
    "StoreUnavailableError",
    "QueueUnavailableError",
    # Ports
    "SubscriberStorePort",
    "ValidationQueuePort",
    "ValidationQueueConsumerPort",
    "QueueMessage",
    "ConfirmationSenderPort",
    "ClockPort",
]
