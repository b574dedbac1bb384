"""
Newsletter component.

Request handlers for subscription state management. Each handler
parses and normalizes its input, loads the current record, asks the
state machine for a transition, persists and enqueues as directed,
and returns a HandlerOutput.

Key behaviors:
- Every action is idempotent (HTTP retries, at-least-once queue delivery)
- Unsubscribe never reveals whether an email is known
- Confirmation links resolve by record id, never by email
- Transient store/queue failures propagate; no retries in here

Invariants:
- At most one record per normalized email (conditional create)
- Records are never deleted
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from urllib.parse import urlencode

from src.components.newsletter.models import (
    ConfirmInput,
    HandlerOutput,
    InvalidInputError,
    NewsletterConfig,
    NotFoundError,
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
    SubscriberStorePort,
    ValidationQueuePort,
)
from src.components.newsletter.state import (
    Action,
    Effect,
    Outcome,
    Rejection,
    Transition,
    apply,
    decide,
    is_token_expired,
    issue_validation_token,
    token_matches,
)

logger = logging.getLogger(__name__)

# --- Email Validation Regex (RFC 5322 simplified) ---

EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@"
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

MESSAGES: dict[Outcome, str] = {
    Outcome.SUBSCRIBED: "Successfully subscribed. Validation email will be sent shortly.",
    Outcome.PENDING_RESENT: "Subscription pending. Validation email will be sent shortly.",
    Outcome.ALREADY_SUBSCRIBED: "Email is already subscribed",
    Outcome.UNSUBSCRIBED: "Successfully unsubscribed",
    Outcome.CONFIRMED: "Email successfully validated",
    Outcome.ALREADY_CONFIRMED: "Email was already validated",
    Outcome.VALIDATION_ISSUED: "Validation email sent",
    Outcome.VALIDATION_SKIPPED: "Subscriber is not awaiting validation",
}


# --- Pure Functions ---


def normalize_email(email: str | None) -> str:
    """Lowercase and trim an email address."""
    return email.strip().lower() if email else ""


def validate_email(email: str | None, config: NewsletterConfig | None = None) -> str:
    """
    Normalize and syntactically validate an email address.

    Args:
        email: Raw address from the request
        config: Length limit and blocked domains

    Returns:
        The normalized address

    Raises:
        InvalidInputError: if the address is empty, too long,
            malformed or on a blocked domain
    """
    cfg = config or NewsletterConfig()
    normalized = normalize_email(email)

    if not normalized:
        raise InvalidInputError("Email address is required", "email")

    if len(normalized) > cfg.max_email_length:
        raise InvalidInputError("Email address is too long", "email")

    if not EMAIL_REGEX.match(normalized):
        raise InvalidInputError("Invalid email format", "email")

    domain = normalized.rsplit("@", 1)[1]
    if domain in cfg.blocked_domains:
        raise InvalidInputError("Please use a permanent email address", "email")

    return normalized


def build_confirmation_url(
    base_url: str,
    record_id: str,
    token: str,
    path: str = "/confirm",
) -> str:
    """
    Build the confirmation link sent in the validation email.

    Args:
        base_url: Site base URL
        record_id: Subscriber record id
        token: Validation token
        path: URL path for the confirm endpoint

    Returns:
        Full confirmation URL
    """
    base = base_url.rstrip("/")
    return f"{base}{path}?{urlencode({'id': record_id, 'token': token})}"


def _now(clock: ClockPort | None) -> datetime:
    return clock.now_utc() if clock else datetime.now(UTC)


def _status_of(record: SubscriberRecord | None) -> SubscriberStatus | None:
    return record.status if record else None


def _output(transition: Transition, record: SubscriberRecord | None) -> HandlerOutput:
    return HandlerOutput(
        success=True,
        message=MESSAGES[transition.outcome],
        outcome=transition.outcome.value,
        subscriber_id=record.id if record else None,
    )


# --- Run Handlers ---


def run_subscribe(
    inp: SubscribeInput,
    store: SubscriberStorePort,
    queue: ValidationQueuePort,
    *,
    config: NewsletterConfig | None = None,
    clock: ClockPort | None = None,
) -> HandlerOutput:
    """
    Handle a subscribe request.

    New and unsubscribed emails go to pending validation and get a
    validation job. Pending emails get the job re-enqueued. Confirmed
    emails are left alone.
    """
    email = validate_email(inp.email, config)
    now = _now(clock)

    existing = store.get_by_email(email)
    transition = decide(_status_of(existing), Action.SUBSCRIBE)
    record = apply(existing, transition, email=email, now=now)

    if transition.has(Effect.CREATE_RECORD) and record is not None:
        stored = store.put_if_absent_by_email(record)
        if stored.id != record.id:
            # A concurrent request created the record first
            logger.info("Subscribe lost create race, using record %s", stored.id)
            transition = decide(stored.status, Action.SUBSCRIBE)
            record = apply(stored, transition, email=email, now=now)
            if transition.has(Effect.PERSIST) and record is not None:
                store.put(record)
    elif transition.has(Effect.PERSIST) and record is not None:
        store.put(record)

    if transition.has(Effect.ENQUEUE_VALIDATION) and record is not None:
        queue.enqueue(ValidationJob(record_id=record.id, email=record.email))

    logger.info(
        "Subscribe %s: %s -> %s (%s)",
        record.id if record else "-",
        transition.current.value if transition.current else "absent",
        transition.next.value if transition.next else "absent",
        transition.outcome.value,
    )
    return _output(transition, record)


def run_unsubscribe(
    inp: UnsubscribeInput,
    store: SubscriberStorePort,
    *,
    config: NewsletterConfig | None = None,
    clock: ClockPort | None = None,
) -> HandlerOutput:
    """
    Handle an unsubscribe request.

    Unknown, pending, confirmed and already-unsubscribed emails all get
    the same response so subscriber existence is never revealed.
    """
    email = validate_email(inp.email, config)
    now = _now(clock)

    existing = store.get_by_email(email)
    transition = decide(_status_of(existing), Action.UNSUBSCRIBE)
    record = apply(existing, transition, email=email, now=now)

    if transition.has(Effect.PERSIST) and record is not None:
        store.put(record)
        logger.info("Unsubscribed %s", record.id)

    return HandlerOutput(
        success=True,
        message=MESSAGES[Outcome.UNSUBSCRIBED],
        outcome=Outcome.UNSUBSCRIBED.value,
    )


def run_confirm(
    inp: ConfirmInput,
    store: SubscriberStorePort,
    *,
    config: NewsletterConfig | None = None,
    clock: ClockPort | None = None,
) -> HandlerOutput:
    """
    Handle a confirmation link.

    Resolves the record by id. When a token is supplied (or required by
    config) it must match the stored validation token and be unexpired.
    Confirming an already confirmed record succeeds without change.

    Raises:
        InvalidInputError: missing id, bad/expired token, or a record
            that is unsubscribed
        NotFoundError: id resolves to no record
    """
    cfg = config or NewsletterConfig()
    record_id = inp.id.strip() if inp.id else ""
    if not record_id:
        raise InvalidInputError("Missing id or token", "id")

    existing = store.get_by_id(record_id)
    transition = decide(_status_of(existing), Action.CONFIRM)

    if transition.rejection is Rejection.NOT_FOUND or existing is None:
        raise NotFoundError()
    if transition.rejection is Rejection.INVALID:
        raise InvalidInputError("Subscription is not awaiting confirmation")

    now = _now(clock)
    if transition.has(Effect.PERSIST):
        if inp.token is not None or cfg.require_token:
            if not inp.token or not token_matches(existing, inp.token):
                raise InvalidInputError("Invalid validation token", "token")
            if is_token_expired(existing, now):
                raise InvalidInputError("Validation token has expired", "token")

        record = apply(existing, transition, email=existing.email, now=now)
        if record is not None:
            store.put(record)
        logger.info("Confirmed %s", existing.id)

    return _output(transition, existing)


def run_validate(
    inp: ValidateInput,
    store: SubscriberStorePort,
    *,
    email_sender: ConfirmationSenderPort | None = None,
    config: NewsletterConfig | None = None,
    clock: ClockPort | None = None,
) -> HandlerOutput:
    """
    Consume one validation job.

    Re-checks that the record is still pending for the job's email, then
    issues (or reuses) a validation token and sends the confirmation
    link. Never changes subscriber status. Jobs for records that are gone,
    no longer pending or hold another email are acknowledged and skipped.

    Returns:
        HandlerOutput with success=False only when the email could not be
        handed off, so the caller can leave the job for redelivery
    """
    cfg = config or NewsletterConfig()
    job = inp.job
    now = _now(clock)

    record = store.get_by_id(job.record_id)
    if record is not None and record.email != normalize_email(job.email):
        logger.warning("Validation job for %s does not match stored email, skipping", record.id)
        return HandlerOutput(
            success=True,
            message=MESSAGES[Outcome.VALIDATION_SKIPPED],
            outcome=Outcome.VALIDATION_SKIPPED.value,
            subscriber_id=record.id,
        )

    transition = decide(_status_of(record), Action.VALIDATE)
    if record is None or not transition.has(Effect.ISSUE_CONFIRMATION):
        logger.info("Validation job for %s skipped (%s)", job.record_id, transition.outcome.value)
        return _output(transition, record)

    issued = issue_validation_token(record, now=now, ttl_hours=cfg.token_ttl_hours)
    if issued is not record:
        store.put(issued)

    url = build_confirmation_url(
        cfg.base_url,
        issued.id,
        issued.validation_token or "",
        cfg.confirmation_path,
    )

    if email_sender is None:
        logger.info("No email sender configured; confirmation URL for %s: %s", issued.id, url)
    elif not email_sender.send_confirmation_email(issued.email, url):
        logger.warning("Confirmation email for %s was not accepted", issued.id)
        return HandlerOutput(
            success=False,
            message="Failed to send validation email",
            status_code=500,
            outcome=transition.outcome.value,
            subscriber_id=issued.id,
        )

    return _output(transition, issued)


def run(
    inp: SubscribeInput | UnsubscribeInput | ConfirmInput | ValidateInput,
    *,
    store: SubscriberStorePort,
    queue: ValidationQueuePort | None = None,
    email_sender: ConfirmationSenderPort | None = None,
    config: NewsletterConfig | None = None,
    clock: ClockPort | None = None,
) -> HandlerOutput:
    """
    Main component entry point.

    Args:
        inp: Input command
        store: Record store port (Required)
        queue: Validation queue port (Required for subscribe)
        email_sender: Confirmation sender (Optional, validate only)
        config: Configuration (Optional)
        clock: Time source (Optional)

    Returns:
        Handler result
    """
    if isinstance(inp, SubscribeInput):
        if queue is None:
            raise ValueError("Subscribe requires a validation queue")
        return run_subscribe(inp, store, queue, config=config, clock=clock)
    elif isinstance(inp, UnsubscribeInput):
        return run_unsubscribe(inp, store, config=config, clock=clock)
    elif isinstance(inp, ConfirmInput):
        return run_confirm(inp, store, config=config, clock=clock)
    elif isinstance(inp, ValidateInput):
        return run_validate(inp, store, email_sender=email_sender, config=config, clock=clock)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
