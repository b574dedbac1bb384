"""
Subscription state machine.

Pure decision logic: given the current status of a subscriber (``None``
when no record exists) and an incoming action, decide the next status,
the side effects the handler must perform, and the outcome to report.

The table covers every (state, action) pair so that HTTP retries and
redelivered queue jobs always land on a defined, repeatable result.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from uuid import uuid4

from src.components.newsletter.models import SubscriberRecord, SubscriberStatus

# Absent subscriber (no record stored)
ABSENT = None


class Action(Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    VALIDATE = "validate"  # Validation job consumed
    CONFIRM = "confirm"


class Effect(Enum):
    CREATE_RECORD = "create_record"
    PERSIST = "persist"
    ENQUEUE_VALIDATION = "enqueue_validation"
    ISSUE_CONFIRMATION = "issue_confirmation"


class Outcome(Enum):
    SUBSCRIBED = "subscribed"
    PENDING_RESENT = "pending_resent"
    ALREADY_SUBSCRIBED = "already_subscribed"
    UNSUBSCRIBED = "unsubscribed"
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    VALIDATION_ISSUED = "validation_issued"
    VALIDATION_SKIPPED = "validation_skipped"
    REJECTED = "rejected"


class Rejection(Enum):
    NOT_FOUND = "not_found"
    INVALID = "invalid"


@dataclass(frozen=True)
class Transition:
    """Decision for one (state, action) pair."""

    current: SubscriberStatus | None
    action: Action
    next: SubscriberStatus | None
    effects: frozenset[Effect] = frozenset()
    outcome: Outcome = Outcome.REJECTED
    rejection: Rejection | None = None

    @property
    def changes_state(self) -> bool:
        return self.current != self.next

    def has(self, effect: Effect) -> bool:
        return effect in self.effects


_P = SubscriberStatus.PENDING_VALIDATION
_C = SubscriberStatus.CONFIRMED
_U = SubscriberStatus.UNSUBSCRIBED


def _t(
    current: SubscriberStatus | None,
    action: Action,
    next_: SubscriberStatus | None,
    outcome: Outcome,
    *effects: Effect,
    rejection: Rejection | None = None,
) -> tuple[tuple[SubscriberStatus | None, Action], Transition]:
    transition = Transition(
        current=current,
        action=action,
        next=next_,
        effects=frozenset(effects),
        outcome=outcome,
        rejection=rejection,
    )
    return (current, action), transition


TRANSITIONS: dict[tuple[SubscriberStatus | None, Action], Transition] = dict(
    [
        # Absent
        _t(ABSENT, Action.SUBSCRIBE, _P, Outcome.SUBSCRIBED,
           Effect.CREATE_RECORD, Effect.ENQUEUE_VALIDATION),
        _t(ABSENT, Action.UNSUBSCRIBE, ABSENT, Outcome.UNSUBSCRIBED),
        _t(ABSENT, Action.VALIDATE, ABSENT, Outcome.VALIDATION_SKIPPED),
        _t(ABSENT, Action.CONFIRM, ABSENT, Outcome.REJECTED,
           rejection=Rejection.NOT_FOUND),
        # Pending validation
        _t(_P, Action.SUBSCRIBE, _P, Outcome.PENDING_RESENT, Effect.ENQUEUE_VALIDATION),
        _t(_P, Action.UNSUBSCRIBE, _U, Outcome.UNSUBSCRIBED, Effect.PERSIST),
        _t(_P, Action.VALIDATE, _P, Outcome.VALIDATION_ISSUED, Effect.ISSUE_CONFIRMATION),
        _t(_P, Action.CONFIRM, _C, Outcome.CONFIRMED, Effect.PERSIST),
        # Confirmed
        _t(_C, Action.SUBSCRIBE, _C, Outcome.ALREADY_SUBSCRIBED),
        _t(_C, Action.UNSUBSCRIBE, _U, Outcome.UNSUBSCRIBED, Effect.PERSIST),
        _t(_C, Action.VALIDATE, _C, Outcome.VALIDATION_SKIPPED),
        _t(_C, Action.CONFIRM, _C, Outcome.ALREADY_CONFIRMED),
        # Unsubscribed
        _t(_U, Action.SUBSCRIBE, _P, Outcome.SUBSCRIBED,
           Effect.PERSIST, Effect.ENQUEUE_VALIDATION),
        _t(_U, Action.UNSUBSCRIBE, _U, Outcome.UNSUBSCRIBED),
        _t(_U, Action.VALIDATE, _U, Outcome.VALIDATION_SKIPPED),
        _t(_U, Action.CONFIRM, _U, Outcome.REJECTED, rejection=Rejection.INVALID),
    ]
)


def decide(current: SubscriberStatus | None, action: Action) -> Transition:
    """
    Decide the transition for an action against the current status.

    Total over every status (including absent) and action.
    """
    return TRANSITIONS[(current, action)]


def apply(
    record: SubscriberRecord | None,
    transition: Transition,
    *,
    email: str,
    now: datetime,
) -> SubscriberRecord | None:
    """
    Return the record value after a transition.

    The input record is never mutated. ``updated_at`` never moves
    backwards even if the clock does.

    Args:
        record: Current record, or None when absent
        transition: Decision from ``decide``
        email: Normalized email (used only when creating)
        now: Current time

    Returns:
        New record value, or None when the subscriber stays absent
    """
    if transition.has(Effect.CREATE_RECORD):
        return SubscriberRecord(
            id=str(uuid4()),
            email=email,
            status=SubscriberStatus.PENDING_VALIDATION,
            created_at=now,
            updated_at=now,
        )

    if record is None or transition.next is None or not transition.changes_state:
        return record

    # Any status change spends the one-time token; re-subscription
    # restarts the cycle and gets a fresh one from the validation job.
    return replace(
        record,
        status=transition.next,
        updated_at=max(now, record.updated_at),
        validation_token=None,
        token_expires_at=None,
    )


def is_token_expired(record: SubscriberRecord, now: datetime) -> bool:
    """Check if the record's validation token is missing or past expiry."""
    if record.validation_token is None or record.token_expires_at is None:
        return True
    return now >= record.token_expires_at


def issue_validation_token(
    record: SubscriberRecord,
    *,
    now: datetime,
    ttl_hours: int,
    token: str | None = None,
) -> SubscriberRecord:
    """
    Attach a validation token to a pending record.

    An unexpired token is reused, so a redelivered validation job
    produces the same confirmation link. Status is unchanged.
    """
    if not is_token_expired(record, now):
        return record

    return replace(
        record,
        validation_token=token or secrets.token_urlsafe(32),
        token_expires_at=now + timedelta(hours=ttl_hours),
        updated_at=max(now, record.updated_at),
    )


def token_matches(record: SubscriberRecord, token: str) -> bool:
    """Constant-time comparison against the stored validation token."""
    if record.validation_token is None:
        return False
    return secrets.compare_digest(record.validation_token, token)
