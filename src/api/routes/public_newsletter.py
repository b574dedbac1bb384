"""
Public newsletter endpoints for subscription management.

Endpoints:
- POST /subscribe - Start a subscription (pending until confirmed)
- POST /unsubscribe - Unsubscribe by email (always succeeds for valid input)
- GET /confirm - Confirm via the link from the validation email

Errors are raised as NewsletterError subclasses and rendered by the
application's exception handler as {success: false, message}.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.adapters.clock import SystemClock
from src.adapters.sqlite.queue import SQLiteValidationQueue
from src.adapters.sqlite.repos import SQLiteSubscriberStore
from src.api.deps import (
    get_clock,
    get_newsletter_config,
    get_subscriber_store,
    get_validation_queue,
)
from src.components.newsletter.component import run_confirm, run_subscribe, run_unsubscribe
from src.components.newsletter.models import (
    ConfirmInput,
    NewsletterConfig,
    SubscribeInput,
    UnsubscribeInput,
)

router = APIRouter()


# --- Request/Response Models ---


class SubscribeRequest(BaseModel):
    """Request body for newsletter subscription."""

    email: str = Field(..., description="Email address to subscribe")


class UnsubscribeRequest(BaseModel):
    """Request body for unsubscribing."""

    email: str = Field(..., description="Email address to unsubscribe")


class ApiResponse(BaseModel):
    """Response body shared by every newsletter endpoint."""

    success: bool = Field(..., description="Whether the request was processed successfully")
    message: str = Field(..., description="Human-readable message")


_ERRORS = {
    400: {"model": ApiResponse, "description": "Invalid request"},
    500: {"model": ApiResponse, "description": "Backend temporarily unavailable, retry"},
}


# --- Subscribe Endpoint ---


@router.post(
    "/subscribe",
    response_model=ApiResponse,
    responses=_ERRORS,
    summary="Subscribe to newsletter",
    description="Start the double opt-in flow. A validation email is sent asynchronously.",
)
def subscribe(
    request_body: SubscribeRequest,
    store: SQLiteSubscriberStore = Depends(get_subscriber_store),
    queue: SQLiteValidationQueue = Depends(get_validation_queue),
    config: NewsletterConfig = Depends(get_newsletter_config),
    clock: SystemClock = Depends(get_clock),
) -> ApiResponse:
    """
    Subscribe an email address.

    Idempotent: repeating the request never creates a second record.
    """
    result = run_subscribe(
        SubscribeInput(email=request_body.email),
        store,
        queue,
        config=config,
        clock=clock,
    )
    return ApiResponse(**result.to_response())


# --- Unsubscribe Endpoint ---


@router.post(
    "/unsubscribe",
    response_model=ApiResponse,
    responses=_ERRORS,
    summary="Unsubscribe from newsletter",
    description="Unsubscribe by email. Unknown emails get the same response.",
)
def unsubscribe(
    request_body: UnsubscribeRequest,
    store: SQLiteSubscriberStore = Depends(get_subscriber_store),
    config: NewsletterConfig = Depends(get_newsletter_config),
    clock: SystemClock = Depends(get_clock),
) -> ApiResponse:
    """Unsubscribe an email address. Idempotent."""
    result = run_unsubscribe(
        UnsubscribeInput(email=request_body.email),
        store,
        config=config,
        clock=clock,
    )
    return ApiResponse(**result.to_response())


# --- Confirm Endpoint ---


@router.get(
    "/confirm",
    response_model=ApiResponse,
    responses={
        **_ERRORS,
        404: {"model": ApiResponse, "description": "Subscriber not found"},
    },
    summary="Confirm newsletter subscription",
    description="Confirm via the id (and token) carried by the validation email link.",
)
def confirm(
    id: str | None = None,
    token: str | None = None,
    store: SQLiteSubscriberStore = Depends(get_subscriber_store),
    config: NewsletterConfig = Depends(get_newsletter_config),
    clock: SystemClock = Depends(get_clock),
) -> ApiResponse:
    """Confirm a pending subscription. Confirming twice succeeds."""
    result = run_confirm(
        ConfirmInput(id=id or "", token=token),
        store,
        config=config,
        clock=clock,
    )
    return ApiResponse(**result.to_response())
