"""Unit tests for utility functions."""

from datetime import datetime

import pytest

from app.exceptions import (
    AuthenticationException,
    ConsistencyException,
    GenerationException,
    NotFoundException,
    ScoringIncompleteException,
    UpstreamCallException,
    UsageLimitException,
    ValidationException,
)
from app.messages import get_message
from app.utils.error_utils import (
    GENERIC_ERROR_MESSAGE,
    error_body,
    sanitize_error_message,
    status_code_for,
)
from app.utils.time_utils import billing_cycle, utcnow


@pytest.mark.parametrize(
    "exc, expected",
    [
        (NotFoundException("missing"), 404),
        (ValidationException("bad"), 400),
        (AuthenticationException("who"), 401),
        (UsageLimitException("limit"), 402),
        (ScoringIncompleteException("partial", ["q_1"]), 409),
        (UpstreamCallException("timeout"), 502),
        (GenerationException("unparseable"), 502),
        (ConsistencyException("mismatch"), 500),
    ],
)
def test_status_code_for(exc, expected):
    """Each application error maps to its HTTP status."""
    assert status_code_for(exc) == expected


def test_sanitize_error_message_development():
    """Messages pass through untouched outside production."""
    message = "Invalid key sk-abcdefghijklmnop"
    assert sanitize_error_message(message, is_production=False) == message


def test_sanitize_error_message_production():
    """Secrets are redacted in production."""
    message = "Call failed with key sk-abcdefghijklmnop for sqlite:///data/app.db"

    sanitized = sanitize_error_message(message, is_production=True)

    assert "sk-abcdefghijklmnop" not in sanitized
    assert "data/app.db" not in sanitized
    assert "sk-***" in sanitized


def test_sanitize_bearer_token():
    sanitized = sanitize_error_message(
        "Rejected Bearer eyJhbGciOi.eyJzdWIiOi.c2lnbmF0dXJl", is_production=True
    )
    assert "eyJ" not in sanitized


def test_sanitize_short_result_is_generic():
    """A message that is almost entirely secret becomes the generic message."""
    assert sanitize_error_message("sk-abcdefghijklmnopqrst", is_production=True) == GENERIC_ERROR_MESSAGE


def test_error_body_drops_internal_details_in_production():
    details = {"raw_response": "model text", "errors": ["x"], "status": "draft"}

    body = error_body("GenerationException", "bad output", "req-1", details, is_production=True)

    assert body["error"]["details"] == {"status": "draft"}
    assert body["error"]["request_id"] == "req-1"
    # Caller's dict is not mutated
    assert "raw_response" in details


def test_error_body_keeps_details_in_development():
    body = error_body("GenerationException", "bad output", "req-1", {"raw_response": "x"})

    assert body["error"]["details"] == {"raw_response": "x"}
    assert body["error"]["code"] == "GenerationException"


def test_get_message_formats_parameters():
    assert get_message("error.generation", "en", detail="timeout") == (
        "Failed to generate questions: timeout"
    )


def test_get_message_falls_back_to_english():
    """Unknown languages use English messages."""
    assert get_message("stage.searching", "fr") == "Searching for relevant content..."


def test_billing_cycle():
    assert billing_cycle(datetime(2026, 3, 31, 23, 59)) == "2026-03"


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
