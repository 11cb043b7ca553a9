"""Utilities for turning application errors into client responses."""

import re
from typing import Any, Dict, Optional

from fastapi import status

from app.exceptions import (
    AuthenticationException,
    ExamGeneratorException,
    GenerationException,
    NotFoundException,
    ScoringIncompleteException,
    UpstreamCallException,
    UsageLimitException,
    ValidationException,
)

GENERIC_ERROR_MESSAGE = "An internal error occurred. Please try again later."

# Checked in order; first match wins
_STATUS_BY_EXCEPTION = (
    (NotFoundException, status.HTTP_404_NOT_FOUND),
    (ValidationException, status.HTTP_400_BAD_REQUEST),
    (AuthenticationException, status.HTTP_401_UNAUTHORIZED),
    (UsageLimitException, status.HTTP_402_PAYMENT_REQUIRED),
    (ScoringIncompleteException, status.HTTP_409_CONFLICT),
    (UpstreamCallException, status.HTTP_502_BAD_GATEWAY),
    (GenerationException, status.HTTP_502_BAD_GATEWAY),
)

_REDACTIONS = (
    (re.compile(r"sk-[a-zA-Z0-9_-]{10,}"), "sk-***"),
    (re.compile(r"Bearer\s+[A-Za-z0-9._-]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*"), "***"),
    (re.compile(r"api[_-]?key[=:]\s*[a-zA-Z0-9_-]+", re.IGNORECASE), "api_key=***"),
    (re.compile(r"secret[=:]\s*[^\s]+", re.IGNORECASE), "secret=***"),
    (re.compile(r"sqlite:///[^\s]+"), "sqlite:///***"),
    (re.compile(r"/[^\s]+\.(py|db|log|sqlite3)"), "***"),
)

# Detail keys that may carry raw model output or SQL and are dropped in production
_INTERNAL_DETAIL_KEYS = ("raw_response", "errors")


def status_code_for(exc: ExamGeneratorException) -> int:
    """HTTP status for an application exception; 500 when no rule applies."""
    for exc_type, status_code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def sanitize_error_message(error_message: str, is_production: bool = False) -> str:
    """
    Sanitize error messages to prevent exposing sensitive information.

    Args:
        error_message: Original error message
        is_production: Whether running in production mode

    Returns:
        Sanitized error message safe to return to clients
    """
    if not is_production:
        return error_message

    sanitized = error_message
    for pattern, replacement in _REDACTIONS:
        sanitized = pattern.sub(replacement, sanitized)

    if sanitized != error_message and len(sanitized.strip()) < 10:
        return GENERIC_ERROR_MESSAGE
    return sanitized


def error_body(
    code: str,
    message: str,
    request_id: str,
    details: Optional[Dict[str, Any]] = None,
    is_production: bool = False,
) -> Dict[str, Any]:
    """
    Build the JSON error envelope returned by every endpoint.

    Args:
        code: Error code (exception class name)
        message: Human-readable message
        request_id: ID of the failing request
        details: Extra structured details
        is_production: Whether to sanitize message and details

    Returns:
        ``{"error": {...}}`` response body
    """
    details = dict(details or {})
    if is_production:
        for key in _INTERNAL_DETAIL_KEYS:
            details.pop(key, None)
    return {
        "error": {
            "code": code,
            "message": sanitize_error_message(message, is_production),
            "details": details,
            "request_id": request_id,
        }
    }
