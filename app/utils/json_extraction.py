"""Extraction of structured JSON payloads from free-form model output."""

import json
import logging
import re
from typing import Any, Dict, Optional

from app.exceptions import ValidationException

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

# Raw text kept in exception details is capped
_MAX_RAW_IN_DETAILS = 4000


def _iter_candidates(text: str):
    """Yield text regions to scan, fenced blocks first, then the whole response."""
    for match in _FENCE_PATTERN.finditer(text):
        yield match.group(1)
    yield text


def _scan_objects(text: str):
    """Yield every JSON object that decodes cleanly starting at some '{'."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            yield value
        index = text.find("{", index + 1)


def extract_json_object(text: Optional[str], required_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Extract the first well-formed JSON object from model output.

    The model may wrap the payload in prose or Markdown code fences; both are
    tolerated. Objects nested inside an earlier match are also considered, so a
    payload wrapped in an outer envelope is still found when ``required_key``
    is given.

    Args:
        text: Raw model response text
        required_key: If set, only objects containing this key are accepted

    Returns:
        Parsed JSON object

    Raises:
        ValidationException: If no acceptable JSON object is present
    """
    if not text or not text.strip():
        raise ValidationException(
            "Model response was empty",
            details={"raw_response": ""},
        )

    for candidate in _iter_candidates(text):
        for obj in _scan_objects(candidate):
            if required_key is None or required_key in obj:
                return obj

    logger.warning(f"No JSON payload found in model response ({len(text)} chars)")
    expected = f" containing '{required_key}'" if required_key else ""
    raise ValidationException(
        f"No parseable JSON object{expected} found in model response",
        details={"raw_response": text[:_MAX_RAW_IN_DETAILS]},
    )
