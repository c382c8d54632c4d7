"""
Input Validation for Generation Requests.

Validation runs before any ledger or gateway call so that a malformed
request costs nothing.

Validation Rules:
    - Text: Required, not blank, max generation.max_text_length characters
    - Voice: Required, max 100 characters
    - Language: Required where used, max 16 characters

Error Codes:
    All functions raise ValidationError (reason code VALIDATION) with a
    narrower ``reason``:
        - {FIELD}_REQUIRED: Missing required field
        - {FIELD}_TOO_LONG: Exceeds max length
        - {FIELD}_INVALID: Wrong shape

Usage:
    from tts_saas.services.validators import validate_text, validate_voice_id

    text = validate_text(payload["text"], max_length=50_000)
"""
from __future__ import annotations

import re
from typing import Optional

from tts_saas.core.logging import get_logger, verbose

from .errors import ValidationError

_LOG = get_logger("tts-saas.validators")

MAX_VOICE_ID_LENGTH = 100
MAX_LANGUAGE_LENGTH = 16

# eng_Latn, zho_Hans, en, zh-CN
_LANGUAGE_RE = re.compile(r"^[A-Za-z]{2,3}([_-][A-Za-z]{2,4})?$")


def validate_text(text: Optional[str], max_length: int) -> str:
    """
    Validate input text.

    The text is returned unchanged: credits are charged on the length the
    caller sent, so no stripping happens here.

    Raises:
        ValidationError: TEXT_REQUIRED or TEXT_TOO_LONG
    """
    if not text or not text.strip():
        raise ValidationError("Text is required", "TEXT_REQUIRED")

    if len(text) > max_length:
        verbose(_LOG, "text_too_long", chars=len(text), max_length=max_length)
        raise ValidationError(
            f"Text exceeds maximum length of {max_length} characters",
            "TEXT_TOO_LONG",
            {"text_length": len(text), "max_length": max_length},
        )

    return text


def validate_voice_id(voice_id: Optional[str], max_length: int = MAX_VOICE_ID_LENGTH) -> str:
    """
    Validate a voice identifier.

    Raises:
        ValidationError: VOICE_REQUIRED or VOICE_TOO_LONG
    """
    if not voice_id or not voice_id.strip():
        raise ValidationError("Voice ID is required", "VOICE_REQUIRED")

    if len(voice_id) > max_length:
        raise ValidationError(
            f"Voice ID exceeds maximum length ({len(voice_id)} > {max_length})",
            "VOICE_TOO_LONG",
        )

    return voice_id


def validate_language(language: Optional[str], field: str = "language") -> str:
    """
    Validate a language code (TTS or NLLB form).

    Raises:
        ValidationError: LANGUAGE_REQUIRED, LANGUAGE_TOO_LONG or LANGUAGE_INVALID
    """
    if not language:
        raise ValidationError(f"{field} is required", "LANGUAGE_REQUIRED", {"field": field})

    if len(language) > MAX_LANGUAGE_LENGTH:
        raise ValidationError(
            f"{field} exceeds maximum length ({len(language)} > {MAX_LANGUAGE_LENGTH})",
            "LANGUAGE_TOO_LONG",
            {"field": field},
        )

    if not _LANGUAGE_RE.match(language):
        raise ValidationError(
            f"{field} is not a valid language code",
            "LANGUAGE_INVALID",
            {"field": field},
        )

    return language
