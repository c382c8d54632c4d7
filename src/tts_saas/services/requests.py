"""
Generation Request Models.

A generation request is a tagged union on ``type``:

    {"type": "tts", "text": "...", "voiceId": "...", "language": "en"}
    {"type": "translate-tts", "text": "...", "voiceId": "...",
     "sourceLanguage": "eng_Latn", "targetLanguage": "fra_Latn"}

parse_generation_request() turns a raw JSON body into one of the two
models, raising ValidationError for anything malformed.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .validators import validate_language, validate_text, validate_voice_id

TTS = "tts"
TRANSLATE_TTS = "translate-tts"


class _BaseGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str
    voice_id: str = Field(default="", alias="voiceId")

    @property
    def text_length(self) -> int:
        return len(self.text)


class TTSRequest(_BaseGenerationRequest):
    type: Literal["tts"]
    language: str = "en"

    @property
    def source_language(self) -> str:
        return self.language

    @property
    def target_language(self) -> str | None:
        return None


class TranslateTTSRequest(_BaseGenerationRequest):
    type: Literal["translate-tts"]
    source_lang: str = Field(default="", alias="sourceLanguage")
    target_lang: str = Field(default="", alias="targetLanguage")

    @property
    def source_language(self) -> str:
        return self.source_lang

    @property
    def target_language(self) -> str | None:
        return self.target_lang


GenerationRequest = Annotated[
    Union[TTSRequest, TranslateTTSRequest],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[GenerationRequest] = TypeAdapter(GenerationRequest)


def _first_error(exc: PydanticValidationError) -> ValidationError:
    err = exc.errors()[0]
    err_type = err.get("type", "")
    loc = ".".join(str(p) for p in err.get("loc", ()) if p not in (TTS, TRANSLATE_TTS))

    if err_type in ("union_tag_not_found", "union_tag_invalid"):
        return ValidationError(
            "Invalid generation type. Expected 'tts' or 'translate-tts'",
            "TYPE_INVALID",
        )
    if err_type == "missing" and loc == "text":
        return ValidationError("Text is required", "TEXT_REQUIRED")
    return ValidationError(
        f"Invalid field '{loc}': {err.get('msg', 'invalid value')}",
        "INVALID_REQUEST",
        {"field": loc},
    )


def parse_generation_request(payload: Any, max_text_length: int) -> TTSRequest | TranslateTTSRequest:
    """
    Validate a raw request body.

    Args:
        payload: Decoded JSON body
        max_text_length: Upper bound on text length in characters

    Returns:
        TTSRequest or TranslateTTSRequest

    Raises:
        ValidationError: On any structural or field violation
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", "INVALID_REQUEST")

    try:
        request = _ADAPTER.validate_python(payload)
    except PydanticValidationError as e:
        raise _first_error(e) from e

    validate_text(request.text, max_text_length)
    validate_voice_id(request.voice_id)

    if isinstance(request, TranslateTTSRequest):
        validate_language(request.source_lang, "sourceLanguage")
        validate_language(request.target_lang, "targetLanguage")
    else:
        validate_language(request.language, "language")

    return request
