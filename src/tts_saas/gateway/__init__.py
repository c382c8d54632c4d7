"""
Synthesis Gateway: the only code that talks to the external TTS service.

    - client.py: SynthesisGateway and ByteStream
    - languages.py: Language catalogue and code conversion
    - speakers.py: Speaker id resolution
"""
from .client import ByteStream, SynthesisGateway
from .languages import FALLBACK_LANGUAGES, fallback_languages, nllb_to_tts, tts_to_nllb
from .speakers import DEFAULT_SPEAKERS, FALLBACK_SPEAKER, resolve_speaker

__all__ = [
    "SynthesisGateway",
    "ByteStream",
    "FALLBACK_LANGUAGES",
    "fallback_languages",
    "nllb_to_tts",
    "tts_to_nllb",
    "DEFAULT_SPEAKERS",
    "FALLBACK_SPEAKER",
    "resolve_speaker",
]
