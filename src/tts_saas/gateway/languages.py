"""
Language Catalogue.

The synthesis service speaks ten TTS languages (qwen3-tts) and translates
between eleven NLLB language codes. The upstream ``/languages`` endpoint
is authoritative; FALLBACK_LANGUAGES is served when it cannot be reached.

Catalogue shape:
    {
      "translation": {"model": "nllb", "languages": [{"code", "name", "tts_code"}]},
      "tts": {"model": "qwen3-tts", "languages": [{"code", "name", "nllb_code"}]}
    }
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

TTS_MODEL = "qwen3-tts"
TRANSLATION_MODEL = "nllb"

# code -> (name, nllb_code)
TTS_LANGUAGES: Dict[str, tuple] = {
    "en": ("English", "eng_Latn"),
    "zh": ("Chinese", "zho_Hans"),
    "ja": ("Japanese", "jpn_Jpan"),
    "ko": ("Korean", "kor_Hang"),
    "de": ("German", "deu_Latn"),
    "fr": ("French", "fra_Latn"),
    "ru": ("Russian", "rus_Cyrl"),
    "pt": ("Portuguese", "por_Latn"),
    "es": ("Spanish", "spa_Latn"),
    "it": ("Italian", "ita_Latn"),
}

# nllb_code -> (name, tts_code)
TRANSLATION_LANGUAGES: Dict[str, tuple] = {
    "eng_Latn": ("English", "en"),
    "zho_Hans": ("Chinese (Simplified)", "zh"),
    "zho_Hant": ("Chinese (Traditional)", "zh"),
    "jpn_Jpan": ("Japanese", "ja"),
    "kor_Hang": ("Korean", "ko"),
    "deu_Latn": ("German", "de"),
    "fra_Latn": ("French", "fr"),
    "rus_Cyrl": ("Russian", "ru"),
    "por_Latn": ("Portuguese", "pt"),
    "spa_Latn": ("Spanish", "es"),
    "ita_Latn": ("Italian", "it"),
}


def _build_fallback() -> Dict[str, Any]:
    return {
        "translation": {
            "model": TRANSLATION_MODEL,
            "languages": [
                {"code": code, "name": name, "tts_code": tts_code}
                for code, (name, tts_code) in TRANSLATION_LANGUAGES.items()
            ],
        },
        "tts": {
            "model": TTS_MODEL,
            "languages": [
                {"code": code, "name": name, "nllb_code": nllb_code}
                for code, (name, nllb_code) in TTS_LANGUAGES.items()
            ],
        },
    }


FALLBACK_LANGUAGES: Dict[str, Any] = _build_fallback()


def fallback_languages() -> Dict[str, Any]:
    """A fresh copy of the static catalogue."""
    return _build_fallback()


def tts_to_nllb(tts_code: str, catalogue: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Convert a TTS language code to its NLLB code.

    Examples:
        >>> tts_to_nllb("fr")
        'fra_Latn'
        >>> tts_to_nllb("tr") is None
        True
    """
    languages: List[Dict[str, Any]] = (catalogue or FALLBACK_LANGUAGES)["tts"]["languages"]
    for lang in languages:
        if lang.get("code") == tts_code:
            return lang.get("nllb_code")
    return None


def nllb_to_tts(nllb_code: str, catalogue: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Convert an NLLB code to the TTS language that speaks it.

    Examples:
        >>> nllb_to_tts("zho_Hant")
        'zh'
    """
    languages: List[Dict[str, Any]] = (catalogue or FALLBACK_LANGUAGES)["translation"]["languages"]
    for lang in languages:
        if lang.get("code") == nllb_code:
            return lang.get("tts_code")
    return None


def is_valid_catalogue(data: Any) -> bool:
    """Check that an upstream response has the catalogue shape."""
    try:
        return (
            isinstance(data["translation"]["languages"], list)
            and isinstance(data["tts"]["languages"], list)
        )
    except (KeyError, TypeError):
        return False
