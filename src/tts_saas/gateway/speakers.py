"""
Speaker Resolution.

The synthesis service accepts either a built-in speaker or the handle of
a stored voice clone. Anything else falls back to the default female
voice, so a stale or mistyped voice id still produces audio.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from tts_saas.core.logging import get_logger, verbose

if TYPE_CHECKING:
    from tts_saas.ledger import LedgerStore

_LOG = get_logger("tts-saas.speakers")

DEFAULT_MALE_SPEAKER = "default_male_01"
DEFAULT_FEMALE_SPEAKER = "default_female_01"
DEFAULT_SPEAKERS = frozenset({DEFAULT_MALE_SPEAKER, DEFAULT_FEMALE_SPEAKER})
FALLBACK_SPEAKER = DEFAULT_FEMALE_SPEAKER


async def resolve_speaker(ledger: "LedgerStore", user_id: str, voice_id: str) -> str:
    """
    Map a requested voice id to the speaker id sent upstream.

    Order:
        1. The caller's active voice clone with this handle
        2. A built-in default speaker, verbatim
        3. FALLBACK_SPEAKER
    """
    clone = await ledger.find_voice_clone(user_id, voice_id)
    if clone is not None:
        verbose(_LOG, "speaker_resolved", source="clone", speaker=clone.voice_id)
        return clone.voice_id

    if voice_id in DEFAULT_SPEAKERS:
        verbose(_LOG, "speaker_resolved", source="default", speaker=voice_id)
        return voice_id

    verbose(_LOG, "speaker_resolved", source="fallback", speaker=FALLBACK_SPEAKER, requested=voice_id)
    return FALLBACK_SPEAKER
