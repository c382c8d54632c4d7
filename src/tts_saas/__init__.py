"""
tts-saas: Metered SaaS Front End for an External Text-to-Speech Engine.

Callers spend a prepaid balance of character credits on speech generation.
Every request is authorized against the caller's subscription, the credits
are deducted before the external synthesis service is called, and the audio
is streamed back to the caller while being saved to disk at the same time.

Generation Types:
    - tts: Speak the text in one of ten languages
    - translate-tts: Translate the text (NLLB) and speak the translation

Key Features:
    - Streaming endpoint (/v1/generate/stream) with concurrent persistence
    - Buffered endpoint (/v1/generate) returning a stored audio reference
    - Atomic credit deduction with exact refund on upstream failure
    - Generation history and account summary
    - Prometheus metrics

Example Usage:
    >>> from tts_saas.services.container import build_container
    >>> from tts_saas.core.config import load_settings
    >>>
    >>> container = build_container(load_settings())
    >>> outcome = await container.pipeline.run_buffered(
    ...     "user-1", {"type": "tts", "text": "Hello", "voiceId": "default_female_01"}
    ... )
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
