"""
tts-saas Services Layer.

Business logic between the API layer and the ledger/gateway/audio layers.

Components:
    - errors.py: GenerationError hierarchy and reason codes
    - validators.py, requests.py: Request validation
    - identity.py: Caller identity from trusted proxy headers
    - credit_guard.py: Authorize, reserve and release credits
    - pipeline.py: GenerationPipeline (streaming and buffered)
    - container.py: Wiring from Settings

Only the error types are re-exported here; import the pipeline and
container from their modules (they depend on the gateway, which imports
these errors).
"""
from .errors import (
    AuthenticationError,
    AuthorizationError,
    ErrorCode,
    GenerationError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)

__all__ = [
    "ErrorCode",
    "GenerationError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "PersistenceError",
    "NotFoundError",
]
