"""
Caller Identity.

Authentication itself happens in front of this service. An identity
provider only answers "who is calling?" for a request, or refuses.

HeaderIdentityProvider trusts headers set by an authenticating proxy:

    X-User-Id: <user id>          (auth.user_header)
    X-User-Role: admin | user     (auth.role_header)
    X-Proxy-Secret: <secret>      (required when auth.proxy_secret is set)
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Mapping, Protocol

from tts_saas.core.logging import get_logger, warn

from .errors import AuthenticationError

_LOG = get_logger("tts-saas.identity")

PROXY_SECRET_HEADER = "X-Proxy-Secret"
MAX_USER_ID_LENGTH = 128


@dataclass(frozen=True)
class Identity:
    user_id: str
    is_admin: bool = False


class IdentityProvider(Protocol):
    async def identify(self, headers: Mapping[str, str]) -> Identity:
        """Return the caller's identity or raise AuthenticationError."""
        ...


class HeaderIdentityProvider:
    """Identity from trusted proxy headers."""

    def __init__(self, user_header: str = "X-User-Id", role_header: str = "X-User-Role", proxy_secret: str = ""):
        self._user_header = user_header
        self._role_header = role_header
        self._proxy_secret = proxy_secret

    async def identify(self, headers: Mapping[str, str]) -> Identity:
        if self._proxy_secret:
            presented = headers.get(PROXY_SECRET_HEADER, "")
            if not hmac.compare_digest(presented.encode(), self._proxy_secret.encode()):
                warn(_LOG, "proxy_secret_mismatch")
                raise AuthenticationError()

        user_id = (headers.get(self._user_header) or "").strip()
        if not user_id or len(user_id) > MAX_USER_ID_LENGTH:
            raise AuthenticationError()

        role = (headers.get(self._role_header) or "").strip().lower()
        return Identity(user_id=user_id, is_admin=(role == "admin"))
