"""
OAuth2 access tokens for the CIHI IRRS API.

CIHI uses the client-credentials grant with a JWT assertion signed (RS256)
by the vendor's private key. Tokens are cached in memory until shortly
before they expire.
"""

import logging
import time
from pathlib import Path

import httpx
import jwt

from ltcf_bridge.exceptions import AuthError
from ltcf_bridge.settings import settings

logger = logging.getLogger(__name__)

# Fallback lifetime when the token response has no expires_in
DEFAULT_TOKEN_LIFETIME = 300
# Refresh this many seconds before the token actually expires
EXPIRY_MARGIN = 30


class TokenCache:
    """Single in-memory access token with an expiry time."""

    def __init__(self) -> None:
        self._token: str | None = None
        self._expires_at: float = 0.0

    def store(self, token: str, lifetime: float) -> None:
        self._token = token
        self._expires_at = time.monotonic() + lifetime

    def get(self) -> str | None:
        """The cached token, or None when missing or expired."""
        if self._token and time.monotonic() < self._expires_at:
            return self._token
        return None

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0


class TokenService:
    """Obtains and caches access tokens from the CIHI token endpoint."""

    def __init__(
        self,
        token_url: str | None = None,
        private_key: str | None = None,
        system_identifier: str | None = None,
        audience: str | None = None,
        scope: str | None = None,
        timeout: float | None = None,
    ):
        self.token_url = token_url or settings.auth_token_url
        self._private_key = private_key
        self.system_identifier = system_identifier or settings.auth_system_identifier
        self.audience = audience or settings.auth_audience
        self.scope = scope or settings.auth_scope
        self.timeout = timeout or settings.irrs_timeout
        self.cache = TokenCache()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _load_private_key(self) -> str:
        if self._private_key:
            return self._private_key
        key_path = settings.auth_private_key_path
        if not key_path:
            raise AuthError("No private key configured (AUTH_PRIVATE_KEY_PATH)")
        path = Path(key_path)
        if not path.is_file():
            raise AuthError(f"Private key file not found: {path}")
        self._private_key = path.read_text(encoding="utf-8")
        return self._private_key

    def build_assertion(self, now: int | None = None) -> str:
        """Sign the JWT assertion presented to the token endpoint."""
        issued_at = int(now if now is not None else time.time())
        payload = {
            "iss": self.system_identifier,
            "sub": f"AccessRequest{self.system_identifier}",
            "scope": self.scope,
            "aud": self.audience,
            "iat": issued_at,
            "exp": issued_at + settings.auth_assertion_lifetime,
        }
        return jwt.encode(payload, self._load_private_key(), algorithm="RS256")

    async def get_access_token(self) -> str:
        """
        Return a valid access token, requesting a new one when needed.

        Raises:
            AuthError: If the key is missing or the token request fails.
        """
        cached = self.cache.get()
        if cached:
            return cached

        client = await self._get_client()
        try:
            response = await client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "assertion": self.build_assertion(),
                },
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise AuthError(
                f"Token request failed: {e.response.status_code} - {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise AuthError(f"Token request failed: {e}") from e

        token = body.get("access_token")
        if not token:
            raise AuthError("Token response has no access_token")

        lifetime = float(body.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        self.cache.store(token, max(lifetime - EXPIRY_MARGIN, 0.0))
        logger.info("Obtained IRRS access token valid for %ss", int(lifetime))
        return token
