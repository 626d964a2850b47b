#!/usr/bin/env python3
"""OAuth2 Token Management for Microsoft Graph.

This module provides OAuth2 token management for Graph using the client
credentials grant against the Microsoft identity platform.

Features:
    - Automatic token caching with expiration buffer (10% of TTL, 30s-5min)
    - Refresh serialized by an asyncio.Lock
    - Exponential backoff retry on token endpoint failures (1s, 2s, 4s)
    - Transparent token refresh on 401 responses (via invalidate())

Security Notes:
    - Tokens are cached in memory only (never persisted to disk)
    - Client secrets should be provided via environment variables
    - Token ID in log output is a SHA-256 prefix, never the token itself

Example:
    >>> manager = TokenManager()
    >>> token = await manager.get_token()
"""
import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp
from dotenv import load_dotenv

from .exceptions import (
    ConfigurationError,
    ConnectionError,
    InvalidCredentialsError,
    NetworkError,
    TimeoutError,
    TokenFetchError,
)

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
DEFAULT_SCOPE = "https://graph.microsoft.com/.default"


@dataclass
class CachedToken:
    """Container for a cached OAuth2 access token.

    Attributes:
        access_token: The bearer token string.
        expires_at: Unix timestamp when the token expires.
        expires_in: Original TTL in seconds.
    """
    access_token: str
    expires_at: float
    expires_in: int = 3600

    MAX_BUFFER_SECONDS = 300
    MIN_BUFFER_SECONDS = 30

    @property
    def token_id(self) -> str:
        """Safe identifier for logging (SHA-256 hash, first 8 chars)."""
        return hashlib.sha256(self.access_token.encode()).hexdigest()[:8]

    @property
    def is_expired(self) -> bool:
        """Check if the token has expired, with a safety buffer."""
        buffer = max(
            self.MIN_BUFFER_SECONDS,
            min(self.expires_in * 0.1, self.MAX_BUFFER_SECONDS),
        )
        return time.time() >= (self.expires_at - buffer)

    @property
    def time_remaining(self) -> float:
        """Return seconds remaining before token expires (0 if expired)."""
        return max(0, self.expires_at - time.time())


class TokenManager:
    """OAuth2 client-credentials token manager with automatic refresh.

    Attributes:
        tenant_id: Directory tenant (from env: MDM_TENANT_ID).
        client_id: App registration client ID (from env: MDM_CLIENT_ID).
        client_secret: App registration secret (from env: MDM_CLIENT_SECRET).
        token_url: Token endpoint (from env: MDM_TOKEN_URL, derived from tenant).
        scope: Requested scope (from env: MDM_SCOPE, default Graph .default).
    """

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        scope: Optional[str] = None,
    ):
        self.tenant_id = tenant_id or os.getenv("MDM_TENANT_ID")
        self.client_id = client_id or os.getenv("MDM_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("MDM_CLIENT_SECRET")
        self.scope = scope or os.getenv("MDM_SCOPE", DEFAULT_SCOPE)

        token_url = token_url or os.getenv("MDM_TOKEN_URL")
        if not token_url and self.tenant_id:
            token_url = f"{DEFAULT_AUTHORITY}/{self.tenant_id}/oauth2/v2.0/token"
        self.token_url = token_url

        missing = []
        if not self.token_url:
            missing.append("MDM_TENANT_ID")
        if not self.client_id:
            missing.append("MDM_CLIENT_ID")
        if not self.client_secret:
            missing.append("MDM_CLIENT_SECRET")
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing_keys=missing,
            )

        self._cached_token: Optional[CachedToken] = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Get a valid access token, fetching or refreshing as needed.

        Raises:
            TokenFetchError: If token cannot be obtained after retries
            InvalidCredentialsError: If the identity platform rejects the client
        """
        if self._cached_token and not self._cached_token.is_expired:
            return self._cached_token.access_token

        async with self._lock:
            if self._cached_token and not self._cached_token.is_expired:
                return self._cached_token.access_token

            self._cached_token = await self._fetch_token()
            return self._cached_token.access_token

    async def _fetch_token(self, max_retries: int = 3) -> CachedToken:
        """Fetch a new access token, with exponential backoff on failure."""
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": self.scope,
        }

        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self.token_url,
                        data=payload,
                        timeout=aiohttp.ClientTimeout(total=30),
                    ) as response:
                        if response.status == 200:
                            data = await response.json()

                            access_token = data.get("access_token")
                            if not access_token:
                                raise TokenFetchError(
                                    "Token response missing access_token",
                                    status_code=200,
                                    attempts=attempt,
                                    details={"response_keys": list(data.keys())},
                                )

                            expires_in = int(data.get("expires_in", 3600))
                            token = CachedToken(
                                access_token=access_token,
                                expires_at=time.time() + expires_in,
                                expires_in=expires_in,
                            )
                            logger.info(
                                f"Token fetched (id={token.token_id}), expires in {expires_in}s"
                            )
                            return token

                        error_text = await response.text()

                        # The identity platform answers bad secrets with 401
                        # and unknown clients with 400 invalid_client
                        if response.status == 401 or "invalid_client" in error_text:
                            raise InvalidCredentialsError(
                                "Invalid client credentials",
                                details={"response": error_text[:200]},
                            )

                        if response.status == 400:
                            raise TokenFetchError(
                                f"Invalid token request: {error_text[:200]}",
                                status_code=400,
                                attempts=attempt,
                            )

                        last_error = TokenFetchError(
                            f"Token endpoint returned HTTP {response.status}",
                            status_code=response.status,
                            attempts=attempt,
                            details={"response": error_text[:200]},
                        )
                        logger.warning(
                            f"Token fetch attempt {attempt}/{max_retries} failed: "
                            f"HTTP {response.status}"
                        )

            except aiohttp.ClientConnectionError as e:
                last_error = ConnectionError(
                    f"Failed to connect to token endpoint: {e}",
                    host=self.token_url,
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: "
                    f"Connection error - {e}"
                )

            except asyncio.TimeoutError as e:
                last_error = TimeoutError(
                    "Token request timed out",
                    timeout_seconds=30,
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: Timeout"
                )

            except aiohttp.ClientError as e:
                last_error = NetworkError(
                    f"Network error fetching token: {e}",
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: {e}"
                )

            if attempt < max_retries:
                wait_time = 2 ** (attempt - 1)
                logger.debug(f"Waiting {wait_time}s before retry")
                await asyncio.sleep(wait_time)

        raise TokenFetchError(
            f"Failed to fetch token after {max_retries} attempts",
            attempts=max_retries,
            cause=last_error,
        )

    def invalidate(self):
        """Invalidate the cached token."""
        self._cached_token = None

    @property
    def token_info(self) -> Optional[dict]:
        """Info about the cached token for debugging (never the token itself)."""
        if not self._cached_token:
            return None
        return {
            "token_id": self._cached_token.token_id,
            "is_expired": self._cached_token.is_expired,
            "time_remaining_seconds": self._cached_token.time_remaining,
            "expires_in_original": self._cached_token.expires_in,
        }
