#!/usr/bin/env python3
"""Generic HTTP Client for Microsoft Graph.

This module provides a reusable HTTP client that handles the common
concerns of Graph communication:

    - OAuth2 authentication via TokenManager
    - Automatic token refresh on 401 responses
    - Throttle handling via ThrottleController (fixed wait, same request again)
    - Continuation-link pagination (@odata.nextLink) with partial-result policy
    - Connection pooling via shared aiohttp session
    - Typed exceptions for every HTTP failure class

Design Philosophy:
    This client knows HOW to talk to Graph, but not WHAT to fetch.
    It has no knowledge of devices or groups. That knowledge belongs in
    the adapters that compose this client.

Usage:
    async with GraphClient(token_manager) as client:
        # Single request
        data = await client.get("deviceManagement/managedDevices/{id}")

        # Page by page
        async for page in client.paginate("groups/{id}/members"):
            for item in page:
                process(item)

        # Everything, with completeness information
        result = await client.walk("deviceManagement/managedDevices")
        if not result.complete:
            ...
"""
import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import aiohttp

from .auth import TokenManager
from .exceptions import (
    APIError,
    ConfigurationError,
    ConnectionError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    ThrottleRetriesExhaustedError,
    TimeoutError,
    TokenExpiredError,
    ValidationError,
)
from .resilience import ThrottleController, ThrottleVerdict

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://graph.microsoft.com/v1.0"

# ============================================
# Configuration
# ============================================

@dataclass
class PaginationConfig:
    """Configuration for paginated listing requests.

    Attributes:
        delay_between_pages: Seconds to wait between successful page requests
        max_pages: Optional hard stop (None = walk to the last page)
        items_field: Response field holding the page's entities
        continuation_field: Response field holding the next page's URI
    """
    delay_between_pages: float = 0.1
    max_pages: Optional[int] = None
    items_field: str = "value"
    continuation_field: str = "@odata.nextLink"

    @classmethod
    def from_env(cls) -> "PaginationConfig":
        """Build a config honoring MDM_PAGE_DELAY_SECONDS."""
        value = os.getenv("MDM_PAGE_DELAY_SECONDS")
        if not value:
            return cls()
        try:
            return cls(delay_between_pages=float(value))
        except ValueError:
            raise ConfigurationError(
                f"MDM_PAGE_DELAY_SECONDS must be a number, got {value!r}",
                missing_keys=["MDM_PAGE_DELAY_SECONDS"],
            )


@dataclass
class FetchResult:
    """Outcome of walking a paginated listing.

    A result with ``complete=False`` stopped early: a page failed fatally,
    the continuation chain looped, or max_pages was reached. ``items`` then
    holds everything accumulated before the stop.
    """
    uri: str
    items: list[dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    complete: bool = False
    error: Optional[Exception] = None

    @property
    def count(self) -> int:
        return len(self.items)


# ============================================
# The Client
# ============================================

class GraphClient:
    """Async HTTP client for Microsoft Graph.

    Use as an async context manager so the session is closed:

        async with GraphClient(token_manager) as client:
            data = await client.get("groups/{id}")

    Attributes:
        token_manager: TokenManager instance for OAuth2 authentication
        base_url: Base URL for relative endpoints
        throttle: ThrottleController shared by every request
    """

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: Optional[str] = None,
        throttle: Optional[ThrottleController] = None,
        request_timeout: float = 60.0,
    ):
        """Initialize the GraphClient.

        Args:
            token_manager: TokenManager instance for authentication
            base_url: API base URL. Defaults to GRAPH_BASE_URL or Graph v1.0.
            throttle: Throttle policy. Defaults to a ThrottleController built
                from the environment.
            request_timeout: Total timeout per request in seconds
        """
        self.token_manager = token_manager
        self.base_url = (base_url or os.getenv("GRAPH_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.throttle = throttle or ThrottleController()
        self.request_timeout = request_timeout

        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"Base URL must be absolute, got {self.base_url!r}",
                missing_keys=["GRAPH_BASE_URL"],
            )

        # Session is created in __aenter__, closed in __aexit__
        self._session: Optional[aiohttp.ClientSession] = None

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "GraphClient":
        """Enter async context: create the HTTP session."""
        # One request in flight at a time; a single connection is enough
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=1, limit_per_host=1),
            timeout=aiohttp.ClientTimeout(
                total=self.request_timeout,
                connect=10,
            ),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    def resolve_url(self, endpoint: str) -> str:
        """Turn a relative endpoint into an absolute URI.

        Continuation links from Graph are already absolute and pass through.
        """
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _get_auth_headers(self) -> dict[str, str]:
        """Get authorization headers with current token."""
        token = await self.token_manager.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "ConsistencyLevel": "eventual",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make a single HTTP request (no retry logic).

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            endpoint: Relative endpoint or absolute URI
            params: Query parameters
            json_body: JSON request body (for POST/PATCH)

        Returns:
            Parsed JSON response, or an empty dict for 204 No Content

        Raises:
            APIError: If response status is not 2xx
            ConfigurationError: If the URI is malformed
            RuntimeError: If called outside of async context manager
            NetworkError: If the transport fails
        """
        if not self._session:
            raise RuntimeError(
                "GraphClient must be used as async context manager: "
                "async with GraphClient(...) as client:"
            )

        url = self.resolve_url(endpoint)

        try:
            headers = await self._get_auth_headers()

            async with self._session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_body,
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise self._create_api_error(
                        status=response.status,
                        method=method,
                        endpoint=url,
                        response_body=error_text,
                        retry_after=response.headers.get("Retry-After"),
                    )

                if response.status == 204:
                    return {}

                body = await response.text()
                return json.loads(body) if body else {}

        except aiohttp.InvalidURL as e:
            raise ConfigurationError(
                f"Malformed request URI: {url}",
                details={"uri": url},
                cause=e,
            )

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {url}",
                host=self.base_url,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {url} timed out",
                timeout_seconds=self.request_timeout,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {url}: {e}",
                cause=e,
            )

    @staticmethod
    def _error_message(response_body: str) -> Optional[str]:
        """Pull error.message out of a Graph error payload, if there is one."""
        try:
            payload = json.loads(response_body)
        except (TypeError, ValueError):
            return None
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("code")
        return None

    def _create_api_error(
        self,
        status: int,
        method: str,
        endpoint: str,
        response_body: str,
        retry_after: Optional[str] = None,
    ) -> APIError:
        """Create appropriate APIError subclass based on status code."""
        detail = self._error_message(response_body)
        suffix = f": {detail}" if detail else ""

        if status == 401:
            return TokenExpiredError(
                "Access token expired or invalid",
                details={"endpoint": endpoint},
            )

        if status == 403:
            return ForbiddenError(
                f"Forbidden for {method} {endpoint}{suffix}",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 404:
            return NotFoundError(
                resource_type="Resource",
                resource_id=endpoint,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 429:
            seconds = None
            if retry_after and retry_after.isdigit():
                seconds = int(retry_after)
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}{suffix}",
                retry_after=seconds,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 400 or status == 422:
            return ValidationError(
                f"Validation failed for {method} {endpoint}{suffix}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}{suffix}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        return APIError(
            f"{method} {endpoint} failed{suffix}",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make an HTTP request, waiting out throttling.

        - 401 Unauthorized: invalidate token, refresh, retry once
        - Throttled (per ThrottleController): sleep the fixed backoff and
          repeat the identical request, until success or the ceiling
        - Anything else: raise immediately

        Raises:
            ThrottleRetriesExhaustedError: If the retry ceiling was reached
            APIError: For non-throttle HTTP failures
            NetworkError: For transport failures
        """
        attempt = 1
        token_refreshed = False

        while True:
            try:
                return await self._request(method, endpoint, params, json_body)

            except TokenExpiredError:
                if token_refreshed:
                    raise
                logger.warning(f"Token expired, refreshing ({method} {endpoint})")
                self.token_manager.invalidate()
                token_refreshed = True
                continue

            except APIError as e:
                if self.throttle.classify(e) is not ThrottleVerdict.RETRYABLE:
                    raise

                if not self.throttle.should_retry(e, attempt):
                    raise ThrottleRetriesExhaustedError(
                        attempts=attempt,
                        endpoint=self.resolve_url(endpoint),
                        cause=e,
                    )

                wait_time = self.throttle.backoff_duration(attempt)
                logger.warning(
                    f"Throttled on {method} {endpoint}, waiting {wait_time:.0f}s "
                    f"(attempt {attempt})"
                )
                await asyncio.sleep(wait_time)
                attempt += 1

    # ----------------------------------------
    # High-Level Request Methods
    # ----------------------------------------

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make a GET request."""
        return await self._request_with_retry("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        json_body: dict,
        params: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make a POST request."""
        return await self._request_with_retry("POST", endpoint, params=params, json_body=json_body)

    async def patch(
        self,
        endpoint: str,
        json_body: dict,
        params: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make a PATCH request."""
        return await self._request_with_retry("PATCH", endpoint, params=params, json_body=json_body)

    async def delete(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make a DELETE request."""
        return await self._request_with_retry("DELETE", endpoint, params=params)

    # ----------------------------------------
    # Pagination Methods
    # ----------------------------------------

    async def paginate(
        self,
        endpoint: str,
        config: Optional[PaginationConfig] = None,
        params: Optional[dict] = None,
        status: Optional[FetchResult] = None,
    ) -> AsyncIterator[list[dict]]:
        """Iterate through a paginated listing one page at a time.

        Follows the continuation field until a page has none. A fatal page
        failure ends the iteration early instead of raising; pass ``status``
        to learn whether the walk completed.

        Args:
            endpoint: Relative endpoint or absolute URI of the first page
            config: Pagination configuration (delay, field names, max_pages)
            params: Query parameters for the first page only
            status: Optional FetchResult updated with pages/complete/error

        Yields:
            List of entities from each non-empty page, in server order

        Raises:
            NetworkError: If the very first request cannot be made
            ConfigurationError: If the URI is malformed
        """
        config = config or PaginationConfig()
        status = status if status is not None else FetchResult(uri=endpoint)

        current = endpoint
        current_params = dict(params) if params else None
        visited = {self.resolve_url(endpoint)}
        fetched = 0

        while True:
            try:
                data = await self.get(current, params=current_params)

            except (APIError, ThrottleRetriesExhaustedError) as e:
                logger.warning(f"Page fetch failed for {self.resolve_url(current)}: {e}")
                status.error = e
                break

            except NetworkError as e:
                if status.pages == 0:
                    raise
                logger.warning(f"Page fetch failed for {self.resolve_url(current)}: {e}")
                status.error = e
                break

            items = data.get(config.items_field) or []
            status.pages += 1
            fetched += len(items)

            if items:
                yield items

            logger.debug(f"Page {status.pages}: {len(items)} items, {fetched:,} so far")

            next_link = data.get(config.continuation_field)
            if not next_link:
                status.complete = True
                break

            if next_link in visited:
                logger.warning(
                    f"Continuation link repeats an earlier page, stopping: {next_link}"
                )
                break

            if config.max_pages and status.pages >= config.max_pages:
                logger.info(f"Reached max_pages limit ({config.max_pages})")
                break

            visited.add(next_link)
            current = next_link
            current_params = None

            if config.delay_between_pages > 0:
                await asyncio.sleep(config.delay_between_pages)

        if status.complete:
            logger.info(f"Pagination complete: {fetched:,} items in {status.pages} pages")
        else:
            logger.warning(
                f"Pagination stopped early after {status.pages} pages "
                f"({fetched:,} items); result may be incomplete"
            )

    async def walk(
        self,
        endpoint: str,
        config: Optional[PaginationConfig] = None,
        params: Optional[dict] = None,
    ) -> FetchResult:
        """Fetch every page and report whether the walk completed."""
        result = FetchResult(uri=endpoint)
        async for page in self.paginate(endpoint, config, params, status=result):
            result.items.extend(page)
        return result

    async def fetch_all(
        self,
        endpoint: str,
        config: Optional[PaginationConfig] = None,
        params: Optional[dict] = None,
    ) -> list[dict]:
        """Fetch all entities from a paginated endpoint.

        Always restarts from the first page. A short list may mean a page
        failed; use walk() when that distinction matters.
        """
        result = await self.walk(endpoint, config, params)
        return result.items
