"""
HTTP client for the DuckDuckGo chat upstream.

Handles VQD token acquisition (with linear backoff), model code resolution
and the streamed chat request. Every upstream call carries an explicit httpx
timeout.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager

import httpx
import structlog

from ..logging_utils import log_operation
from .exceptions import (
    RelayError,
    TokenUnavailableError,
    UpstreamHTTPError,
    UpstreamTimeoutError,
)
from .identity import IdentityProvider
from .models import ChatTurn, UpstreamConfig

VQD_HEADER = "x-vqd-4"
VQD_ACCEPT_HEADER = "x-vqd-accept"

# Constants
MAX_LOGGED_BODY = 500

logger = structlog.get_logger(__name__)


class DuckChatClient:
    """HTTP client for the chat upstream with token handling and streaming."""

    def __init__(
        self,
        config: UpstreamConfig,
        identity_provider: IdentityProvider,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.identity_provider = identity_provider
        self._owns_client = http_client is None
        self.client: httpx.AsyncClient = http_client or httpx.AsyncClient()
        self._sleep = sleep

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + path

    def resolve_model(self, model: str | None) -> str:
        """
        Resolve a short model code or a full model name.

        Codes from the table map to their model; a full name already in the
        table passes through; anything else falls back to the default code.
        """
        table = self.config.model_table
        if model is not None:
            key = str(model)
            if key in table:
                return table[key]
            if key in table.values():
                return key
        return table[self.config.default_model]

    @log_operation("acquire_token")
    async def acquire_token(self) -> str:
        """
        Fetch a fresh VQD token from the status endpoint.

        Retries up to token_max_attempts times, sleeping
        token_backoff_step * attempt seconds between attempts.

        Raises:
            TokenUnavailableError: If no attempt returned the token header
        """
        max_attempts = self.config.token_max_attempts
        timeout = httpx.Timeout(self.config.token_timeout)
        reason = ""

        for attempt in range(1, max_attempts + 1):
            headers = {
                VQD_ACCEPT_HEADER: "1",
                **self.identity_provider.next_identity().headers(),
            }
            try:
                response = await self.client.get(
                    self._url(self.config.status_path),
                    headers=headers,
                    timeout=timeout,
                )
            except httpx.TimeoutException as e:
                reason = f"status request timed out: {e}"
            except httpx.HTTPError as e:
                reason = f"status request failed: {e}"
            else:
                token = response.headers.get(VQD_HEADER)
                if response.is_success and token:
                    return token
                reason = (
                    f"status {response.status_code} without {VQD_HEADER} header"
                )

            if attempt < max_attempts:
                delay = self.config.token_backoff_step * attempt
                logger.warning(
                    "Token acquisition attempt failed, retrying",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    retry_in=delay,
                    reason=reason,
                )
                await self._sleep(delay)

        logger.error(
            "Token acquisition failed", attempts=max_attempts, reason=reason
        )
        raise TokenUnavailableError(
            "Failed to acquire upstream token", attempts=max_attempts
        )

    @asynccontextmanager
    async def dispatch(
        self,
        token: str,
        conversation: Sequence[ChatTurn],
        model: str | None,
    ) -> AsyncGenerator[httpx.Response]:
        """
        Open the streamed chat request.

        The upstream response is closed when the context exits, whether the
        body was fully read, an error was raised or the consumer went away.

        Raises:
            UpstreamHTTPError: If the upstream answered with a non-2xx status
            UpstreamTimeoutError: If connecting or sending timed out
        """
        identity = self.identity_provider.next_identity()
        headers = {
            VQD_HEADER: token,
            "content-type": "application/json",
            "accept": "text/event-stream",
            **identity.headers(),
        }
        payload = {
            "model": self.resolve_model(model),
            "messages": [turn.model_dump() for turn in conversation],
        }
        request = self.client.build_request(
            "POST",
            self._url(self.config.chat_path),
            headers=headers,
            json=payload,
            timeout=httpx.Timeout(
                self.config.chat_timeout, read=self.config.read_timeout
            ),
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error("Chat dispatch timed out", error=str(e))
            raise UpstreamTimeoutError() from e
        except httpx.HTTPError as e:
            logger.error("Chat dispatch failed", error=str(e))
            raise RelayError(f"Upstream connection failed: {e}") from e

        try:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                logger.error(
                    "Upstream rejected chat request",
                    upstream_status=response.status_code,
                    body=body[:MAX_LOGGED_BODY],
                    model=payload["model"],
                )
                raise UpstreamHTTPError(
                    response.status_code, body=body[:MAX_LOGGED_BODY]
                )
            yield response
        finally:
            await response.aclose()

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> DuckChatClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
