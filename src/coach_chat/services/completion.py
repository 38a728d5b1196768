"""HTTP client for the streaming chat completion endpoint.

The endpoint takes ``{"messages": [{"role", "content"}, ...]}`` with a bearer
token. It answers 200 with an SSE body, or a JSON ``{"error": ...}`` body with
429 (rate limited), 402 (credits exhausted) or another failure status.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Protocol

import httpx
import structlog

from ..config import Settings
from ..domain.errors import ChatError, QuotaExceeded, RateLimited, TransportFailure

logger = structlog.get_logger()


class CompletionBackend(Protocol):
    def stream(self, messages: List[dict]) -> "AsyncIterator[AsyncIterator[bytes]]":
        """Async context manager yielding the raw response byte chunks."""
        ...


def classify_status(status_code: int, error_message: Optional[str] = None) -> ChatError:
    """Map a non-200 completion response to the error users should see."""
    if status_code == 429:
        return RateLimited(detail=f"status {status_code}: {error_message or 'no error body'}")
    if status_code == 402:
        return QuotaExceeded(detail=f"status {status_code}: {error_message or 'no error body'}")
    return TransportFailure(detail=f"status {status_code}: {error_message or 'no error body'}")


class CompletionClient:
    """Streams completions over a shared ``httpx.AsyncClient``."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = http_client
        self._owns_client = http_client is None
        logger.info(
            "completion_client_init",
            url=settings.completion_url,
            has_credentials=bool(settings.api_key),
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(None, connect=self.settings.connect_timeout)
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @asynccontextmanager
    async def stream(self, messages: List[dict]) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open the completion stream.

        Raises a ``ChatError`` before yielding if the request fails or the
        status is not 200. The response is closed when the block exits,
        including on cancellation.
        """
        client = self._http()
        request = client.build_request(
            "POST",
            self.settings.completion_url,
            json={"messages": messages},
            headers={
                "Authorization": f"Bearer {self.settings.api_key}",
                "Accept": "text/event-stream",
            },
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("completion_request_failed", error=str(e))
            raise TransportFailure(detail=str(e)) from e

        try:
            if response.status_code != 200:
                error_message = await self._read_error(response)
                logger.warning(
                    "completion_rejected",
                    status_code=response.status_code,
                    error=error_message,
                )
                raise classify_status(response.status_code, error_message)
            yield self._iter_bytes(response)
        finally:
            await response.aclose()

    async def _iter_bytes(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            logger.error("completion_stream_failed", error=str(e))
            raise TransportFailure(detail=str(e)) from e

    @staticmethod
    async def _read_error(response: httpx.Response) -> Optional[str]:
        try:
            await response.aread()
            body = response.json()
        except (httpx.HTTPError, ValueError):
            return None
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return None
