"""
HTTP client for the provider's chat completions endpoint (OpenRouter).

One attempt per caller request: nothing here retries, since a retry would
bill a second inference call.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx

from config import Settings
from errors import ConfigurationError, UpstreamUnavailable
from models import ModelDescriptor, UpstreamMessage

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"
MAX_TOKENS = 4096
TEMPERATURE = 0.7


class UpstreamClient:
    """Builds and sends completion requests to the provider."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        referer: str,
        title: str,
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.referer = referer
        self.title = title
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, app_settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "UpstreamClient":
        return cls(
            api_key=app_settings.api_key,
            base_url=app_settings.OPENROUTER_BASE_URL,
            referer=app_settings.APP_REFERER,
            title=app_settings.APP_TITLE,
            timeout=app_settings.UPSTREAM_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}{COMPLETIONS_PATH}"

    def require_credential(self) -> None:
        if not self.is_configured:
            raise ConfigurationError(detail="OpenRouter API key not configured")

    def build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

    def build_payload(
        self, descriptor: ModelDescriptor, messages: Sequence[UpstreamMessage], streaming: bool
    ) -> Dict[str, Any]:
        return {
            "model": descriptor.upstream_id,
            "messages": [message.model_dump() for message in messages],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "stream": streaming,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _build_request(
        self, client: httpx.AsyncClient, descriptor: ModelDescriptor,
        messages: Sequence[UpstreamMessage], streaming: bool
    ) -> httpx.Request:
        self.require_credential()
        payload = self.build_payload(descriptor, messages, streaming)
        # Never log headers here, they carry the credential
        logger.info(f"Sending {'streaming' if streaming else 'non-streaming'} request for model '{descriptor.key}' to {self.completions_url}")
        logger.debug(f"Upstream payload for '{descriptor.key}': {len(payload['messages'])} message(s)")
        return client.build_request("POST", self.completions_url, json=payload, headers=self.build_headers())

    async def send(
        self, descriptor: ModelDescriptor, messages: Sequence[UpstreamMessage], streaming: bool = False
    ) -> httpx.Response:
        """
        Sends one completion request and returns the fully read response.

        Non-success statuses are returned as-is for the relay to classify;
        only transport failures raise (UpstreamUnavailable).
        """
        async with self._client() as client:
            request = self._build_request(client, descriptor, messages, streaming)
            try:
                response = await client.send(request)
            except httpx.RequestError as e:
                logger.error(f"Error requesting upstream {self.completions_url}: {e!r}")
                raise UpstreamUnavailable(detail=f"Error contacting upstream: {e!r}") from e
            logger.info(f"Upstream response status for model '{descriptor.key}': {response.status_code}")
            return response

    @asynccontextmanager
    async def open_stream(
        self, descriptor: ModelDescriptor, messages: Sequence[UpstreamMessage]
    ) -> AsyncIterator[httpx.Response]:
        """
        Opens a streaming completion request. The response body is left
        unread; the connection is released when the context exits, including
        when the consuming task is cancelled.
        """
        async with self._client() as client:
            request = self._build_request(client, descriptor, messages, streaming=True)
            try:
                response = await client.send(request, stream=True)
            except httpx.RequestError as e:
                logger.error(f"Error opening upstream stream {self.completions_url}: {e!r}")
                raise UpstreamUnavailable(detail=f"Error contacting upstream: {e!r}") from e
            logger.info(f"Stream connection established for model '{descriptor.key}'. Status: {response.status_code}")
            try:
                yield response
            finally:
                await response.aclose()
