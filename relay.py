"""
Turns provider responses into this service's public response shapes.

Buffered calls become a ChatResult. Streamed calls are re-framed into a
simplified server-sent-events stream: `{"content": ...}` fragments followed
by exactly one terminal frame, either `[DONE]` or `{"error": ...}`.
"""
import codecs
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator, List, Optional, Sequence

import httpx

from errors import (
    ProxyError,
    UPSTREAM_FALLBACK_MESSAGE,
    UpstreamAuthError,
    UpstreamOtherError,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from models import (
    ChatResult,
    ModelDescriptor,
    STREAM_DONE_SENTINEL,
    StreamContentEvent,
    StreamDoneEvent,
    StreamErrorEvent,
    StreamEvent,
    UpstreamMessage,
    encode_sse,
)
from upstream import UpstreamClient

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response generated"
STREAM_ERROR_MESSAGE = "Streaming error occurred"
DATA_PREFIX = "data: "


# --- Upstream error classification ---
def extract_error_message(payload: Any) -> Optional[str]:
    """Best-effort `error.message` from a provider error body."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return None


def upstream_error_from_response(response: httpx.Response) -> ProxyError:
    """
    Classifies a non-success provider response. The body must already be read.

    401 is reported as a configuration error so callers never learn that the
    credential was rejected; the real status and payload are only logged.
    """
    try:
        payload = response.json()
    except (ValueError, UnicodeDecodeError):
        payload = {}

    status = response.status_code
    logger.error(f"OpenRouter API error: {status} {payload}")

    if status == 401:
        return UpstreamAuthError(status)
    if status == 429:
        return UpstreamRateLimited(detail=extract_error_message(payload))

    message = extract_error_message(payload)
    # Non-error statuses (1xx/3xx) are not meaningful to relay as-is
    caller_status = status if status >= 400 else 502
    return UpstreamOtherError(caller_status, message or UPSTREAM_FALLBACK_MESSAGE, detail=f"Upstream status {status}")


# --- Buffered relay ---
def extract_completion_text(data: Any) -> str:
    """Returns choices[0].message.content, or the fixed fallback when absent or empty."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return NO_RESPONSE_TEXT
    if not isinstance(content, str) or not content:
        return NO_RESPONSE_TEXT
    return content


def relay_buffered(response: httpx.Response, descriptor: ModelDescriptor, started_at: float) -> ChatResult:
    """
    Builds the public ChatResult from a complete provider response.

    `started_at` is a time.monotonic() reading taken when the caller's
    request arrived.
    """
    if not response.is_success:
        raise upstream_error_from_response(response)

    try:
        data = response.json()
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"Upstream returned a non-JSON body for model '{descriptor.key}': {e}")
        raise UpstreamOtherError(502, detail="Unparsable upstream body") from e

    usage = data.get("usage") if isinstance(data, dict) else None
    elapsed_millis = max(0, int((time.monotonic() - started_at) * 1000))
    logger.info(f"Completed chat for model '{descriptor.key}' in {elapsed_millis}ms")

    return ChatResult(
        response_text=extract_completion_text(data),
        model_display_name=descriptor.display_name,
        upstream_model_id=descriptor.upstream_id,
        elapsed_millis=elapsed_millis,
        usage=usage,
    )


# --- Streaming relay ---
class StreamState(Enum):
    AWAITING_LINE = "awaiting_line"
    EMIT = "emit"
    DONE = "done"


class StreamRelay:
    """
    Reassembles provider SSE lines from arbitrary byte chunks and converts
    them to public stream events.

    Chunk boundaries are not line boundaries: the trailing partial line of
    each chunk is carried into the next one, and bytes are decoded
    incrementally so split multi-byte characters are kept intact.
    """

    def __init__(self):
        self.state = StreamState.AWAITING_LINE
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def done(self) -> bool:
        return self.state is StreamState.DONE

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        """Consumes one chunk and returns the events completed by it, in order."""
        if self.done:
            return []
        text = self._pending + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._pending = lines.pop()
        return self._process_lines(lines)

    def finish(self) -> List[StreamEvent]:
        """
        Called when the provider closes the stream. Flushes any final
        unterminated line and guarantees a terminal event.
        """
        if self.done:
            return []
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        events = self._process_lines([tail]) if tail else []
        if not self.done:
            self.state = StreamState.DONE
            events.append(StreamDoneEvent())
        return events

    def _process_lines(self, lines: Sequence[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for line in lines:
            event = self._process_line(line)
            if event is None:
                continue
            events.append(event)
            if self.done:
                break
            self.state = StreamState.AWAITING_LINE
        return events

    def _process_line(self, line: str) -> Optional[StreamEvent]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            # Blank separators and ": keep-alive" comments
            return None

        data = line[len(DATA_PREFIX):]
        if data == STREAM_DONE_SENTINEL:
            self.state = StreamState.DONE
            return StreamDoneEvent()

        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed stream frame: {data[:200]}")
            return None

        try:
            content = parsed["choices"][0]["delta"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        if not isinstance(content, str) or not content:
            return None

        self.state = StreamState.EMIT
        return StreamContentEvent(content=content)


async def relay_stream(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """
    Re-frames a provider byte stream as SSE frames for the caller.

    Stops reading as soon as the provider's completion sentinel is seen. A
    read failure mid-stream ends the stream with a single error event.
    """
    relay = StreamRelay()
    try:
        async for chunk in chunks:
            for event in relay.feed(chunk):
                yield encode_sse(event)
            if relay.done:
                return
    except httpx.TransportError as e:
        logger.error(f"Upstream stream interrupted: {e!r}")
        yield encode_sse(StreamErrorEvent(error=STREAM_ERROR_MESSAGE))
        return

    for event in relay.finish():
        yield encode_sse(event)


async def stream_chat(
    client: UpstreamClient, descriptor: ModelDescriptor, messages: Sequence[UpstreamMessage]
) -> AsyncIterator[str]:
    """
    Full streaming exchange for one caller request, yielding SSE frames.

    Failures before the provider starts streaming produce one error event and
    end the stream. Cancellation (caller disconnect) closes the upstream
    response through the open_stream() context.
    """
    try:
        async with client.open_stream(descriptor, messages) as response:
            if not response.is_success:
                await response.aread()
                error = upstream_error_from_response(response)
                yield encode_sse(StreamErrorEvent(error=error.message))
                return

            logger.info(f"Starting stream processing for model '{descriptor.key}'")
            async for frame in relay_stream(response.aiter_bytes()):
                yield frame
            logger.info(f"Stream finished for model '{descriptor.key}'")

    except UpstreamUnavailable as e:
        logger.error(f"Stream failed for model '{descriptor.key}': {e.detail}")
        yield encode_sse(StreamErrorEvent(error=STREAM_ERROR_MESSAGE))
    except ProxyError as e:
        logger.error(f"Stream failed for model '{descriptor.key}': {e.detail or e.message}")
        yield encode_sse(StreamErrorEvent(error=e.message))
    except Exception as e:
        logger.exception(f"Stream endpoint error for model '{descriptor.key}': {e}")
        yield encode_sse(StreamErrorEvent(error=STREAM_ERROR_MESSAGE))
