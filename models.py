from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# --- Model Registry Definitions ---
class ModelDescriptor(BaseModel):
    """Describes one model this service exposes and how it maps to the provider."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str = Field(..., description="Stable identifier chosen by this service.")
    upstream_id: str = Field(..., alias="upstreamId", description="Opaque model identifier understood by the provider.")
    display_name: str = Field(..., alias="displayName", description="Human readable model name.")
    description: str = Field("", description="Short description shown to users.")
    multimodal: bool = Field(False, description="Whether the model accepts image input.")
    expected_latency_hint: str = Field("", alias="expectedLatencyHint", description="Rough response time, e.g. '~1-2 seconds'.")


class ModelListResponse(BaseModel):
    """Body of GET /api/models."""

    model_config = ConfigDict(populate_by_name=True)

    models: List[ModelDescriptor]
    default_model: str = Field(..., alias="defaultModel")


class HealthResponse(BaseModel):
    """Body of GET /api/health."""

    status: str = "ok"
    service: str
    timestamp: str


# --- Inbound Chat Definitions ---
class ChatMessage(BaseModel):
    """A single message as sent by the web client."""

    role: Literal["user", "assistant", "system"] = Field(..., description="Author of the message.")
    content: Optional[str] = Field("", description="Message text. May be empty when an image is attached.")
    image: Optional[str] = Field(None, description="Data URI or raw base64 image payload.")


# --- Upstream (provider) Message Definitions ---
class TextContentPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    url: str


class ImageContentPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


class TextUpstreamMessage(BaseModel):
    """Plain text message in the provider schema."""

    role: str
    content: str


class MultimodalUpstreamMessage(BaseModel):
    """Text plus image message in the provider schema."""

    role: str
    content: List[Union[TextContentPart, ImageContentPart]]


UpstreamMessage = Union[TextUpstreamMessage, MultimodalUpstreamMessage]


# --- Response Definitions ---
class ChatResult(BaseModel):
    """Body of a successful POST /api/chat."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    response_text: str = Field(..., alias="responseText")
    model_display_name: str = Field(..., alias="modelDisplayName")
    upstream_model_id: str = Field(..., alias="upstreamModelId")
    elapsed_millis: int = Field(..., alias="elapsedMillis", ge=0)
    usage: Optional[Any] = Field(None, description="Token usage passed through from the provider.")


class StreamContentEvent(BaseModel):
    """Incremental text fragment."""

    content: str


class StreamErrorEvent(BaseModel):
    """Stream failure. Always the last event of a stream."""

    error: str


class StreamDoneEvent(BaseModel):
    """Terminal sentinel, rendered as the literal `[DONE]`."""


StreamEvent = Union[StreamContentEvent, StreamErrorEvent, StreamDoneEvent]

STREAM_DONE_SENTINEL = "[DONE]"


def encode_sse(event: StreamEvent) -> str:
    """Renders a stream event as one server-sent-events frame."""
    if isinstance(event, StreamDoneEvent):
        return f"data: {STREAM_DONE_SENTINEL}\n\n"
    return f"data: {event.model_dump_json()}\n\n"
