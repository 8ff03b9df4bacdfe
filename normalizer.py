"""
Maps caller chat messages onto the provider's message schema.
"""
import logging
from typing import Any, List, Mapping, Sequence, Union

from pydantic import ValidationError

from errors import ChatValidationError
from models import (
    ChatMessage,
    ImageContentPart,
    ImageUrl,
    ModelDescriptor,
    MultimodalUpstreamMessage,
    TextContentPart,
    TextUpstreamMessage,
    UpstreamMessage,
)

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER_PROMPT = "Describe this image in detail."
DATA_URI_PREFIX = "data:"
JPEG_DATA_URI_PREFIX = "data:image/jpeg;base64,"


def to_image_url(image: str) -> str:
    """Returns `image` as a data URI, assuming raw base64 is JPEG."""
    if image.startswith(DATA_URI_PREFIX):
        return image
    return f"{JPEG_DATA_URI_PREFIX}{image}"


def _coerce_message(raw: Union[ChatMessage, Mapping[str, Any]], index: int) -> ChatMessage:
    if isinstance(raw, ChatMessage):
        return raw
    try:
        return ChatMessage.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'message'}: {err['msg']}"
            for err in e.errors()
        )
        raise ChatValidationError(
            f"Invalid message at index {index}: {problems}",
            detail=str(e),
        ) from e


def normalize_message(message: ChatMessage, descriptor: ModelDescriptor) -> UpstreamMessage:
    """Converts one message. Images are dropped for models without image support."""
    if message.image and descriptor.multimodal:
        return MultimodalUpstreamMessage(
            role=message.role,
            content=[
                TextContentPart(text=message.content or IMAGE_PLACEHOLDER_PROMPT),
                ImageContentPart(image_url=ImageUrl(url=to_image_url(message.image))),
            ],
        )

    if message.image:
        logger.debug(f"Dropping image for non-multimodal model '{descriptor.key}'")
    return TextUpstreamMessage(role=message.role, content=message.content or "")


def normalize(
    messages: Sequence[Union[ChatMessage, Mapping[str, Any]]],
    descriptor: ModelDescriptor,
) -> List[UpstreamMessage]:
    """
    Converts a caller message list into provider messages for `descriptor`.

    Raises ChatValidationError if the list is missing or empty, or if any
    entry is not a valid message (e.g. it has no role).
    """
    if not messages or not isinstance(messages, (list, tuple)):
        raise ChatValidationError("Messages are required")

    chat_messages = [_coerce_message(raw, index) for index, raw in enumerate(messages)]
    return [normalize_message(message, descriptor) for message in chat_messages]
