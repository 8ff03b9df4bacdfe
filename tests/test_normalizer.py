"""
Tests for mapping caller messages onto the provider schema.
"""
import pytest

from errors import ChatValidationError
from models import ChatMessage, ModelDescriptor, MultimodalUpstreamMessage, TextUpstreamMessage
from normalizer import IMAGE_PLACEHOLDER_PROMPT, normalize, normalize_message, to_image_url

VISION = ModelDescriptor(key="vision", upstream_id="vendor/vision", display_name="Vision", multimodal=True)
TEXT_ONLY = ModelDescriptor(key="text", upstream_id="vendor/text", display_name="Text", multimodal=False)

PNG_DATA_URI = "data:image/png;base64,iVBORw0KGgo="


def test_image_on_multimodal_model_yields_two_parts():
    message = ChatMessage(role="user", content="What is this?", image=PNG_DATA_URI)

    result = normalize_message(message, VISION)

    assert isinstance(result, MultimodalUpstreamMessage)
    assert result.model_dump() == {
        "role": "user",
        "content": [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": PNG_DATA_URI}},
        ],
    }


def test_image_on_text_only_model_is_dropped():
    message = ChatMessage(role="user", content="What is this?", image=PNG_DATA_URI)

    result = normalize_message(message, TEXT_ONLY)

    assert isinstance(result, TextUpstreamMessage)
    assert result.model_dump() == {"role": "user", "content": "What is this?"}


def test_empty_content_with_image_uses_placeholder():
    message = ChatMessage(role="user", content="", image=PNG_DATA_URI)

    result = normalize_message(message, VISION)

    assert result.content[0].text == IMAGE_PLACEHOLDER_PROMPT
    assert IMAGE_PLACEHOLDER_PROMPT == "Describe this image in detail."


def test_missing_content_with_image_uses_placeholder():
    result = normalize([{"role": "user", "image": PNG_DATA_URI}], VISION)
    assert result[0].content[0].text == IMAGE_PLACEHOLDER_PROMPT


def test_raw_base64_is_wrapped_as_jpeg_data_uri():
    assert to_image_url("/9j/4AAQSkZJRg==") == "data:image/jpeg;base64,/9j/4AAQSkZJRg=="

    result = normalize([{"role": "user", "content": "hi", "image": "/9j/4AAQSkZJRg=="}], VISION)
    assert result[0].content[1].image_url.url == "data:image/jpeg;base64,/9j/4AAQSkZJRg=="


def test_existing_data_uri_is_kept():
    assert to_image_url(PNG_DATA_URI) == PNG_DATA_URI


def test_text_messages_pass_through_unchanged():
    raw = [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hello"},
        {"role": "assistant", "content": "Hi!"},
    ]

    result = normalize(raw, VISION)

    assert [m.model_dump() for m in result] == raw


def test_empty_image_string_counts_as_no_image():
    result = normalize([{"role": "user", "content": "Hello", "image": ""}], VISION)
    assert isinstance(result[0], TextUpstreamMessage)


def test_mixed_conversation_keeps_order():
    raw = [
        {"role": "user", "content": "first"},
        {"role": "user", "content": "second", "image": PNG_DATA_URI},
        {"role": "assistant", "content": "third"},
    ]

    result = normalize(raw, VISION)

    assert [type(m) for m in result] == [TextUpstreamMessage, MultimodalUpstreamMessage, TextUpstreamMessage]


@pytest.mark.parametrize("messages", [None, [], (), "hello", {"role": "user"}])
def test_missing_or_empty_messages_rejected(messages):
    with pytest.raises(ChatValidationError) as exc_info:
        normalize(messages, VISION)
    assert exc_info.value.message == "Messages are required"
    assert exc_info.value.status_code == 400


def test_message_without_role_rejected():
    with pytest.raises(ChatValidationError) as exc_info:
        normalize([{"role": "user", "content": "ok"}, {"content": "no role"}], VISION)
    assert "index 1" in exc_info.value.message


def test_unknown_role_rejected():
    with pytest.raises(ChatValidationError):
        normalize([{"role": "tool", "content": "x"}], VISION)
