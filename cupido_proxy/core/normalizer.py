"""Request normalization: validate the inbound body and split system vs. conversation."""

from __future__ import annotations

import logging

from ..types import (
    ChatMessage,
    ChatRequest,
    ImageAttachment,
    InvalidRequest,
    ModelType,
    UnknownModel,
)
from .transformer import map_role

logger = logging.getLogger(__name__)


def _coerce_content(content: object, max_chars: int) -> str:
    text = "" if content is None else str(content)
    if max_chars > 0:
        text = text[:max_chars]
    return text


def _parse_model_type(raw: object, default: ModelType) -> ModelType:
    if raw is None:
        return default
    try:
        return ModelType(raw)
    except ValueError:
        raise UnknownModel(raw) from None


def _parse_image(raw: object) -> ImageAttachment | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise InvalidRequest("imageData must be an object")
    mime_type = raw.get("mimeType")
    data = raw.get("base64")
    if not isinstance(mime_type, str) or not isinstance(data, str) or not mime_type or not data:
        raise InvalidRequest("imageData requires string mimeType and base64")
    return ImageAttachment(mime_type=mime_type, base64=data)


def _resolve_attachments(
    conversation: list[ChatMessage],
    image: ImageAttachment | None,
) -> dict[int, ImageAttachment]:
    """Key the single inbound image by conversation index.

    The image goes to the last message flagged ``includeImage`` that is
    sent upstream as ``user`` (see :func:`map_role`).
    With no eligible flag the image is dropped.
    """
    if image is None:
        return {}
    flagged = [i for i, m in enumerate(conversation) if m.include_image]
    eligible = [i for i in flagged if map_role(conversation[i].role) == "user"]
    if not eligible:
        logger.warning(
            "imageData present but no user message flagged includeImage; dropping image",
        )
        return {}
    if len(flagged) > 1:
        logger.warning(
            "%d messages flagged includeImage; attaching image to index %d only",
            len(flagged), eligible[-1],
        )
    return {eligible[-1]: image}


def normalize_request(
    body: object,
    default_model: ModelType = ModelType.HAIKU,
    max_message_chars: int = 0,
) -> ChatRequest:
    """Validate a raw ``/api/chat`` body and build a :class:`ChatRequest`.

    Raises:
        InvalidRequest: ``messages`` missing or not a list, a message entry
            that is not an object, or malformed ``imageData``.
        UnknownModel: ``modelType`` is not a known :class:`ModelType`.
    """
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")

    raw_messages = body.get("messages")
    if not isinstance(raw_messages, list):
        raise InvalidRequest("Messages array is required")

    model_type = _parse_model_type(body.get("modelType"), default_model)
    image = _parse_image(body.get("imageData"))

    system_text: str | None = None
    conversation: list[ChatMessage] = []
    for position, raw in enumerate(raw_messages):
        if not isinstance(raw, dict):
            raise InvalidRequest(f"messages[{position}] must be an object")
        role = raw.get("role")
        content = _coerce_content(raw.get("content"), max_message_chars)
        if role == "system":
            if system_text is None:
                system_text = content
            continue
        conversation.append(ChatMessage(
            role=role if isinstance(role, str) else "user",
            content=content,
            include_image=raw.get("includeImage") is True,
        ))

    return ChatRequest(
        system_text=system_text or "",
        conversation=conversation,
        model_type=model_type,
        attachments=_resolve_attachments(conversation, image),
    )
