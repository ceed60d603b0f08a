"""Rewrite normalized chat messages into Anthropic content blocks.

At most one block in the message list carries ``cache_control``: the last
block of the message at the cache boundary. The system prompt, when
present, is sent as its own cache-marked block.
"""

from __future__ import annotations

import logging

from ..types import CACHE_MARKER, ChatMessage, ImageAttachment

logger = logging.getLogger(__name__)


def _text_block(text: str) -> dict:
    return {"type": "text", "text": text}


def _image_block(image: ImageAttachment) -> dict:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": image.mime_type,
            "data": image.base64,
        },
    }


def _mark(block: dict) -> dict:
    return {**block, "cache_control": dict(CACHE_MARKER)}


def map_role(role: str) -> str:
    """``assistant`` passes through; every other role is sent as ``user``."""
    return "assistant" if role == "assistant" else "user"


def build_system_blocks(system_text: str) -> list[dict]:
    """Wrap the system prompt in a single cache-marked text block."""
    if not system_text:
        return []
    return [_mark(_text_block(system_text))]


def transform_messages(
    conversation: list[ChatMessage],
    cache_boundary_index: int,
    attachments: dict[int, ImageAttachment] | None = None,
) -> list[dict]:
    """Build the upstream ``messages`` array, one entry per input message."""
    attachments = attachments or {}
    for index in attachments:
        if not (0 <= index < len(conversation)) or map_role(conversation[index].role) != "user":
            logger.warning("Dropping image attachment for index %d: not a user message", index)

    out: list[dict] = []
    for index, msg in enumerate(conversation):
        role = map_role(msg.role)
        blocks: list[dict] = []
        image = attachments.get(index)
        if image is not None and role == "user":
            blocks.append(_image_block(image))
        blocks.append(_text_block(msg.content))
        if index == cache_boundary_index:
            blocks[-1] = _mark(blocks[-1])
        out.append({"role": role, "content": blocks})
    return out


def count_cache_markers(system_blocks: list[dict], messages: list[dict]) -> int:
    """Number of blocks carrying ``cache_control`` across system and messages."""
    total = sum(1 for b in system_blocks if "cache_control" in b)
    for msg in messages:
        content = msg.get("content")
        if isinstance(content, list):
            total += sum(
                1 for b in content if isinstance(b, dict) and "cache_control" in b
            )
    return total
