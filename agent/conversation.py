"""
Conversation assembly: persisted messages + the new prompt -> model turns.

A turn is either ``{"role", "content": str}`` or, for user turns with
images, ``{"role": "user", "content": [image parts..., text part]}`` with
the image parts always ahead of the single text part.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from model_service import parse_data_url
from sessions import Message

logger = logging.getLogger(__name__)


def decode_images(encoded: Optional[str]) -> List[str]:
    """Decode a stored image list. Raises ValueError on malformed data."""
    if not encoded:
        return []
    images = json.loads(encoded)
    if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
        raise ValueError("stored images must be a list of data URLs")
    for image in images:
        parse_data_url(image)
    return images


def multipart_turn(text: str, images: Sequence[str]) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = [{"type": "image", "image": url} for url in images]
    parts.append({"type": "text", "text": text})
    return {"role": "user", "content": parts}


def message_to_turn(message: Message) -> Dict[str, Any]:
    if message.role == "user" and message.images:
        try:
            images = decode_images(message.images)
        except ValueError:
            logger.debug(f"Message {message.id}: unreadable images, using text only")
            images = []
        if images:
            return multipart_turn(message.content, images)
    return {"role": message.role, "content": message.content}


def build_conversation(
    history: Sequence[Message],
    prompt: str,
    images: Optional[Sequence[str]] = None,
) -> List[Dict[str, Any]]:
    """History in creation order, followed by the new user turn."""
    turns = [message_to_turn(m) for m in history]
    if images:
        turns.append(multipart_turn(prompt, images))
    else:
        turns.append({"role": "user", "content": prompt})
    return turns
