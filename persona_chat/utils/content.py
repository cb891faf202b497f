"""
Message content encoding.

A stored message has a ``type`` tag (``text`` / ``image`` / ``audio``) and a
``content`` string. The tag decides how the string is read:

- ``text``: the string is the message text.
- ``image`` / ``audio`` with a caption: JSON ``{"text": ..., "<type>": ...}``.
- ``image`` / ``audio`` without a caption: the raw base64 payload or URL.

Content is decoded once, from the tag, into a ``MessageContent`` value.
"""

import json
from dataclasses import dataclass
from typing import Optional

TEXT = "text"
IMAGE = "image"
AUDIO = "audio"
MEDIA_TYPES = (IMAGE, AUDIO)
MESSAGE_TYPES = (TEXT, IMAGE, AUDIO)


@dataclass(frozen=True)
class MessageContent:
    type: str = TEXT
    text: Optional[str] = None
    media: Optional[str] = None

    @classmethod
    def build(cls, type_: str | None, text: str | None, media: str | None = None) -> "MessageContent":
        """Normalize request input; a media type without media degrades to text."""
        text = text.strip() if text else None
        type_ = type_ or TEXT
        if type_ not in MESSAGE_TYPES:
            raise ValueError(f"unknown message type: {type_}")
        if type_ == TEXT or not media:
            return cls(type=TEXT, text=text or "")
        return cls(type=type_, text=text or None, media=media)

    @classmethod
    def decode(cls, type_: str | None, raw: str) -> "MessageContent":
        type_ = type_ or TEXT
        if type_ not in MEDIA_TYPES:
            return cls(type=TEXT, text=raw)
        if raw.startswith("{"):
            try:
                obj = json.loads(raw)
            except ValueError:
                obj = None
            if isinstance(obj, dict) and type_ in obj:
                return cls(type=type_, text=obj.get("text") or None, media=obj.get(type_))
        return cls(type=type_, media=raw)

    def encode(self) -> str:
        if self.type == TEXT:
            return self.text or ""
        if self.text:
            return json.dumps({"text": self.text, self.type: self.media})
        return self.media or ""

    def flatten(self) -> str:
        """Text-only rendition used for inference context; never includes media."""
        if self.text:
            return self.text
        if self.type in MEDIA_TYPES:
            return f"[{self.type}]"
        return ""
