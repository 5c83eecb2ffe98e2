import base64
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from chatborg.constants import (
    DEFAULT_IMAGE_MODEL,
    DEFAULT_TEXT_MODEL,
    DEFAULT_TTL,
)


class ContentPart(BaseModel):
    """One part of a message. Image data is a `data:image/jpeg;base64,...` URL."""

    type: Literal["text", "image"]
    data: str

    @classmethod
    def text(cls, text: str) -> "ContentPart":
        return cls(type="text", data=text)

    @classmethod
    def jpeg(cls, image_bytes: bytes) -> "ContentPart":
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return cls(type="image", data=f"data:image/jpeg;base64,{encoded}")


class Message(BaseModel):
    role: Literal["user", "assistant", "system", "developer"]
    content_parts: list[ContentPart] = Field(default_factory=list)

    @classmethod
    def user(cls, text: str = "", image_bytes: Optional[bytes] = None) -> "Message":
        parts = []
        if text:
            parts.append(ContentPart.text(text))
        if image_bytes:
            parts.append(ContentPart.jpeg(image_bytes))
        return cls(role="user", content_parts=parts)


class Chat(BaseModel):
    """Per-conversation record, keyed by (id, topic_id)."""

    id: int
    topic_id: int = 0
    text_model: str = Field(default=DEFAULT_TEXT_MODEL)
    image_model: str = Field(default=DEFAULT_IMAGE_MODEL)
    ttl: timedelta = Field(default=DEFAULT_TTL)
    system_prompt: str = Field(default="")
    messages: Optional[list[Message]] = Field(default=None)
    last_update: Optional[datetime] = Field(default=None)

    @field_validator("ttl")
    @classmethod
    def _ttl_positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("ttl must be positive")
        return value

    def history_expired(self, now: Optional[datetime] = None) -> bool:
        if self.last_update is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now > self.last_update + self.ttl

    def append(self, message: Message):
        if self.messages is None:
            self.messages = []
        self.messages.append(message)


class Prompt(BaseModel):
    id: Optional[int] = None
    text: str = ""

    #: Attachments are only carried through a single turn.
    image_bytes: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    audio_bytes: Optional[bytes] = Field(default=None, exclude=True, repr=False)
