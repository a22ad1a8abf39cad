"""Pydantic models for the voice WebSocket protocol."""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

GENERIC_ERROR_MESSAGE = "Let's try a different path."


class ConfigMessage(BaseModel):
    """(Re)initialize the session profile and trigger the greeting."""

    type: Literal["config"]
    senior_name: Optional[str] = Field(default=None, alias="seniorName")
    gifter_name: Optional[str] = Field(default=None, alias="gifterName")
    bio_context: Optional[str] = Field(default=None, alias="bioContext")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TextMessage(BaseModel):
    """A finalized speech transcript to answer."""

    type: Literal["text"]
    text: str

    model_config = ConfigDict(extra="ignore")


InboundMessage = Annotated[
    Union[ConfigMessage, TextMessage], Field(discriminator="type")
]

_INBOUND_ADAPTER: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes) -> ConfigMessage | TextMessage:
    """Validate a JSON control frame.

    Raises ``pydantic.ValidationError`` for malformed JSON, an unknown
    ``type`` or a shape that does not match the tagged message.
    """

    return _INBOUND_ADAPTER.validate_json(raw)


class TranscriptEvent(BaseModel):
    type: Literal["transcript"] = "transcript"
    role: Literal["assistant"] = "assistant"
    text: str


class SpeakingEvent(BaseModel):
    type: Literal["speaking"] = "speaking"


class ListeningEvent(BaseModel):
    type: Literal["listening"] = "listening"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str = GENERIC_ERROR_MESSAGE


OutboundEvent = Union[TranscriptEvent, SpeakingEvent, ListeningEvent, ErrorEvent]


__all__ = [
    "ConfigMessage",
    "ErrorEvent",
    "GENERIC_ERROR_MESSAGE",
    "InboundMessage",
    "ListeningEvent",
    "OutboundEvent",
    "SpeakingEvent",
    "TextMessage",
    "TranscriptEvent",
    "parse_inbound",
]
