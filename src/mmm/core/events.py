"""
Message Event Schema and Content Normalization

This module turns raw m.room.message events into typed, immutable
MessageEvent objects and renders their content as a single printable
string. Only text and image messages are represented; every other msgtype
becomes OtherContent, which the sync engine and history fetcher drop.
"""

from typing import Optional, Dict, Any, Union, Literal
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class EventTypes:
    """Constants for the event types this client reads"""

    MESSAGE = "m.room.message"
    MEMBER = "m.room.member"
    NAME = "m.room.name"
    CANONICAL_ALIAS = "m.room.canonical_alias"
    CREATE = "m.room.create"


class MsgTypes:
    """Constants for m.room.message msgtypes"""

    TEXT = "m.text"
    IMAGE = "m.image"
    NOTICE = "m.notice"
    EMOTE = "m.emote"
    FILE = "m.file"
    VIDEO = "m.video"
    AUDIO = "m.audio"


class TextContent(BaseModel):
    """Content of an m.text message"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    body: str = Field(default="", description="Message text")


class ImageContent(BaseModel):
    """Content of an m.image message"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["image"] = "image"
    body: str = Field(default="", description="Image description or filename")
    url: Optional[str] = Field(None, description="mxc:// location of the image")

    @field_validator('url')
    @classmethod
    def blank_url_is_absent(cls, v):
        return v or None


class OtherContent(BaseModel):
    """Any msgtype this client does not represent (file, video, audio, custom...)"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["other"] = "other"
    msgtype: Optional[str] = None


Content = Union[TextContent, ImageContent, OtherContent]


def parse_content(raw_content: Any) -> Content:
    """Map a raw message content dict onto one of the content variants"""
    if not isinstance(raw_content, dict):
        return OtherContent()

    msgtype = raw_content.get('msgtype')
    try:
        if msgtype == MsgTypes.TEXT:
            return TextContent(body=raw_content.get('body', ''))
        if msgtype == MsgTypes.IMAGE:
            return ImageContent(body=raw_content.get('body', ''), url=raw_content.get('url'))
    except ValidationError:
        pass

    return OtherContent(msgtype=msgtype if isinstance(msgtype, str) else None)


def normalize(content: Content) -> str:
    """Render message content as one printable string. Never raises."""
    if isinstance(content, TextContent):
        return content.body
    if isinstance(content, ImageContent) and content.url:
        return f"{content.body}({content.url})"
    return ""


class MessageEvent(BaseModel):
    """A message event as seen in the sync feed or room history"""

    model_config = ConfigDict(frozen=True)

    event_id: Optional[str] = Field(None, description="Server-assigned event identifier")
    room_id: str = Field(..., description="Room the event belongs to")
    timestamp: int = Field(..., description="origin_server_ts in milliseconds")
    sender: str = Field(..., description="Sender user ID")
    content: Content = Field(..., discriminator='kind')

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], room_id: str) -> Optional['MessageEvent']:
        """Build from a raw protocol event, or None if it is not a usable m.room.message"""
        if not isinstance(raw, dict) or raw.get('type') != EventTypes.MESSAGE:
            return None

        try:
            return cls(
                event_id=raw.get('event_id'),
                room_id=raw.get('room_id') or room_id,
                timestamp=raw.get('origin_server_ts', 0),
                sender=raw.get('sender', ''),
                content=parse_content(raw.get('content')),
            )
        except ValidationError:
            return None

    @property
    def is_represented(self) -> bool:
        return not isinstance(self.content, OtherContent)

    @property
    def body(self) -> str:
        return normalize(self.content)


def format_event_line(timestamp: int, room_name: str, sender: str, body: str) -> str:
    """Format an event the way the shell and live feed print it"""
    return f"{timestamp} {room_name} {sender} {body}"
