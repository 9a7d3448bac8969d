"""
Pydantic models for rooms, chat records, users and staged drafts.

Timestamps are epoch milliseconds. ChatRecord.sort_stamp is the ordering
key for a room's log.
"""

import logging
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str = "") -> str:
    return prefix + uuid.uuid4().hex[:16]


def now_in_timezone(timezone: str) -> datetime:
    try:
        return datetime.now(ZoneInfo(timezone))
    except (KeyError, ValueError):
        logger.warning("Unknown timezone '%s', using UTC", timezone)
        return datetime.now(ZoneInfo("UTC"))


class ChatKind(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SUMMARY = "summary"
    CLEAR = "clear"
    BACKGROUND = "background"
    TOOL_USE = "tool_use"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ImageRef(BaseModel):
    url: str
    recognition: Optional[str] = None


class AudioRef(BaseModel):
    url: str = ""
    transcript: Optional[str] = None
    data: Optional[str] = None  # base64 payload for input_audio parts
    format: str = "mp3"


class Location(BaseModel):
    latitude: float
    longitude: float
    label: str = ""


class ToolResult(BaseModel):
    passed: bool = False
    user_text: Optional[str] = None
    model_text: Optional[str] = None
    payload: Optional[dict[str, Any]] = None


class ChatRecord(BaseModel):
    chat_id: str = Field(default_factory=lambda: new_id("c_"))
    room_id: str
    kind: ChatKind
    sort_stamp: int = Field(default_factory=now_ms)
    text: Optional[str] = None
    image: Optional[ImageRef] = None
    audio: Optional[AudioRef] = None
    location: Optional[Location] = None
    character: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    reasoning: Optional[str] = None

    # tool_use records
    func_name: Optional[str] = None
    func_args: Optional[dict[str, Any]] = None
    tool_call_id: Optional[str] = None
    tool_result: Optional[ToolResult] = None
    draft_id: Optional[str] = None
    draw_picture_url: Optional[str] = None

    created_at: int = Field(default_factory=now_ms)


class ConversationRoom(BaseModel):
    room_id: str
    owner_id: str
    characters: list[str] = Field(default_factory=list)
    voice_preference: Optional[str] = None  # "text" | "voice"
    scheduling_hint: Optional[int] = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class UserInfo(BaseModel):
    user_id: str
    language: str = "zh-Hans"
    timezone: str = "Asia/Shanghai"
    subscriber: bool = False
    used_times: int = 0


class DraftKind(str, Enum):
    NOTE = "note"
    TODO = "todo"
    CALENDAR = "calendar"


class Draft(BaseModel):
    draft_id: str = Field(default_factory=lambda: new_id("d_"))
    user_id: str
    room_id: str
    kind: DraftKind
    title: str = ""
    description: str = ""
    when_stamp: Optional[int] = None
    remind_minutes: Optional[int] = None
    status: str = "waiting"  # waiting | ok | finished
    created_at: int = Field(default_factory=now_ms)
