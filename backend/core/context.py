"""
Per-turn state passed between the orchestrator and dispatch branches.
"""

import copy
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from models import ChatRecord, ConversationRoom, UserInfo


class ReplyStatus(Enum):
    YES = "yes"
    HAS_NEW_MSG = "has_new_msg"
    CANNOT_READ_IMAGES = "cannot_read_images"


@dataclass
class ToolLog:
    """A user-visible trace of a tool that ran during the turn."""
    character: str
    tool: str
    # "privacy" (read the user's data) or "working" (produced something)
    category: str
    text: str = ""


@dataclass
class RunContext:
    room: ConversationRoom
    user: UserInfo
    entry: ChatRecord
    # newest first
    chats: list[ChatRecord] = field(default_factory=list)
    continue_mode: bool = False
    tool_logs: list[ToolLog] = field(default_factory=list)

    @property
    def subscriber(self) -> bool:
        return self.user.subscriber

    @property
    def lang(self) -> str:
        return self.user.language

    @property
    def has_image(self) -> bool:
        return bool(self.entry.image)

    @property
    def has_voice(self) -> bool:
        return bool(self.entry.audio)

    def clone(self) -> "RunContext":
        """Deep copy for one dispatch branch."""
        return copy.deepcopy(self)


@dataclass
class RunResult:
    character: str
    reply_status: ReplyStatus
    completion: Optional[dict] = None
    assistant_chat_id: Optional[str] = None
    logs: list[ToolLog] = field(default_factory=list)
    voice_replied: bool = False
    used_tool: bool = False


@dataclass
class EngineDeps:
    """Collaborators shared by every stage of a turn."""
    store: Any
    notifier: Any
    router: Any
    registry: Any
    tools: Any
    settings: Any
    # optional text-to-speech collaborator: ``await tts(text, character) -> url``
    tts: Optional[Callable[[str, str], Awaitable[Optional[str]]]] = None
    rng: random.Random = field(default_factory=random.Random)

    @property
    def window_caps(self) -> dict:
        limits = self.settings.limits
        return {
            "subscriber_cap": limits.subscriber_window_tokens,
            "free_cap": limits.free_window_tokens,
        }
