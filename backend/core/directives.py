"""
Directive parser — recognizes room commands typed as chat messages.

Pure classification: ``classify()`` only inspects the text and the set of
available backend profiles. Side effects (persisting the room, replying)
live in core/commands.py.

Check order: kick, add, bot_not_available, clear, continue, status.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class CommandKind(Enum):
    KICK = "kick"
    ADD = "add"
    CLEAR_HISTORY = "clear_history"
    CONTINUE = "continue"
    GROUP_STATUS = "group_status"
    BOT_NOT_AVAILABLE = "bot_not_available"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    character: Optional[str] = None
    # for bot_not_available: the name the user asked for
    requested: Optional[str] = None

    @property
    def terminates(self) -> bool:
        """Whether handling the command ends the turn."""
        return self.kind != CommandKind.CONTINUE


KICK_PREFIXES = ("踢掉", "Kick", "Remove", "T调")

ADD_PREFIXES = (
    "召唤", "召喚", "Summon", "summon",
    "我要", "I want", "i want",
    "添加", "新增", "Add", "add",
    "呼叫", "Call", "call",
    "@", "呼唤", "呼喚",
)

UNAVAILABLE_BOTS = ("ChatGPT", "GPT", "豆包", "Claude")

CONTINUE_PREFIXES = ("继续", "繼續", "Continue")

_CLEAR_VERBS = ("清空", "清除", "消除")
_CLEAR_OBJECTS = ("上文", "上下文", "历史", "歷史", "历史纪录", "歷史紀錄")
CLEAR_PHRASES = ("清空",) + tuple(v + o for v in _CLEAR_VERBS for o in _CLEAR_OBJECTS) + (
    "Clear chat", "Clear history", "Clear context",
)

STATUS_EXACT = ("AI", "额度", "額度")
STATUS_FUZZY = (
    "群聊状态", "查看群聊状态", "群聊有谁", "群聊还有谁", "群里还有谁",
    "群聊狀態", "檢視群聊狀態", "群組裡有誰", "群組還有誰", "群組中還有誰",
    "Status", "Group Status", "群状态", "状态",
)

FUZZY_LENGTH_SLACK = 2


def normalize_text(text: str) -> str:
    return text.strip().replace("+", " ")


def matches(candidates: Iterable[str], text: str, fuzzy: bool = False) -> bool:
    """Case-insensitive exact match, optionally relaxed to a prefix match
    whose length differs by at most two characters."""
    lowered = text.lower()
    options = [c.lower() for c in candidates]
    if lowered in options:
        return True
    if not fuzzy:
        return False
    return any(
        lowered.startswith(c) and abs(len(c) - len(lowered)) <= FUZZY_LENGTH_SLACK
        for c in options
    )


def _strip_prefix(prefixes: Iterable[str], text: str) -> Optional[str]:
    lowered = text.lower()
    for prefix in prefixes:
        if lowered.startswith(prefix.lower()):
            return text[len(prefix):].strip()
    return None


def _names_of(profile) -> set:
    names = {profile.name.lower(), profile.character.lower()}
    names.update(a.lower() for a in profile.alias)
    return names


def find_profile(name: str, profiles: list, room_characters: Iterable[str] = (),
                 include_character_id: bool = True):
    """Profile whose name, alias or character id equals ``name`` (lower-cased).

    Characters already in the room win ties.
    """
    wanted = name.strip().lower()
    if not wanted:
        return None
    in_room = set(room_characters)
    found = []
    for profile in profiles:
        names = _names_of(profile)
        if not include_character_id:
            names = {profile.name.lower()} | {a.lower() for a in profile.alias}
        if wanted in names:
            found.append(profile)
    if not found:
        return None
    found.sort(key=lambda p: p.character not in in_room)
    return found[0]


def _commanded(prefixes, text, profiles, room_characters):
    rest = _strip_prefix(prefixes, text)
    if rest is None:
        return None
    return find_profile(rest, profiles, room_characters)


def classify(text: Optional[str], available_profiles: list,
             room_characters: Iterable[str] = ()) -> Optional[Command]:
    """Classify a message as a room command, or None for ordinary chat."""
    if not text:
        return None
    room_characters = list(room_characters)
    text = normalize_text(text)
    if not text:
        return None

    profile = _commanded(KICK_PREFIXES, text, available_profiles, room_characters)
    if profile:
        return Command(CommandKind.KICK, profile.character)

    profile = _commanded(ADD_PREFIXES, text, available_profiles, room_characters)
    if profile is None:
        # a bare bot name also summons it
        profile = find_profile(text, available_profiles, room_characters,
                               include_character_id=False)
    if profile:
        return Command(CommandKind.ADD, profile.character)

    rest = _strip_prefix(ADD_PREFIXES, text)
    if rest is not None:
        for name in UNAVAILABLE_BOTS:
            if name.lower() == rest.lower():
                return Command(CommandKind.BOT_NOT_AVAILABLE, requested=name)

    if matches(CLEAR_PHRASES, text):
        return Command(CommandKind.CLEAR_HISTORY)

    if matches(CONTINUE_PREFIXES, text):
        return Command(CommandKind.CONTINUE)
    profile = _commanded(CONTINUE_PREFIXES, text, available_profiles, room_characters)
    if profile:
        return Command(CommandKind.CONTINUE, profile.character)

    if matches(STATUS_EXACT, text) or matches(STATUS_FUZZY, text, fuzzy=True):
        return Command(CommandKind.GROUP_STATUS)

    return None
