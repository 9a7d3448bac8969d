"""
Character and backend-profile abstractions.

A *character* is the persona the user talks to ("Kimi", "DeepSeek", ...).
A *backend profile* is one concrete way of serving that character: a model
on a provider, with a set of abilities and a context window. One character
may have several profiles; the highest-priority one is tried first and the
next one is the fallback.

Characters never subclass each other. Per-character differences are plain
fields and optional hooks consulted by the shared prompt builder, budgeter
and reply shaper.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from settings import BotConfig

logger = logging.getLogger(__name__)


class Ability(Enum):
    CHAT = "chat"
    TEXT_TO_IMAGE = "text_to_image"
    IMAGE_TO_TEXT = "image_to_text"
    TOOL_USE = "tool_use"
    INPUT_AUDIO = "input_audio"
    REASONING = "reasoning"


@dataclass(frozen=True)
class BackendProfile:
    name: str
    character: str
    provider: str
    model: str
    abilities: frozenset = frozenset({Ability.CHAT})
    secondary_provider: str = ""
    alias: tuple = ()
    max_window_token_k: int = 32
    priority: int = 0
    only_one_system_role_msg: bool = False
    thinking_in_content: bool = False
    default_headers: dict = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_config(cls, bot: BotConfig) -> "BackendProfile":
        abilities = set()
        for a in bot.abilities or ["chat"]:
            try:
                abilities.add(Ability(a))
            except ValueError:
                logger.warning("Unknown ability '%s' on bot %s, ignoring", a, bot.name)
        return cls(
            name=bot.name or bot.character,
            character=bot.character,
            provider=bot.provider,
            model=bot.model,
            abilities=frozenset(abilities),
            secondary_provider=bot.secondary_provider or "",
            alias=tuple(bot.alias or ()),
            max_window_token_k=bot.max_window_token_k or 32,
            priority=bot.priority,
            only_one_system_role_msg=bot.only_one_system_role_msg,
            thinking_in_content=bot.thinking_in_content,
            default_headers=dict(bot.default_headers or {}),
        )

    def has(self, ability: Ability) -> bool:
        return ability in self.abilities

    @property
    def endpoint_provider(self) -> str:
        """The provider that actually serves requests for this profile."""
        return self.secondary_provider or self.provider

    @property
    def is_reasoning(self) -> bool:
        return Ability.REASONING in self.abilities

    @property
    def can_use_tools(self) -> bool:
        return Ability.TOOL_USE in self.abilities

    @property
    def can_see(self) -> bool:
        return Ability.IMAGE_TO_TEXT in self.abilities

    @property
    def can_hear(self) -> bool:
        return Ability.INPUT_AUDIO in self.abilities


@dataclass
class Character:
    """Per-character persona and quirks.

    ``system_prompt`` is a template with ``{bot}``, ``{current_date}``,
    ``{current_time}`` and ``{current_provider}`` placeholders.
    ``fallback_system_prompt`` replaces it when the dispatcher retries on a
    secondary profile.
    """
    character_id: str
    display_name: str
    system_prompt: str
    fallback_system_prompt: Optional[str] = None
    resting: bool = False
    speaks: bool = False
    audio_first_turn_only: bool = False
    strip_leading_question: bool = False
    post_processor: Optional[Callable[[str], str]] = None

    def capabilities(self, profile: BackendProfile) -> frozenset:
        return profile.abilities

    def build_system_prompt(self, profile: BackendProfile, now: datetime,
                            provider_name: str, fallback: bool = False) -> str:
        template = self.system_prompt
        if fallback and self.fallback_system_prompt:
            template = self.fallback_system_prompt
        return template.format(
            bot=profile.name,
            current_date=now.strftime("%Y-%m-%d"),
            current_time=now.strftime("%H:%M"),
            current_provider=provider_name,
        ).strip()

    def post_process(self, text: str) -> str:
        if self.strip_leading_question and text.startswith("？"):
            text = text[1:].lstrip()
        if self.post_processor:
            text = self.post_processor(text)
        return text
