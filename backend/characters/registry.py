"""
CharacterRegistry — character lookup and the roster of available backend profiles.
"""

import logging
import random
from typing import Optional

from cache import TtlCache
from characters.base import BackendProfile, Character
from settings import Settings

logger = logging.getLogger(__name__)

ROSTER_TTL_SECONDS = 60


class CharacterRegistry:
    """Registry of characters plus a cached view of which profiles can be served."""

    def __init__(self, settings: Settings, cache: Optional[TtlCache] = None):
        self._settings = settings
        self._characters: dict[str, Character] = {}
        self._roster_cache = cache or TtlCache(ROSTER_TTL_SECONDS)

    # ── Characters ──

    def register(self, character: Character):
        if character.character_id in self._characters:
            logger.warning("Character %s already registered, replacing",
                           character.character_id)
        self._characters[character.character_id] = character
        self._roster_cache.invalidate()

    def get(self, character_id: str) -> Optional[Character]:
        return self._characters.get(character_id)

    def all(self) -> list[Character]:
        return list(self._characters.values())

    def ids(self) -> list[str]:
        return list(self._characters.keys())

    # ── Roster ──

    def _build_roster(self) -> dict[str, list[BackendProfile]]:
        roster: dict[str, list[BackendProfile]] = {}
        for bot in self._settings.bots:
            if bot.character not in self._characters:
                logger.debug("Bot %s has no registered character %s, skipping",
                             bot.name, bot.character)
                continue
            profile = BackendProfile.from_config(bot)
            if not self._settings.get_provider(profile.endpoint_provider):
                logger.debug("Bot %s: provider %s not configured, skipping",
                             bot.name, profile.endpoint_provider)
                continue
            roster.setdefault(profile.character, []).append(profile)
        for profiles in roster.values():
            profiles.sort(key=lambda p: p.priority, reverse=True)
        return roster

    def roster(self) -> dict[str, list[BackendProfile]]:
        """character_id -> servable profiles, highest priority first."""
        return self._roster_cache.get_or_load(self._build_roster)

    def profiles_for(self, character_id: str) -> list[BackendProfile]:
        return list(self.roster().get(character_id, []))

    def is_available(self, character_id: str) -> bool:
        return bool(self.roster().get(character_id))

    def display_name(self, character_id: str) -> str:
        profiles = self.roster().get(character_id)
        if profiles:
            return profiles[0].name
        character = self.get(character_id)
        return character.display_name if character else character_id

    def pick_characters(self, count: int, exclude: tuple = (),
                        rng: Optional[random.Random] = None) -> list[str]:
        """Randomly pick available, non-resting characters."""
        rng = rng or random
        pool = [cid for cid in self.roster()
                if cid not in exclude and not self.is_resting(cid)]
        rng.shuffle(pool)
        return pool[:count]

    def is_resting(self, character_id: str) -> bool:
        character = self.get(character_id)
        return bool(character and character.resting)
