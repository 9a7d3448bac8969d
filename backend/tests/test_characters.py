"""
Tests for the character registry and backend profiles.
"""

import random

from cache import TtlCache
from characters import BUILTIN_CHARACTERS, build_registry
from characters.base import Ability, BackendProfile
from settings import BotConfig


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestBuiltinCharacters:

    def test_ids_are_unique(self):
        ids = [c.character_id for c in BUILTIN_CHARACTERS]
        assert len(ids) == len(set(ids))

    def test_system_prompt_placeholders(self, registry):
        from datetime import datetime
        profile = registry.profiles_for("kimi")[0]
        prompt = registry.get("kimi").build_system_prompt(
            profile, datetime(2025, 1, 2, 3, 4), "Alpha Cloud")
        assert "{" not in prompt
        assert "2025-01-02" in prompt

    def test_leading_question_mark_is_stripped(self, registry):
        assert registry.get("zhipu").post_process("？好的") == "好的"
        assert registry.get("kimi").post_process("？好的") == "？好的"


class TestRegistry:

    def test_profiles_sorted_by_priority(self, registry):
        assert [p.model for p in registry.profiles_for("kimi")] == ["kimi-8k", "kimi-backup"]

    def test_unconfigured_characters_are_unavailable(self, registry):
        assert registry.is_available("kimi")
        assert not registry.is_available("hunyuan")
        assert registry.profiles_for("hunyuan") == []

    def test_display_name(self, registry):
        assert registry.display_name("zhipu") == "智谱"
        assert registry.display_name("hunyuan") == "混元"
        assert registry.display_name("nobody") == "nobody"

    def test_pick_skips_resting_and_excluded(self, registry):
        picked = registry.pick_characters(5, exclude=("kimi",), rng=random.Random(1))
        assert sorted(picked) == ["tongyi-qwen", "zhipu"]

    def test_bot_with_unknown_provider_is_skipped(self, settings):
        settings.bots.append(BotConfig(name="Hunyuan", character="hunyuan",
                                       provider="nowhere", model="hy"))
        assert not build_registry(settings).is_available("hunyuan")

    def test_roster_is_cached_until_ttl(self, settings):
        clock = _Clock()
        registry = build_registry(settings, cache=TtlCache(60, clock=clock))
        assert not registry.is_available("hunyuan")

        settings.bots.append(BotConfig(name="混元", character="hunyuan",
                                       provider="alpha", model="hy"))
        assert not registry.is_available("hunyuan")
        clock.now = 61
        assert registry.is_available("hunyuan")


class TestBackendProfile:

    def test_from_config(self):
        bot = BotConfig(name="DeepSeek", character="deepseek", provider="beta", model="ds",
                        abilities=["chat", "tool_use", "telepathy"],
                        secondary_provider="gamma", alias=["ds"])
        profile = BackendProfile.from_config(bot)
        assert profile.abilities == frozenset({Ability.CHAT, Ability.TOOL_USE})
        assert profile.endpoint_provider == "gamma"
        assert profile.can_use_tools and not profile.is_reasoning
        assert profile.alias == ("ds",)
