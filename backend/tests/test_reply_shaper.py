"""
Tests for reply shaping: trimming, persistence, delivery and voice.
"""

import asyncio

import pytest

from conftest import make_completion, make_profile, user_record

from core.context import ReplyStatus
from core.reply_shaper import clip_content, drop_last_line, shape_reply, wants_voice
from models import AudioRef, ChatKind


@pytest.fixture
def entry(store):
    record = user_record("room-1", "hi", 100)
    asyncio.run(store.add_chat(record))
    return record


def _assistant_records(store):
    return [r for r in asyncio.run(store.latest_chats("room-1", 40))
            if r.kind == ChatKind.ASSISTANT]


class TestTrimming:

    def test_drop_last_line_needs_enough_lines(self):
        assert drop_last_line("a\nb\nc\nd") == "a\nb\nc\nd"
        assert drop_last_line("a\nb\nc\nd\ne") == "a\nb\nc\nd"

    def test_short_text_is_not_clipped(self):
        completion = make_completion("x")
        assert clip_content("short", completion) == "short"
        assert completion["choices"][0]["finish_reason"] == "stop"

    def test_clip_at_line_boundary(self):
        completion = make_completion("x")
        text = "\n".join("y" * 100 for _ in range(20))
        clipped = clip_content(text, completion)
        assert len(clipped.split("\n")) == 13
        assert completion["choices"][0]["finish_reason"] == "length"


class TestShapeReply:

    def test_persists_and_sends(self, deps, make_ctx, registry, notifier, store, entry):
        result = asyncio.run(shape_reply(deps, make_ctx(entry), make_profile(),
                                         registry.get("kimi"), make_completion("Hello there")))
        assert result.reply_status == ReplyStatus.YES
        assert notifier.of_type("text") == [{"type": "text", "room_id": "room-1",
                                             "text": "Hello there", "character": "kimi"}]
        [saved] = _assistant_records(store)
        assert saved.chat_id == result.assistant_chat_id
        assert saved.text == "Hello there"
        assert saved.usage.completion_tokens == 12

    def test_truncated_reply_offers_continue(self, deps, make_ctx, registry, notifier, entry):
        completion = make_completion("one\ntwo\nthree\nfour\nfi", finish_reason="length")
        asyncio.run(shape_reply(deps, make_ctx(entry), make_profile(), registry.get("kimi"),
                                completion))
        [menu] = notifier.of_type("menu")
        assert menu["prefix"] == "one\ntwo\nthree\nfour"
        assert [o.label for o in menu["options"]] == ["Continue Kimi"]
        assert notifier.of_type("text") == []

    def test_stored_reply_matches_what_was_shown(self, deps, make_ctx, registry, notifier,
                                                 store, entry):
        long_reply = "\n".join(f"line {i} " + "y" * 100 for i in range(20))
        asyncio.run(shape_reply(deps, make_ctx(entry), make_profile(), registry.get("kimi"),
                                make_completion(long_reply)))

        [menu] = notifier.of_type("menu")
        [saved] = _assistant_records(store)
        assert saved.text == menu["prefix"]
        assert saved.text.endswith("line 11 " + "y" * 100)
        assert saved.finish_reason == "length"

    def test_newer_message_aborts(self, deps, make_ctx, registry, notifier, store, entry):
        asyncio.run(store.add_chat(user_record("room-1", "never mind", 200)))
        result = asyncio.run(shape_reply(deps, make_ctx(entry), make_profile(),
                                         registry.get("kimi"), make_completion("late")))
        assert result.reply_status == ReplyStatus.HAS_NEW_MSG
        assert notifier.sent == []
        assert _assistant_records(store) == []

    def test_empty_completion(self, deps, make_ctx, registry, entry):
        result = asyncio.run(shape_reply(deps, make_ctx(entry), make_profile(),
                                         registry.get("kimi"), make_completion(None)))
        assert result is None

    def test_reasoning_only_is_shown_as_thinking(self, deps, make_ctx, registry, notifier, entry):
        completion = make_completion("", reasoning="step one")
        asyncio.run(shape_reply(deps, make_ctx(entry), make_profile(), registry.get("kimi"),
                                completion))
        [menu] = notifier.of_type("menu")
        assert menu["prefix"] == "(thinking...)\nstep one"

    def test_chain_of_thought_footer(self, deps, make_ctx, registry, notifier, entry):
        profile = make_profile(name="DeepSeek R1", character="ds-reasoner",
                               abilities=("chat", "reasoning"))
        completion = make_completion("<think>hmm</think>\n42")
        asyncio.run(shape_reply(deps, make_ctx(entry), profile, registry.get("ds-reasoner"),
                                completion))
        assert notifier.texts() == ["42\n\n-- DeepSeek R1 thought this through --"]


class TestVoice:

    @pytest.fixture
    def qwen(self, registry):
        return registry.get("tongyi-qwen")

    def test_voice_rule(self, make_ctx, qwen, registry, room):
        entry = user_record("room-1", "hi", 1)
        assert not wants_voice(qwen, make_ctx(entry), "hello")
        assert not wants_voice(registry.get("kimi"), make_ctx(entry), "hello")

        voice_entry = user_record("room-1", None, 1, audio=AudioRef(url="http://a/1.mp3"))
        assert wants_voice(qwen, make_ctx(voice_entry), "hello")
        assert not wants_voice(qwen, make_ctx(voice_entry), "x" * 500)

        room.voice_preference = "text"
        assert not wants_voice(qwen, make_ctx(voice_entry), "hello")
        room.voice_preference = "voice"
        assert wants_voice(qwen, make_ctx(entry), "hello")

    def test_voice_reply_via_tts(self, deps, make_ctx, qwen, notifier, room, entry):
        spoken = []

        async def tts(text, character):
            spoken.append((text, character))
            return "http://tts.test/reply.mp3"

        deps.tts = tts
        room.voice_preference = "voice"
        profile = make_profile(name="通义千问", character="tongyi-qwen")
        result = asyncio.run(shape_reply(deps, make_ctx(entry), profile, qwen,
                                         make_completion("你好")))
        assert result.voice_replied is True
        assert spoken == [("你好", "tongyi-qwen")]
        [media] = notifier.of_type("media")
        assert media["media_type"] == "voice"
        assert notifier.of_type("text") == []

    def test_tts_failure_falls_back_to_text(self, deps, make_ctx, qwen, notifier, room, entry):
        async def tts(text, character):
            raise RuntimeError("tts down")

        deps.tts = tts
        room.voice_preference = "voice"
        profile = make_profile(name="通义千问", character="tongyi-qwen")
        result = asyncio.run(shape_reply(deps, make_ctx(entry), profile, qwen,
                                         make_completion("你好")))
        assert result.voice_replied is False
        assert notifier.texts() == ["你好"]
