"""
Prompt builder — turns a room's chat log into OpenAI-format prompt turns.

The log arrives newest first (the order the store returns it in). Records
are converted one by one, the list is reversed, and the character's system
prompt is placed in front. The result is deterministic for a given window,
profile and clock.
"""

import json
import logging
from datetime import datetime
from typing import Optional

from characters.base import Ability
from config import CONTINUE_REASONING_TURNS
from i18n import t
from models import ChatKind, ChatRecord, now_in_timezone

logger = logging.getLogger(__name__)

_ADD_TOOLS = ("add_note", "add_todo", "add_calendar")
_SUCCESS_MSG = '{"code":"0000","data":{"id":"%s"}}'


def _dumps(obj) -> str:
    return json.dumps(obj, ensure_ascii=False)


def system_turn(content: str) -> dict:
    return {"role": "system", "content": content}


def tool_message(record: ChatRecord, lang: str = None) -> Optional[str]:
    """Content of the ``tool`` turn that answers a persisted tool call.

    Returns None when the record carries nothing worth showing the model.
    """
    name = record.func_name or ""
    result = record.tool_result
    text = record.text

    if name in _ADD_TOOLS:
        if record.draft_id:
            return _SUCCESS_MSG % record.draft_id
        return t("not_agree_yet", lang)
    if name == "web_search":
        if text and result and result.passed:
            return text
        return t("fail_to_search", lang)
    if name == "parse_link":
        return text or t("fail_to_parse_link", lang)
    if name == "draw_picture":
        return "[Finish to draw]" if record.draw_picture_url else "[Fail to draw]"
    if name in ("get_cards", "get_schedule"):
        return text or None
    if name.startswith("maps_"):
        if result and result.payload is not None:
            return _dumps(result.payload)
        return None
    return text or None


def tool_call_of(record: ChatRecord) -> dict:
    return {
        "id": record.tool_call_id,
        "type": "function",
        "function": {
            "name": record.func_name,
            "arguments": _dumps(record.func_args or {}),
        },
    }


class _Converter:
    """Per-build state for converting records into turns."""

    def __init__(self, profile, character, lang: str, continue_mode: bool):
        self.profile = profile
        self.character = character
        self.lang = lang
        self.continue_mode = continue_mode
        self.abilities = character.capabilities(profile) if character else profile.abilities

    def run(self, chats: list[ChatRecord]) -> list[dict]:
        turns = []
        for i, record in enumerate(chats):
            kind = record.kind
            if kind == ChatKind.USER:
                turn = self.user_turn(record, i)
                if turn:
                    turns.append(turn)
            elif kind == ChatKind.ASSISTANT:
                turn = self.assistant_turn(record, i)
                if turn:
                    turns.append(turn)
            elif kind in (ChatKind.SUMMARY, ChatKind.BACKGROUND):
                if not record.text:
                    continue
                key = "summary_label" if kind == ChatKind.SUMMARY else "background_label"
                role = "user" if self.profile.only_one_system_role_msg else "system"
                turns.append({"role": role, "content": t(key, self.lang, text=record.text)})
            elif kind == ChatKind.TOOL_USE:
                turns.extend(self.tool_turns(record))
        return turns

    def user_turn(self, record: ChatRecord, index: int) -> Optional[dict]:
        if record.image:
            if Ability.IMAGE_TO_TEXT in self.abilities:
                return {"role": "user", "content": [
                    {"type": "image_url", "image_url": {"url": record.image.url}},
                ]}
            if record.image.recognition:
                text = t("image_recognition", self.lang, text=record.image.recognition)
            else:
                text = t("image_placeholder", self.lang)
            return {"role": "user", "content": text}

        audio = record.audio
        if audio and audio.data and Ability.INPUT_AUDIO in self.abilities:
            first_only = self.character.audio_first_turn_only if self.character else False
            if not first_only or index == 0:
                return {"role": "user", "content": [{
                    "type": "input_audio",
                    "input_audio": {"data": audio.data, "format": audio.format},
                }]}

        if record.location:
            return {"role": "user", "content": t(
                "location_message", self.lang,
                json=_dumps(record.location.model_dump()),
            )}

        text = record.text or (audio.transcript if audio else None)
        if text:
            return {"role": "user", "content": text}
        return None

    def assistant_turn(self, record: ChatRecord, index: int) -> Optional[dict]:
        text = record.text or ""
        reasoning = record.reasoning or ""

        if (self.continue_mode and index < CONTINUE_REASONING_TURNS and reasoning
                and record.finish_reason == "length"):
            content = reasoning if reasoning.startswith("<think>") \
                else f"<think>{reasoning}</think>"
            if text:
                content += f"\n{text}"
        elif text:
            content = text
        elif reasoning:
            content = reasoning if reasoning.startswith("<think>") \
                else f"<think>{reasoning}</think>"
        else:
            return None

        turn = {"role": "assistant", "content": content}
        if record.character:
            turn["name"] = record.character
        return turn

    def tool_turns(self, record: ChatRecord) -> list[dict]:
        if not record.tool_call_id or not record.func_name:
            return []
        content = tool_message(record, self.lang)

        if Ability.TOOL_USE in self.abilities and content is not None:
            assistant = {"role": "assistant", "tool_calls": [tool_call_of(record)]}
            if record.character:
                assistant["name"] = record.character
            # newest first: the result precedes the call until reversal
            return [
                {"role": "tool", "content": content, "tool_call_id": record.tool_call_id},
                assistant,
            ]

        turns = []
        if content is not None:
            msg = _dumps({"role": "tool", "content": content,
                          "tool_call_id": record.tool_call_id})
            turns.append({"role": "user", "content": t("result_of_tool", self.lang, msg=msg)})
        turns.append({
            "role": "assistant",
            "content": t("bot_call_tools", self.lang, fun_name=record.func_name,
                         fun_args=_dumps(record.func_args or {})),
        })
        return turns


def convert_chats(chats: list[ChatRecord], profile, character=None,
                  lang: str = None, continue_mode: bool = False) -> list[dict]:
    """Convert a newest-first window into newest-first turns (no system turn)."""
    return _Converter(profile, character, lang, continue_mode).run(chats)


def build_turns(chats: list[ChatRecord], profile, character, ctx,
                provider_name: str, fallback: bool = False,
                now: Optional[datetime] = None) -> list[dict]:
    """Build the oldest-first prompt for one dispatch.

    Args:
        chats: newest-first window, already clipped.
        profile: the BackendProfile being called.
        character: the Character whose persona fills the system turn.
        ctx: RunContext (language, timezone, continue mode).
        provider_name: display name substituted into the system prompt.
        fallback: use the character's fallback system prompt.
    """
    turns = convert_chats(chats, profile, character, ctx.lang, ctx.continue_mode)
    turns.reverse()
    if character is not None:
        now = now or now_in_timezone(ctx.user.timezone)
        prompt = character.build_system_prompt(profile, now, provider_name, fallback=fallback)
        if prompt:
            turns.insert(0, system_turn(prompt))
    return turns
