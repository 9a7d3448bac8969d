"""
Reply shaper — turns a finished completion into a persisted, delivered reply.
"""

import logging
from typing import Optional

from config import CLIP_HARD_CHARS, CLIP_SOFT_CHARS, MAX_WORDS_TTS, TRUNCATE_MIN_LINES
from i18n import t
from inference.normalize import content_and_reasoning, finish_reason, set_finish_reason
from models import ChatKind, ChatRecord, Usage
from notify import MenuOption, safe_send_media, safe_send_menu, safe_send_text
from store import StoreError

from core.context import EngineDeps, ReplyStatus, RunContext, RunResult
from core.staleness import can_reply

logger = logging.getLogger(__name__)


def drop_last_line(text: str) -> str:
    """Drop the (probably cut-off) last line of a truncated reply."""
    lines = text.rstrip().split("\n")
    if len(lines) < TRUNCATE_MIN_LINES:
        return text
    return "\n".join(lines[:-1])


def clip_content(text: str, completion: dict) -> str:
    """Cut overly long replies at a line boundary past CLIP_HARD_CHARS."""
    if len(text) < CLIP_SOFT_CHARS:
        return text
    kept = []
    count = 0
    for line in text.split("\n"):
        kept.append(line)
        count += len(line)
        if count > CLIP_HARD_CHARS:
            logger.info("Clipping reply at %d chars", count)
            set_finish_reason(completion, "length")
            break
    return "\n".join(kept).strip()


def usage_of(completion: dict) -> Optional[Usage]:
    usage = completion.get("usage")
    if not usage:
        return None
    return Usage(
        prompt_tokens=usage.get("prompt_tokens") or 0,
        completion_tokens=usage.get("completion_tokens") or 0,
        total_tokens=usage.get("total_tokens") or 0,
    )


def wants_voice(character, ctx: RunContext, text: str) -> bool:
    if not character or not character.speaks or len(text) > MAX_WORDS_TTS:
        return False
    preference = ctx.room.voice_preference
    if preference == "text":
        return False
    return preference == "voice" or ctx.has_voice


async def shape_reply(deps: EngineDeps, ctx: RunContext, profile, character,
                      completion: dict, used_tool: bool = False) -> Optional[RunResult]:
    """Normalize, persist and deliver one assistant reply.

    Returns None when the completion has nothing to show or the record
    could not be persisted.
    """
    room_id = ctx.room.room_id
    cid = profile.character
    if finish_reason(completion) == "length":
        message = completion["choices"][0].get("message") or {}
        if message.get("content"):
            message["content"] = drop_last_line(message["content"])

    reply = content_and_reasoning(completion, is_reasoning=profile.is_reasoning,
                                  thinking_in_content=profile.thinking_in_content,
                                  character=character)
    if reply is None:
        logger.warning("%s returned an empty reply", profile.name)
        return None

    show_cot = bool(reply.content and reply.reasoning)
    content = clip_content(reply.content, completion) if reply.content else None
    text = content or clip_content(t("thinking", ctx.lang, text=reply.reasoning), completion)

    if not await can_reply(deps.store, ctx, profile, ctx.continue_mode):
        return RunResult(character=cid, reply_status=ReplyStatus.HAS_NEW_MSG,
                         completion=completion, used_tool=used_tool)

    record = ChatRecord(
        room_id=room_id,
        kind=ChatKind.ASSISTANT,
        text=content,
        reasoning=reply.reasoning or None,
        character=cid,
        model=completion.get("model") or profile.model,
        usage=usage_of(completion),
        finish_reason=finish_reason(completion),
    )
    try:
        chat_id = await deps.store.add_chat(record)
    except StoreError as e:
        logger.error("Persisting reply from %s failed: %s", profile.name, e)
        return None

    if show_cot:
        text += "\n\n" + t("cot_footer", ctx.lang, bot=profile.name)

    voice_replied = False
    if finish_reason(completion) == "length":
        label = t("continue_bot", ctx.lang, bot=profile.name)
        await safe_send_menu(deps.notifier, room_id,
                             [MenuOption(label=label, command=label)], prefix=text)
    elif not show_cot and wants_voice(character, ctx, text):
        voice_replied = await _send_voice(deps, room_id, cid, text)
        if not voice_replied:
            await safe_send_text(deps.notifier, room_id, text, character=cid)
    else:
        await safe_send_text(deps.notifier, room_id, text, character=cid)

    return RunResult(
        character=cid,
        reply_status=ReplyStatus.YES,
        completion=completion,
        assistant_chat_id=chat_id,
        logs=list(ctx.tool_logs),
        voice_replied=voice_replied,
        used_tool=used_tool,
    )


async def _send_voice(deps: EngineDeps, room_id: str, character_id: str, text: str) -> bool:
    if deps.tts is None:
        return False
    try:
        url = await deps.tts(text, character_id)
    except Exception as e:
        logger.warning("TTS for %s failed: %s", character_id, e)
        return False
    if not url:
        return False
    return await safe_send_media(deps.notifier, room_id, url, media_type="voice",
                                 character=character_id)
