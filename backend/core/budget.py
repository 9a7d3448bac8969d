"""
Token budgeting — heuristic costs, window clipping, and reply-length caps.

Costs are heuristic: 0.4 units per ASCII letter or digit,
1 unit for every other character, rounded up. Images and audio cost a flat
amount. Nothing here tries to match any backend's real tokenizer; the only
guarantees are that clipping is bounded and monotonic in the window size.
"""

import json
import math
from typing import Optional

from config import (
    AUDIO_TOKEN,
    COMPRESS_MIN_CHATS,
    IMAGE_TOKEN,
    LATIN_CHAR_COST,
    MAX_WX_TOKEN,
    MIN_REASONING_TOKENS,
    MIN_REPLY_TOKEN,
    MIN_RESERVED_TOKENS,
    RESERVED_RATIO,
    TOKEN_NEED_COMPRESS,
    TOOL_CALL_OVERHEAD,
)
from models import ChatKind, ChatRecord

SUBSCRIBER_WINDOW_CAP = 32000
FREE_WINDOW_CAP = 16000


def _is_latin(char: str) -> bool:
    return ("a" <= char <= "z") or ("A" <= char <= "Z") or ("0" <= char <= "9")


def text_cost(text: Optional[str]) -> int:
    if not text:
        return 0
    cost = 0.0
    for char in text:
        cost += LATIN_CHAR_COST if _is_latin(char) else 1
    return math.ceil(cost)


def chat_cost(record: ChatRecord) -> int:
    """Heuristic cost of one history record."""
    usage = record.usage
    if record.kind in (ChatKind.ASSISTANT, ChatKind.SUMMARY):
        if usage and usage.completion_tokens:
            return usage.completion_tokens

    if record.text:
        cost = text_cost(record.text)
    elif record.image:
        cost = IMAGE_TOKEN
    elif record.audio:
        cost = AUDIO_TOKEN
    else:
        cost = 0

    if record.kind == ChatKind.TOOL_USE:
        reported = usage.completion_tokens if usage else 0
        heuristic = TOOL_CALL_OVERHEAD
        if record.func_name:
            heuristic += text_cost(record.func_name)
        if record.func_args:
            heuristic += text_cost(json.dumps(record.func_args, ensure_ascii=False))
        cost += max(reported, heuristic)

    return cost


def turn_cost(turn: dict) -> int:
    """Heuristic cost of one prompt turn."""
    content = turn.get("content")
    if not content:
        return 0
    if isinstance(content, str):
        return text_cost(content)
    cost = 0
    for part in content:
        kind = part.get("type")
        if kind == "text":
            cost += text_cost(part.get("text"))
        elif kind == "image_url":
            cost += IMAGE_TOKEN
        elif kind == "input_audio":
            cost += AUDIO_TOKEN
    return cost


def total_cost(turns: list[dict]) -> int:
    return sum(turn_cost(turn) for turn in turns)


def window_tokens(profile, subscriber: bool,
                  subscriber_cap: int = SUBSCRIBER_WINDOW_CAP,
                  free_cap: int = FREE_WINDOW_CAP) -> int:
    """Effective context window W for a profile on the user's tier."""
    window = profile.max_window_token_k * 1000
    cap = subscriber_cap if subscriber else free_cap
    return min(window, cap)


def reserved_tokens(window: int) -> int:
    return max(math.floor(window * RESERVED_RATIO), MIN_RESERVED_TOKENS)


def clip_window(chats: list[ChatRecord], profile, subscriber: bool = False,
                **caps) -> list[ChatRecord]:
    """Clip a newest-first window so its cost fits in W minus the reserve.

    Walks newest to oldest and cuts at the first record that would push the
    accumulated cost past the budget.
    """
    if len(chats) < 2:
        return chats
    window = window_tokens(profile, subscriber, **caps)
    budget = window - reserved_tokens(window)
    total = 0
    for i, record in enumerate(chats):
        total += chat_cost(record)
        if total > budget:
            return chats[:i]
    return chats


def max_reply_tokens(total: int, first_chat: Optional[ChatRecord], profile,
                     subscriber: bool = False, **caps) -> int:
    """Reply-length cap for one dispatch.

    Starts from twice the cost of the newest record, floored at
    MIN_REPLY_TOKEN and capped at MAX_WX_TOKEN; reasoning backends get at
    least MIN_REASONING_TOKENS. Finally prompt + reply never exceeds W.
    """
    tokens = chat_cost(first_chat) * 2 if first_chat else 0
    tokens = max(tokens, MIN_REPLY_TOKEN)
    tokens = min(tokens, MAX_WX_TOKEN)
    if profile.is_reasoning and tokens < MIN_REASONING_TOKENS:
        tokens = MIN_REASONING_TOKENS
    window = window_tokens(profile, subscriber, **caps)
    return max(0, min(tokens, window - total))


def need_compress(chats: list[ChatRecord]) -> bool:
    """Whether history back to and including the last summary has grown past the threshold."""
    if len(chats) < COMPRESS_MIN_CHATS:
        return False
    total = 0
    for record in chats:
        total += chat_cost(record)
        if total > TOKEN_NEED_COMPRESS:
            return True
        if record.kind == ChatKind.SUMMARY:
            break
    return False
