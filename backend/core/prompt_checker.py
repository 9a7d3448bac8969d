"""
Post-processing for built prompts.

Some backends reject prompts that a plain record-by-record conversion
produces: a ``tool`` turn with no preceding call, a tool result followed by
a user turn, or (for reasoning models) two user or two assistant turns in a
row. These helpers repair such sequences. Every function returns a new list
and leaves its input alone.
"""

import logging

from config import MAX_PROMPT_TURNS
from i18n import t

logger = logging.getLogger(__name__)


def remove_leading_tool(turns: list[dict]) -> list[dict]:
    """Drop a ``tool`` turn that opens the prompt (after the system turn)."""
    if len(turns) < 3:
        return list(turns)
    first, second = turns[0], turns[1]
    if first.get("role") == "system":
        if second.get("role") == "tool" and second.get("tool_call_id"):
            return [first] + turns[2:]
        return list(turns)
    if first.get("role") == "tool" and first.get("tool_call_id"):
        return turns[1:]
    return list(turns)


def ack_after_tool(turns: list[dict], lang: str = None) -> list[dict]:
    """Insert an assistant acknowledgement after a dangling tool result.

    A tool turn may only be followed by an assistant turn, another tool
    turn, or nothing.
    """
    out = []
    for i, turn in enumerate(turns):
        out.append(turn)
        if turn.get("role") != "tool" or i == len(turns) - 1:
            continue
        if turns[i + 1].get("role") in ("assistant", "tool"):
            continue
        out.append({"role": "assistant", "content": t("i_got_it", lang)})
    return out


def _merge_content(current, following):
    if isinstance(current, str) and isinstance(following, str):
        return f"{current}\n\n{following}"
    if isinstance(current, list) and isinstance(following, list):
        return current + following
    if isinstance(current, list) and isinstance(following, str):
        return current + [{"type": "text", "text": following}]
    if isinstance(current, str) and isinstance(following, list):
        return [{"type": "text", "text": current}] + following
    return None


def interleave_user_assistant(turns: list[dict]) -> list[dict]:
    """Drop non-system turns before the first user turn, then merge runs of
    same-role user or assistant turns."""
    out: list[dict] = []
    seen_user = False
    for turn in turns:
        role = turn.get("role")
        if not seen_user:
            if role == "user":
                seen_user = True
            elif role != "system":
                continue

        prev = out[-1] if out else None
        if prev and role == prev.get("role") and role in ("user", "assistant"):
            merged = _merge_content(prev.get("content"), turn.get("content"))
            if merged is None:
                # nothing to merge into; keep the later turn
                out[-1] = dict(turn)
                continue
            prev = dict(prev)
            prev["content"] = merged
            prev.pop("name", None)
            out[-1] = prev
            continue
        out.append(dict(turn))
    return out


def constrain_turn_count(turns: list[dict], max_turns: int = MAX_PROMPT_TURNS) -> list[dict]:
    """Drop the oldest non-system turns until at most ``max_turns`` remain.

    The final turn is never dropped.
    """
    out = list(turns)
    i = 0
    while len(out) > max_turns and i < len(out) - 1:
        if out[i].get("role") == "system":
            i += 1
            continue
        del out[i]
    return out


def ensure_first_user(turns: list[dict]) -> list[dict]:
    """Drop turns until the first one after the system turn is a user turn."""
    out = list(turns)
    i = 0
    while i < len(out):
        role = out[i].get("role")
        if role == "system" and i == 0:
            i += 1
            continue
        if role == "user":
            break
        del out[i]
    return out


def last_user_turns(turns: list[dict]) -> list[dict]:
    """The last user turn and everything after it."""
    for i in range(len(turns) - 1, -1, -1):
        if turns[i].get("role") == "user":
            return turns[i:]
    return list(turns)


def check_turns(turns: list[dict], profile, lang: str = None) -> list[dict]:
    """Apply every repair the profile needs."""
    out = remove_leading_tool(turns)
    out = ack_after_tool(out, lang)
    if profile is not None and profile.is_reasoning:
        before = len(out)
        out = interleave_user_assistant(out)
        out = constrain_turn_count(out)
        out = ensure_first_user(out)
        if len(out) != before:
            logger.debug("Checker reshaped prompt for %s: %d -> %d turns",
                         profile.name, before, len(out))
    return out
