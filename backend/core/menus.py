"""
Post-turn menus: the fallback operation menu and the voice-preference notice.
"""

import logging
import random
from typing import Optional

from config import MAX_CHARACTERS
from i18n import t
from models import ConversationRoom
from notify import MenuOption, safe_send_menu, safe_send_text
from store import StoreError

from core.commands import add_option, kick_option
from core.context import ReplyStatus, RunResult, ToolLog

logger = logging.getLogger(__name__)

DEFAULT_VOICE_PREFERENCE = "voice"


def kick_candidates(characters: list[str], results: list[Optional[RunResult]]) -> list[str]:
    """Room characters to offer for removal, silent or stale ones first."""
    if len(characters) < 2:
        return []
    by_character = {r.character: r for r in results if isinstance(r, RunResult)}
    failed, succeeded = [], []
    for cid in characters:
        result = by_character.get(cid)
        if result is None or result.reply_status == ReplyStatus.HAS_NEW_MSG:
            failed.append(cid)
        else:
            succeeded.append(cid)
    return failed + succeeded


def add_candidates(registry, characters: list[str],
                   rng: Optional[random.Random] = None) -> list[str]:
    if len(characters) >= MAX_CHARACTERS:
        return []
    rng = rng or random
    pool = [cid for cid in registry.roster()
            if cid not in characters and not registry.is_resting(cid)]
    if len(pool) <= 2:
        return pool
    count = 2 if len(characters) >= MAX_CHARACTERS - 1 else 3
    return rng.sample(pool, min(count, len(pool)))


def log_block(title: str, logs: list[ToolLog]) -> str:
    if not logs:
        return ""
    lines = [title] + [log.text for log in logs]
    return "\n".join(lines) + "\n\n"


def fallback_menu(registry, room: ConversationRoom, results: list,
                  logs: list[ToolLog], lang: str = None,
                  rng: Optional[random.Random] = None):
    """Build (prefix, options, suffix) for the fallback menu."""
    privacy = [log for log in logs if log.category == "privacy"]
    working = [log for log in logs if log.category == "working"]
    prefix = log_block(t("privacy_title", lang), privacy)
    prefix += log_block(t("working_log_title", lang), working)

    options = [kick_option(registry, cid, lang)
               for cid in kick_candidates(room.characters, results)]
    options += [add_option(registry, cid, lang)
                for cid in add_candidates(registry, room.characters, rng)]
    options.append(MenuOption(label=t("clear_history", lang),
                              command=t("clear_history", lang)))

    prefix += t("operation_title", lang)
    suffix = "\n" + t("generative_ai_warning", lang)
    return prefix, options, suffix


async def send_fallback_menu(notifier, registry, room: ConversationRoom, results: list,
                             logs: list[ToolLog], lang: str = None,
                             rng: Optional[random.Random] = None) -> bool:
    prefix, options, suffix = fallback_menu(registry, room, results, logs, lang, rng)
    logger.debug("Fallback menu for room %s: %d options", room.room_id, len(options))
    return await safe_send_menu(notifier, room.room_id, options, prefix=prefix, suffix=suffix)


async def ask_voice_preference(store, notifier, room: ConversationRoom,
                               lang: str = None) -> bool:
    """Record the default voice preference and tell the user about it."""
    room.voice_preference = DEFAULT_VOICE_PREFERENCE
    try:
        await store.save_room(room)
    except StoreError as e:
        logger.error("Saving voice preference for room %s failed: %s", room.room_id, e)
    logger.info("Room %s: voice replies enabled", room.room_id)
    return await safe_send_text(notifier, room.room_id, t("voice_ask", lang))
