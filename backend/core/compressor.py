"""
Conversation compressor — folds a long history into one summary record.

When the window since the last summary grows past TOKEN_NEED_COMPRESS, the
summary backend is asked to condense it. Only the newest slice (about
COMPRESS_KEEP_TOKENS) is kept verbatim; everything older is represented by
the new summary record.
"""

import logging
from typing import Optional

from characters.base import BackendProfile
from config import COMPRESS_KEEP_TOKENS, SUMMARY_STAMP_OFFSET
from i18n import t
from inference.normalize import first_choice
from models import ChatKind, ChatRecord
from store import StoreError

from core.budget import chat_cost, need_compress
from core.prompt_builder import convert_chats, system_turn
from core.prompt_checker import check_turns
from core.reply_shaper import usage_of

logger = logging.getLogger(__name__)

__all__ = ["Compressor", "need_compress", "summary_turns"]


def summary_turns(chats: list[ChatRecord], profile, lang: str = None,
                  prefix_mode: str = "") -> list[dict]:
    """Oldest-first prompt asking the summary backend to condense ``chats``."""
    turns = convert_chats(chats, profile, lang=lang)
    turns.reverse()
    turns.insert(0, system_turn(t("compress_system_1", lang)))
    turns.append({"role": "user", "content": t("compress_system_2", lang)})
    if prefix_mode in ("prefix", "partial"):
        turns.append({"role": "assistant", "content": t("compress_prefix", lang),
                      prefix_mode: True})
    return check_turns(turns, None, lang)


def keep_newest(chats: list[ChatRecord], keep_tokens: int = COMPRESS_KEEP_TOKENS):
    """Newest records up to and including the one that crosses keep_tokens.

    Returns (kept, cut_record).
    """
    kept = []
    total = 0
    for record in chats:
        total += chat_cost(record)
        kept.append(record)
        if total > keep_tokens:
            break
    return kept, kept[-1]


class Compressor:
    """Summarizes a room's history with the configured summary backend."""

    def __init__(self, store, router, settings):
        self.store = store
        self.router = router
        self.settings = settings

    def _profile(self) -> Optional[BackendProfile]:
        summary = self.settings.summary
        if not summary.provider or not summary.model:
            return None
        return BackendProfile(name="summary", character="", provider=summary.provider,
                              model=summary.model)

    async def compress(self, room_id: str, chats: list[ChatRecord],
                       lang: str = None) -> Optional[list[ChatRecord]]:
        """Summarize a newest-first window.

        Returns the new newest-first window (kept records, then the
        summary), or None if nothing was summarized.
        """
        if not chats:
            return None
        profile = self._profile()
        if profile is None:
            logger.debug("No summary backend configured, skipping compression")
            return None

        turns = summary_turns(chats, profile, lang, self.settings.summary.prefix_mode)
        completion = await self.router.complete(profile.provider, profile.model, turns,
                                                max_tokens=None)
        choice = first_choice(completion)
        text = ((choice or {}).get("message") or {}).get("content") or ""
        text = text.strip()
        if not text:
            logger.warning("Summary backend returned nothing for room %s", room_id)
            return None

        kept, cut = keep_newest(chats)
        summary = ChatRecord(
            room_id=room_id,
            kind=ChatKind.SUMMARY,
            text=text,
            sort_stamp=cut.sort_stamp + SUMMARY_STAMP_OFFSET,
            model=completion.get("model") or profile.model,
            usage=usage_of(completion),
        )
        try:
            await self.store.add_chat(summary)
        except StoreError as e:
            logger.error("Persisting summary for room %s failed: %s", room_id, e)
            return None

        logger.info("Room %s compressed: kept %d of %d records", room_id,
                    len(kept), len(chats))
        return kept + [summary]
