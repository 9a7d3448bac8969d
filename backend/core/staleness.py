"""
Staleness guard — whether a character may still reply to the current entry.
"""

import logging

from config import CAN_REPLY_LOOKBACK
from models import ChatKind

logger = logging.getLogger(__name__)


async def can_reply(store, ctx, profile=None, continue_mode: bool = False) -> bool:
    """False once the user has moved on.

    Reasoning characters are slow by nature and always allowed. In continue
    mode a character may reply until its latest record finished with
    ``stop``. Otherwise the newest user record (scanning back at most
    CAN_REPLY_LOOKBACK records, stopping at a clear) must be the entry that
    triggered this turn.
    """
    if profile is not None and profile.is_reasoning:
        return True

    chats = await store.latest_chats(ctx.room.room_id, CAN_REPLY_LOOKBACK)
    for record in chats:
        if continue_mode:
            if profile is None:
                return False
            if record.character != profile.character:
                continue
            return record.finish_reason != "stop"

        if record.kind == ChatKind.USER:
            fresh = record.chat_id == ctx.entry.chat_id
            if not fresh:
                logger.info("Room %s has a newer message than %s",
                            ctx.room.room_id, ctx.entry.chat_id)
            return fresh
        if record.kind == ChatKind.CLEAR:
            return False
    return False
