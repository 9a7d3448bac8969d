"""
Continuation controller — resumes replies that were cut off by the length limit.
"""

import logging
from typing import Optional

from config import CONTINUE_CHATS_LIMIT
from i18n import t
from models import ChatKind, ChatRecord
from notify import safe_send_text, safe_send_typing

from core.context import EngineDeps, ReplyStatus, RunContext
from core.dispatcher import Dispatcher
from core.orchestrator import gather_results

logger = logging.getLogger(__name__)


def split_at_last_user(chats: list[ChatRecord]):
    """Split a newest-first window at its newest user record.

    Returns (before, after): ``before`` holds the records newer than that
    user turn, ``after`` the user turn and everything older. Both are empty
    when the window has no user record.
    """
    for i, record in enumerate(chats):
        if record.kind == ChatKind.USER:
            return chats[:i], chats[i:]
    return [], []


def truncated_runs(before: list[ChatRecord], registry,
                   character: Optional[str] = None) -> dict[str, list[ChatRecord]]:
    """Per character, the truncated assistant turns that may be continued."""
    runs: dict[str, list[ChatRecord]] = {}
    stopped = set()
    for record in before:
        cid = record.character
        if record.kind != ChatKind.ASSISTANT or not cid:
            continue
        if character and cid != character:
            continue

        profiles = registry.profiles_for(cid)
        if profiles and profiles[0].is_reasoning:
            if record.finish_reason == "length":
                runs.setdefault(cid, []).append(record)
            continue

        if cid in stopped:
            continue
        if record.finish_reason == "stop":
            stopped.add(cid)
            continue
        if record.finish_reason != "length":
            continue
        runs.setdefault(cid, []).append(record)
    return runs


class ContinuationController:
    def __init__(self, deps: EngineDeps, dispatcher: Optional[Dispatcher] = None):
        self.deps = deps
        self.dispatcher = dispatcher or Dispatcher(deps)

    async def run(self, ctx: RunContext, character: Optional[str] = None) -> bool:
        """Continue every eligible character (or just ``character``)."""
        deps = self.deps
        room_id = ctx.room.room_id
        chats = await deps.store.latest_chats(room_id, CONTINUE_CHATS_LIMIT)
        runs = {}
        if len(chats) >= 2:
            before, after = split_at_last_user(chats)
            runs = truncated_runs(before, deps.registry, character)
        else:
            logger.info("Room %s: too little history to continue", room_id)

        branches = []
        for cid, records in runs.items():
            profiles = deps.registry.profiles_for(cid)
            if not profiles:
                logger.warning("Cannot continue %s: no servable profile", cid)
                continue
            branch = ctx.clone()
            branch.continue_mode = True
            branch.chats = records + [r.model_copy(deep=True) for r in after]
            branches.append(self.dispatcher.dispatch(branch, profiles))

        if not branches:
            await safe_send_text(deps.notifier, room_id, t("no_more_to_continue", ctx.lang))
            return False

        await safe_send_typing(deps.notifier, room_id)
        results = await gather_results(branches)
        if not any(r and r.reply_status == ReplyStatus.YES for r in results):
            logger.info("Room %s: no character continued", room_id)
            return False

        count = await deps.store.add_quota(ctx.user.user_id)
        ctx.user.used_times = count
        return True
