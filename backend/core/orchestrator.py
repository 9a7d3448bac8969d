"""
Orchestrator — fan-out/fan-in for one normal turn.

Picks the room's servable characters, waits out a short randomized delay
(the staleness checkpoint), compresses the history if it has grown too
long, then runs one dispatcher per character concurrently. Side effects
(quota, voice notice, fallback menu) happen once, after every branch has
finished, and only if at least one character replied.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config import FALLBACK_MENU_EVERY
from notify import safe_send_typing

from core.budget import need_compress
from core.commands import quota_total
from core.compressor import Compressor
from core.context import EngineDeps, ReplyStatus, RunContext, RunResult
from core.dispatcher import Dispatcher
from core.menus import ask_voice_preference, send_fallback_menu
from core.staleness import can_reply

logger = logging.getLogger(__name__)

__all__ = ["Orchestrator", "can_reply", "gather_results"]


async def gather_results(calls: list[Awaitable]) -> list[Optional[RunResult]]:
    """Await every branch; exceptions are logged and become None."""
    outcomes = await asyncio.gather(*calls, return_exceptions=True)
    results = []
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            logger.error("Dispatch branch failed: %s", outcome, exc_info=outcome)
            results.append(None)
        else:
            results.append(outcome)
    return results


class Orchestrator:
    def __init__(self, deps: EngineDeps, dispatcher: Optional[Dispatcher] = None,
                 compressor: Optional[Compressor] = None,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep):
        self.deps = deps
        self.dispatcher = dispatcher or Dispatcher(deps)
        self.compressor = compressor or Compressor(deps.store, deps.router, deps.settings)
        self._sleep = sleep

    def resolve_profiles(self, ctx: RunContext) -> list[list]:
        roster = []
        for cid in ctx.room.characters:
            profiles = self.deps.registry.profiles_for(cid)
            if not profiles:
                logger.warning("Character %s in room %s has no servable profile, skipping",
                               cid, ctx.room.room_id)
                continue
            roster.append(profiles)
        return roster

    def stagger_seconds(self, ctx: RunContext, roster: list[list]) -> float:
        if ctx.continue_mode or ctx.has_voice or ctx.has_image:
            return 0
        if any(p.is_reasoning for profiles in roster for p in profiles):
            return 0
        limits = self.deps.settings.limits
        return self.deps.rng.uniform(limits.stagger_min_seconds, limits.stagger_max_seconds)

    async def run(self, ctx: RunContext) -> bool:
        """Run one turn. Returns True if any character replied."""
        deps = self.deps
        room_id = ctx.room.room_id
        roster = self.resolve_profiles(ctx)
        if not roster:
            logger.warning("No available characters in room %s", room_id)
            return False

        delay = self.stagger_seconds(ctx, roster)
        if delay > 0:
            await self._sleep(delay)
            if not await can_reply(deps.store, ctx):
                logger.info("Room %s moved on during the delay, aborting turn", room_id)
                return False

        if need_compress(ctx.chats):
            window = await self.compressor.compress(room_id, ctx.chats, ctx.lang)
            if window:
                ctx.chats = window
            if not await can_reply(deps.store, ctx):
                logger.info("Room %s moved on during compression, aborting turn", room_id)
                return False

        await safe_send_typing(deps.notifier, room_id)

        results = await gather_results(
            [self.dispatcher.dispatch(ctx.clone(), profiles) for profiles in roster]
        )
        return await self.fan_in(ctx, results)

    async def fan_in(self, ctx: RunContext, results: list[Optional[RunResult]]) -> bool:
        deps = self.deps
        replied = [r for r in results if r and r.reply_status == ReplyStatus.YES]
        if not replied:
            logger.info("Nothing replied in room %s", ctx.room.room_id)
            return False

        used_tool = any(r.used_tool for r in replied)
        used_voice = any(r.voice_replied for r in replied)
        logs = [log for r in replied for log in r.logs]

        count = await deps.store.add_quota(ctx.user.user_id)
        ctx.user.used_times = count
        if count >= quota_total(ctx.user):
            logger.info("User %s reached the quota (%d)", ctx.user.user_id, count)
            return True

        if used_voice and not ctx.room.voice_preference:
            await ask_voice_preference(deps.store, deps.notifier, ctx.room, ctx.lang)
            return True

        if logs or (count % FALLBACK_MENU_EVERY == 2 and not used_tool):
            await send_fallback_menu(deps.notifier, deps.registry, ctx.room, results,
                                     logs, ctx.lang, deps.rng)
        return True
