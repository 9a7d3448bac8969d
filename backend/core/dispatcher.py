"""
Backend dispatcher — one character, one prompt, one backend call.

Chooses which of the character's profiles to use, builds and checks the
prompt within the token budget, calls the backend (falling back once to the
next profile), then hands the completion to the tool resolver or the reply
shaper.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from i18n import t
from inference.normalize import finish_reason, first_choice, transform_choice
from models import ChatRecord
from notify import safe_send_text
from tools import KNOWN_TOOLS, tool_schemas

from core.budget import chat_cost, clip_window, max_reply_tokens, turn_cost
from core.context import EngineDeps, ReplyStatus, RunContext, RunResult
from core.prompt_builder import build_turns
from core.prompt_checker import check_turns
from core.reply_shaper import shape_reply
from core.tool_resolver import resolve_tools

logger = logging.getLogger(__name__)


@dataclass
class PreparedCall:
    profile: object
    chats: list[ChatRecord]
    turns: list[dict]
    total: int
    max_tokens: int
    tools: Optional[list[dict]] = None


def images_readable_as_text(chats: list[ChatRecord]) -> bool:
    """Whether a non-vision backend can still follow the window's images.

    True when every image has recognition text, or when the only image is
    older than the newest record.
    """
    images = [(i, r) for i, r in enumerate(chats) if r.image]
    if not images:
        return True
    if all(r.image.recognition for _, r in images):
        return True
    return len(images) == 1 and images[0][0] > 0


def choose_profiles(profiles: list, chats: list[ChatRecord]) -> Optional[list]:
    """Order the character's profiles for this window, or None if none can
    handle its images."""
    if not profiles:
        return None
    has_image = any(r.image for r in chats)
    first = profiles[0]
    if not has_image or first.can_see:
        return list(profiles)
    seeing = [p for p in profiles if p.can_see]
    if seeing:
        return seeing + [p for p in profiles if not p.can_see]
    if images_readable_as_text(chats):
        return list(profiles)
    return None


class Dispatcher:
    """Runs one character's branch of a turn."""

    def __init__(self, deps: EngineDeps):
        self.deps = deps

    def prepare(self, ctx: RunContext, profile, character,
                fallback: bool = False) -> PreparedCall:
        deps = self.deps
        caps = deps.window_caps
        chats = clip_window(ctx.chats, profile, ctx.subscriber, **caps)
        provider_name = deps.settings.provider_display_name(profile.endpoint_provider)
        turns = build_turns(chats, profile, character, ctx, provider_name, fallback=fallback)

        total = sum(chat_cost(r) for r in chats)
        if turns and turns[0].get("role") == "system":
            total += turn_cost(turns[0])

        tools = tool_schemas() if profile.can_use_tools else None
        turns = check_turns(turns, profile, ctx.lang)
        if ctx.continue_mode:
            turns.append({"role": "user", "content": t("continue", ctx.lang)})

        max_tokens = max_reply_tokens(total, chats[0] if chats else None, profile,
                                      ctx.subscriber, **caps)
        return PreparedCall(profile=profile, chats=chats, turns=turns, total=total,
                            max_tokens=max_tokens, tools=tools)

    async def _call(self, prepared: PreparedCall) -> Optional[dict]:
        return await self.deps.router.chat(
            prepared.profile, prepared.turns,
            max_tokens=prepared.max_tokens, tools=prepared.tools,
        )

    async def dispatch(self, ctx: RunContext, profiles: list) -> Optional[RunResult]:
        """Run one character. Returns None when the branch failed softly."""
        if not profiles:
            return None
        character_id = profiles[0].character
        character = self.deps.registry.get(character_id)

        ordered = choose_profiles(profiles, ctx.chats)
        if ordered is None:
            name = profiles[0].name
            logger.info("%s cannot read the images in room %s", name, ctx.room.room_id)
            await safe_send_text(self.deps.notifier, ctx.room.room_id,
                                 t("cannot_read_images", ctx.lang, bot=name),
                                 character=character_id)
            return RunResult(character=character_id,
                             reply_status=ReplyStatus.CANNOT_READ_IMAGES)

        prepared = self.prepare(ctx, ordered[0], character)
        completion = await self._call(prepared)

        if completion is None and len(ordered) > 1 and not ctx.continue_mode:
            logger.info("%s failed on %s, retrying with %s", character_id,
                        ordered[0].endpoint_provider, ordered[1].endpoint_provider)
            prepared = self.prepare(ctx, ordered[1], character, fallback=True)
            completion = await self._call(prepared)

        if completion is None:
            logger.warning("No completion for %s in room %s", character_id, ctx.room.room_id)
            return None

        choice = first_choice(completion)
        if choice is None or not isinstance(choice.get("message"), dict):
            logger.warning("Malformed completion from %s: no choices", prepared.profile.name)
            return None
        transform_choice(choice, KNOWN_TOOLS)

        if finish_reason(completion) == "tool_calls" and choice["message"].get("tool_calls"):
            return await resolve_tools(self.deps, ctx, prepared.profile, character,
                                       completion, prepared.turns)
        return await shape_reply(self.deps, ctx, prepared.profile, character, completion)
