"""
Tool-use resolver — runs the tool calls a backend asked for.

Bounded loop: each hop records the requested call as a tool_use record,
runs it, stores the outcome on that record, and either stops (drafts, images,
failed searches) or folds the result back into the prompt and calls the
backend again. After MAX_TOOL_HOPS re-invocations the last response is shown as-is.
"""

import logging
from typing import Optional

from config import (
    MAX_TOOL_HOPS,
    MAX_WX_TOKEN,
    MIN_REASONING_TOKENS,
    MIN_REST_TOKEN,
    TOOL_KEEP_PROMPTS,
    TOOL_MAX_PROMPTS,
    TOOL_MIN_PROMPTS,
)
from i18n import t
from inference.normalize import finish_reason, first_choice, transform_choice
from models import ChatKind, ChatRecord
from notify import safe_send_media, safe_send_text
from store import StoreError
from tools import KNOWN_TOOLS, FollowUp, ToolCall, ToolName, log_text, parse_arguments, tool_schemas

from core.budget import text_cost, total_cost
from core.context import EngineDeps, ReplyStatus, RunContext, RunResult, ToolLog
from core.prompt_checker import last_user_turns
from core.reply_shaper import shape_reply, usage_of
from core.staleness import can_reply

logger = logging.getLogger(__name__)


def fold_budget(turns: list[dict], completion: dict, profile,
                new_text: str) -> Optional[tuple[list[dict], int]]:
    """Prompts to keep and max_tokens for the call after a tool result.

    Returns None when there is no room left for a useful reply.
    """
    usage = completion.get("usage") or {}
    used = usage.get("total_tokens")
    if not used or len(turns) < 2:
        return None

    window = profile.max_window_token_k * 1000
    rest = window - used
    prompts = list(turns)
    if rest < 1:
        prompts = last_user_turns(prompts)
        rest = window - total_cost(prompts)
    elif len(prompts) > TOOL_MAX_PROMPTS:
        prompts = [prompts[0]] + prompts[-TOOL_KEEP_PROMPTS:]

    rest -= text_cost(new_text)
    top = MIN_REASONING_TOKENS if profile.is_reasoning else MAX_WX_TOKEN
    rest = min(rest, top)
    bottom = MIN_REASONING_TOKENS if profile.is_reasoning else MIN_REST_TOKEN
    if rest < bottom:
        if len(prompts) <= TOOL_MIN_PROMPTS:
            logger.warning("No token budget left to continue after tool use")
            return None
        rest = bottom
        prompts = prompts[-TOOL_MIN_PROMPTS:]
    return prompts, rest


def fold_exchange(prompts: list[dict], tool_call: dict, text: str,
                  profile, lang: str = None, name: Optional[str] = None) -> list[dict]:
    """Append the tool call and its result as the most recent exchange."""
    out = list(prompts)
    if profile.can_use_tools:
        assistant = {"role": "assistant", "tool_calls": [tool_call]}
        if name:
            assistant["name"] = name
        out.append(assistant)
        out.append({
            "role": "tool",
            "content": text + "\n\n" + t("do_not_use_tool", lang),
            "tool_call_id": tool_call.get("id"),
        })
        return out

    fn = tool_call.get("function") or {}
    out.append({
        "role": "assistant",
        "content": t("bot_call_tools", lang, fun_name=fn.get("name"),
                     fun_args=fn.get("arguments") or "{}"),
    })
    out.append({"role": "user", "content": t("result_of_tool", lang, msg=text)})
    return out


class ToolResolver:
    """Resolves one branch's tool calls for one character."""

    def __init__(self, deps: EngineDeps, ctx: RunContext, profile, character):
        self.deps = deps
        self.ctx = ctx
        self.profile = profile
        self.character = character
        self.bot_name = profile.name

    def _result(self, completion: dict) -> RunResult:
        return RunResult(character=self.profile.character, reply_status=ReplyStatus.YES,
                         completion=completion, logs=list(self.ctx.tool_logs),
                         used_tool=True)

    async def resolve(self, completion: dict, turns: list[dict]) -> Optional[RunResult]:
        hops = 0
        while True:
            if not await can_reply(self.deps.store, self.ctx, self.profile,
                                   self.ctx.continue_mode):
                return RunResult(character=self.profile.character,
                                 reply_status=ReplyStatus.HAS_NEW_MSG,
                                 completion=completion, used_tool=True)

            step = await self._run_calls(completion)
            if step is None:
                return None
            if not step:
                return self._result(completion)
            tool_call, text = step

            budget = fold_budget(turns, completion, self.profile, text)
            if budget is None:
                return self._result(completion)
            prompts, max_tokens = budget
            turns = fold_exchange(prompts, tool_call, text, self.profile,
                                  self.ctx.lang, name=self.profile.character)

            tools = tool_schemas() if self.profile.can_use_tools else None
            hops += 1
            nxt = await self.deps.router.chat(self.profile, turns, max_tokens=max_tokens,
                                              tools=tools)
            if nxt is None:
                logger.warning("%s: no completion after tool use (hop %d)",
                               self.profile.name, hops)
                return self._result(completion)
            choice = first_choice(nxt)
            if choice is None:
                return self._result(completion)
            transform_choice(choice, KNOWN_TOOLS)
            completion = nxt

            if finish_reason(completion) == "tool_calls" and hops < MAX_TOOL_HOPS:
                continue
            if hops >= MAX_TOOL_HOPS:
                logger.info("%s hit the tool hop ceiling", self.profile.name)
            result = await shape_reply(self.deps, self.ctx, self.profile, self.character,
                                       completion, used_tool=True)
            return result or self._result(completion)

    async def _run_calls(self, completion: dict):
        """Execute the calls in ``completion``.

        Returns (tool_call, text) to fold back, an empty tuple to stop, or
        None if persisting failed.
        """
        choice = first_choice(completion) or {}
        calls = (choice.get("message") or {}).get("tool_calls") or []
        call_ctx = ToolCall(user=self.ctx.user, room_id=self.ctx.room.room_id,
                            character=self.profile.character, bot_name=self.bot_name)

        for call in calls:
            fn = call.get("function") or {}
            if call.get("type", "function") != "function" or not fn.get("name"):
                continue
            name = fn["name"]
            record = ChatRecord(
                room_id=self.ctx.room.room_id,
                kind=ChatKind.TOOL_USE,
                character=self.profile.character,
                model=completion.get("model") or self.profile.model,
                usage=usage_of(completion),
                finish_reason="tool_calls",
                func_name=name,
                func_args=parse_arguments(fn.get("arguments")),
                tool_call_id=call.get("id"),
            )
            try:
                await self.deps.store.add_chat(record)
            except StoreError as e:
                logger.error("Persisting tool call %s failed: %s", name, e)
                return None

            outcome = await self.deps.tools.invoke(name, fn.get("arguments"), call_ctx)
            spec = self.deps.tools.spec(name)
            try:
                await self.deps.store.update_chat(
                    record.chat_id,
                    text=outcome.model_text or outcome.user_text,
                    tool_result=outcome.to_result(),
                    draft_id=outcome.draft_id,
                    draw_picture_url=outcome.media_url,
                )
            except StoreError as e:
                logger.error("Saving the result of %s failed: %s", name, e)
                return None

            if spec is None:
                continue
            if outcome.passed and spec.log_category:
                self.ctx.tool_logs.append(ToolLog(
                    character=self.profile.character, tool=name,
                    category=spec.log_category,
                    text=outcome.user_text or log_text(spec, call_ctx),
                ))

            room_id = self.ctx.room.room_id
            cid = self.profile.character
            if outcome.passed and spec.follow_up == FollowUp.DRAFT:
                await safe_send_text(self.deps.notifier, room_id, outcome.user_text or "",
                                     character=cid)
                return ()
            if outcome.passed and spec.follow_up == FollowUp.MEDIA:
                await safe_send_media(self.deps.notifier, room_id, outcome.media_url,
                                      media_type="image", character=cid)
                return ()
            if spec.name == ToolName.WEB_SEARCH and not outcome.passed:
                logger.info("web_search failed for %s, not continuing", cid)
                return ()
            if outcome.model_text:
                return call, outcome.model_text
        return ()


async def resolve_tools(deps: EngineDeps, ctx: RunContext, profile, character,
                        completion: dict, turns: list[dict]) -> Optional[RunResult]:
    return await ToolResolver(deps, ctx, profile, character).resolve(completion, turns)
