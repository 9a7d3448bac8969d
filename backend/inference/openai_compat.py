"""
OpenAI-compatible chat-completion adapter.

Covers every provider that implements the /chat/completions contract
(DeepSeek, Moonshot, Qwen via DashScope compat mode, Zhipu, StepFun,
SiliconFlow, ...). ``base_url`` is the provider's versioned API root, e.g.
``https://api.deepseek.com/v1``.

Streaming responses are folded back into the non-streaming completion shape
so callers never need to know which mode was used.
"""

import json
import logging
from typing import Optional

import httpx

from config import RATE_LIMIT_MARKERS
from inference.base import (
    BackendError,
    BackendTimeoutError,
    ChatBackend,
    MalformedResponseError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)


def _raise_for_status(status_code: int, body: str):
    if status_code < 400:
        return
    if status_code == 429 or any(m in body for m in RATE_LIMIT_MARKERS):
        raise RateLimitedError(body[:500] or "rate limited", status_code=status_code)
    raise BackendError(f"HTTP {status_code}: {body[:500]}", status_code=status_code)


def _lift_reasoning(message: dict):
    """Some providers (StepFun) name the chain-of-thought field ``reasoning``."""
    if isinstance(message.get("reasoning"), str) and not message.get("reasoning_content"):
        message["reasoning_content"] = message.pop("reasoning")


class OpenAICompatBackend(ChatBackend):
    """Backend adapter for OpenAI-compatible chat-completion servers."""

    def __init__(self, base_url: str, api_key: str = "", default_timeout: float = 59,
                 default_headers: Optional[dict] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(base_url, api_key, default_timeout, default_headers)
        self._transport = transport

    def _headers(self, extra: Optional[dict] = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(self.default_headers)
        if extra:
            headers.update(extra)
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.default_timeout, transport=self._transport)

    # ── Chat Completion ──

    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: Optional[int] = 360,
        tools: Optional[list[dict]] = None,
        stream: bool = False,
        extra: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        payload = {
            "model": model,
            "messages": messages,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if tools:
            payload["tools"] = tools
        if extra:
            payload.update(extra)

        try:
            if stream:
                return await self._complete_stream(payload, headers)
            return await self._complete_once(payload, headers)
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(f"{self.base_url} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"{self.base_url} transport error: {e}") from e

    async def _complete_once(self, payload: dict, headers: Optional[dict]) -> dict:
        async with self._client() as client:
            resp = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(headers),
            )
            _raise_for_status(resp.status_code, resp.text)
            try:
                data = resp.json()
            except json.JSONDecodeError as e:
                raise MalformedResponseError(f"non-JSON completion: {e}") from e

        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0].get("message"), dict):
            raise MalformedResponseError("completion has no choices")
        _lift_reasoning(choices[0]["message"])
        return data

    async def _complete_stream(self, payload: dict, headers: Optional[dict]) -> dict:
        """Streaming chat completion via SSE, folded into a completion dict."""
        payload = dict(payload, stream=True, stream_options={"include_usage": True})

        completion_id = ""
        model = ""
        usage = None
        finish_reason = None
        content = ""
        reasoning = ""
        tool_calls: dict[int, dict] = {}

        async with self._client() as client:
            async with client.stream(
                "POST", f"{self.base_url}/chat/completions",
                json=payload, headers=self._headers(headers),
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    _raise_for_status(resp.status_code, body)
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        continue

                    completion_id = chunk.get("id") or completion_id
                    model = chunk.get("model") or model
                    choice = (chunk.get("choices") or [None])[0]
                    if chunk.get("usage"):
                        usage = chunk["usage"]
                    elif choice and choice.get("usage"):
                        usage = choice["usage"]
                    if not choice:
                        continue

                    delta = choice.get("delta") or {}
                    if delta.get("reasoning_content"):
                        reasoning += delta["reasoning_content"]
                    elif delta.get("content"):
                        content += delta["content"]
                    elif isinstance(delta.get("reasoning"), str):
                        reasoning += delta["reasoning"]
                    for tc in delta.get("tool_calls") or []:
                        slot = tool_calls.setdefault(tc.get("index", 0), {
                            "id": "", "type": "function",
                            "function": {"name": "", "arguments": ""},
                        })
                        if tc.get("id"):
                            slot["id"] = tc["id"]
                        fn = tc.get("function") or {}
                        if fn.get("name"):
                            slot["function"]["name"] += fn["name"]
                        if fn.get("arguments"):
                            slot["function"]["arguments"] += fn["arguments"]
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]

        for name, value in (("usage", usage), ("id", completion_id),
                            ("model", model), ("finish_reason", finish_reason)):
            if not value:
                raise MalformedResponseError(f"stream ended without {name}")

        message = {"role": "assistant", "content": content}
        if reasoning:
            message["reasoning_content"] = reasoning
        if tool_calls:
            message["tool_calls"] = [tool_calls[i] for i in sorted(tool_calls)]
        return {
            "id": completion_id,
            "object": "chat.completion",
            "model": model,
            "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
            "usage": usage,
        }
