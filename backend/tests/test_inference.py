"""
Tests for completion normalization, the OpenAI-compatible adapter and the router.
"""

import asyncio
import json

import httpx
import pytest

from conftest import FakeBackend, make_completion, make_profile

from cache import TtlCache
from inference.base import BackendError, MalformedResponseError, RateLimitedError
from inference.normalize import content_and_reasoning, finish_reason, transform_choice
from inference.openai_compat import OpenAICompatBackend
from inference.router import InferenceRouter

KNOWN = ("web_search", "draw_picture", "get_schedule")


def _choice(content, reason="stop"):
    return {"index": 0, "message": {"role": "assistant", "content": content},
            "finish_reason": reason}


class TestTransformChoice:

    def test_keeps_single_tool_call(self):
        choice = {"message": {"content": None, "tool_calls": [{"id": "a"}, {"id": "b"}]},
                  "finish_reason": "tool_calls"}
        assert transform_choice(choice, KNOWN)
        assert choice["message"]["tool_calls"] == [{"id": "a"}]

    def test_salvages_call_prefix(self):
        choice = _choice('调用工具: web_search\n参数: {"q": "weather"}')
        assert transform_choice(choice, KNOWN)
        assert choice["finish_reason"] == "tool_calls"
        fn = choice["message"]["tool_calls"][0]["function"]
        assert fn == {"name": "web_search", "arguments": '{"q": "weather"}'}
        assert choice["message"]["content"] == ""

    def test_salvages_named_object(self):
        choice = _choice('{"name": "get_schedule", "parameters": {"hoursFromNow": "24"}}')
        assert transform_choice(choice, KNOWN)
        args = json.loads(choice["message"]["tool_calls"][0]["function"]["arguments"])
        assert args == {"hoursFromNow": "24"}

    def test_salvages_function_fence(self):
        choice = _choice('function web_search\n```json\n{"q": "news"}\n```')
        assert transform_choice(choice, KNOWN)
        assert choice["message"]["tool_calls"][0]["function"]["name"] == "web_search"

    def test_salvages_bare_draw_arguments(self):
        choice = _choice('{"prompt": "a cat", "sizeType": "square"}')
        assert transform_choice(choice, KNOWN)
        assert choice["message"]["tool_calls"][0]["function"]["name"] == "draw_picture"

    def test_unknown_tool_left_alone(self):
        choice = _choice('调用工具: launch_rocket\n参数: {"to": "moon"}')
        assert not transform_choice(choice, KNOWN)
        assert choice["finish_reason"] == "stop"

    def test_strips_assistant_tag(self):
        choice = _choice("<assistant>hello</assistant>")
        assert transform_choice(choice, KNOWN)
        assert choice["message"]["content"] == "hello"


class TestContentAndReasoning:

    def test_plain_content(self):
        reply = content_and_reasoning(make_completion("hi there"))
        assert (reply.content, reply.reasoning) == ("hi there", "")

    def test_reasoning_field(self):
        reply = content_and_reasoning(make_completion("42", reasoning="let me think"))
        assert reply.reasoning == "let me think"

    def test_think_span_for_reasoning_profile(self):
        reply = content_and_reasoning(make_completion("<think>hmm</think>\nanswer"),
                                      is_reasoning=True)
        assert (reply.content, reply.reasoning) == ("answer", "hmm")

    def test_unclosed_think_means_truncated(self):
        completion = make_completion("<think>still going")
        reply = content_and_reasoning(completion, is_reasoning=True)
        assert reply.content == ""
        assert finish_reason(completion) == "length"

    def test_reasoning_only_is_marked_length(self):
        completion = make_completion(None, reasoning="only thoughts")
        reply = content_and_reasoning(completion)
        assert reply.reasoning == "only thoughts"
        assert finish_reason(completion) == "length"

    def test_empty_completion(self):
        assert content_and_reasoning(make_completion(None)) is None
        assert content_and_reasoning({"choices": []}) is None

    def test_character_post_processing(self, registry):
        reply = content_and_reasoning(make_completion("？你好"), character=registry.get("zhipu"))
        assert reply.content == "你好"


def _backend(handler) -> OpenAICompatBackend:
    return OpenAICompatBackend("http://llm.test/v1", api_key="sk-test",
                               transport=httpx.MockTransport(handler))


class TestOpenAICompatBackend:

    def test_sends_bearer_and_payload(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=make_completion("pong"))

        completion = asyncio.run(_backend(handler).complete(
            "m1", [{"role": "user", "content": "ping"}], max_tokens=100))
        assert completion["choices"][0]["message"]["content"] == "pong"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["max_tokens"] == 100
        assert "tools" not in seen["body"]

    def test_no_max_tokens_when_unset(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=make_completion("ok"))

        asyncio.run(_backend(handler).complete("m1", [], max_tokens=None))
        assert "max_tokens" not in seen["body"]

    def test_429_is_rate_limited(self):
        backend = _backend(lambda request: httpx.Response(429, text="slow down"))
        with pytest.raises(RateLimitedError):
            asyncio.run(backend.complete("m1", []))

    def test_rate_limit_marker_in_body(self):
        backend = _backend(lambda request: httpx.Response(
            400, text="Rate limit reached for requests"))
        with pytest.raises(RateLimitedError):
            asyncio.run(backend.complete("m1", []))

    def test_server_error(self):
        backend = _backend(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(BackendError) as exc:
            asyncio.run(backend.complete("m1", []))
        assert exc.value.status_code == 500

    def test_no_choices_is_malformed(self):
        backend = _backend(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(MalformedResponseError):
            asyncio.run(backend.complete("m1", []))

    def test_reasoning_field_is_lifted(self):
        body = make_completion("x")
        body["choices"][0]["message"]["reasoning"] = "because"
        backend = _backend(lambda request: httpx.Response(200, json=body))
        completion = asyncio.run(backend.complete("m1", []))
        assert completion["choices"][0]["message"]["reasoning_content"] == "because"

    def test_stream_is_folded(self):
        chunks = [
            {"id": "c1", "model": "m1", "choices": [{"index": 0, "delta": {"reasoning_content": "hmm "}}]},
            {"id": "c1", "model": "m1", "choices": [{"index": 0, "delta": {"content": "Hel"}}]},
            {"id": "c1", "model": "m1", "choices": [{"index": 0, "delta": {"content": "lo"},
                                                     "finish_reason": "stop"}]},
            {"id": "c1", "model": "m1", "choices": [],
             "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}},
        ]
        body = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks) + "data: [DONE]\n\n"
        backend = _backend(lambda request: httpx.Response(
            200, text=body, headers={"Content-Type": "text/event-stream"}))

        completion = asyncio.run(backend.complete("m1", [], stream=True))
        message = completion["choices"][0]["message"]
        assert message["content"] == "Hello"
        assert message["reasoning_content"] == "hmm "
        assert completion["choices"][0]["finish_reason"] == "stop"
        assert completion["usage"]["total_tokens"] == 7


class TestInferenceRouter:

    def test_retries_rate_limit_once(self, settings, monkeypatch):
        monkeypatch.setattr("inference.router.RETRY_WAIT_SECONDS", 0)
        backend = FakeBackend({"kimi-8k": [RateLimitedError("429"), make_completion("ok")]})
        router = InferenceRouter(settings, backends={"alpha": backend})
        profile = make_profile(provider="alpha", model="kimi-8k")

        completion = asyncio.run(router.chat(profile, [{"role": "user", "content": "hi"}]))
        assert completion["choices"][0]["message"]["content"] == "ok"
        assert len(backend.calls) == 2

    def test_gives_up_after_max_tries(self, settings, monkeypatch):
        monkeypatch.setattr("inference.router.RETRY_WAIT_SECONDS", 0)
        backend = FakeBackend({"kimi-8k": [RateLimitedError("429"), RateLimitedError("429")]})
        router = InferenceRouter(settings, backends={"alpha": backend})
        assert asyncio.run(router.chat(make_profile(model="kimi-8k"), [])) is None

    def test_backend_error_is_soft(self, settings):
        backend = FakeBackend({"kimi-8k": [BackendError("500")]})
        router = InferenceRouter(settings, backends={"alpha": backend})
        assert asyncio.run(router.chat(make_profile(model="kimi-8k"), [])) is None
        assert len(backend.calls) == 1

    def test_timeout_is_soft(self, settings):
        async def slow(messages):
            await asyncio.sleep(1)
            return make_completion("late")

        backend = FakeBackend({"kimi-8k": [slow]})
        router = InferenceRouter(settings, backends={"alpha": backend})
        result = asyncio.run(router.complete("alpha", "kimi-8k", [], timeout=0.05))
        assert result is None

    def test_secondary_provider_serves(self, settings):
        alpha, beta = FakeBackend(), FakeBackend(default=make_completion("from beta"))
        router = InferenceRouter(settings, backends={"alpha": alpha, "beta": beta})
        profile = make_profile(provider="alpha", secondary_provider="beta")
        completion = asyncio.run(router.chat(profile, []))
        assert completion["choices"][0]["message"]["content"] == "from beta"
        assert alpha.calls == []

    def test_unconfigured_provider(self, settings):
        router = InferenceRouter(settings)
        assert router.backend_for("nowhere") is None

    def test_builds_adapter_with_cached_key(self, settings, monkeypatch):
        settings.providers[0].api_key_env = "ALPHA_KEY"
        monkeypatch.setenv("ALPHA_KEY", "sk-alpha")
        router = InferenceRouter(settings, key_cache=TtlCache(60))
        adapter = router.backend_for("alpha")
        assert isinstance(adapter, OpenAICompatBackend)
        assert adapter.api_key == "sk-alpha"
        assert router.backend_for("alpha") is adapter
