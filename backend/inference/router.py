"""
InferenceRouter — maps provider names to backend adapters and runs calls.

Reads the ``providers`` section of settings.yaml to build one adapter per
provider. ``chat()`` is what the engine calls: it applies the per-call
timeout, retries rate-limited calls, logs every completed call, and returns
``None`` instead of raising when a call ultimately fails.

Usage:
    from inference import get_router
    router = get_router()
    completion = await router.chat(profile, messages=[...], max_tokens=360)
"""

import asyncio
import logging
import os
import time
from typing import Optional

from cache import TtlCache
from config import DEFAULT_TIMEOUT, MAX_TRY_TIMES, PROVIDER_TIMEOUTS, RETRY_WAIT_SECONDS
from settings import ProviderConfig, Settings, get_settings

from inference.base import BackendError, ChatBackend, RateLimitedError
from inference.openai_compat import OpenAICompatBackend

logger = logging.getLogger(__name__)

# Map of provider type strings to adapter classes
_BACKEND_CLASSES: dict[str, type[ChatBackend]] = {
    "openai": OpenAICompatBackend,
}

API_KEY_TTL_SECONDS = 300


class InferenceRouter:
    """Routes chat calls to the adapter for a profile's serving provider."""

    def __init__(self, settings: Optional[Settings] = None,
                 key_cache: Optional[TtlCache] = None,
                 backends: Optional[dict[str, ChatBackend]] = None):
        self._settings = settings or get_settings()
        self._key_cache = key_cache or TtlCache(API_KEY_TTL_SECONDS)
        # Pre-built adapters (tests inject fakes here)
        self._backends: dict[str, ChatBackend] = dict(backends or {})

    # ── Adapters ──

    def _api_key(self, provider: ProviderConfig) -> str:
        if not provider.api_key_env:
            return ""
        return self._key_cache.get_or_load(
            lambda: os.environ.get(provider.api_key_env, ""),
            key=provider.api_key_env,
        )

    def timeout_for(self, provider_name: str) -> float:
        provider = self._settings.get_provider(provider_name)
        if provider_name in PROVIDER_TIMEOUTS:
            return PROVIDER_TIMEOUTS[provider_name]
        if provider and provider.timeout:
            return provider.timeout
        return DEFAULT_TIMEOUT

    def backend_for(self, provider_name: str) -> Optional[ChatBackend]:
        if provider_name in self._backends:
            return self._backends[provider_name]

        provider = self._settings.get_provider(provider_name)
        if provider is None:
            logger.error("Provider '%s' is not configured", provider_name)
            return None
        adapter_cls = _BACKEND_CLASSES.get(provider.type.lower())
        if adapter_cls is None:
            logger.error(
                "Unknown provider type '%s' for '%s'. Supported types: %s",
                provider.type, provider_name, ", ".join(_BACKEND_CLASSES.keys()),
            )
            return None

        adapter = adapter_cls(
            base_url=provider.base_url,
            api_key=self._api_key(provider),
            default_timeout=self.timeout_for(provider_name),
        )
        self._backends[provider_name] = adapter
        logger.info("Registered provider '%s' (%s) at %s",
                    provider_name, provider.type, provider.base_url)
        return adapter

    def streams(self, provider_name: str) -> bool:
        provider = self._settings.get_provider(provider_name)
        return bool(provider and provider.stream)

    # ── Calls ──

    async def complete(
        self,
        provider_name: str,
        model: str,
        messages: list[dict],
        max_tokens: Optional[int] = 360,
        tools: Optional[list[dict]] = None,
        extra: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Optional[dict]:
        """One logical chat call with timeout and rate-limit retry.

        Returns the completion dict, or None on timeout, exhausted retries,
        or any other backend error.
        """
        backend = self.backend_for(provider_name)
        if backend is None:
            return None

        stream = self.streams(provider_name)
        extra = dict(extra or {})
        if stream and model.startswith("qwen"):
            extra["enable_thinking"] = True
        timeout = timeout or self.timeout_for(provider_name)

        async def _attempts() -> Optional[dict]:
            for attempt in range(1, MAX_TRY_TIMES + 1):
                t0 = time.time()
                try:
                    completion = await backend.complete(
                        model, messages, max_tokens=max_tokens, tools=tools,
                        stream=stream, extra=extra or None, headers=headers,
                    )
                except RateLimitedError as e:
                    logger.warning("Rate limited by %s (attempt %d/%d): %s",
                                   provider_name, attempt, MAX_TRY_TIMES, e)
                    if attempt < MAX_TRY_TIMES:
                        await asyncio.sleep(RETRY_WAIT_SECONDS)
                        continue
                    return None
                except BackendError as e:
                    logger.warning("Chat call to %s failed: %s", provider_name, e)
                    return None
                self._log_call(provider_name, backend, completion, time.time() - t0)
                return completion
            return None

        try:
            return await asyncio.wait_for(_attempts(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Chat call to %s (%s) timed out after %.0fs",
                           provider_name, model, timeout)
            return None

    async def chat(self, profile, messages: list[dict], max_tokens: int = 360,
                   tools: Optional[list[dict]] = None,
                   provider_name: Optional[str] = None) -> Optional[dict]:
        """Chat call for a backend profile."""
        return await self.complete(
            provider_name or profile.endpoint_provider,
            profile.model,
            messages,
            max_tokens=max_tokens,
            tools=tools,
            headers=profile.default_headers or None,
        )

    def _log_call(self, provider_name: str, backend: ChatBackend,
                  completion: dict, duration: float):
        usage = completion.get("usage") or {}
        reasons = [c.get("finish_reason") for c in completion.get("choices") or []]
        logger.info(
            "LLM call provider=%s base_url=%s model=%s request_id=%s "
            "prompt_tokens=%s completion_tokens=%s duration=%.2fs finish=%s",
            provider_name, backend.base_url, completion.get("model"),
            completion.get("id"), usage.get("prompt_tokens"),
            usage.get("completion_tokens"), duration, reasons,
        )


# ── Singleton ──

_router: Optional[InferenceRouter] = None


def get_router() -> InferenceRouter:
    """Return the global InferenceRouter singleton."""
    global _router
    if _router is None:
        _router = InferenceRouter()
    return _router
