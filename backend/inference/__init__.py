"""
Inference package — chat-completion backends behind one router.

Quick start:
    from inference import get_router
    router = get_router()
    completion = await router.chat(profile, messages=[...], max_tokens=360)
"""

from inference.base import (
    BackendError,
    BackendTimeoutError,
    ChatBackend,
    MalformedResponseError,
    RateLimitedError,
)
from inference.openai_compat import OpenAICompatBackend
from inference.router import InferenceRouter, get_router

__all__ = [
    "BackendError",
    "BackendTimeoutError",
    "ChatBackend",
    "MalformedResponseError",
    "RateLimitedError",
    "OpenAICompatBackend",
    "InferenceRouter",
    "get_router",
]
