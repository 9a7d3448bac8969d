"""
Abstract base class for chat-completion backend adapters.

Every adapter returns the same completion shape regardless of whether the
provider answered in one response or as a server-sent event stream:

    {
        "id": str,
        "model": str,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": str | None,
                        "reasoning_content": str | None,
                        "tool_calls": list | None},
            "finish_reason": "stop" | "length" | "tool_calls",
        }],
        "usage": {"prompt_tokens": int, "completion_tokens": int, "total_tokens": int},
    }
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A chat-completion call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(BackendError):
    """The provider rejected the call for rate-limit reasons."""


class BackendTimeoutError(BackendError):
    """The call did not complete within its timeout."""


class MalformedResponseError(BackendError):
    """The provider answered, but not with a usable completion."""


class ChatBackend(ABC):
    """Abstract chat-completion backend.

    Concrete adapters implement the HTTP details for their provider family
    while exposing one ``complete`` call.
    """

    def __init__(self, base_url: str, api_key: str = "", default_timeout: float = 59,
                 default_headers: Optional[dict] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.default_timeout = default_timeout
        self.default_headers = dict(default_headers or {})

    @abstractmethod
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
        """Run one chat completion and return the normalized completion dict."""
        ...
