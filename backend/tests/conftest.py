"""
Test fixtures for the Roundtable engine.
"""

import inspect
import os
import random
import sys
from pathlib import Path
from typing import Optional

import pytest

# Add backend to path
BACKEND_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BACKEND_DIR))

# Point settings at the example file before importing anything that reads it
os.environ["SETTINGS_PATH"] = str(BACKEND_DIR.parent / "settings.yaml.example")

from characters import build_registry  # noqa: E402
from characters.base import Ability, BackendProfile  # noqa: E402
from core.context import EngineDeps, RunContext  # noqa: E402
from inference.base import BackendError, ChatBackend  # noqa: E402
from inference.router import InferenceRouter  # noqa: E402
from models import ChatKind, ChatRecord, ConversationRoom, Usage, UserInfo  # noqa: E402
from notify import Notifier  # noqa: E402
from settings import _load_settings_from_dict  # noqa: E402
from store import SqliteChatStore  # noqa: E402
from tools import ToolKit  # noqa: E402

TEST_SETTINGS = {
    "system": {"name": "Roundtable", "language": "en", "timezone": "UTC"},
    "providers": [
        {"name": "alpha", "display_name": "Alpha Cloud", "base_url": "http://alpha.test/v1"},
        {"name": "beta", "display_name": "Beta Cloud", "base_url": "http://beta.test/v1"},
        {"name": "summary", "base_url": "http://summary.test/v1"},
    ],
    "bots": [
        {"name": "Kimi", "character": "kimi", "provider": "alpha", "model": "kimi-8k",
         "abilities": ["chat", "tool_use"], "max_window_token_k": 8, "priority": 2},
        {"name": "Kimi", "character": "kimi", "provider": "beta", "model": "kimi-backup",
         "abilities": ["chat"], "max_window_token_k": 8, "priority": 1},
        {"name": "DeepSeek", "character": "deepseek", "provider": "beta", "model": "ds-chat",
         "abilities": ["chat", "tool_use"], "alias": ["ds"], "max_window_token_k": 64},
        {"name": "DeepSeek R1", "character": "ds-reasoner", "provider": "alpha",
         "model": "ds-reasoner", "abilities": ["chat", "reasoning"], "max_window_token_k": 64},
        {"name": "智谱", "character": "zhipu", "provider": "alpha", "model": "glm",
         "abilities": ["chat"], "alias": ["GLM"], "max_window_token_k": 32},
        {"name": "通义千问", "character": "tongyi-qwen", "provider": "beta", "model": "qwen-plus",
         "abilities": ["chat"], "max_window_token_k": 32},
    ],
    "summary": {"provider": "summary", "model": "sum-model", "prefix_mode": "prefix"},
    "limits": {"stagger_min_seconds": 2, "stagger_max_seconds": 4},
    "tools": {"searxng_url": "", "amap_key_env": "", "image_provider": ""},
}


# ── Helpers ──

def make_completion(content: Optional[str] = "Hello!", finish_reason: str = "stop",
                    reasoning: Optional[str] = None, tool_calls: Optional[list] = None,
                    model: str = "test-model", completion_tokens: int = 12,
                    total_tokens: int = 120) -> dict:
    message = {"role": "assistant", "content": content}
    if reasoning is not None:
        message["reasoning_content"] = reasoning
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {
        "id": "cmpl-test",
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": total_tokens - completion_tokens,
                  "completion_tokens": completion_tokens, "total_tokens": total_tokens},
    }


def make_tool_call(name: str, arguments: str, call_id: str = "call_1") -> dict:
    return {"id": call_id, "type": "function",
            "function": {"name": name, "arguments": arguments}}


def user_record(room_id: str, text: str, stamp: int, **fields) -> ChatRecord:
    return ChatRecord(room_id=room_id, kind=ChatKind.USER, text=text, sort_stamp=stamp,
                      created_at=stamp, **fields)


def assistant_record(room_id: str, text: str, stamp: int, character: str,
                     finish_reason: str = "stop", **fields) -> ChatRecord:
    fields.setdefault("usage", Usage(completion_tokens=10))
    return ChatRecord(room_id=room_id, kind=ChatKind.ASSISTANT, text=text, sort_stamp=stamp,
                      created_at=stamp, character=character, finish_reason=finish_reason,
                      **fields)


class RecordingNotifier(Notifier):
    """Notifier that keeps every outbound message in memory."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send_text(self, room_id, text, character=None):
        self.sent.append({"type": "text", "room_id": room_id, "text": text,
                          "character": character})

    async def send_media(self, room_id, url, media_type="image", character=None):
        self.sent.append({"type": "media", "room_id": room_id, "url": url,
                          "media_type": media_type, "character": character})

    async def send_menu(self, room_id, options, prefix="", suffix=""):
        self.sent.append({"type": "menu", "room_id": room_id, "options": list(options),
                          "prefix": prefix, "suffix": suffix})

    async def send_typing(self, room_id):
        self.sent.append({"type": "typing", "room_id": room_id})

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == kind]

    def texts(self) -> list[str]:
        return [m["text"] for m in self.of_type("text")]


class FakeBackend(ChatBackend):
    """Chat backend that answers from a script, keyed by model name.

    A script entry may be a completion dict, an exception to raise, or a
    callable taking the request messages.
    """

    def __init__(self, scripts: Optional[dict] = None, default: Optional[dict] = None):
        super().__init__(base_url="http://fake.test/v1")
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.default = default
        self.calls: list[dict] = []

    async def complete(self, model, messages, max_tokens=360, tools=None,
                       stream=False, extra=None, headers=None):
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens,
                           "tools": tools})
        script = self.scripts.get(model)
        if script:
            step = script.pop(0)
        elif self.default is not None:
            step = self.default
        else:
            raise BackendError(f"no scripted completion for {model}")
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            step = await step(messages) if inspect.iscoroutinefunction(step) else step(messages)
        return step

    def calls_for(self, model: str) -> list[dict]:
        return [c for c in self.calls if c["model"] == model]


def make_profile(name: str = "Kimi", character: str = "kimi", abilities=("chat",),
                 window_k: int = 8, **fields) -> BackendProfile:
    fields.setdefault("provider", "alpha")
    fields.setdefault("model", "test-model")
    return BackendProfile(
        name=name, character=character,
        abilities=frozenset(Ability(a) for a in abilities),
        max_window_token_k=window_k, **fields,
    )


async def no_sleep(seconds):
    return None


# ── Fixtures ──

@pytest.fixture
def settings():
    return _load_settings_from_dict(TEST_SETTINGS)


@pytest.fixture
def store(tmp_path):
    return SqliteChatStore(tmp_path / "roundtable-test.db")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def registry(settings):
    return build_registry(settings)


@pytest.fixture
def router(settings, backend):
    return InferenceRouter(settings, backends={"alpha": backend, "beta": backend,
                                                "summary": backend})


@pytest.fixture
def deps(store, notifier, router, registry, settings):
    return EngineDeps(store=store, notifier=notifier, router=router, registry=registry,
                      tools=ToolKit(), settings=settings, rng=random.Random(7))


@pytest.fixture
def room():
    return ConversationRoom(room_id="room-1", owner_id="user-1", characters=["kimi"])


@pytest.fixture
def user():
    return UserInfo(user_id="user-1", language="en", timezone="UTC", subscriber=True)


@pytest.fixture
def make_ctx(room, user):
    def _make(entry: ChatRecord, chats: Optional[list] = None, **fields) -> RunContext:
        return RunContext(room=room, user=user, entry=entry,
                          chats=chats if chats is not None else [entry], **fields)
    return _make
