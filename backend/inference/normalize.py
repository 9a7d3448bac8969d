"""
Completion normalization — vendor quirks folded into one shape.

Two passes run on every completion before the engine looks at it:

1. ``transform_choice``: keep a single tool call, and turn tool calls that a
   model wrote out as plain text into real ``tool_calls``.
2. ``content_and_reasoning``: split the final answer from any
   chain-of-thought, including ``<think>`` spans embedded in the content.
"""

import json
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"^\s*<think>(.*?)</think>", re.DOTALL)

_REASONING_OPENERS = ("Alright, ", "好的，", "嗯，", "好，", "好吧，", "用户问")

_CALL_PREFIXES = ("调用工具:", "調用工具:", "Call a tool:")
_ARG_PREFIXES = ("参数:", "參數:", "Arguments:")
_FUNCTION_PREFIXES = ("function ", "function: ")
_JSON_FENCES = ("```json", "```JSON")


@dataclass
class ReplyContent:
    content: str
    reasoning: str


# ── Accessors ──

def first_choice(completion: Optional[dict]) -> Optional[dict]:
    if not completion:
        return None
    choices = completion.get("choices") or []
    return choices[0] if choices else None


def finish_reason(completion: Optional[dict]) -> Optional[str]:
    choice = first_choice(completion)
    return choice.get("finish_reason") if choice else None


def set_finish_reason(completion: dict, reason: str):
    choice = first_choice(completion)
    if choice is not None:
        choice["finish_reason"] = reason


# ── Tool-call salvage ──

def _fill_tool_call(choice: dict, name: str, arguments: str) -> dict:
    tool_call = {
        "id": f"call_{secrets.token_hex(3)}",
        "type": "function",
        "function": {"name": name, "arguments": arguments},
    }
    choice["message"]["content"] = ""
    choice["message"]["tool_calls"] = [tool_call]
    choice["finish_reason"] = "tool_calls"
    return tool_call


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
        return True
    except (json.JSONDecodeError, TypeError):
        return False


def _from_call_prefix(choice, text, known) -> bool:
    """调用工具: name / 参数: {...}"""
    prefix = next((p for p in _CALL_PREFIXES if p in text), None)
    if not prefix:
        return False
    rest = text[text.index(prefix) + len(prefix):].lstrip()
    lines = rest.split("\n")
    if len(lines) < 2:
        return False
    name = lines[0].strip()
    if name not in known:
        return False
    rest = "\n".join(lines[1:]).strip()
    arg_prefix = next((p for p in _ARG_PREFIXES if rest.startswith(p)), None)
    if not arg_prefix:
        return False
    arguments = rest[len(arg_prefix):].lstrip().split("\n")[0].strip()
    if not arguments or not _is_json(arguments):
        return False
    _fill_tool_call(choice, name, arguments)
    return True


def _from_named_object(choice, text, known) -> bool:
    """{"name": "...", "parameters"|"arguments": {...}}"""
    if not (text.startswith("{") and text.endswith("}")):
        return False
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return False
    if not isinstance(obj, dict):
        return False
    name = obj.get("name")
    args = obj.get("arguments") or obj.get("parameters")
    if not name or not args or name not in known:
        return False
    if isinstance(args, str):
        args = args.strip()
        if not _is_json(args):
            return False
        arguments = args
    elif isinstance(args, dict):
        arguments = json.dumps(args, ensure_ascii=False)
    else:
        return False
    _fill_tool_call(choice, name, arguments)
    return True


def _from_function_fence(choice, text, known) -> bool:
    """function name / ```json {...} ```"""
    prefix = next((p for p in _FUNCTION_PREFIXES if p in text), None)
    if not prefix:
        return False
    rest = text[text.index(prefix) + len(prefix):].lstrip()
    lines = rest.split("\n")
    if len(lines) < 2:
        return False
    name = lines[0].strip()
    if name not in known:
        return False
    rest = "\n".join(lines[1:]).strip()
    fence = next((f for f in _JSON_FENCES if rest.startswith(f)), None)
    if not fence:
        return False
    rest = rest[len(fence):].lstrip()
    if not rest.endswith("```"):
        return False
    arguments = rest[:-3].rstrip()
    if not _is_json(arguments):
        return False
    _fill_tool_call(choice, name, arguments)
    return True


def _from_draw_args(choice, text, known) -> bool:
    """A bare {"prompt": ..., "sizeType": ...} means draw_picture."""
    if "draw_picture" not in known:
        return False
    if not (text.startswith("{") and text.endswith("}")):
        return False
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return False
    if not isinstance(obj, dict):
        return False
    if not (isinstance(obj.get("prompt"), str) and obj["prompt"]):
        return False
    if not (isinstance(obj.get("sizeType"), str) and obj["sizeType"]):
        return False
    _fill_tool_call(choice, "draw_picture", text)
    return True


def _strip_assistant_tag(choice, text) -> bool:
    changed = False
    if text.startswith("<assistant>"):
        text = text[len("<assistant>"):].lstrip()
        changed = True
    if text.endswith("</assistant>"):
        text = text[:-len("</assistant>")].rstrip()
        changed = True
    if changed:
        choice["message"]["content"] = text
    return changed


def transform_choice(choice: dict, known_tools: Iterable[str]) -> bool:
    """Normalize one choice in place. Returns True if anything changed."""
    known = set(known_tools)
    message = choice.get("message") or {}
    reason = choice.get("finish_reason")

    if reason == "tool_calls":
        calls = message.get("tool_calls") or []
        if len(calls) > 1:
            message["tool_calls"] = calls[:1]
            return True

    if reason != "stop":
        return False
    text = (message.get("content") or "").strip()
    if not text:
        return False

    for shape in (_from_call_prefix, _from_named_object, _from_function_fence, _from_draw_args):
        if shape(choice, text, known):
            logger.info("Salvaged text-shaped tool call via %s: %s",
                        shape.__name__, choice["message"]["tool_calls"][0]["function"]["name"])
            return True
    return _strip_assistant_tag(choice, text)


# ── Content / reasoning split ──

def _split_reasoning(completion: dict, content: str, thinking_in_content: bool):
    match = _THINK_RE.match(content)
    if match:
        return content[match.end():], match.group(1)

    stripped = content.lstrip()
    if stripped.startswith("<think>"):
        set_finish_reason(completion, "length")
        return "", stripped[len("<think>"):]

    if finish_reason(completion) == "length" and not thinking_in_content:
        if any(content.startswith(x) for x in _REASONING_OPENERS):
            return "", content

    return content, ""


def content_and_reasoning(completion: dict, is_reasoning: bool = False,
                          thinking_in_content: bool = False,
                          character=None) -> Optional[ReplyContent]:
    """Extract final text and chain-of-thought from a completion.

    Returns None when the completion carries neither. May rewrite the
    completion's finish_reason to "length" when only reasoning came back.
    """
    choice = first_choice(completion)
    if not choice or not isinstance(choice.get("message"), dict):
        logger.warning("Completion has no usable choice")
        return None

    message = choice["message"]
    content = message.get("content") or ""
    reasoning = message.get("reasoning_content") or ""
    if not content:
        if not reasoning:
            logger.warning("Completion has neither content nor reasoning")
            return None
        set_finish_reason(completion, "length")

    if character is not None:
        content = character.post_process(content)

    if not reasoning and is_reasoning:
        content, reasoning = _split_reasoning(completion, content, thinking_in_content)

    return ReplyContent(content=content.strip(), reasoning=reasoning.strip())
