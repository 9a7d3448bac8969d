"""
Core package — multi-character conversation engine.

Structure:
    engine.py          — ConversationEngine, the inbound-message entry point
    directives.py      — room command classification
    commands.py        — kick / add / clear / status handlers
    orchestrator.py    — per-turn fan-out/fan-in and post-turn side effects
    continuation.py    — resuming truncated replies
    dispatcher.py      — one character, one backend call (with fallback)
    tool_resolver.py   — bounded tool-use loop
    reply_shaper.py    — clipping, persistence and delivery of a reply
    compressor.py      — summary of long histories
    budget.py          — token heuristics and window clipping
    prompt_builder.py  — records to prompt turns
    prompt_checker.py  — prompt repairs for picky backends
    staleness.py       — can_reply guard
    menus.py           — fallback menu and voice notice

Usage:
    from core import ConversationEngine
"""

from core.engine import ConversationEngine

__all__ = [
    "ConversationEngine",
]
