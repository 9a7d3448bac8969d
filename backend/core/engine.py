"""
ConversationEngine — the single entry point for an inbound user message.

Usage:
    engine = ConversationEngine(store, notifier, router, registry, tools, settings)
    replied = await engine.handle_message(room_id, user_id, entry)

The engine owns room and user bootstrap, room commands, quota, and the
latest history window. Everything that talks to a backend happens in the
orchestrator and the continuation controller.
"""

import logging
import random
from typing import Optional

from config import (
    IMAGE_FRESH_SECONDS,
    INDEX_TO_PRESERVE_IMAGES,
    LATEST_CHATS_LIMIT,
    MAX_CHARACTERS,
    MAX_IMAGES_AS_PARTS,
)
from i18n import t
from models import ChatKind, ChatRecord, ConversationRoom, UserInfo, now_ms
from notify import safe_send_menu, safe_send_text
from store import StoreError

from core.commands import CommandHandler, add_option, quota_total
from core.context import EngineDeps, RunContext
from core.continuation import ContinuationController
from core.directives import CommandKind, classify
from core.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def images_to_text(chats: list[ChatRecord], lang: str = None,
                   now: Optional[int] = None) -> list[ChatRecord]:
    """Turn old or surplus images in a newest-first window into text records.

    An image stays an image only while it is among the newest
    MAX_IMAGES_AS_PARTS images, within INDEX_TO_PRESERVE_IMAGES of the
    newest record, and less than a day old.
    """
    now = now or now_ms()
    seen = 0
    for i, record in enumerate(chats):
        if not record.image:
            continue
        seen += 1
        stale = now - record.created_at > IMAGE_FRESH_SECONDS * 1000
        if seen > MAX_IMAGES_AS_PARTS or i > INDEX_TO_PRESERVE_IMAGES or stale:
            recognition = record.image.recognition
            if recognition:
                record.text = t("image_recognition", lang, text=recognition)
            else:
                record.text = record.text or t("image_placeholder", lang)
            record.image = None
    return chats


class ConversationEngine:
    """Handles one inbound message end to end."""

    def __init__(self, store, notifier, router, registry, tools, settings,
                 tts=None, rng: Optional[random.Random] = None,
                 orchestrator: Optional[Orchestrator] = None,
                 continuation: Optional[ContinuationController] = None):
        self.deps = EngineDeps(
            store=store, notifier=notifier, router=router, registry=registry,
            tools=tools, settings=settings, tts=tts, rng=rng or random.Random(),
        )
        self.commands = CommandHandler(store, notifier, registry)
        self.orchestrator = orchestrator or Orchestrator(self.deps)
        self.continuation = continuation or ContinuationController(
            self.deps, self.orchestrator.dispatcher)

    @property
    def store(self):
        return self.deps.store

    @property
    def notifier(self):
        return self.deps.notifier

    @property
    def registry(self):
        return self.deps.registry

    # ── Bootstrap ──

    async def load_user(self, user_id: str) -> UserInfo:
        user = await self.store.get_user(user_id)
        if user is None:
            system = self.deps.settings.system
            user = UserInfo(user_id=user_id, language=system.language,
                            timezone=system.timezone)
            await self.store.save_user(user)
            logger.info("Created user %s", user_id)
        return user

    async def load_room(self, room_id: str, user_id: str) -> ConversationRoom:
        room = await self.store.get_room(room_id)
        if room is None:
            characters = self.registry.pick_characters(MAX_CHARACTERS, rng=self.deps.rng)
            room = ConversationRoom(room_id=room_id, owner_id=user_id, characters=characters)
            await self.store.save_room(room)
            logger.info("Created room %s with %s", room_id, ", ".join(characters) or "nobody")
        return room

    def available_profiles(self) -> list:
        return [p for profiles in self.registry.roster().values() for p in profiles]

    # ── Entry ──

    async def handle_message(self, room_id: str, user_id: str, entry: ChatRecord) -> bool:
        """Process one inbound message. Returns True if anything replied."""
        user = await self.load_user(user_id)
        room = await self.load_room(room_id, user_id)
        lang = user.language

        command = classify(entry.text, self.available_profiles(), room.characters)
        if command and command.kind != CommandKind.CONTINUE:
            logger.info("Room %s: command %s", room_id, command.kind.value)
            return await self.commands.handle(command, room, user)

        if user.used_times >= quota_total(user):
            logger.info("User %s has no quota left", user_id)
            await safe_send_text(self.notifier, room_id, t("quota_exhausted", lang))
            return False

        if not room.characters:
            await self.nobody_here(room, lang)
            return False

        if command and command.kind == CommandKind.CONTINUE:
            ctx = RunContext(room=room, user=user, entry=entry, continue_mode=True)
            return await self.continuation.run(ctx, command.character)

        entry.room_id = room_id
        entry.kind = ChatKind.USER
        try:
            await self.store.add_chat(entry)
        except StoreError as e:
            logger.error("Persisting message in room %s failed: %s", room_id, e)
            return False

        chats = await self.store.latest_chats(room_id, LATEST_CHATS_LIMIT)
        chats = images_to_text(chats, lang)
        ctx = RunContext(room=room, user=user, entry=entry, chats=chats)
        return await self.orchestrator.run(ctx)

    async def nobody_here(self, room: ConversationRoom, lang: str = None):
        candidates = self.registry.pick_characters(3, rng=self.deps.rng)
        msg = t("nobody_here", lang)
        if not candidates:
            await safe_send_text(self.notifier, room.room_id, msg)
            return
        options = [add_option(self.registry, cid, lang) for cid in candidates]
        await safe_send_menu(self.notifier, room.room_id, options,
                             prefix=msg + "\n\n" + t("operation_title", lang))
