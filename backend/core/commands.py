"""
Side-effecting handlers for room commands recognized by core/directives.py.
"""

import logging

from config import MAX_CHARACTERS, MAX_TIMES_FREE, MAX_TIMES_MEMBERSHIP, ROOM_FRESH_SECONDS
from i18n import t
from models import ChatKind, ChatRecord, ConversationRoom, UserInfo, now_ms
from notify import MenuOption, safe_send_menu, safe_send_text

from core.directives import Command, CommandKind

logger = logging.getLogger(__name__)


def quota_total(user: UserInfo) -> int:
    return MAX_TIMES_MEMBERSHIP if user.subscriber else MAX_TIMES_FREE


def add_option(registry, character_id: str, lang: str) -> MenuOption:
    label = t("add_bot", lang, bot=registry.display_name(character_id))
    return MenuOption(label=label, command=label)


def kick_option(registry, character_id: str, lang: str) -> MenuOption:
    label = t("kick_bot", lang, bot=registry.display_name(character_id))
    return MenuOption(label=label, command=label)


class CommandHandler:
    """Applies a classified command to a room and tells the user."""

    def __init__(self, store, notifier, registry):
        self.store = store
        self.notifier = notifier
        self.registry = registry

    async def handle(self, command: Command, room: ConversationRoom,
                     user: UserInfo) -> bool:
        """Run a terminating command. Returns False for ``continue``,
        which the caller routes elsewhere."""
        lang = user.language
        if command.kind == CommandKind.KICK:
            await self.kick(room, command.character, lang)
        elif command.kind == CommandKind.ADD:
            await self.add(room, command.character, lang)
        elif command.kind == CommandKind.CLEAR_HISTORY:
            await self.clear(room, lang)
        elif command.kind == CommandKind.GROUP_STATUS:
            await self.status(room, user)
        elif command.kind == CommandKind.BOT_NOT_AVAILABLE:
            await self.bot_not_available(room, lang)
        else:
            return False
        return True

    async def kick(self, room: ConversationRoom, character_id: str, lang: str):
        name = self.registry.display_name(character_id)
        if character_id not in room.characters:
            await safe_send_text(self.notifier, room.room_id,
                                 t("already_left", lang, bot=name))
            return

        old_characters = list(room.characters)
        room.characters = [c for c in old_characters if c != character_id]
        room.updated_at = now_ms()
        await self.store.save_room(room)

        reserved = 4 if not room.characters else 3
        candidates = self.registry.pick_characters(reserved, exclude=tuple(old_characters))
        msg = t("kicked", lang, bot=name)
        if candidates:
            options = [add_option(self.registry, cid, lang) for cid in candidates]
            await safe_send_menu(self.notifier, room.room_id, options, prefix=msg)
        else:
            await safe_send_text(self.notifier, room.room_id, msg)
        logger.info("Room %s: kicked %s", room.room_id, character_id)

    async def add(self, room: ConversationRoom, character_id: str, lang: str):
        name = self.registry.display_name(character_id)
        if character_id in room.characters:
            if now_ms() - room.created_at < ROOM_FRESH_SECONDS * 1000:
                # the room was just created with this character in it
                await self.say_hello(room, character_id, lang)
            else:
                await safe_send_text(self.notifier, room.room_id,
                                     t("already_exist", lang, bot=name))
            return

        characters = list(room.characters)
        if len(characters) >= MAX_CHARACTERS:
            resting = [c for c in characters if self.registry.is_resting(c)]
            evicted = resting[0] if resting else characters[0]
            characters.remove(evicted)
            logger.info("Room %s full, evicting %s", room.room_id, evicted)

        room.characters = characters + [character_id]
        room.updated_at = now_ms()
        await self.store.save_room(room)
        await self.say_hello(room, character_id, lang)
        logger.info("Room %s: added %s", room.room_id, character_id)

    async def say_hello(self, room: ConversationRoom, character_id: str, lang: str):
        name = self.registry.display_name(character_id)
        await safe_send_text(self.notifier, room.room_id,
                             t("hello", lang, bot=name), character=character_id)

    async def clear(self, room: ConversationRoom, lang: str):
        stamp = now_ms()
        await self.store.add_chat(ChatRecord(
            room_id=room.room_id, kind=ChatKind.CLEAR, sort_stamp=stamp,
        ))
        await safe_send_text(self.notifier, room.room_id, t("history_cleared", lang))
        logger.info("Room %s: history cleared", room.room_id)

    async def status(self, room: ConversationRoom, user: UserInfo):
        lang = user.language
        lines = [t("status_members", lang)]
        if room.characters:
            lines.extend(self.registry.display_name(c) for c in room.characters)
        else:
            lines.append(t("status_empty", lang))
        lines.append("")
        lines.append(t("status_quota", lang, used=user.used_times, total=quota_total(user)))
        await safe_send_text(self.notifier, room.room_id, "\n".join(lines))

    async def bot_not_available(self, room: ConversationRoom, lang: str):
        candidates = self.registry.pick_characters(3, exclude=tuple(room.characters))
        msg = t("bot_not_available", lang)
        if candidates:
            options = [add_option(self.registry, cid, lang) for cid in candidates]
            await safe_send_menu(self.notifier, room.room_id, options, prefix=msg)
        else:
            await safe_send_text(self.notifier, room.room_id, msg)
