"""
Outbound notification channel.

The engine only ever talks to a Notifier. Sends are fire-and-forget from the
engine's point of view: callers go through the ``safe_*`` helpers, which log
delivery failures and never raise into the turn.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class MenuOption:
    label: str
    # text the user "sends" when tapping the option
    command: str


class Notifier(ABC):
    """Delivers replies to the user's chat surface."""

    @abstractmethod
    async def send_text(self, room_id: str, text: str,
                        character: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def send_media(self, room_id: str, url: str, media_type: str = "image",
                         character: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def send_menu(self, room_id: str, options: list[MenuOption],
                        prefix: str = "", suffix: str = "") -> None:
        ...

    @abstractmethod
    async def send_typing(self, room_id: str) -> None:
        ...


class WebhookNotifier(Notifier):
    """Posts every outbound message as JSON to a single webhook URL."""

    def __init__(self, webhook_url: str, timeout: float = 10,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    async def _post(self, payload: dict):
        async with httpx.AsyncClient(timeout=self.timeout,
                                     transport=self._transport) as client:
            resp = await client.post(self.webhook_url, json=payload)
            resp.raise_for_status()

    async def send_text(self, room_id, text, character=None):
        await self._post({"type": "text", "room_id": room_id,
                          "character": character, "text": text})

    async def send_media(self, room_id, url, media_type="image", character=None):
        await self._post({"type": media_type, "room_id": room_id,
                          "character": character, "url": url})

    async def send_menu(self, room_id, options, prefix="", suffix=""):
        await self._post({"type": "menu", "room_id": room_id, "prefix": prefix,
                          "suffix": suffix, "options": [asdict(o) for o in options]})

    async def send_typing(self, room_id):
        await self._post({"type": "typing", "room_id": room_id})


# ── Fire-and-forget helpers ──

async def safe_send_text(notifier: Notifier, room_id: str, text: str,
                         character: Optional[str] = None) -> bool:
    try:
        await notifier.send_text(room_id, text, character=character)
        return True
    except Exception as e:
        logger.error("send_text to %s failed: %s", room_id, e)
        return False


async def safe_send_media(notifier: Notifier, room_id: str, url: str,
                          media_type: str = "image",
                          character: Optional[str] = None) -> bool:
    try:
        await notifier.send_media(room_id, url, media_type=media_type, character=character)
        return True
    except Exception as e:
        logger.error("send_media to %s failed: %s", room_id, e)
        return False


async def safe_send_menu(notifier: Notifier, room_id: str, options: list[MenuOption],
                         prefix: str = "", suffix: str = "") -> bool:
    try:
        await notifier.send_menu(room_id, options, prefix=prefix, suffix=suffix)
        return True
    except Exception as e:
        logger.error("send_menu to %s failed: %s", room_id, e)
        return False


async def safe_send_typing(notifier: Notifier, room_id: str) -> bool:
    try:
        await notifier.send_typing(room_id)
        return True
    except Exception as e:
        logger.debug("send_typing to %s failed: %s", room_id, e)
        return False
