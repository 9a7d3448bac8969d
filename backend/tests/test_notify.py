"""
Tests for the webhook notifier and the fire-and-forget send helpers.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx

from notify import MenuOption, WebhookNotifier, safe_send_menu, safe_send_text


def _notifier(handler):
    return WebhookNotifier("http://hook.test/send", transport=httpx.MockTransport(handler))


class TestWebhookNotifier:

    def test_text_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200)

        asyncio.run(_notifier(handler).send_text("room-1", "Hello!", character="kimi"))

        assert seen == [{"type": "text", "room_id": "room-1",
                         "character": "kimi", "text": "Hello!"}]

    def test_menu_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200)

        options = [MenuOption(label="Kick Kimi", command="kick kimi")]
        asyncio.run(safe_send_menu(_notifier(handler), "room-1", options, prefix="Actions:"))

        assert seen[0]["options"] == [{"label": "Kick Kimi", "command": "kick kimi"}]
        assert seen[0]["prefix"] == "Actions:"


class TestSafeSend:

    def test_http_failure_is_logged_not_raised(self, caplog):
        notifier = _notifier(lambda request: httpx.Response(503))
        assert asyncio.run(safe_send_text(notifier, "room-1", "hi")) is False
        assert "send_text to room-1 failed" in caplog.text

    def test_success(self):
        notifier = _notifier(lambda request: httpx.Response(204))
        assert asyncio.run(safe_send_text(notifier, "room-1", "hi")) is True

    def test_any_notifier_error_is_contained(self):
        notifier = MagicMock()
        notifier.send_menu = AsyncMock(side_effect=RuntimeError("channel down"))
        options = [MenuOption(label="Clear context", command="clear")]

        assert asyncio.run(safe_send_menu(notifier, "room-1", options)) is False
        notifier.send_menu.assert_awaited_once_with("room-1", options, prefix="", suffix="")
