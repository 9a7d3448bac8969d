"""
Tool providers — the code that actually runs a capability.

Network providers use one short-lived httpx.AsyncClient per call. Store-backed
providers (drafts, schedule, cards) only ever read or stage rows for the
calling user. Every provider method takes ``(args, call)`` and returns a
ToolOutcome; transport failures are logged and reported as ``passed=False``.
"""

import ipaddress
import json
import logging
import os
import re
import socket
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from config import PARSE_LINK_MAX_CHARS
from i18n import t
from models import Draft, DraftKind, now_in_timezone
from settings import Settings
from tools import ToolCall, ToolKit, ToolOutcome

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

SEARCH_MAX_RESULTS = 8
SCHEDULE_LIMIT = 10


def _dumps(obj) -> str:
    return json.dumps(obj, ensure_ascii=False)


def _now(call: ToolCall) -> datetime:
    return call.now or now_in_timezone(call.user.timezone)


def _stamp(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _day_start(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def resolve_day(specific: str, now: datetime) -> Optional[datetime]:
    """Start of the day named by ``specific`` in ``now``'s timezone.

    Weekday names resolve to the next such day; today's weekday means a
    week from today.
    """
    today = _day_start(now)
    offsets = {"yesterday": -1, "today": 0, "tomorrow": 1, "day_after_tomorrow": 2}
    if specific in offsets:
        return today + timedelta(days=offsets[specific])
    if specific in WEEKDAYS:
        diff = WEEKDAYS.index(specific) - today.weekday()
        if diff <= 0:
            diff += 7
        return today + timedelta(days=diff)
    return None


# ── Web ──

class SearxngSearch:
    """web_search against a SearXNG instance's JSON API."""

    def __init__(self, base_url: str, timeout: float = 15,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def invoke(self, args, call: ToolCall) -> ToolOutcome:
        try:
            async with httpx.AsyncClient(timeout=self.timeout,
                                         transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/search",
                                         data={"q": args.q, "format": "json"})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("SearXNG search failed for %r: %s", args.q, e)
            return ToolOutcome(passed=False, user_text=t("fail_to_search", call.lang))

        results = data.get("results") or []
        if not results:
            return ToolOutcome(passed=False, user_text=t("fail_to_search", call.lang))

        lines = []
        for i, r in enumerate(results[:SEARCH_MAX_RESULTS], start=1):
            lines.append(f"{i}. [{r.get('title', '')}]({r.get('url', '')})\n"
                         f"{(r.get('content') or '')[:300]}")
        markdown = "\n\n".join(lines)
        return ToolOutcome(
            passed=True,
            model_text=markdown,
            payload={"query": args.q, "results": results[:SEARCH_MAX_RESULTS]},
        )


_DROP_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside")


def extract_page(html: str) -> tuple[str, str]:
    """Title and readable text of an HTML page."""
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    title_tag = soup.find("title")
    if title_tag:
        title = " ".join(title_tag.get_text().split())
        title_tag.decompose()

    for tag in soup(_DROP_TAGS):
        tag.decompose()

    body = soup.get_text(separator="\n", strip=True)
    body = re.sub(r"\n{2,}", "\n", body)
    return title, body.strip()


def is_url_safe(url: str) -> tuple[bool, str]:
    """Whether ``url`` may be fetched: http(s) to a public address only.

    Returns (is_safe, reason).
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False, f"Scheme '{parsed.scheme}' is not allowed, only http/https"
    hostname = parsed.hostname
    if not hostname:
        return False, "No hostname in URL"
    try:
        for _family, _, _, _, sockaddr in socket.getaddrinfo(hostname, None):
            ip = ipaddress.ip_address(sockaddr[0])
            if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved:
                return False, f"Blocked: {hostname} resolves to private/internal IP {ip}"
    except (socket.gaierror, ValueError):
        return False, f"Cannot resolve hostname: {hostname}"
    return True, ""


def clip_link_text(text: str, limit: int = PARSE_LINK_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "......"


class LinkReader:
    """parse_link: fetch a page and reduce it to title plus text."""

    def __init__(self, timeout: float = 15,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def invoke(self, args, call: ToolCall) -> ToolOutcome:
        safe, reason = is_url_safe(args.link)
        if not safe:
            logger.warning("Refusing to fetch %s: %s", args.link, reason)
            return ToolOutcome(passed=False, model_text=reason,
                               user_text=t("fail_to_parse_link", call.lang))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True,
                                         transport=self._transport) as client:
                resp = await client.get(args.link)
                resp.raise_for_status()
                html = resp.text
        except httpx.HTTPError as e:
            logger.warning("Fetching %s failed: %s", args.link, e)
            return ToolOutcome(passed=False, user_text=t("fail_to_parse_link", call.lang))

        title, body = extract_page(html)
        if not title and not body:
            return ToolOutcome(passed=False, user_text=t("fail_to_parse_link", call.lang))
        text = clip_link_text(f"# {title}\n\n{body}" if title else body)
        return ToolOutcome(passed=True, model_text=text,
                           payload={"link": args.link, "title": title})


# ── Maps ──

class AmapClient:
    """Amap (高德) web service: geocoding, POI search and directions."""

    BASE_URL = "https://restapi.amap.com"

    def __init__(self, api_key: str, base_url: str = BASE_URL, timeout: float = 10,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get(self, path: str, params: dict) -> Optional[dict]:
        query = {k: v for k, v in params.items() if v is not None}
        query["key"] = self.api_key
        try:
            async with httpx.AsyncClient(timeout=self.timeout,
                                         transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}/{path}", params=query)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Amap %s failed: %s", path, e)
            return None
        if str(data.get("status")) != "1":
            logger.warning("Amap %s returned status=%s info=%s",
                           path, data.get("status"), data.get("info"))
            return None
        return data

    def _outcome(self, data: Optional[dict], user_key: str, call: ToolCall) -> ToolOutcome:
        if data is None:
            return ToolOutcome(passed=False)
        return ToolOutcome(
            passed=True,
            user_text=t(user_key, call.lang, bot=call.bot_name),
            model_text=_dumps(data),
            payload=data,
        )

    async def regeo(self, args, call: ToolCall) -> ToolOutcome:
        data = await self._get("v3/geocode/regeo", {
            "location": f"{args.longitude},{args.latitude}",
            "extensions": "all",
        })
        return self._outcome(data, "see_map", call)

    async def geo(self, args, call: ToolCall) -> ToolOutcome:
        data = await self._get("v3/geocode/geo", {"address": args.address, "city": args.city})
        return self._outcome(data, "search_address", call)

    async def text_search(self, args, call: ToolCall) -> ToolOutcome:
        params = {"keywords": args.keywords}
        if args.region:
            params["region"] = args.region
            params["city_limit"] = "true"
        data = await self._get("v5/place/text", params)
        return self._outcome(data, "search_address", call)

    async def around_search(self, args, call: ToolCall) -> ToolOutcome:
        data = await self._get("v5/place/around", {
            "location": args.location,
            "keywords": args.keywords,
            "radius": args.radius,
            "sortrule": args.sortrule,
        })
        return self._outcome(data, "search_around", call)

    async def direction(self, args, call: ToolCall) -> ToolOutcome:
        params = {"origin": args.origin, "destination": args.destination}
        if args.direction == "transit":
            params.update({"city1": args.city, "city2": args.cityd,
                           "date": args.date, "time": args.time})
        data = await self._get(f"v5/direction/{args.direction}", params)
        return self._outcome(data, "see_direction", call)


# ── Images ──

IMAGE_SIZES = {"square": "1024x1024", "portrait": "1024x1792"}


class ImageGenerator:
    """draw_picture through an OpenAI-compatible images endpoint."""

    def __init__(self, base_url: str, api_key: str, model: str, timeout: float = 90,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def invoke(self, args, call: ToolCall) -> ToolOutcome:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"model": self.model, "prompt": args.prompt, "n": 1,
                "size": IMAGE_SIZES[args.sizeType]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout,
                                         transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/images/generations",
                                         json=body, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Image generation failed: %s", e)
            return ToolOutcome(passed=False)

        items = data.get("data") or []
        url = items[0].get("url") if items else None
        if not url:
            logger.warning("Image generation returned no url")
            return ToolOutcome(passed=False)
        return ToolOutcome(
            passed=True,
            user_text=t("draw_done", call.lang, bot=call.bot_name),
            model_text=args.prompt,
            payload={"model": self.model, "size": body["size"]},
            media_url=url,
        )


# ── Store-backed ──

class DraftStager:
    """add_note / add_todo / add_calendar: stage a draft the user must confirm."""

    def __init__(self, store):
        self.store = store

    async def _stage(self, draft: Draft) -> str:
        return await self.store.add_draft(draft)

    async def add_note(self, args, call: ToolCall) -> ToolOutcome:
        draft = Draft(user_id=call.user.user_id, room_id=call.room_id,
                      kind=DraftKind.NOTE, title=args.title or "",
                      description=args.description)
        draft_id = await self._stage(draft)
        title = f"【{args.title}】\n" if args.title else ""
        return ToolOutcome(
            passed=True, draft_id=draft_id,
            user_text=t("draft_note", call.lang, bot=call.bot_name,
                        title=title, desc=args.description),
        )

    async def add_todo(self, args, call: ToolCall) -> ToolOutcome:
        draft = Draft(user_id=call.user.user_id, room_id=call.room_id,
                      kind=DraftKind.TODO, title=args.title)
        draft_id = await self._stage(draft)
        return ToolOutcome(
            passed=True, draft_id=draft_id,
            user_text=t("draft_todo", call.lang, bot=call.bot_name, title=args.title),
        )

    async def add_calendar(self, args, call: ToolCall) -> ToolOutcome:
        when, remind = calendar_time(args, _now(call))
        draft = Draft(user_id=call.user.user_id, room_id=call.room_id,
                      kind=DraftKind.CALENDAR, title=args.title or "",
                      description=args.description,
                      when_stamp=_stamp(when) if when else None,
                      remind_minutes=remind)
        draft_id = await self._stage(draft)
        title = f"【{args.title}】\n" if args.title else ""
        when_text = when.strftime("%Y-%m-%d %H:%M") if when else ""
        return ToolOutcome(
            passed=True, draft_id=draft_id,
            user_text=t("draft_calendar", call.lang, bot=call.bot_name, title=title,
                        desc=args.description, when=when_text),
        )


def calendar_time(args, now: datetime) -> tuple[Optional[datetime], Optional[int]]:
    """Resolve add_calendar's date fields to a moment and a reminder offset.

    Precedence: date, then specificDate, then laterHour.
    """
    day = None
    if args.date:
        try:
            day = datetime.strptime(args.date, "%Y-%m-%d").replace(tzinfo=now.tzinfo)
        except ValueError:
            logger.info("Ignoring invalid calendar date %s", args.date)
    if day is None and args.specificDate:
        day = resolve_day(args.specificDate, now)

    if day is not None:
        if args.time:
            hour, minute = (int(p) for p in args.time.split(":"))
            day = day.replace(hour=min(hour, 23), minute=min(minute, 59))
            remind = int(args.earlyMinute) if args.earlyMinute else None
            return day, remind
        return day, None

    if args.time:
        hour, minute = (int(p) for p in args.time.split(":"))
        moment = _day_start(now).replace(hour=min(hour, 23), minute=min(minute, 59))
        if moment <= now:
            moment += timedelta(days=1)
        return moment, int(args.earlyMinute) if args.earlyMinute else None

    if args.laterHour:
        return now + timedelta(hours=float(args.laterHour)), 0
    return None, None


def _draft_line(draft: Draft, tz) -> str:
    parts = []
    if draft.when_stamp:
        parts.append(datetime.fromtimestamp(draft.when_stamp / 1000, tz).strftime("%Y-%m-%d %H:%M"))
    if draft.title:
        parts.append(draft.title)
    if draft.description:
        parts.append(draft.description)
    return "- " + " ".join(parts)


class ScheduleReader:
    """get_schedule: confirmed calendar entries in a time range."""

    def __init__(self, store):
        self.store = store

    async def invoke(self, args, call: ToolCall) -> ToolOutcome:
        now = _now(call)
        since, until = _stamp(now), None
        if args.hoursFromNow:
            hours = int(args.hoursFromNow)
            edge = _stamp(now + timedelta(hours=hours))
            since, until = (edge, _stamp(now)) if hours < 0 else (_stamp(now), edge)
        if args.specificDate:
            day = resolve_day(args.specificDate, now)
            if day is not None:
                since, until = _stamp(day), _stamp(day + timedelta(days=1)) - 1

        drafts = await self.store.list_drafts(
            call.user.user_id, kind=DraftKind.CALENDAR.value, status="ok",
            since=since, until=until, limit=SCHEDULE_LIMIT,
        )
        if drafts:
            text = "\n".join(_draft_line(d, now.tzinfo) for d in drafts)
        else:
            text = t("schedule_empty", call.lang)
        return ToolOutcome(passed=True, model_text=text,
                           payload={"count": len(drafts)})


class CardReader:
    """get_cards: the user's todos, finished items, recent items or events."""

    def __init__(self, store):
        self.store = store

    async def invoke(self, args, call: ToolCall) -> ToolOutcome:
        user_id = call.user.user_id
        card_type = args.cardType
        if card_type == "TODO":
            drafts = await self.store.list_drafts(user_id, kind=DraftKind.TODO.value, status="ok")
        elif card_type == "FINISHED":
            drafts = await self.store.list_drafts(user_id, status="finished")
        elif card_type == "EVENT":
            drafts = await self.store.list_drafts(user_id, kind=DraftKind.CALENDAR.value,
                                                  status="ok")
        else:
            drafts = await self.store.list_drafts(user_id, status="ok")

        tz = _now(call).tzinfo
        if drafts:
            text = "\n".join(_draft_line(d, tz) for d in drafts)
        else:
            text = t("cards_empty", call.lang)
        return ToolOutcome(passed=True, model_text=text,
                           payload={"cardType": card_type, "count": len(drafts)})


# ── Assembly ──

def build_toolkit(settings: Settings, store) -> ToolKit:
    """ToolKit with every provider the settings make available."""
    tools_cfg = settings.tools
    kit = ToolKit(
        drafts=DraftStager(store),
        schedule=ScheduleReader(store),
        cards=CardReader(store),
        link_reader=LinkReader(),
    )
    if tools_cfg.searxng_url:
        kit.search = SearxngSearch(tools_cfg.searxng_url)

    amap_key = os.environ.get(tools_cfg.amap_key_env, "") if tools_cfg.amap_key_env else ""
    if amap_key:
        kit.maps = AmapClient(amap_key)
    else:
        logger.info("Maps tools disabled: %s is not set", tools_cfg.amap_key_env)

    provider = settings.get_provider(tools_cfg.image_provider) if tools_cfg.image_provider else None
    if provider and tools_cfg.image_model:
        api_key = os.environ.get(provider.api_key_env, "") if provider.api_key_env else ""
        kit.image_generator = ImageGenerator(provider.base_url, api_key, tools_cfg.image_model)
    return kit
