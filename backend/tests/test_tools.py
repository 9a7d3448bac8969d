"""
Tests for tool argument validation, the ToolKit and the tool providers.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

import tools_providers
from models import Draft, DraftKind, UserInfo
from tools import (
    AddCalendarArgs,
    AddTodoArgs,
    GetCardsArgs,
    GetScheduleArgs,
    MapsGeoArgs,
    MapsRegeoArgs,
    ParseLinkArgs,
    TOOL_SPECS,
    ToolCall,
    ToolKit,
    ToolName,
    ToolOutcome,
    WebSearchArgs,
    parse_arguments,
    tool_schemas,
)
from tools_providers import (
    AmapClient,
    CardReader,
    DraftStager,
    LinkReader,
    ScheduleReader,
    SearxngSearch,
    calendar_time,
    clip_link_text,
    extract_page,
    is_url_safe,
    resolve_day,
)

# A Saturday
NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def public_dns(monkeypatch):
    monkeypatch.setattr(tools_providers.socket, "getaddrinfo",
                        lambda host, port: [(2, 1, 6, "", ("93.184.216.34", 0))])


def _call(user_id="user-1"):
    user = UserInfo(user_id=user_id, language="en", timezone="UTC")
    return ToolCall(user=user, room_id="room-1", character="kimi", bot_name="Kimi", now=NOW)


class _Recorder:
    def __init__(self):
        self.args = None

    async def invoke(self, args, call):
        self.args = args
        return ToolOutcome(passed=True, model_text="ok")


class TestToolKit:

    def test_schemas_cover_every_tool(self):
        schemas = tool_schemas()
        names = {s["function"]["name"] for s in schemas}
        assert names == {n.value for n in ToolName}
        search = next(s for s in schemas if s["function"]["name"] == "web_search")
        assert search["function"]["parameters"]["required"] == ["q"]

    def test_every_tool_has_a_provider_slot(self):
        kit = ToolKit()
        for name in ToolName:
            spec = TOOL_SPECS[name]
            assert kit.spec(name.value) is spec
            assert hasattr(kit, spec.provider)

    def test_invalid_arguments_become_failed_outcome(self):
        kit = ToolKit(search=_Recorder())
        outcome = asyncio.run(kit.invoke("web_search", '{"q": ""}', _call()))
        assert outcome.passed is False
        assert outcome.model_text.startswith("Invalid arguments for web_search")
        assert kit.search.args is None

    def test_valid_arguments_reach_provider(self):
        kit = ToolKit(search=_Recorder())
        outcome = asyncio.run(kit.invoke("web_search", '{"q": "weather"}', _call()))
        assert outcome.passed is True
        assert kit.search.args.q == "weather"

    def test_unknown_tool(self):
        outcome = asyncio.run(ToolKit().invoke("launch_rocket", "{}", _call()))
        assert outcome.passed is False
        assert "Unknown tool" in outcome.model_text

    def test_missing_provider(self):
        outcome = asyncio.run(ToolKit().invoke("web_search", '{"q": "x"}', _call()))
        assert outcome.passed is False
        assert outcome.model_text == "web_search is not available"

    def test_parse_arguments_tolerates_junk(self):
        assert parse_arguments('{"a": 1}') == {"a": 1}
        assert parse_arguments({"a": 1}) == {"a": 1}
        assert parse_arguments("not json") == {}
        assert parse_arguments("[1, 2]") == {}
        assert parse_arguments(None) == {}


class TestArgumentModels:

    def test_calendar_title_becomes_description(self):
        args = AddCalendarArgs.model_validate({"title": "dentist"})
        assert args.description == "dentist"

    def test_calendar_numbers_are_normalized(self):
        args = AddCalendarArgs.model_validate(
            {"description": "x", "earlyMinute": 10, "laterHour": 0.5,
             "specificDate": "dayAfterTomorrow"})
        assert (args.earlyMinute, args.laterHour) == ("10", "0.5")
        assert args.specificDate == "day_after_tomorrow"


class TestCalendarTime:

    def test_resolve_relative_days(self):
        assert resolve_day("tomorrow", NOW).day == 2
        assert resolve_day("yesterday", NOW).day == 28
        assert resolve_day("monday", NOW).day == 3
        # same weekday means next week
        assert resolve_day("saturday", NOW).day == 8
        assert resolve_day("someday", NOW) is None

    def test_specific_day_with_time(self):
        args = AddCalendarArgs(description="x", specificDate="tomorrow", time="09:00",
                               earlyMinute="10")
        when, remind = calendar_time(args, NOW)
        assert when == datetime(2025, 3, 2, 9, 0, tzinfo=timezone.utc)
        assert remind == 10

    def test_explicit_date_wins(self):
        args = AddCalendarArgs(description="x", date="2025-04-01", specificDate="tomorrow")
        when, remind = calendar_time(args, NOW)
        assert when.date().isoformat() == "2025-04-01"
        assert remind is None

    def test_past_time_rolls_to_tomorrow(self):
        when, _ = calendar_time(AddCalendarArgs(description="x", time="08:00"), NOW)
        assert when == datetime(2025, 3, 2, 8, 0, tzinfo=timezone.utc)

    def test_later_hours(self):
        when, remind = calendar_time(AddCalendarArgs(description="x", laterHour="2"), NOW)
        assert when == datetime(2025, 3, 1, 11, 30, tzinfo=timezone.utc)
        assert remind == 0

    def test_no_time_information(self):
        assert calendar_time(AddCalendarArgs(description="x"), NOW) == (None, None)


class TestNetworkProviders:

    def test_searxng_results_as_markdown(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/search"
            return httpx.Response(200, json={"results": [
                {"title": "Forecast", "url": "http://w.test/1", "content": "Sunny"},
            ]})

        search = SearxngSearch("http://searx.test", transport=httpx.MockTransport(handler))
        outcome = asyncio.run(search.invoke(WebSearchArgs(q="weather"), _call()))
        assert outcome.passed is True
        assert outcome.model_text == "1. [Forecast](http://w.test/1)\nSunny"

    def test_searxng_no_results(self):
        search = SearxngSearch("http://searx.test", transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"results": []})))
        outcome = asyncio.run(search.invoke(WebSearchArgs(q="weather"), _call()))
        assert outcome.passed is False
        assert outcome.user_text == "Search failed"

    def test_link_reader(self, public_dns):
        html = ("<html><head><title> Hello  Page </title><style>p{}</style></head>"
                "<body><p>First</p><script>evil()</script><p>Second</p></body></html>")
        reader = LinkReader(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text=html)))
        outcome = asyncio.run(reader.invoke(ParseLinkArgs(link="http://page.test/a"), _call()))
        assert outcome.passed is True
        assert outcome.model_text.startswith("# Hello Page")
        assert "evil" not in outcome.model_text
        assert "Second" in outcome.model_text

    def test_link_reader_http_error(self, public_dns):
        reader = LinkReader(transport=httpx.MockTransport(
            lambda request: httpx.Response(404, text="gone")))
        outcome = asyncio.run(reader.invoke(ParseLinkArgs(link="http://page.test/a"), _call()))
        assert outcome.passed is False

    def test_link_reader_refuses_loopback(self):
        fetched = []
        reader = LinkReader(transport=httpx.MockTransport(
            lambda request: fetched.append(request) or httpx.Response(200, text="secret")))

        outcome = asyncio.run(reader.invoke(ParseLinkArgs(link="http://127.0.0.1/admin"),
                                            _call()))

        assert outcome.passed is False
        assert "private/internal" in outcome.model_text
        assert outcome.user_text == "Failed to parse the link"
        assert fetched == []

    def test_link_reader_refuses_private_dns(self, monkeypatch):
        monkeypatch.setattr(tools_providers.socket, "getaddrinfo",
                            lambda host, port: [(2, 1, 6, "", ("10.0.0.8", 0))])
        reader = LinkReader(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text="intranet")))
        outcome = asyncio.run(reader.invoke(ParseLinkArgs(link="http://wiki.corp/"), _call()))
        assert outcome.passed is False
        assert "10.0.0.8" in outcome.model_text

    def test_url_safety(self, public_dns):
        assert is_url_safe("https://example.test/page") == (True, "")
        assert is_url_safe("ftp://example.test/")[0] is False
        assert is_url_safe("http:///nohost")[0] is False

    def test_extract_and_clip(self):
        assert extract_page("<p>only text</p>") == ("", "only text")
        assert clip_link_text("abcdef", limit=3) == "abc......"
        assert clip_link_text("abc", limit=3) == "abc"

    def test_extract_decodes_entities(self):
        title, body = extract_page("<title>A &amp; B</title><body><p>x &lt; y</p></body>")
        assert title == "A & B"
        assert body == "x < y"

    def test_extract_tolerates_broken_markup(self):
        title, body = extract_page(
            "<title>Broken</title><div><p>one<p>two &amp; three</div></span><b>bold")
        assert title == "Broken"
        assert body.split("\n") == ["one", "two & three", "bold"]

    def test_amap_geo(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"status": "1", "geocodes": [{"location": "1,2"}]})

        amap = AmapClient("amap-key", base_url="http://amap.test",
                          transport=httpx.MockTransport(handler))
        outcome = asyncio.run(amap.geo(MapsGeoArgs(address="北京市朝阳区"), _call()))
        assert outcome.passed is True
        assert outcome.user_text == "Kimi searched the address"
        assert seen["path"] == "/v3/geocode/geo"
        assert seen["params"] == {"address": "北京市朝阳区", "key": "amap-key"}

    def test_amap_error_status(self):
        amap = AmapClient("amap-key", base_url="http://amap.test", transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": "0", "info": "INVALID_KEY"})))
        outcome = asyncio.run(amap.regeo(MapsRegeoArgs(latitude=31.2, longitude=121.5), _call()))
        assert outcome.passed is False


class TestStoreProviders:

    def test_draft_is_staged_waiting(self, store):
        outcome = asyncio.run(DraftStager(store).add_todo(AddTodoArgs(title="buy milk"), _call()))
        assert outcome.passed is True
        assert outcome.draft_id
        assert "buy milk" in outcome.user_text
        drafts = asyncio.run(store.list_drafts("user-1", status="waiting"))
        assert [d.draft_id for d in drafts] == [outcome.draft_id]

    def test_schedule_reads_confirmed_entries(self, store):
        stamp = int(datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc).timestamp() * 1000)
        for status in ("ok", "waiting"):
            asyncio.run(store.add_draft(Draft(
                user_id="user-1", room_id="room-1", kind=DraftKind.CALENDAR,
                title=f"meeting-{status}", when_stamp=stamp, status=status)))

        outcome = asyncio.run(ScheduleReader(store).invoke(
            GetScheduleArgs(specificDate="tomorrow"), _call()))
        assert outcome.model_text == "- 2025-03-02 10:00 meeting-ok"
        assert outcome.payload == {"count": 1}

    def test_schedule_empty(self, store):
        outcome = asyncio.run(ScheduleReader(store).invoke(GetScheduleArgs(), _call()))
        assert outcome.model_text == "Nothing scheduled in that range"

    def test_cards_are_per_user(self, store):
        asyncio.run(store.add_draft(Draft(user_id="someone-else", room_id="r",
                                          kind=DraftKind.TODO, title="theirs", status="ok")))
        outcome = asyncio.run(CardReader(store).invoke(GetCardsArgs(cardType="TODO"), _call()))
        assert outcome.model_text == "No matching items"
