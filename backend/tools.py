"""
Tool capabilities — the fixed set of functions a character may call.

Each tool has a pydantic argument model, a provider that executes it, and a
follow-up mode that tells the resolver what happens after it ran:

  - CONTINUE: the result is folded back into the prompt and the backend is
    called again (search, link parsing, maps, schedule and card listings)
  - DRAFT: a note/todo/calendar draft is staged and a confirmation is sent
  - MEDIA: an image is generated and sent directly

Argument validation never raises out of ``ToolKit.invoke``; it becomes a
failed ToolOutcome whose text is shown to the model.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from i18n import t
from models import ToolResult, UserInfo

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    WEB_SEARCH = "web_search"
    PARSE_LINK = "parse_link"
    DRAW_PICTURE = "draw_picture"
    ADD_NOTE = "add_note"
    ADD_TODO = "add_todo"
    ADD_CALENDAR = "add_calendar"
    GET_SCHEDULE = "get_schedule"
    GET_CARDS = "get_cards"
    MAPS_REGEO = "maps_regeo"
    MAPS_GEO = "maps_geo"
    MAPS_TEXT_SEARCH = "maps_text_search"
    MAPS_AROUND_SEARCH = "maps_around_search"
    MAPS_DIRECTION = "maps_direction"


class FollowUp(Enum):
    CONTINUE = "continue"
    DRAFT = "draft"
    MEDIA = "media"


# ── Argument models ──

SpecificDay = Literal[
    "today", "tomorrow", "day_after_tomorrow",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
]


class WebSearchArgs(BaseModel):
    q: str = Field(min_length=1, description="搜索关键词")


class ParseLinkArgs(BaseModel):
    link: str = Field(pattern=r"^https?://", description="要解析的链接，http 开头")


class DrawPictureArgs(BaseModel):
    prompt: str = Field(
        min_length=1,
        description="Description field using English, which indicates what the image "
                    "you want to draw looks like. The more detailed, the better.",
    )
    sizeType: Literal["square", "portrait"] = Field(
        default="square",
        description='"square" for a square image, "portrait" for a vertical one.',
    )


class AddNoteArgs(BaseModel):
    title: Optional[str] = Field(default=None, description="笔记标题")
    description: str = Field(min_length=1, description="笔记内文")

    @model_validator(mode="before")
    @classmethod
    def _title_as_description(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("description") and data.get("title"):
            data = dict(data)
            data["description"] = data.pop("title")
        return data


class AddTodoArgs(BaseModel):
    title: str = Field(min_length=1, description="待办事项标题")


class AddCalendarArgs(BaseModel):
    title: Optional[str] = Field(default=None, description="标题")
    description: str = Field(min_length=1, description="描述（内容）")
    date: Optional[str] = Field(
        default=None, pattern=r"^\d{4}-\d{2}-\d{2}$",
        description="日期，格式为 YYYY-MM-DD。与 specificDate 互斥。",
    )
    specificDate: Optional[SpecificDay] = Field(
        default=None, description="特定日期: 今天、明天、后天或周几。与 date 互斥。",
    )
    time: Optional[str] = Field(
        default=None, pattern=r"^\d{2}:\d{2}$", description="时间，格式为 hh:mm",
    )
    earlyMinute: Optional[Literal["0", "10", "15", "30", "60", "120", "1440"]] = Field(
        default=None, description="提前多少分钟提醒。0 表示准时提醒，1440 表示提前一天。",
    )
    laterHour: Optional[Literal["0.5", "1", "2", "3", "12", "24"]] = Field(
        default=None,
        description="从现在起多少小时后发生。与 date, time, earlyMinute 互斥。",
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("description") and data.get("title"):
            data["description"] = data.pop("title")
        if data.get("specificDate") == "dayAfterTomorrow":
            data["specificDate"] = "day_after_tomorrow"
        for key in ("earlyMinute", "laterHour"):
            if isinstance(data.get(key), (int, float)):
                data[key] = f"{data[key]:g}"
        return data


class GetScheduleArgs(BaseModel):
    hoursFromNow: Optional[Literal["-24", "24", "48"]] = Field(
        default=None,
        description="获取最近几个小时内的日程，正数表示未来，负数表示过去。",
    )
    specificDate: Optional[Literal["yesterday", "today", "tomorrow", "day_after_tomorrow",
                                   "monday", "tuesday", "wednesday", "thursday",
                                   "friday", "saturday", "sunday"]] = Field(
        default=None,
        description="获取昨天、今天、明天、后天或某个周几的日程。与 hoursFromNow 互斥。",
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("specificDate") == "dayAfterTomorrow":
            data["specificDate"] = "day_after_tomorrow"
        if isinstance(data.get("hoursFromNow"), (int, float)):
            data["hoursFromNow"] = f"{data['hoursFromNow']:g}"
        return data


class GetCardsArgs(BaseModel):
    cardType: Literal["TODO", "FINISHED", "ADD_RECENTLY", "EVENT"] = Field(
        description="TODO: 待办；FINISHED: 已完成；ADD_RECENTLY: 最近添加；EVENT: 最近添加的带时间事件。",
    )


class MapsRegeoArgs(BaseModel):
    latitude: float = Field(description="纬度")
    longitude: float = Field(description="经度")


class MapsGeoArgs(BaseModel):
    address: str = Field(min_length=3, description="结构化地址，例如：北京市朝阳区阜通东大街6号")
    city: Optional[str] = Field(default=None, description="指定查询的城市")


class MapsTextSearchArgs(BaseModel):
    keywords: str = Field(min_length=2, description="地点关键词")
    region: Optional[str] = Field(default=None, description="搜索区划，城市名或 adcode")


class MapsAroundSearchArgs(BaseModel):
    location: str = Field(description="中心点坐标，格式为 经度,纬度")
    keywords: Optional[str] = Field(default=None, description="地点关键词")
    radius: Optional[int] = Field(default=None, ge=0, le=50000, description="搜索半径，单位米")
    sortrule: Optional[Literal["distance", "weight"]] = Field(default=None, description="排序规则")


class MapsDirectionArgs(BaseModel):
    direction: Literal["driving", "walking", "bicycling", "electrobike", "transit"] = Field(
        description="出行方式",
    )
    origin: str = Field(description="起点坐标，格式为 经度,纬度")
    destination: str = Field(description="终点坐标，格式为 经度,纬度")
    city: Optional[str] = Field(default=None, description="起点所在城市（公交必填）")
    cityd: Optional[str] = Field(default=None, description="终点所在城市（公交必填）")
    date: Optional[str] = Field(default=None, description="出发日期，公交可选")
    time: Optional[str] = Field(default=None, description="出发时间，公交可选")


# ── Invocation ──

@dataclass
class ToolCall:
    """Who is calling a tool, and for whom."""
    user: UserInfo
    room_id: str
    character: str
    bot_name: str
    now: Optional[datetime] = None

    @property
    def lang(self) -> str:
        return self.user.language


@dataclass
class ToolOutcome:
    passed: bool
    user_text: Optional[str] = None
    model_text: Optional[str] = None
    payload: Optional[dict] = None
    draft_id: Optional[str] = None
    media_url: Optional[str] = None

    def to_result(self) -> ToolResult:
        return ToolResult(passed=self.passed, user_text=self.user_text,
                          model_text=self.model_text, payload=self.payload)


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: type
    # attribute on ToolKit holding the provider, and the provider method
    provider: str
    method: str
    follow_up: FollowUp
    # "privacy" | "working" | None
    log_category: Optional[str] = None


TOOL_SPECS: dict[ToolName, ToolSpec] = {spec.name: spec for spec in (
    ToolSpec(ToolName.WEB_SEARCH, "搜索网页。给定一段关键词，返回一系列与之相关的网页和背景信息。",
             WebSearchArgs, "search", "invoke", FollowUp.CONTINUE),
    ToolSpec(ToolName.PARSE_LINK, "解析链接。给定一个 http 链接，返回它的标题、摘要、内文......",
             ParseLinkArgs, "link_reader", "invoke", FollowUp.CONTINUE),
    ToolSpec(ToolName.DRAW_PICTURE, "Drawing. Given a delicate prompt, return an image drawn from it.",
             DrawPictureArgs, "image_generator", "invoke", FollowUp.MEDIA, "working"),
    ToolSpec(ToolName.ADD_NOTE, "添加笔记，其中必须包含内文，以及可选的标题。",
             AddNoteArgs, "drafts", "add_note", FollowUp.DRAFT),
    ToolSpec(ToolName.ADD_TODO, "添加待办",
             AddTodoArgs, "drafts", "add_todo", FollowUp.DRAFT),
    ToolSpec(ToolName.ADD_CALENDAR, "添加: 提醒事项 / 日程 / 事件 / 任务",
             AddCalendarArgs, "drafts", "add_calendar", FollowUp.DRAFT),
    ToolSpec(ToolName.GET_SCHEDULE, "获取最近的日程。可以不指定参数，那么会直接返回未来 10 条日程。",
             GetScheduleArgs, "schedule", "invoke", FollowUp.CONTINUE, "privacy"),
    ToolSpec(ToolName.GET_CARDS, "获取待办、已完成或最近添加的事项（卡片）",
             GetCardsArgs, "cards", "invoke", FollowUp.CONTINUE, "privacy"),
    ToolSpec(ToolName.MAPS_REGEO, "逆地理编码：将经纬度转换为详细地址",
             MapsRegeoArgs, "maps", "regeo", FollowUp.CONTINUE, "working"),
    ToolSpec(ToolName.MAPS_GEO, "地理编码：将结构化地址转换为经纬度",
             MapsGeoArgs, "maps", "geo", FollowUp.CONTINUE, "working"),
    ToolSpec(ToolName.MAPS_TEXT_SEARCH, "关键词搜索地点",
             MapsTextSearchArgs, "maps", "text_search", FollowUp.CONTINUE, "working"),
    ToolSpec(ToolName.MAPS_AROUND_SEARCH, "周边搜索：搜索某个坐标附近的地点",
             MapsAroundSearchArgs, "maps", "around_search", FollowUp.CONTINUE, "working"),
    ToolSpec(ToolName.MAPS_DIRECTION, "路线规划：驾车、步行、骑行、电动车或公交",
             MapsDirectionArgs, "maps", "direction", FollowUp.CONTINUE, "working"),
)}

_missing = set(ToolName) - set(TOOL_SPECS)
if _missing:
    raise RuntimeError(f"Tool table is missing: {sorted(n.value for n in _missing)}")

KNOWN_TOOLS = frozenset(name.value for name in ToolName)


def tool_schemas() -> list[dict]:
    """OpenAI ``tools`` array for every capability."""
    schemas = []
    for spec in TOOL_SPECS.values():
        parameters = spec.args_model.model_json_schema()
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        schemas.append({
            "type": "function",
            "function": {
                "name": spec.name.value,
                "description": spec.description,
                "parameters": parameters,
            },
        })
    return schemas


def parse_arguments(raw) -> dict:
    """Tool-call arguments arrive as a JSON string; tolerate dicts and junk."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Unparseable tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _validation_summary(name: str, error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        problems.append(f"{loc}: {err.get('msg')}")
    return f"Invalid arguments for {name}: " + "; ".join(problems)


@dataclass
class ToolKit:
    """Providers backing each capability. A missing provider means the tool
    is not configured and returns a failed outcome."""
    search: Any = None
    link_reader: Any = None
    image_generator: Any = None
    drafts: Any = None
    schedule: Any = None
    cards: Any = None
    maps: Any = None

    def spec(self, name: str) -> Optional[ToolSpec]:
        try:
            return TOOL_SPECS[ToolName(name)]
        except ValueError:
            return None

    async def invoke(self, name: str, raw_args, call: ToolCall) -> ToolOutcome:
        spec = self.spec(name)
        if spec is None:
            logger.warning("Unknown tool requested: %s", name)
            return ToolOutcome(passed=False, model_text=f"Unknown tool: {name}")

        try:
            args = spec.args_model.model_validate(parse_arguments(raw_args))
        except ValidationError as e:
            summary = _validation_summary(name, e)
            logger.info("Tool %s rejected arguments: %s", name, summary)
            return ToolOutcome(passed=False, model_text=summary)

        provider = getattr(self, spec.provider, None)
        if provider is None:
            logger.warning("Tool %s has no configured provider", name)
            return ToolOutcome(passed=False, model_text=f"{name} is not available")

        outcome = await getattr(provider, spec.method)(args, call)
        logger.info("Tool %s for %s passed=%s", name, call.character, outcome.passed)
        return outcome


def log_text(spec: ToolSpec, call: ToolCall) -> str:
    """User-visible trace line for the fallback menu."""
    lang = call.lang
    if spec.name == ToolName.GET_SCHEDULE:
        return t("log_privacy", lang, bot=call.bot_name, what=t("what_schedule", lang))
    if spec.name == ToolName.GET_CARDS:
        return t("log_privacy", lang, bot=call.bot_name, what=t("what_cards", lang))
    if spec.name == ToolName.DRAW_PICTURE:
        return t("log_working", lang, bot=call.bot_name, what=t("what_draw", lang))
    return t("log_working", lang, bot=call.bot_name, what=t("what_maps", lang))
