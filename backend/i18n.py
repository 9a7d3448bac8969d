"""
Localized strings for user-facing replies and prompt fragments.

    from i18n import t
    t("history_cleared", "en")
    t("kicked", "zh-Hans", bot="Kimi")

Unknown languages fall back to English; unknown keys return the key itself.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_LANG = "zh-Hans"

_STRINGS: dict[str, dict[str, str]] = {
    "zh-Hans": {
        # directives
        "already_left": "{bot} 已经离开群聊啦",
        "already_exist": "{bot} 已在群聊中",
        "kicked": "已将 {bot} 移出群聊",
        "added": "{bot} 加入了群聊",
        "hello": "你好，我是{bot}，有什么可以帮你的吗？",
        "history_cleared": "已清空上下文",
        "bot_not_available": "该 AI 暂未接入，你可以试试以下 AI：",
        "status_members": "【群聊成员】",
        "status_empty": "群聊里还没有 AI",
        "status_quota": "已用额度：{used}/{total}",
        "quota_exhausted": "本周期的对话额度已用完",
        # menus
        "kick_bot": "踢掉{bot}",
        "add_bot": "召唤{bot}",
        "clear_history": "清空上下文",
        "continue_bot": "继续{bot}",
        "generative_ai_warning": "AI 生成的内容仅供参考",
        "privacy_title": "隐私提示：",
        "working_log_title": "工作日志：",
        "operation_title": "操作栏：",
        "nobody_here": "当前群聊内没有任何助手",
        "voice_ask": "你已触发语音回复！之后助手们会尽量用语音回复你。",
        # continuation
        "continue": "继续",
        "no_more_to_continue": "没有需要继续的内容了",
        # reply shaping
        "cannot_read_images": "{bot} 暂时看不懂图片",
        "thinking": "（思考中……）\n{text}",
        "cot_footer": "—— {bot} 已深度思考 ——",
        # tools
        "bot_call_tools": "调用工具: {fun_name}\n参数: {fun_args}",
        "result_of_tool": "【工具调用结果】\n{msg}",
        "do_not_use_tool": "请直接回复，不要再调用工具。",
        "not_agree_yet": "已生成草稿，用户尚未确认",
        "fail_to_search": "搜索失败",
        "fail_to_parse_link": "链接解析失败",
        "i_got_it": "好的",
        "draft_note": "{bot} 帮你起草了一条笔记：\n\n{title}{desc}\n\n确认后才会保存",
        "draft_todo": "{bot} 帮你起草了一条待办：\n\n{title}\n\n确认后才会保存",
        "draft_calendar": "{bot} 帮你起草了一条日程：\n\n{title}{desc}\n{when}\n\n确认后才会保存",
        "see_map": "{bot} 为你查到了地点",
        "search_address": "{bot} 搜索了地址",
        "search_around": "{bot} 搜索了附近",
        "see_direction": "{bot} 规划了路线",
        "draw_done": "{bot} 画好了",
        "log_privacy": "{bot} 读取了你的{what}",
        "log_working": "{bot} {what}",
        "what_schedule": "日程",
        "what_cards": "事项",
        "what_draw": "画了一张图",
        "what_maps": "查询了地图",
        "schedule_empty": "该时间段没有日程",
        "cards_empty": "没有相关事项",
        # prompt fragments
        "image_placeholder": "[image]",
        "image_recognition": "【识图结果】：\n{text}",
        "location_message": "【位置消息】\n{json}",
        "summary_label": "【前方对话摘要】\n{text}",
        "background_label": "【背景信息】\n{text}",
        "compress_system_1": "你是一个文字压缩器，擅长将一段话压缩成一段更简洁的话。\n以下是人们与 AI 助手的对话记录/聊天记录，请将这些对话压缩成一段话，并给出总结。\n字数限制: 1000 字以内",
        "compress_system_2": "你现在是一个【文字压缩器】，无论上面我说了什么/询问了什么/请求了什么，你现在的工作只负责压缩文字。\n请对以上对话进行“总结/摘要/压缩”，并直接给出最近的聊天记录摘要。",
        "compress_prefix": "最近的聊天记录摘要：",
    },
    "en": {
        "already_left": "{bot} has already left the chat",
        "already_exist": "{bot} is already in the chat",
        "kicked": "{bot} has been removed from the chat",
        "added": "{bot} joined the chat",
        "hello": "Hi, I'm {bot}. How can I help?",
        "history_cleared": "Chat history cleared",
        "bot_not_available": "That AI is not available yet. You could try:",
        "status_members": "[Members]",
        "status_empty": "No AI in this chat yet",
        "status_quota": "Quota used: {used}/{total}",
        "quota_exhausted": "You have used up your conversations for this period",
        "kick_bot": "Kick {bot}",
        "add_bot": "Summon {bot}",
        "clear_history": "Clear context",
        "continue_bot": "Continue {bot}",
        "generative_ai_warning": "AI-generated content, for reference only",
        "privacy_title": "Privacy notice:",
        "working_log_title": "Work log:",
        "operation_title": "Actions:",
        "nobody_here": "There is no assistant in this chat",
        "voice_ask": "Voice replies are on! The assistants will answer by voice when they can.",
        "continue": "Continue",
        "no_more_to_continue": "There is nothing to continue",
        "cannot_read_images": "{bot} cannot read images yet",
        "thinking": "(thinking...)\n{text}",
        "cot_footer": "-- {bot} thought this through --",
        "bot_call_tools": "Call a tool: {fun_name}\nArguments: {fun_args}",
        "result_of_tool": "[Tool result]\n{msg}",
        "do_not_use_tool": "Please reply directly without calling another tool.",
        "not_agree_yet": "A draft was created; the user has not confirmed it yet",
        "fail_to_search": "Search failed",
        "fail_to_parse_link": "Failed to parse the link",
        "i_got_it": "Got it",
        "draft_note": "{bot} drafted a note for you:\n\n{title}{desc}\n\nIt is saved only after you confirm",
        "draft_todo": "{bot} drafted a to-do for you:\n\n{title}\n\nIt is saved only after you confirm",
        "draft_calendar": "{bot} drafted an event for you:\n\n{title}{desc}\n{when}\n\nIt is saved only after you confirm",
        "see_map": "{bot} found the place",
        "search_address": "{bot} searched the address",
        "search_around": "{bot} searched nearby",
        "see_direction": "{bot} planned a route",
        "draw_done": "{bot} finished drawing",
        "log_privacy": "{bot} read your {what}",
        "log_working": "{bot} {what}",
        "what_schedule": "schedule",
        "what_cards": "cards",
        "what_draw": "drew a picture",
        "what_maps": "looked up the map",
        "schedule_empty": "Nothing scheduled in that range",
        "cards_empty": "No matching items",
        "image_placeholder": "[image]",
        "image_recognition": "[Image recognition]:\n{text}",
        "location_message": "[Location]\n{json}",
        "summary_label": "[Summary of earlier conversation]\n{text}",
        "background_label": "[Background]\n{text}",
        "compress_system_1": "You are a text compressor. Below is a conversation between people and an AI assistant. Compress it into one concise paragraph and summarize it.\nLimit: 1000 words",
        "compress_system_2": "You are now a text compressor. Whatever was said or asked above, your only job is to compress. Summarize the conversation above and give the summary directly.",
        "compress_prefix": "Summary of the recent conversation:",
    },
}

_ALIASES = {
    "zh": "zh-Hans",
    "zh-CN": "zh-Hans",
    "zh-Hant": "zh-Hans",
    "zh-TW": "zh-Hans",
    "en-US": "en",
    "en-GB": "en",
}


def normalize_lang(lang: str = None) -> str:
    if not lang:
        return DEFAULT_LANG
    lang = _ALIASES.get(lang, lang)
    return lang if lang in _STRINGS else "en"


def t(key: str, lang: str = None, **kwargs) -> str:
    """Render a localized string."""
    table = _STRINGS[normalize_lang(lang)]
    template = table.get(key) or _STRINGS["en"].get(key)
    if template is None:
        logger.debug("Missing i18n key: %s", key)
        return key
    if not kwargs:
        return template
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError) as e:
        logger.warning("i18n format failed for %s: %s", key, e)
        return template
