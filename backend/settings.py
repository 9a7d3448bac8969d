"""
Settings — loads settings.yaml and provides validated configuration.

The settings file is the single source of truth for everything an operator
configures: system language and timezone, chat-completion providers, the
bot roster (one entry per backend profile), the summary backend, window
caps, tool provider endpoints, and the outbound channel.

Usage:
    from settings import get_settings
    settings = get_settings()
    print(settings.system.language)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

# ── Settings Path Resolution ──
_PROJECT_ROOT = Path(__file__).parent.parent
_DEFAULT_SETTINGS_PATH = _PROJECT_ROOT / "settings.yaml"


# ── Dataclasses ──

@dataclass
class SystemConfig:
    name: str = "Roundtable"
    language: str = "zh-Hans"
    timezone: str = "Asia/Shanghai"


@dataclass
class ProviderConfig:
    name: str = ""
    display_name: str = ""
    type: str = "openai"
    base_url: str = ""
    api_key_env: str = ""
    timeout: float = 59
    stream: bool = False
    enabled: bool = True


@dataclass
class BotConfig:
    name: str = ""
    character: str = ""
    provider: str = ""
    secondary_provider: str = ""
    model: str = ""
    abilities: list[str] = field(default_factory=lambda: ["chat"])
    alias: list[str] = field(default_factory=list)
    max_window_token_k: int = 32
    priority: int = 0
    only_one_system_role_msg: bool = False
    thinking_in_content: bool = False
    default_headers: dict = field(default_factory=dict)


@dataclass
class SummaryConfig:
    provider: str = ""
    model: str = ""
    # "" | "prefix" | "partial"
    prefix_mode: str = ""


@dataclass
class LimitsConfig:
    subscriber_window_tokens: int = 32000
    free_window_tokens: int = 16000
    stagger_min_seconds: float = 2.0
    stagger_max_seconds: float = 4.0


@dataclass
class ToolsConfig:
    searxng_url: str = "http://localhost:8888"
    amap_key_env: str = "ROUNDTABLE_AMAP_KEY"
    image_provider: str = ""
    image_model: str = ""


@dataclass
class ChannelConfig:
    webhook_url: str = ""
    timeout: float = 10


@dataclass
class Settings:
    system: SystemConfig = field(default_factory=SystemConfig)
    providers: list[ProviderConfig] = field(default_factory=list)
    bots: list[BotConfig] = field(default_factory=list)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)

    def get_provider(self, name: str) -> Optional[ProviderConfig]:
        """Look up an enabled provider by name."""
        for p in self.providers:
            if p.name == name and p.enabled:
                return p
        return None

    def provider_display_name(self, name: str) -> str:
        p = self.get_provider(name)
        if p and p.display_name:
            return p.display_name
        return name


# ── Loader ──

def _parse_dict(data: dict, cls, **overrides):
    """Build a dataclass from a dict, ignoring unknown keys."""
    import dataclasses
    field_names = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in field_names}
    filtered.update(overrides)
    return cls(**filtered)


def _load_settings_from_dict(raw: dict) -> Settings:
    """Parse a raw YAML dict into a Settings dataclass."""
    settings = Settings()

    # System
    if "system" in raw and isinstance(raw["system"], dict):
        settings.system = _parse_dict(raw["system"], SystemConfig)

    # Providers
    providers = []
    for p in raw.get("providers", []) or []:
        if isinstance(p, dict) and p.get("name"):
            providers.append(_parse_dict(p, ProviderConfig))
    settings.providers = providers

    # Bots
    bots = []
    for b in raw.get("bots", []) or []:
        if not isinstance(b, dict):
            continue
        if not b.get("character") or not b.get("provider"):
            logger.warning("Skipping bot entry without character/provider: %s",
                           b.get("name", "(unnamed)"))
            continue
        bots.append(_parse_dict(b, BotConfig))
    settings.bots = bots

    # Summary
    if "summary" in raw and isinstance(raw["summary"], dict):
        settings.summary = _parse_dict(raw["summary"], SummaryConfig)

    # Limits
    if "limits" in raw and isinstance(raw["limits"], dict):
        settings.limits = _parse_dict(raw["limits"], LimitsConfig)

    # Tools
    if "tools" in raw and isinstance(raw["tools"], dict):
        settings.tools = _parse_dict(raw["tools"], ToolsConfig)

    # Channel
    ch_raw = raw.get("channel")
    ch_raw = dict(ch_raw) if isinstance(ch_raw, dict) else {}
    ch_raw["webhook_url"] = os.environ.get(
        "ROUNDTABLE_WEBHOOK_URL", ch_raw.get("webhook_url", ""))
    settings.channel = _parse_dict(ch_raw, ChannelConfig)

    return settings


def _settings_path() -> Path:
    env_path = os.environ.get("SETTINGS_PATH")
    return Path(env_path) if env_path else _DEFAULT_SETTINGS_PATH


def _load_settings() -> Settings:
    """Load settings from YAML file. Falls back to defaults if missing."""
    settings_path = _settings_path()

    if not settings_path.exists():
        logger.info("No settings.yaml found at %s, using defaults", settings_path)
        return Settings()

    try:
        raw = yaml.safe_load(settings_path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            logger.warning("settings.yaml is not a valid YAML mapping, using defaults")
            return Settings()
        settings = _load_settings_from_dict(raw)
        logger.info("Settings loaded: system=%s, providers=%d, bots=%d",
                    settings.system.name, len(settings.providers), len(settings.bots))
        return settings
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load settings.yaml: %s, using defaults", e)
        return Settings()


# ── Singleton ──

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the settings singleton. Loads on first call."""
    global _settings
    if _settings is None:
        _settings = _load_settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload of the settings from disk."""
    global _settings
    _settings = _load_settings()
    return _settings
