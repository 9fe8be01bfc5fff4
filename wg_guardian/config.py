"""Typed configuration for wg-guardian.

Two on-disk layouts are understood: a nested JSON document and the
legacy flat ``key=value`` file of the wg-clients-guardian shell script.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

CHANNELS = ("none", "telegram", "gotify", "both")
CHANNEL_ALIASES = {
    "": "none",
    "telegramonly": "telegram",
    "gotifyonly": "gotify",
}

DEFAULT_INTERFACE = "wg0"
DEFAULT_STATE_DIR = Path("clients")
DEFAULT_KEYS_DIR = Path("/etc/wireguard/keys")
DEFAULT_API_TTL = 86400
DEFAULT_API_RETRY_COUNT = 3
DEFAULT_API_RETRY_SLEEP = 5
DEFAULT_REQUEST_TIMEOUT = 10.0


class ConfigError(ValueError):
    """Raised when the configuration source is missing or unusable."""


@dataclass
class TelegramConfig:
    token: str = ""
    chat: str = ""


@dataclass
class GotifyConfig:
    host: str = ""
    app_token: str = ""
    title: str = "Wireguard"


@dataclass
class DashboardConfig:
    api_url: str = ""
    api_key: str = ""
    ttl: int = DEFAULT_API_TTL
    retry_count: int = DEFAULT_API_RETRY_COUNT
    retry_sleep: int = DEFAULT_API_RETRY_SLEEP
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @property
    def enabled(self) -> bool:
        return bool(self.api_url and self.api_key)


@dataclass
class Config:
    timeout_minutes: int
    interface: str = DEFAULT_INTERFACE
    notification_channel: str = "none"
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    gotify: GotifyConfig = field(default_factory=GotifyConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    state_dir: Path = DEFAULT_STATE_DIR
    keys_dir: Path = DEFAULT_KEYS_DIR


def _int_or(value: Any, default: int, minimum: int = 0) -> int:
    try:
        return max(minimum, int(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _float_or(value: Any, default: float) -> float:
    try:
        return max(0.1, float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _channel(value: Any) -> str:
    name = _text(value).lower()
    name = CHANNEL_ALIASES.get(name, name)
    if name not in CHANNELS:
        raise ConfigError(f"unknown notification_channel: {value!r}")
    return name


def _timeout(value: Any) -> int:
    try:
        timeout = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"timeout must be an integer number of minutes, got {value!r}") from None
    if timeout < 0:
        raise ConfigError("timeout must not be negative")
    return timeout


def _section(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = payload.get(name)
    return value if isinstance(value, dict) else {}


def _from_json(payload: Dict[str, Any]) -> Config:
    telegram = _section(payload, "telegram")
    gotify = _section(payload, "gotify")
    dashboard = _section(payload, "wgdashboard")
    return Config(
        timeout_minutes=_timeout(payload.get("timeout")),
        interface=_text(payload.get("interface"), DEFAULT_INTERFACE),
        notification_channel=_channel(payload.get("notification_channel")),
        telegram=TelegramConfig(
            token=_text(telegram.get("token")),
            chat=_text(telegram.get("chat")),
        ),
        gotify=GotifyConfig(
            host=_text(gotify.get("host")).rstrip("/"),
            app_token=_text(gotify.get("app_token")),
            title=_text(gotify.get("title"), "Wireguard"),
        ),
        dashboard=DashboardConfig(
            api_url=_text(dashboard.get("api_url")).rstrip("/"),
            api_key=_text(dashboard.get("api_key")),
            ttl=_int_or(dashboard.get("api_ttl"), DEFAULT_API_TTL),
            retry_count=_int_or(dashboard.get("api_retry_count"), DEFAULT_API_RETRY_COUNT),
            retry_sleep=_int_or(dashboard.get("api_retry_sleep"), DEFAULT_API_RETRY_SLEEP),
            request_timeout=_float_or(dashboard.get("request_timeout"), DEFAULT_REQUEST_TIMEOUT),
        ),
        state_dir=Path(_text(payload.get("state_dir"), str(DEFAULT_STATE_DIR))),
        keys_dir=Path(_text(payload.get("keys_dir"), str(DEFAULT_KEYS_DIR))),
    )


def parse_flat(text: str) -> Dict[str, str]:
    """Parse ``key=value`` lines; the first occurrence of a key wins."""
    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values.setdefault(key.strip(), value.strip())
    return values


def _from_flat(values: Dict[str, str]) -> Config:
    nested = {
        "timeout": values.get("timeout"),
        "interface": values.get("interface"),
        "notification_channel": values.get("notification_channel"),
        "state_dir": values.get("state_dir"),
        "keys_dir": values.get("keys_dir"),
        "telegram": {"token": values.get("token"), "chat": values.get("chat")},
        "gotify": {
            "host": values.get("gotify_host"),
            "app_token": values.get("gotify_app_token"),
            "title": values.get("gotify_title"),
        },
        "wgdashboard": {
            "api_url": values.get("wgdashboard_api_url"),
            "api_key": values.get("wgdashboard_api_key"),
            "api_ttl": values.get("wgdashboard_api_ttl"),
            "api_retry_count": values.get("wgdashboard_api_retry_count"),
            "api_retry_sleep": values.get("wgdashboard_api_retry_sleep"),
            "request_timeout": values.get("wgdashboard_request_timeout"),
        },
    }
    return _from_json(nested)


def load_config(path: Path, *, state_dir: Optional[Path] = None, keys_dir: Optional[Path] = None) -> Config:
    if not path.is_file():
        raise ConfigError(f"config file does not exist: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"unable to read config file {path}: {exc}") from exc

    if path.suffix.lower() == ".json":
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"{path}: JSON root is not an object")
        config = _from_json(payload)
    else:
        config = _from_flat(parse_flat(text))

    if state_dir is not None:
        config.state_dir = state_dir
    if keys_dir is not None:
        config.keys_dir = keys_dir
    return config
