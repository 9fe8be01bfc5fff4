"""Best-effort Telegram / Gotify notifications for peer transitions."""

from __future__ import annotations

import json
import logging
from http.client import HTTPException
from typing import List, Protocol, Sequence
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from wg_guardian.config import Config

LOGGER = logging.getLogger("wg_guardian.notifier")

TELEGRAM_API = "https://api.telegram.org"
TELEGRAM_PREFIX = "\U0001F409 Wireguard: "
GOTIFY_PRIORITY = 5
SEND_TIMEOUT_S = 10


class Channel(Protocol):
    name: str

    def send(self, message: str) -> None:
        ...


def format_message(display_name: str, kind: str, remote_address: str) -> str:
    return f"{display_name} is {kind} from ip address {remote_address}"


def markdown_v2_code(text: str) -> str:
    """Wrap text in a MarkdownV2 inline code span."""
    escaped = text.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


class TelegramChannel:
    name = "telegram"

    def __init__(self, token: str, chat_id: str, timeout_s: float = SEND_TIMEOUT_S) -> None:
        self.token = token
        self.chat_id = chat_id
        self.timeout_s = timeout_s

    def build_request(self, message: str) -> Request:
        url = f"{TELEGRAM_API}/bot{self.token}/sendMessage"
        payload = urlencode(
            {
                "chat_id": self.chat_id,
                "text": TELEGRAM_PREFIX + markdown_v2_code(message),
                "parse_mode": "MarkdownV2",
            }
        ).encode("utf-8")
        return Request(url, data=payload, method="POST")

    def send(self, message: str) -> None:
        with urlopen(self.build_request(message), timeout=self.timeout_s):  # nosec - fixed Telegram host
            pass


class GotifyChannel:
    name = "gotify"

    def __init__(self, host: str, app_token: str, title: str, timeout_s: float = SEND_TIMEOUT_S) -> None:
        self.host = host.rstrip("/")
        self.app_token = app_token
        self.title = title
        self.timeout_s = timeout_s

    def build_request(self, message: str) -> Request:
        body = json.dumps({"message": message, "priority": GOTIFY_PRIORITY, "title": self.title}).encode("utf-8")
        return Request(
            f"{self.host}/message",
            data=body,
            method="POST",
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.app_token}",
            },
        )

    def send(self, message: str) -> None:
        with urlopen(self.build_request(message), timeout=self.timeout_s):  # nosec - operator-configured host
            pass


def channels_for(config: Config) -> List[Channel]:
    selected = config.notification_channel
    channels: List[Channel] = []
    if selected in ("telegram", "both"):
        channels.append(TelegramChannel(config.telegram.token, config.telegram.chat))
    if selected in ("gotify", "both"):
        channels.append(GotifyChannel(config.gotify.host, config.gotify.app_token, config.gotify.title))
    return channels


class Notifier:
    """Fan one message out to every enabled channel.

    Delivery is fire-and-forget: a failing channel is logged and skipped,
    never retried, and never stops the other channels.
    """

    def __init__(self, channels: Sequence[Channel]) -> None:
        self.channels = list(channels)

    def notify(self, display_name: str, kind: str, remote_address: str) -> List[str]:
        message = format_message(display_name, kind, remote_address)
        delivered: List[str] = []
        for channel in self.channels:
            try:
                channel.send(message)
            except (URLError, HTTPException, TimeoutError, OSError, ValueError) as exc:
                LOGGER.warning("%s notification failed for %s: %s", channel.name, display_name, exc)
                continue
            delivered.append(channel.name)
        return delivered
