"""WGDashboard peer directory with a TTL file cache and bounded retries."""

from __future__ import annotations

import json
import logging
import os
import time as time_module
from http.client import HTTPException
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from wg_guardian.config import DashboardConfig

LOGGER = logging.getLogger("wg_guardian.api_cache")

API_PATH = "/api/getWireguardConfigurationInfo"
API_KEY_HEADER = "wg-dashboard-apikey"
CACHE_FILE_NAME = ".api_cache"

PeerDirectory = List[Dict[str, str]]


class FetchError(Exception):
    """One fetch attempt produced no usable peer directory."""


def directory_url(base_url: str, interface: str) -> str:
    query = urlencode({"configurationName": interface})
    return f"{base_url.rstrip('/')}{API_PATH}?{query}"


def extract_peers(payload: Any) -> PeerDirectory:
    """Project ``data.configurationPeers`` down to ``{id, name}`` pairs."""
    data = payload.get("data") if isinstance(payload, dict) else None
    peers = data.get("configurationPeers") if isinstance(data, dict) else None
    if not isinstance(peers, list):
        raise FetchError("response has no data.configurationPeers list")

    projected: PeerDirectory = []
    for item in peers:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        name = item.get("name")
        projected.append({"id": str(item["id"]), "name": "" if name is None else str(name)})
    if not projected:
        raise FetchError("response lists no peers")
    return projected


class PeerDirectoryCache:
    def __init__(
        self,
        config: DashboardConfig,
        cache_path: Path,
        interface: str,
        *,
        clock: Callable[[], float] = time_module.time,
    ) -> None:
        self.config = config
        self.cache_path = cache_path
        self.url = directory_url(config.api_url, interface)
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def load_cached(self) -> Optional[PeerDirectory]:
        """Return the cached payload if it is fresh and was fetched from this endpoint."""
        try:
            entry = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.warning("ignoring unreadable api cache %s: %s", self.cache_path, exc)
            return None
        if not isinstance(entry, dict) or entry.get("endpoint") != self.url:
            return None
        fetched_at = entry.get("fetched_at")
        peers = entry.get("peers")
        if not isinstance(fetched_at, int) or not isinstance(peers, list):
            return None
        if self._now() - fetched_at >= self.config.ttl:
            return None
        return [p for p in peers if isinstance(p, dict)]

    def store(self, peers: PeerDirectory) -> None:
        entry = {"fetched_at": self._now(), "endpoint": self.url, "peers": peers}
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.cache_path.with_name(self.cache_path.name + ".tmp")
        tmp.write_text(json.dumps(entry, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        os.replace(tmp, self.cache_path)

    def fetch_once(self) -> PeerDirectory:
        request = Request(self.url, headers={API_KEY_HEADER: self.config.api_key, "Accept": "application/json"})
        try:
            with urlopen(request, timeout=self.config.request_timeout) as response:  # nosec - operator-configured URL
                body = response.read().decode("utf-8")
        except (URLError, HTTPException, TimeoutError, OSError, UnicodeDecodeError) as exc:
            raise FetchError(str(exc)) from exc
        if not body.strip():
            raise FetchError("empty response")
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise FetchError(f"invalid JSON: {exc}") from exc
        return extract_peers(payload)

    def fetch(self) -> Optional[PeerDirectory]:
        attempts = self.config.retry_count
        if attempts <= 0:
            LOGGER.info("directory fetch disabled (api_retry_count=0)")
            return None
        for attempt in range(attempts):
            try:
                return self.fetch_once()
            except FetchError as exc:
                if attempt < attempts - 1:
                    LOGGER.warning(
                        "directory fetch attempt %d/%d failed (%s); retrying in %ss",
                        attempt + 1,
                        attempts,
                        exc,
                        self.config.retry_sleep,
                    )
                    time_module.sleep(self.config.retry_sleep)
                else:
                    LOGGER.warning("directory fetch attempt %d/%d failed (%s); giving up", attempt + 1, attempts, exc)
        return None

    def get_peer_directory(self) -> Optional[PeerDirectory]:
        """Fresh cached directory, else a fetched one, else ``None`` (unavailable)."""
        cached = self.load_cached()
        if cached is not None:
            LOGGER.debug("using cached peer directory from %s", self.cache_path)
            return cached
        peers = self.fetch()
        if peers is None:
            return None
        self.store(peers)
        LOGGER.info("peer directory refreshed: %d peers", len(peers))
        return peers
