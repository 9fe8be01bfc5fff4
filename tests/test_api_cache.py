from __future__ import annotations

import http.client
import json
import sys
from pathlib import Path
from urllib.error import URLError

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from wg_guardian import api_cache
from wg_guardian.api_cache import PeerDirectoryCache, directory_url
from wg_guardian.config import DashboardConfig

RESPONSE = {
    "status": True,
    "data": {
        "configurationPeers": [
            {"id": "KEY+A/1=", "name": "alice-phone", "allowed_ip": "10.6.0.2/32"},
            {"id": "KEY+B/2=", "name": "bob-laptop", "allowed_ip": "10.6.0.3/32"},
        ]
    },
}


class FakeResponse:
    def __init__(self, body: str) -> None:
        self._body = body.encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


class FakeUrlopen:
    def __init__(self, *bodies) -> None:
        self.bodies = list(bodies)
        self.requests = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        body = self.bodies.pop(0) if self.bodies else ""
        if isinstance(body, Exception):
            raise body
        return FakeResponse(body)


class Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _cache(tmp_path, clock, **overrides) -> PeerDirectoryCache:
    config = DashboardConfig(api_url="http://dash.local:10086", api_key="secret", **overrides)
    return PeerDirectoryCache(config, tmp_path / ".api_cache", "wg0", clock=clock)


def test_directory_url_and_api_key_header(tmp_path, monkeypatch) -> None:
    fake = FakeUrlopen(json.dumps(RESPONSE))
    monkeypatch.setattr(api_cache, "urlopen", fake)

    peers = _cache(tmp_path, Clock(1000)).get_peer_directory()

    assert peers == [{"id": "KEY+A/1=", "name": "alice-phone"}, {"id": "KEY+B/2=", "name": "bob-laptop"}]
    request = fake.requests[0]
    assert request.full_url == "http://dash.local:10086/api/getWireguardConfigurationInfo?configurationName=wg0"
    assert request.get_header("Wg-dashboard-apikey") == "secret"
    assert directory_url("http://x/", "wg0").startswith("http://x/api/")


def test_fresh_cache_skips_network(tmp_path, monkeypatch) -> None:
    clock = Clock(1000)
    fake = FakeUrlopen(json.dumps(RESPONSE))
    monkeypatch.setattr(api_cache, "urlopen", fake)
    cache = _cache(tmp_path, clock, ttl=600)
    first = cache.get_peer_directory()

    clock.now = 1599
    second = _cache(tmp_path, clock, ttl=600).get_peer_directory()

    assert second == first
    assert len(fake.requests) == 1


def test_expired_cache_triggers_fetch(tmp_path, monkeypatch) -> None:
    clock = Clock(1000)
    renamed = json.loads(json.dumps(RESPONSE))
    renamed["data"]["configurationPeers"][0]["name"] = "alice-tablet"
    fake = FakeUrlopen(json.dumps(RESPONSE), json.dumps(renamed))
    monkeypatch.setattr(api_cache, "urlopen", fake)
    _cache(tmp_path, clock, ttl=600).get_peer_directory()

    clock.now = 1600
    peers = _cache(tmp_path, clock, ttl=600).get_peer_directory()

    assert len(fake.requests) == 2
    assert peers[0]["name"] == "alice-tablet"
    entry = json.loads((tmp_path / ".api_cache").read_text(encoding="utf-8"))
    assert entry["fetched_at"] == 1600


def test_retries_bad_responses_then_succeeds(tmp_path, monkeypatch) -> None:
    sleeps = []
    fake = FakeUrlopen("", "not json", json.dumps({"data": {"configurationPeers": []}}), json.dumps(RESPONSE))
    monkeypatch.setattr(api_cache, "urlopen", fake)
    monkeypatch.setattr(api_cache.time_module, "sleep", sleeps.append)

    peers = _cache(tmp_path, Clock(1000), retry_count=4, retry_sleep=7).get_peer_directory()

    assert peers is not None and len(peers) == 2
    assert sleeps == [7, 7, 7]


def test_retry_exhaustion_returns_unavailable_without_cache_write(tmp_path, monkeypatch) -> None:
    sleeps = []
    fake = FakeUrlopen(URLError("refused"), URLError("refused"), URLError("refused"))
    monkeypatch.setattr(api_cache, "urlopen", fake)
    monkeypatch.setattr(api_cache.time_module, "sleep", sleeps.append)

    result = _cache(tmp_path, Clock(1000), retry_count=3, retry_sleep=5).get_peer_directory()

    assert result is None
    assert len(fake.requests) == 3
    assert sleeps == [5, 5]
    assert not (tmp_path / ".api_cache").exists()


def test_stale_entry_is_not_returned_when_refresh_fails(tmp_path, monkeypatch) -> None:
    clock = Clock(1000)
    monkeypatch.setattr(api_cache, "urlopen", FakeUrlopen(json.dumps(RESPONSE)))
    _cache(tmp_path, clock, ttl=10).get_peer_directory()

    clock.now = 2000
    monkeypatch.setattr(api_cache, "urlopen", FakeUrlopen(URLError("down")))
    monkeypatch.setattr(api_cache.time_module, "sleep", lambda *_: None)

    assert _cache(tmp_path, clock, ttl=10, retry_count=1).get_peer_directory() is None


def test_corrupt_or_foreign_cache_is_a_miss(tmp_path) -> None:
    cache = _cache(tmp_path, Clock(1000))
    (tmp_path / ".api_cache").write_text("{broken", encoding="utf-8")
    assert cache.load_cached() is None

    entry = {"fetched_at": 999, "endpoint": "http://other/api", "peers": [{"id": "a", "name": "b"}]}
    (tmp_path / ".api_cache").write_text(json.dumps(entry), encoding="utf-8")
    assert cache.load_cached() is None


def test_truncated_response_is_retried(tmp_path, monkeypatch) -> None:
    body = json.dumps({"data": {"configurationPeers": [{"id": "k", "name": "n"}]}})

    class _TruncatedResponse(FakeResponse):
        def read(self) -> bytes:
            raise http.client.IncompleteRead(b"{")

    responses = [_TruncatedResponse(""), FakeResponse(body)]
    sleeps = []
    monkeypatch.setattr(api_cache, "urlopen", lambda request, timeout=None: responses.pop(0))
    monkeypatch.setattr(api_cache.time_module, "sleep", sleeps.append)

    peers = _cache(tmp_path, Clock(1000), retry_count=3, retry_sleep=2).get_peer_directory()

    assert peers == [{"id": "k", "name": "n"}]
    assert sleeps == [2]
    assert (tmp_path / ".api_cache").exists()


def test_zero_retry_count_never_fetches(tmp_path, monkeypatch) -> None:
    fake = FakeUrlopen(json.dumps(RESPONSE))
    monkeypatch.setattr(api_cache, "urlopen", fake)

    assert _cache(tmp_path, Clock(1000), retry_count=0).get_peer_directory() is None
    assert fake.requests == []
    assert not (tmp_path / ".api_cache").exists()
