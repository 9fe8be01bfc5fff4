"""Display names for peers."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Protocol

from wg_guardian.api_cache import PeerDirectory

LOGGER = logging.getLogger("wg_guardian.identity")

KEY_FILE_SUFFIX = "_pub"
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_INVALID_NAME_CHARS = re.compile(r"[/\\\x00]")


class DirectorySource(Protocol):
    def get_peer_directory(self) -> Optional[PeerDirectory]:
        ...


def sanitize_key(public_key: str) -> str:
    return _NON_ALNUM.sub("", public_key)


def key_file_name(path: Path, root: Path) -> str:
    name = path.relative_to(root).as_posix()
    if name.endswith(KEY_FILE_SUFFIX):
        name = name[: -len(KEY_FILE_SUFFIX)]
    return _INVALID_NAME_CHARS.sub("", name)


class KeyStore:
    """Directory of ``<name>_pub`` files as written by PiVPN."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    @property
    def available(self) -> bool:
        return self.directory.is_dir()

    def _candidates(self) -> List[Path]:
        files = sorted(p for p in self.directory.rglob("*") if p.is_file())
        # *_pub files first, then anything else that happens to contain the key
        return sorted(files, key=lambda p: not p.name.endswith(KEY_FILE_SUFFIX))

    def lookup(self, public_key: str) -> Optional[str]:
        for path in self._candidates():
            try:
                content = path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                LOGGER.debug("skipping unreadable key file %s: %s", path, exc)
                continue
            if public_key in content:
                name = key_file_name(path, self.directory)
                if name:
                    return name
        return None


class IdentityResolver:
    """Resolve ``public_key -> display name``; never raises.

    The key store is authoritative whenever its directory exists. The
    directory API is consulted only without a key store, and at most once
    per resolver instance.
    """

    def __init__(self, key_store: KeyStore, directory: Optional[DirectorySource] = None) -> None:
        self.key_store = key_store
        self.directory = directory
        self._peers: Optional[PeerDirectory] = None
        self._directory_loaded = False

    def _peer_directory(self) -> Optional[PeerDirectory]:
        if self._directory_loaded or self.directory is None:
            return self._peers
        self._directory_loaded = True
        try:
            self._peers = self.directory.get_peer_directory()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("peer directory lookup raised: %s", exc)
            self._peers = None
        if self._peers is None:
            LOGGER.warning("peer directory unavailable; falling back to public keys")
        return self._peers

    def _from_key_store(self, public_key: str) -> Optional[str]:
        try:
            return self.key_store.lookup(public_key)
        except OSError as exc:
            LOGGER.warning("key store lookup failed: %s", exc)
            return None

    def _from_directory(self, public_key: str) -> Optional[str]:
        for entry in self._peer_directory() or []:
            if entry.get("id") == public_key:
                name = _INVALID_NAME_CHARS.sub("", str(entry.get("name") or "")).strip()
                return name or None
        return None

    def resolve(self, public_key: str) -> str:
        if self.key_store.available:
            name = self._from_key_store(public_key)
        else:
            name = self._from_directory(public_key)
        return name or sanitize_key(public_key)
