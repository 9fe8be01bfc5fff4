"""Per-peer connection status persisted as one small file per display name."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from wg_guardian.transitions import OFFLINE, STATUSES

LOGGER = logging.getLogger("wg_guardian.state")

RECORD_SUFFIX = ".txt"
_UNSAFE_CHARS = re.compile(r"[/\\\x00]")


def record_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("", name).strip()
    if cleaned in ("", ".", ".."):
        raise ValueError(f"unusable state record name: {name!r}")
    return cleaned


class StateStore:
    """Directory-backed ``name -> status`` store.

    Every record holds just the word ``online`` or ``offline``. Writes go
    through a temporary file and ``os.replace`` so a record is never left
    half written.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, name: str) -> Path:
        return self.directory / f"{record_name(name)}{RECORD_SUFFIX}"

    def get(self, name: str) -> str:
        path = self.path_for(name)
        if not path.exists():
            self._write(path, OFFLINE)
            return OFFLINE
        try:
            status = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("unable to read state for %s (%s); assuming %s", name, exc, OFFLINE)
            return OFFLINE
        if status not in STATUSES:
            LOGGER.warning("unexpected state %r for %s; assuming %s", status, name, OFFLINE)
            return OFFLINE
        return status

    def set(self, name: str, status: str) -> None:
        if status not in STATUSES:
            raise ValueError(f"invalid status: {status!r}")
        self._write(self.path_for(name), status)

    def _write(self, path: Path, status: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(status + "\n", encoding="utf-8")
        os.replace(tmp, path)
