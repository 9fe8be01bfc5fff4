"""Peer table source backed by ``wg show <interface> dump``."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import List

LOGGER = logging.getLogger("wg_guardian.driver")

WG_BINARY = "wg"
NO_ENDPOINT = "(none)"


class DriverError(RuntimeError):
    """The peer table could not be obtained."""


@dataclass(frozen=True)
class Peer:
    public_key: str
    endpoint: str
    last_handshake: int

    @property
    def remote_address(self) -> str:
        return endpoint_host(self.endpoint)


def endpoint_host(endpoint: str) -> str:
    """Drop the port from ``ip:port`` / ``[ipv6]:port``."""
    if not endpoint or endpoint == NO_ENDPOINT:
        return NO_ENDPOINT
    host, sep, port = endpoint.rpartition(":")
    if not sep or not port.isdigit():
        host = endpoint
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host


def require_wg() -> str:
    path = shutil.which(WG_BINARY)
    if path is None:
        raise DriverError("wireguard is required: 'wg' was not found on PATH")
    return path


def read_dump(interface: str) -> str:
    result = subprocess.run(
        [require_wg(), "show", interface, "dump"],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit {result.returncode}"
        raise DriverError(f"wg show {interface} dump failed: {detail}")
    return result.stdout


def parse_dump(text: str) -> List[Peer]:
    # first line describes the interface itself
    lines = [line for line in text.splitlines()[1:] if line.strip()]
    peers: List[Peer] = []
    for line in lines:
        fields = line.split("\t")
        if len(fields) < 5:
            LOGGER.warning("skipping malformed dump line: %r", line)
            continue
        try:
            last_handshake = int(fields[4])
        except ValueError:
            LOGGER.warning("skipping dump line with invalid handshake value: %r", fields[4])
            continue
        peers.append(Peer(public_key=fields[0], endpoint=fields[2], last_handshake=last_handshake))
    return peers


def load_peers(interface: str) -> List[Peer]:
    peers = parse_dump(read_dump(interface))
    if not peers:
        raise DriverError(f"no wireguard clients on {interface}")
    return peers
