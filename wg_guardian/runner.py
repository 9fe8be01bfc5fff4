"""One polling pass over the WireGuard peer table."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from wg_guardian import driver
from wg_guardian.api_cache import CACHE_FILE_NAME, PeerDirectoryCache
from wg_guardian.config import Config, ConfigError, load_config
from wg_guardian.driver import DriverError, Peer
from wg_guardian.identity import IdentityResolver, KeyStore
from wg_guardian.notifier import Notifier, channels_for
from wg_guardian.state import StateStore
from wg_guardian.transitions import evaluate

LOGGER = logging.getLogger("wg_guardian")
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


@dataclass(frozen=True)
class PeerOutcome:
    display_name: str
    public_key: str
    status: str
    kind: str
    delivered: tuple = ()


def build_resolver(config: Config) -> IdentityResolver:
    directory = None
    if config.dashboard.enabled:
        directory = PeerDirectoryCache(config.dashboard, config.state_dir / CACHE_FILE_NAME, config.interface)
    return IdentityResolver(KeyStore(config.keys_dir), directory)


def process_peer(
    peer: Peer,
    *,
    now: int,
    timeout_minutes: int,
    resolver: IdentityResolver,
    store: StateStore,
    notifier: Notifier,
) -> PeerOutcome:
    name = resolver.resolve(peer.public_key)
    prior = store.get(name)
    transition = evaluate(now, peer.last_handshake, timeout_minutes, prior)

    if not transition.changed:
        LOGGER.info("The client %s is %s, no notification will be sent.", name, transition.status)
        return PeerOutcome(name, peer.public_key, transition.status, transition.kind)

    # persist before notifying; a failed notification must not lose the transition
    store.set(name, transition.status)
    LOGGER.info("The client %s is %s", name, transition.kind)
    delivered = notifier.notify(name, transition.kind, peer.remote_address)
    return PeerOutcome(name, peer.public_key, transition.status, transition.kind, tuple(delivered))


def run(
    config: Config,
    *,
    peers: Optional[Sequence[Peer]] = None,
    clock: Callable[[], float] = time.time,
    resolver: Optional[IdentityResolver] = None,
    notifier: Optional[Notifier] = None,
) -> List[PeerOutcome]:
    """Evaluate every peer once.

    Fatal problems (``DriverError``) surface before any state is written.
    Failures for an individual peer are logged and do not stop the others.
    """
    if peers is None:
        peers = driver.load_peers(config.interface)
    elif not peers:
        raise DriverError(f"no wireguard clients on {config.interface}")

    now = int(clock())
    store = StateStore(config.state_dir)
    resolver = resolver or build_resolver(config)
    notifier = notifier or Notifier(channels_for(config))

    outcomes: List[PeerOutcome] = []
    for peer in peers:
        try:
            outcomes.append(
                process_peer(
                    peer,
                    now=now,
                    timeout_minutes=config.timeout_minutes,
                    resolver=resolver,
                    store=store,
                    notifier=notifier,
                )
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("failed to process peer %s: %s", peer.public_key, exc)
    return outcomes


def configure_logging(log_file: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger("wg_guardian")
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=14,
            encoding="utf-8",
            utc=True,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    return logger


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="wg-guardian",
        description="Notify Telegram/Gotify when WireGuard clients connect or disconnect",
    )
    parser.add_argument("config", type=Path, help="Config file (.json or legacy key=value)")
    parser.add_argument("--state-dir", type=Path, help="Directory for per-client state and the API cache")
    parser.add_argument("--keys-dir", type=Path, help="PiVPN-style directory of <name>_pub key files")
    parser.add_argument("--log-file", type=Path, help="Also log to a daily-rotated file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logger = configure_logging(args.log_file, args.verbose)
    try:
        config = load_config(args.config, state_dir=args.state_dir, keys_dir=args.keys_dir)
        outcomes = run(config)
    except (ConfigError, DriverError) as exc:
        logger.error("%s", exc)
        return 1
    changed = sum(1 for outcome in outcomes if outcome.kind != "none")
    logger.info("run completed: %d peers, %d transitions", len(outcomes), changed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
