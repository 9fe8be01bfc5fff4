"""Online/offline decisions from the last-handshake timestamp."""

from __future__ import annotations

from dataclasses import dataclass

ONLINE = "online"
OFFLINE = "offline"
STATUSES = (ONLINE, OFFLINE)

NONE = "none"
CONNECTED = "connected"
DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Transition:
    status: str
    kind: str

    @property
    def changed(self) -> bool:
        return self.kind != NONE


def elapsed_minutes(now: int, last_handshake: int) -> int:
    # clock skew can put the handshake slightly in the future
    return max(now - last_handshake, 0) // 60


def evaluate(now: int, last_handshake: int, timeout_minutes: int, prior_status: str) -> Transition:
    """Return the new status for a peer and the notification it warrants.

    A peer that never completed a handshake is offline. Otherwise it is
    online while ``elapsed_minutes <= timeout_minutes``. Only a change of
    status produces a ``connected``/``disconnected`` kind, so repeated runs
    with the same inputs stay silent.
    """
    if last_handshake == 0:
        if prior_status != OFFLINE:
            return Transition(OFFLINE, DISCONNECTED)
        return Transition(OFFLINE, NONE)

    elapsed = elapsed_minutes(now, last_handshake)
    if elapsed > timeout_minutes and prior_status == ONLINE:
        return Transition(OFFLINE, DISCONNECTED)
    if elapsed <= timeout_minutes and prior_status == OFFLINE:
        return Transition(ONLINE, CONNECTED)
    return Transition(prior_status, NONE)
