# src/kanbot/core/health.py

"""
Process-wide connectivity state of the chat bot.

Transitions:
    STARTING  -> CONNECTED   (first heartbeat after the transport is up)
    CONNECTED -> DEGRADED    (transport timeout / error)
    DEGRADED  -> CONNECTED   (next successful heartbeat)
    any       -> STOPPED     (shutdown; terminal)

"connected" is only reported while the last heartbeat is fresher than
stale_after_seconds, so a hung loop shows up as DEGRADED without anyone
having to call mark_degraded().
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 120.0


class HealthState(StrEnum):
    STARTING = "starting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    STOPPED = "stopped"


@dataclass(slots=True, frozen=True)
class HealthSnapshot:
    state: HealthState
    connected: bool
    last_heartbeat: float | None
    error: str | None


class BotHealth:
    def __init__(self, *, stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS) -> None:
        self._lock = threading.Lock()
        self._state = HealthState.STARTING
        self._last_heartbeat: float | None = None
        self._error: str | None = None
        self.stale_after_seconds = max(1.0, float(stale_after_seconds))

    def heartbeat(self, now_ts: float | None = None) -> None:
        now_ts = time.time() if now_ts is None else now_ts
        with self._lock:
            if self._state == HealthState.STOPPED:
                logger.debug("Heartbeat ignored: health is stopped")
                return
            if self._state != HealthState.CONNECTED:
                logger.info("Bot health %s -> connected", self._state.value)
            self._state = HealthState.CONNECTED
            self._last_heartbeat = now_ts
            self._error = None

    def mark_degraded(self, reason: str) -> None:
        with self._lock:
            if self._state == HealthState.STOPPED:
                return
            if self._state != HealthState.DEGRADED:
                logger.warning("Bot health %s -> degraded: %s", self._state.value, reason)
            self._state = HealthState.DEGRADED
            self._error = reason

    def mark_stopped(self, reason: str | None = None) -> None:
        with self._lock:
            if self._state != HealthState.STOPPED:
                logger.info("Bot health %s -> stopped", self._state.value)
            self._state = HealthState.STOPPED
            self._error = reason

    def snapshot(self, now_ts: float | None = None) -> HealthSnapshot:
        now_ts = time.time() if now_ts is None else now_ts
        with self._lock:
            state = self._state
            error = self._error
            last = self._last_heartbeat

        if state == HealthState.CONNECTED and (last is None or now_ts - last > self.stale_after_seconds):
            minutes = int(self.stale_after_seconds // 60)
            return HealthSnapshot(
                state=HealthState.DEGRADED,
                connected=False,
                last_heartbeat=last,
                error=f"Bot has not responded in over {minutes} minutes",
            )

        return HealthSnapshot(
            state=state,
            connected=state == HealthState.CONNECTED,
            last_heartbeat=last,
            error=error,
        )
