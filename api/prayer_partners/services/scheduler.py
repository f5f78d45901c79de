from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from .clock import utcnow
from .errors import ConcurrencyConflict, PairingError

logger = logging.getLogger(__name__)


def next_run_after(now: datetime, weekday: int, hour: int, tz: str) -> datetime:
    """Next ``weekday``/``hour`` slot in ``tz`` strictly after ``now``, returned in ``now``'s timezone."""
    zone = ZoneInfo(tz)
    local_now = now.astimezone(zone)
    days_ahead = (weekday - local_now.weekday()) % 7
    candidate = (local_now + timedelta(days=days_ahead)).replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = candidate + timedelta(days=7)
    return candidate.astimezone(now.tzinfo)


class WeeklyScheduler:
    """Background thread firing the weekly reshuffle at a fixed local day and hour."""

    def __init__(self, orchestrator, weekday: int, hour: int, tz: str, clock=utcnow) -> None:
        self.orchestrator = orchestrator
        self.weekday = weekday
        self.hour = hour
        self.tz = tz
        self.clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="weekly-reshuffle", daemon=True)
        self._thread.start()
        logger.info("[SCHEDULER] Started; next run at %s", self.next_run().isoformat())

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def next_run(self) -> datetime:
        return next_run_after(self.clock(), self.weekday, self.hour, self.tz)

    def run_once(self) -> None:
        try:
            outcome = self.orchestrator.trigger_reshuffle(trigger="scheduled")
            logger.info("[SCHEDULER] Weekly reshuffle finished: status=%s pairs=%s", outcome.status, outcome.pairs_created)
        except ConcurrencyConflict as exc:
            logger.warning("[SCHEDULER] Skipped weekly reshuffle: %s", exc)
        except PairingError as exc:
            logger.error("[SCHEDULER] Weekly reshuffle failed: %s", exc)

    def _loop(self) -> None:
        while not self._stop.is_set():
            wait_seconds = max(0.0, (self.next_run() - self.clock()).total_seconds())
            if self._stop.wait(wait_seconds):
                break
            self.run_once()
