import threading
import time
from contextlib import contextmanager

from .errors import ConcurrencyConflict

IDLE = "idle"
RUNNING = "running"
COMMITTING = "committing"
FAILED = "failed"


def transition_run_state(current: str, action: str) -> str:
    if action == "start":
        if current == IDLE:
            return RUNNING
        return current

    if action == "commit":
        if current == RUNNING:
            return COMMITTING
        return current

    if action == "fail":
        if current in {RUNNING, COMMITTING}:
            return FAILED
        return current

    if action == "finish":
        if current in {RUNNING, COMMITTING, FAILED}:
            return IDLE
        return current

    if action == "reset":
        return IDLE

    return current


class PairingGate:
    """Single-flight guard for reshuffles, shared with pointer writers.

    A reshuffle owns the gate exclusively; manual pairs, unpairs and immediate
    pairings hold a shared slot and are rejected while a reshuffle runs.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._state = IDLE
        self._writers = 0

    @property
    def state(self) -> str:
        with self._cond:
            return self._state

    @property
    def is_running(self) -> bool:
        with self._cond:
            return self._state != IDLE

    def begin_run(self, drain_timeout: float) -> None:
        with self._cond:
            if self._state != IDLE:
                raise ConcurrencyConflict("reshuffle already in progress")
            self._state = transition_run_state(self._state, "start")
            deadline = time.monotonic() + drain_timeout
            while self._writers > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._state = transition_run_state(self._state, "reset")
                    raise ConcurrencyConflict("pairing updates still in flight; reshuffle not started")
                self._cond.wait(remaining)

    def advance(self, action: str) -> str:
        with self._cond:
            self._state = transition_run_state(self._state, action)
            return self._state

    def end_run(self) -> None:
        with self._cond:
            self._state = transition_run_state(self._state, "finish")
            self._cond.notify_all()

    @contextmanager
    def pointer_write(self):
        with self._cond:
            if self._state != IDLE:
                raise ConcurrencyConflict("reshuffle already in progress")
            self._writers += 1
        try:
            yield
        finally:
            with self._cond:
                self._writers -= 1
                self._cond.notify_all()
