from __future__ import annotations

import logging
import random
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ..config import (
    HISTORY_LOOKBACK_WEEKS,
    POINTER_DRAIN_SECONDS,
    RESHUFFLE_TIMEOUT_SECONDS,
    RESHUFFLE_TIMEZONE,
    RUN_LOG_SIZE,
)
from .clock import iso_week, utcnow, week_index
from .errors import PairingError, ReshuffleTimeout, StorageFailure
from .events import log_pair_events, log_pairing_event
from .history import HistoryIndex, build_history_index
from .ledger import NOTE_AUTOMATIC, deactivate_all_active, record_partnership
from .matching import STATUS_INSUFFICIENT, MatchResult, match_members
from .members import assign_partner, clear_all_partners, clear_partner, fetch_active_members
from .notifications import NotificationQueue, NotificationRequest, weekly_pairing_notice
from .scoring import ScoringConfig, default_scoring_config
from .state_machine import PairingGate

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass
class RunStats:
    run_id: str
    trigger: str
    started_at: str
    week_number: int
    year: int
    status: str = "running"
    finished_at: str | None = None
    eligible_members: int = 0
    deactivated_records: int = 0
    history_keys: int = 0
    pairs_created: int = 0
    leftover_member_id: str | None = None
    average_score: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReshuffleOutcome:
    status: str
    pairs_created: int
    leftover_member_id: str | None
    run_stats: RunStats
    pairs: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "pairs_created": self.pairs_created,
            "leftover_member_id": self.leftover_member_id,
            "pairs": self.pairs,
            "run_stats": self.run_stats.to_dict(),
        }


class _RunGuard:
    """Decides, under one lock, whether a timed-out run is abandoned or already committing."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._aborted = False
        self._committing = False

    def check(self, stage: str) -> None:
        with self._lock:
            if self._aborted:
                raise ReshuffleTimeout(f"Reshuffle aborted before {stage}")

    def enter_commit(self) -> None:
        with self._lock:
            if self._aborted:
                raise ReshuffleTimeout("Reshuffle aborted before transaction commit")
            self._committing = True

    def abort(self) -> bool:
        """Abandon the run. Returns False once the store commit has started."""
        with self._lock:
            if self._committing:
                return False
            self._aborted = True
            return True


class ReshuffleOrchestrator:
    """Full-pool weekly rematch.

    Deactivation, matching and the commit of new records and partner pointers
    happen in one transaction on a worker thread bounded by ``timeout_seconds``.
    Notifications are queued only after the commit. A run that reaches the
    store commit before the timeout is reported with whatever the commit
    produced; earlier than that it is abandoned and rolled back.
    """

    def __init__(
        self,
        session_factory,
        notifications: NotificationQueue,
        gate: PairingGate | None = None,
        cfg: ScoringConfig | None = None,
        rng: random.Random | None = None,
        lookback_weeks: int = HISTORY_LOOKBACK_WEEKS,
        tz: str = RESHUFFLE_TIMEZONE,
        timeout_seconds: float = RESHUFFLE_TIMEOUT_SECONDS,
        drain_seconds: float = POINTER_DRAIN_SECONDS,
        run_log_size: int = RUN_LOG_SIZE,
    ) -> None:
        self.session_factory = session_factory
        self.notifications = notifications
        self.gate = gate or PairingGate()
        self.cfg = cfg or default_scoring_config()
        self.rng = rng
        self.lookback_weeks = lookback_weeks
        self.tz = tz
        self.timeout_seconds = timeout_seconds
        self.drain_seconds = drain_seconds
        self._runs: deque[RunStats] = deque(maxlen=max(1, run_log_size))
        self._runs_lock = threading.Lock()

    @property
    def state(self) -> str:
        return self.gate.state

    def recent_runs(self) -> list[dict[str, Any]]:
        with self._runs_lock:
            return [r.to_dict() for r in reversed(self._runs)]

    def _record(self, stats: RunStats) -> None:
        with self._runs_lock:
            self._runs.append(stats)
        logger.info(
            "[RESHUFFLE] run_id=%s trigger=%s status=%s week=%s/%s pairs=%s leftover=%s avg_score=%s error=%s",
            stats.run_id,
            stats.trigger,
            stats.status,
            stats.week_number,
            stats.year,
            stats.pairs_created,
            stats.leftover_member_id,
            stats.average_score,
            stats.error,
        )

    def trigger_reshuffle(self, trigger: str = "admin", now: datetime | None = None) -> ReshuffleOutcome:
        now = now or utcnow()
        year, week_number = iso_week(now, self.tz)
        self.gate.begin_run(self.drain_seconds)

        stats = RunStats(
            run_id=str(uuid.uuid4()),
            trigger=trigger,
            started_at=now.isoformat(),
            week_number=week_number,
            year=year,
        )
        # The worker fills its own copy; an abandoned run's log entry never changes afterwards.
        worker_stats = replace(stats)
        guard = _RunGuard()
        box: dict[str, Any] = {}

        def _worker() -> None:
            try:
                box["outcome"] = self._execute(now, year, week_number, worker_stats, guard)
            except Exception as exc:
                self.gate.advance("fail")
                box["error"] = exc
            finally:
                self.gate.end_run()

        worker = threading.Thread(target=_worker, name=f"reshuffle-{stats.run_id[:8]}", daemon=True)
        worker.start()
        worker.join(self.timeout_seconds)

        if worker.is_alive():
            if guard.abort():
                self.gate.advance("fail")
                stats.status = STATUS_FAILED
                stats.error = f"timed out after {self.timeout_seconds}s"
                stats.finished_at = utcnow().isoformat()
                self._record(stats)
                raise ReshuffleTimeout(f"Reshuffle {stats.run_id} timed out after {self.timeout_seconds}s")
            logger.warning(
                "[RESHUFFLE] run_id=%s still inside the store commit after %ss; waiting for its result",
                stats.run_id,
                self.timeout_seconds,
            )
            worker.join()

        stats = worker_stats
        stats.finished_at = utcnow().isoformat()
        err = box.get("error")
        if err is not None:
            stats.status = STATUS_FAILED
            stats.error = str(err) or err.__class__.__name__
            self._record(stats)
            if isinstance(err, PairingError):
                raise err
            raise StorageFailure(f"Reshuffle {stats.run_id} failed: {err}") from err

        outcome: ReshuffleOutcome = box["outcome"]
        self._record(stats)
        return outcome

    def _load_history(self, now: datetime) -> HistoryIndex:
        try:
            with self.session_factory() as db:
                return build_history_index(db, now, self.lookback_weeks)
        except SQLAlchemyError:
            logger.exception("[RESHUFFLE] Could not open a session for history; continuing without it")
            return {}

    def _execute(
        self,
        now: datetime,
        year: int,
        week_number: int,
        stats: RunStats,
        guard: _RunGuard,
    ) -> ReshuffleOutcome:
        current_week = week_index(year, week_number)
        history = self._load_history(now)
        stats.history_keys = len(history)
        guard.check("matching")

        with self.session_factory() as db:
            try:
                members = fetch_active_members(db)
                stats.eligible_members = len(members)
                if len(members) < 2:
                    db.rollback()
                    stats.status = STATUS_INSUFFICIENT
                    stats.leftover_member_id = members[0].id if members else None
                    logger.info("[RESHUFFLE] Only %s eligible members; nothing to pair", len(members))
                    return ReshuffleOutcome(
                        status=STATUS_INSUFFICIENT,
                        pairs_created=0,
                        leftover_member_id=stats.leftover_member_id,
                        run_stats=stats,
                    )

                stats.deactivated_records = len(deactivate_all_active(db))
                result = match_members(members, history, current_week, now=now, cfg=self.cfg, rng=self.rng)

                guard.check("commit")
                self.gate.advance("commit")
                self._commit(db, result, now, year, week_number)
                guard.enter_commit()
                db.commit()
            except PairingError:
                db.rollback()
                raise
            except SQLAlchemyError as exc:
                db.rollback()
                raise StorageFailure(f"Reshuffle storage failure: {exc.__class__.__name__}") from exc

        stats.status = STATUS_COMPLETED
        stats.pairs_created = len(result.pairs)
        stats.leftover_member_id = result.leftover.id if result.leftover else None
        stats.average_score = result.average_score

        self.notifications.submit_all(self._notices(result, year, week_number))
        return ReshuffleOutcome(
            status=STATUS_COMPLETED,
            pairs_created=len(result.pairs),
            leftover_member_id=stats.leftover_member_id,
            run_stats=stats,
            pairs=[
                {
                    "member1_id": p.member1.id,
                    "member2_id": p.member2.id,
                    "score": round(p.score, 4),
                    "phase": p.phase,
                }
                for p in result.pairs
            ],
        )

    def _commit(self, db, result: MatchResult, now: datetime, year: int, week_number: int) -> None:
        clear_all_partners(db)
        for pair in result.pairs:
            a, b = pair.member1.id, pair.member2.id
            record_partnership(
                db,
                a,
                b,
                week_number=week_number,
                year=year,
                pair_date=now,
                notes=NOTE_AUTOMATIC,
                score=round(pair.score, 4),
            )
            assign_partner(db, a, b)
            assign_partner(db, b, a)
            log_pair_events(db, a, b, week_number, year, "paired", {"notes": NOTE_AUTOMATIC, "score": round(pair.score, 4)})
        if result.leftover is not None:
            clear_partner(db, result.leftover.id)
            log_pairing_event(db, result.leftover.id, week_number, year, "solo_week", {"reason": "odd_pool"})

    def _notices(self, result: MatchResult, year: int, week_number: int) -> list[NotificationRequest]:
        out: list[NotificationRequest] = []
        for pair in result.pairs:
            a, b = pair.member1, pair.member2
            out.append(weekly_pairing_notice(a.id, b.id, b.display_name, week_number, year))
            out.append(weekly_pairing_notice(b.id, a.id, a.display_name, week_number, year))
        return out
