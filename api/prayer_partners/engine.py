from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .config import (
    HISTORY_LOOKBACK_WEEKS,
    NOTIFICATION_WORKERS,
    PAIRING_HISTORY_MAX_LIMIT,
    RESHUFFLE_HOUR,
    RESHUFFLE_TIMEOUT_SECONDS,
    RESHUFFLE_TIMEZONE,
    RESHUFFLE_WEEKDAY,
)
from .services import overrides
from .services import requests as partnership_requests
from .services.clock import iso_week, utcnow
from .services.errors import PairingError, StorageFailure
from .services.events import fetch_recent_events
from .services.immediate import ImmediatePairer
from .services.ledger import LedgerEntry
from .services.members import MemberSnapshot, member_names, upsert_member
from .services.metrics import pairing_summary
from .services.notifications import (
    NotificationDispatcher,
    NotificationQueue,
    manual_pairing_notice,
    request_accepted_notice,
    request_received_notice,
)
from .services.reshuffle import ReshuffleOrchestrator, ReshuffleOutcome
from .services.scheduler import WeeklyScheduler
from .services.scoring import ScoringConfig
from .services.state_machine import PairingGate

logger = logging.getLogger(__name__)


class PairingEngine:
    """Entry point for the admin HTTP layer, the registration hook and the scheduler."""

    def __init__(
        self,
        session_factory,
        dispatcher: NotificationDispatcher | None = None,
        notifications: NotificationQueue | None = None,
        cfg: ScoringConfig | None = None,
        rng: random.Random | None = None,
        tz: str = RESHUFFLE_TIMEZONE,
        lookback_weeks: int = HISTORY_LOOKBACK_WEEKS,
        timeout_seconds: float = RESHUFFLE_TIMEOUT_SECONDS,
    ) -> None:
        self.session_factory = session_factory
        self.tz = tz
        self.gate = PairingGate()
        self.notifications = notifications or NotificationQueue(dispatcher, workers=NOTIFICATION_WORKERS)
        self.orchestrator = ReshuffleOrchestrator(
            session_factory,
            self.notifications,
            gate=self.gate,
            cfg=cfg,
            rng=rng,
            lookback_weeks=lookback_weeks,
            tz=tz,
            timeout_seconds=timeout_seconds,
        )
        self.immediate = ImmediatePairer(session_factory, self.notifications, self.gate, tz=tz)
        self.scheduler = WeeklyScheduler(self.orchestrator, RESHUFFLE_WEEKDAY, RESHUFFLE_HOUR, tz)

    def _week(self, now: datetime) -> tuple[int, int]:
        return iso_week(now, self.tz)

    def _transaction(self, fn, *args, **kwargs):
        with self.session_factory() as db:
            try:
                out = fn(db, *args, **kwargs)
                db.commit()
                return out
            except PairingError:
                db.rollback()
                raise
            except SQLAlchemyError as exc:
                db.rollback()
                raise StorageFailure(f"Pairing store unavailable: {exc.__class__.__name__}") from exc

    def _write(self, fn, *args, **kwargs):
        with self.gate.pointer_write():
            return self._transaction(fn, *args, **kwargs)

    def _read(self, fn, *args, **kwargs):
        with self.session_factory() as db:
            try:
                return fn(db, *args, **kwargs)
            except SQLAlchemyError as exc:
                raise StorageFailure(f"Pairing store unavailable: {exc.__class__.__name__}") from exc

    def trigger_reshuffle(self, trigger: str = "admin", now: datetime | None = None) -> ReshuffleOutcome:
        return self.orchestrator.trigger_reshuffle(trigger=trigger, now=now)

    def get_current_pairs(self) -> dict[str, Any]:
        return self._read(overrides.get_current_pairs)

    def create_manual_pair(self, id1: str, id2: str, now: datetime | None = None) -> LedgerEntry:
        now = now or utcnow()
        year, week_number = self._week(now)
        entry = self._write(overrides.create_manual_pair, id1, id2, now=now, week_number=week_number, year=year)
        try:
            names = self._read(member_names, [id1, id2])
        except StorageFailure:
            logger.warning("[OVERRIDE] Could not load names for %s/%s; notifying without them", id1, id2)
            names = {}
        self.notifications.submit_all(
            [
                manual_pairing_notice(id1, id2, names.get(id2, ""), week_number, year),
                manual_pairing_notice(id2, id1, names.get(id1, ""), week_number, year),
            ]
        )
        return entry

    def remove_pair(self, id1: str, id2: str, now: datetime | None = None) -> dict[str, Any]:
        year, week_number = self._week(now or utcnow())
        return self._write(overrides.remove_pair, id1, id2, week_number=week_number, year=year)

    def get_pairing_history(self, limit: int = 50) -> list[dict[str, Any]]:
        limit = max(1, min(int(limit), PAIRING_HISTORY_MAX_LIMIT))
        return self._read(overrides.get_pairing_history, limit)

    def register_member(self, member_id: str, display_name: str, joined_at: datetime | None = None) -> MemberSnapshot:
        joined_at = joined_at or utcnow()
        with self.session_factory() as db:
            try:
                member = upsert_member(db, member_id, display_name, joined_at)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StorageFailure(f"Could not store member {member_id}") from exc
        return member

    def release_member(self, member_id: str, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        year, week_number = self._week(now)
        return self._write(overrides.release_member, member_id, now=now, week_number=week_number, year=year)

    def verify_integrity(self) -> dict[str, Any]:
        return self._read(overrides.verify_pointer_integrity)

    def fix_integrity(self) -> dict[str, Any]:
        def _fix(db):
            report = overrides.verify_pointer_integrity(db)
            return {"report": report, "fixed": overrides.fix_pointer_integrity(db, report)}

        return self._write(_fix)

    def summary(self) -> dict[str, Any]:
        out = self._read(pairing_summary)
        out["reshuffle_state"] = self.gate.state
        return out

    def member_events(self, member_id: str, limit: int = 20) -> list[dict[str, Any]]:
        return self._read(fetch_recent_events, member_id, limit)

    def _names(self, member_ids: list[str]) -> dict[str, str]:
        try:
            return self._read(member_names, member_ids)
        except StorageFailure:
            logger.warning("[REQUEST] Could not load names for %s; notifying without them", member_ids)
            return {}

    def send_partnership_request(
        self, requester_id: str, recipient_id: str, message: str = "", now: datetime | None = None
    ) -> partnership_requests.RequestEntry:
        now = now or utcnow()
        year, week_number = self._week(now)
        entry = self._transaction(
            partnership_requests.send_request,
            requester_id,
            recipient_id,
            message,
            now=now,
            week_number=week_number,
            year=year,
        )
        names = self._names([requester_id])
        self.notifications.submit(
            request_received_notice(recipient_id, entry.id, requester_id, names.get(requester_id, ""), entry.message)
        )
        return entry

    def accept_partnership_request(
        self, request_id: str, member_id: str, now: datetime | None = None
    ) -> tuple[partnership_requests.RequestEntry, LedgerEntry]:
        now = now or utcnow()
        year, week_number = self._week(now)
        entry, record = self._write(
            partnership_requests.accept_request, request_id, member_id, now=now, week_number=week_number, year=year
        )
        names = self._names([entry.recipient_id])
        self.notifications.submit(
            request_accepted_notice(entry.requester_id, entry.recipient_id, names.get(entry.recipient_id, ""), week_number, year)
        )
        return entry, record

    def decline_partnership_request(self, request_id: str, member_id: str, now: datetime | None = None) -> partnership_requests.RequestEntry:
        return self._transaction(partnership_requests.decline_request, request_id, member_id, now=now or utcnow())

    def pending_partnership_requests(self, member_id: str, now: datetime | None = None) -> list[dict[str, Any]]:
        return self._read(partnership_requests.pending_for, member_id, now=now or utcnow())

    def sent_partnership_requests(self, member_id: str) -> list[dict[str, Any]]:
        return self._read(partnership_requests.sent_by, member_id)

    def list_partnership_requests(self, status: str | None = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
        return self._read(partnership_requests.list_requests, status, page, limit)

    def partnership_request_stats(self) -> dict[str, int]:
        return self._read(partnership_requests.request_stats)

    def expire_partnership_requests(self, now: datetime | None = None) -> int:
        return self._transaction(partnership_requests.expire_stale, now=now or utcnow())

    def start(self, scheduler_enabled: bool = True) -> None:
        if scheduler_enabled:
            self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.notifications.shutdown(wait=False)
