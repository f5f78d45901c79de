from __future__ import annotations

import logging
from datetime import datetime

from ..config import RESHUFFLE_TIMEZONE
from .clock import iso_week, utcnow
from .errors import ConcurrencyConflict
from .events import log_pair_events
from .ledger import NOTE_IMMEDIATE, LedgerEntry, record_partnership
from .members import claim_partner, fetch_unpaired_members, get_member
from .notifications import NotificationQueue, newcomer_pairing_notice, welcomer_pairing_notice
from .state_machine import PairingGate

logger = logging.getLogger(__name__)


class ImmediatePairer:
    """Pairs a newly registered member with whoever has waited longest, outside the weekly cycle.

    Fire-and-forget: ``pair_new_member`` never raises into the registration flow.
    """

    def __init__(self, session_factory, notifications: NotificationQueue, gate: PairingGate, tz: str = RESHUFFLE_TIMEZONE) -> None:
        self.session_factory = session_factory
        self.notifications = notifications
        self.gate = gate
        self.tz = tz

    def pair_new_member(self, member_id: str, now: datetime | None = None) -> LedgerEntry | None:
        try:
            with self.gate.pointer_write():
                return self._pair(member_id, now or utcnow())
        except ConcurrencyConflict:
            logger.warning("[IMMEDIATE] Reshuffle in progress; member %s waits for the next cycle", member_id)
        except Exception:
            logger.exception("[IMMEDIATE] Failed to pair new member %s", member_id)
        return None

    def _pair(self, member_id: str, now: datetime) -> LedgerEntry | None:
        year, week_number = iso_week(now, self.tz)
        with self.session_factory() as db:
            newcomer = get_member(db, member_id)
            if newcomer is None or not newcomer.is_active:
                logger.info("[IMMEDIATE] Member %s not found or inactive; skipping", member_id)
                return None
            if newcomer.current_partner_id is not None:
                logger.info("[IMMEDIATE] Member %s already paired with %s", member_id, newcomer.current_partner_id)
                return None

            candidates = fetch_unpaired_members(db, exclude_id=member_id)
            if not candidates:
                logger.info("[IMMEDIATE] No unpaired members for %s; waiting for the weekly reshuffle", member_id)
                return None

            # Longest-waiting candidate that is still free when we claim it.
            welcomer = None
            for candidate in candidates:
                if claim_partner(db, candidate.id, member_id):
                    welcomer = candidate
                    break
            if welcomer is None:
                db.rollback()
                logger.info("[IMMEDIATE] Every candidate for %s was claimed concurrently", member_id)
                return None
            if not claim_partner(db, member_id, welcomer.id):
                db.rollback()
                logger.info("[IMMEDIATE] Member %s was paired concurrently; nothing to do", member_id)
                return None

            entry = record_partnership(
                db, member_id, welcomer.id, week_number=week_number, year=year, pair_date=now, notes=NOTE_IMMEDIATE
            )
            log_pair_events(db, member_id, welcomer.id, week_number, year, "paired", {"notes": NOTE_IMMEDIATE})
            db.commit()

        logger.info("[IMMEDIATE] Paired new member %s with %s (joined %s)", member_id, welcomer.id, welcomer.joined_at)
        self.notifications.submit_all(
            [
                newcomer_pairing_notice(member_id, welcomer.id, welcomer.display_name, week_number, year),
                welcomer_pairing_notice(welcomer.id, member_id, newcomer.display_name, week_number, year),
            ]
        )
        return entry
