from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from .events import log_pair_events, log_pairing_event
from .errors import ConcurrencyConflict, InvalidOverride, MemberNotFound
from .ledger import (
    NOTE_MANUAL,
    LedgerEntry,
    active_record_for_pair,
    deactivate_for_member,
    deactivate_pair,
    fetch_active,
    fetch_history,
    record_partnership,
)
from .members import (
    MemberSnapshot,
    claim_partner,
    clear_partner,
    fetch_active_members,
    fetch_all_members,
    get_member,
    member_names,
    member_payload,
    set_inactive,
)
from .requests import expire_for_member

logger = logging.getLogger(__name__)


def _require_member(db, member_id: str) -> MemberSnapshot:
    member = get_member(db, member_id)
    if member is None:
        raise MemberNotFound(f"Member {member_id} not found")
    if not member.is_active:
        raise InvalidOverride(f"Member {member_id} is not active")
    return member


def create_manual_pair(db, id1: str, id2: str, *, now: datetime, week_number: int, year: int) -> LedgerEntry:
    """Pair two unpaired members by hand. Caller commits."""
    if id1 == id2:
        raise InvalidOverride("A member cannot be paired with themself")
    first = _require_member(db, id1)
    second = _require_member(db, id2)
    for member in (first, second):
        if member.current_partner_id is not None:
            raise InvalidOverride(
                f"Member {member.id} is already paired with {member.current_partner_id}",
                hint="Unpair the existing partnership first.",
            )

    # Compare-and-set on both pointers; a concurrent writer makes one of these miss.
    if not claim_partner(db, id1, id2) or not claim_partner(db, id2, id1):
        raise ConcurrencyConflict(f"Member {id1} or {id2} was paired by a concurrent update")

    entry = record_partnership(db, id1, id2, week_number=week_number, year=year, pair_date=now, notes=NOTE_MANUAL)
    log_pair_events(db, id1, id2, week_number, year, "paired", {"notes": NOTE_MANUAL})
    logger.info("[OVERRIDE] Manual pair %s <-> %s for week %s/%s", id1, id2, week_number, year)
    return entry


def remove_pair(db, id1: str, id2: str, *, week_number: int, year: int) -> dict[str, Any]:
    """Unpair two partners: clear both pointers and deactivate their active record. Caller commits."""
    if id1 == id2:
        raise InvalidOverride("A member cannot be unpaired from themself")
    first = get_member(db, id1)
    second = get_member(db, id2)
    if first is None or second is None:
        raise MemberNotFound(f"Member {id1 if first is None else id2} not found")
    if first.current_partner_id != id2 or second.current_partner_id != id1:
        raise InvalidOverride(f"Members {id1} and {id2} are not currently paired")

    if not clear_partner(db, id1, expected_partner_id=id2) or not clear_partner(db, id2, expected_partner_id=id1):
        raise ConcurrencyConflict(f"Pairing {id1}/{id2} changed during the unpair")

    record = active_record_for_pair(db, id1, id2)
    deactivated = deactivate_pair(db, id1, id2)
    log_pair_events(db, id1, id2, week_number, year, "unpaired", {"record_id": record.id if record else None})
    logger.info("[OVERRIDE] Unpaired %s <-> %s (records deactivated=%s)", id1, id2, deactivated)
    return {"member1_id": id1, "member2_id": id2, "deactivated_records": deactivated}


def get_current_pairs(db) -> dict[str, Any]:
    records = fetch_active(db)
    ids = sorted({r.member1_id for r in records} | {r.member2_id for r in records})
    names = member_names(db, ids)
    active_pairs = [
        {
            **r.to_dict(),
            "member1_name": names.get(r.member1_id, ""),
            "member2_name": names.get(r.member2_id, ""),
        }
        for r in records
    ]
    unpaired = [member_payload(m) for m in fetch_active_members(db) if m.current_partner_id is None]
    return {"active_pairs": active_pairs, "unpaired_members": unpaired}


def get_pairing_history(db, limit: int) -> list[dict[str, Any]]:
    return [r.to_dict() for r in fetch_history(db, max(1, int(limit)))]


def release_member(db, member_id: str, *, now: datetime, week_number: int, year: int) -> dict[str, Any]:
    """Take a departing member out of the pool and free whoever was paired with them. Caller commits."""
    member = get_member(db, member_id)
    if member is None:
        raise MemberNotFound(f"Member {member_id} not found")

    unpaired: list[str] = []
    partner_id = member.current_partner_id
    if partner_id is not None and clear_partner(db, partner_id, expected_partner_id=member_id):
        unpaired.append(partner_id)
    # Anyone else still pointing at the departing member.
    for other in fetch_all_members(db):
        if other.id != member_id and other.current_partner_id == member_id and other.id not in unpaired:
            clear_partner(db, other.id, expected_partner_id=member_id)
            unpaired.append(other.id)

    clear_partner(db, member_id)
    set_inactive(db, member_id)
    deactivated = deactivate_for_member(db, member_id)
    expired = expire_for_member(db, member_id, now=now, note="Auto-expired because the member left")

    for uid in unpaired:
        log_pairing_event(db, uid, week_number, year, "unpaired", {"reason": "partner_departed", "partner_id": member_id})
    log_pairing_event(db, member_id, week_number, year, "released", {"unpaired": unpaired, "requests_expired": expired})
    logger.info(
        "[OVERRIDE] Released member %s; partners unpaired=%s records deactivated=%s requests expired=%s",
        member_id,
        unpaired,
        deactivated,
        expired,
    )
    return {
        "member_id": member_id,
        "partners_unpaired": len(unpaired),
        "records_deactivated": deactivated,
        "requests_expired": expired,
    }


def verify_pointer_integrity(db) -> dict[str, Any]:
    members = {m.id: m for m in fetch_all_members(db)}
    report: dict[str, Any] = {"orphaned_partners": [], "inconsistent_pairs": [], "total_checked": 0, "issues_found": 0}
    seen: set[tuple[str, str]] = set()
    for member in members.values():
        if member.current_partner_id is None:
            continue
        report["total_checked"] += 1
        partner = members.get(member.current_partner_id)
        if partner is None:
            report["orphaned_partners"].append({"member_id": member.id, "orphaned_partner_id": member.current_partner_id})
            report["issues_found"] += 1
        elif partner.current_partner_id != member.id:
            key = tuple(sorted((member.id, partner.id)))
            if key in seen:
                continue
            seen.add(key)
            report["inconsistent_pairs"].append(
                {
                    "member1": {"id": member.id, "partner": member.current_partner_id},
                    "member2": {"id": partner.id, "partner": partner.current_partner_id},
                }
            )
            report["issues_found"] += 1
    return report


def fix_pointer_integrity(db, report: dict[str, Any]) -> dict[str, Any]:
    """Clear every broken pointer found by ``verify_pointer_integrity``. Caller commits."""
    out = {"orphans_fixed": 0, "inconsistencies_fixed": 0}
    for orphan in report.get("orphaned_partners", []):
        member_id = orphan["member_id"]
        clear_partner(db, member_id)
        deactivate_for_member(db, member_id)
        out["orphans_fixed"] += 1
    for pair in report.get("inconsistent_pairs", []):
        member_id = pair["member1"]["id"]
        partner_id = pair["member1"]["partner"]
        # Only the dangling side; the partner may be correctly paired with someone else.
        clear_partner(db, member_id, expected_partner_id=partner_id)
        deactivate_pair(db, member_id, partner_id)
        out["inconsistencies_fixed"] += 1
    logger.info("[OVERRIDE] Integrity fix: %s", out)
    return out
