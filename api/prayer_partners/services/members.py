from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select, update

from ..models import Member
from .clock import as_utc


@dataclass(frozen=True)
class MemberSnapshot:
    id: str
    joined_at: datetime
    display_name: str = ""
    current_partner_id: str | None = None
    paired_this_week: bool = False
    last_paired_with_id: str | None = None
    is_active: bool = True


def _snapshot(row: Member) -> MemberSnapshot:
    return MemberSnapshot(
        id=str(row.id),
        joined_at=as_utc(row.joined_at),
        display_name=row.display_name or "",
        current_partner_id=row.current_partner_id,
        paired_this_week=bool(row.paired_this_week),
        last_paired_with_id=row.last_paired_with_id,
        is_active=bool(row.is_active),
    )


def fetch_active_members(db) -> list[MemberSnapshot]:
    rows = db.execute(select(Member).where(Member.is_active.is_(True)).order_by(Member.joined_at, Member.id)).scalars().all()
    return [_snapshot(r) for r in rows]


def fetch_all_members(db) -> list[MemberSnapshot]:
    rows = db.execute(select(Member).order_by(Member.joined_at, Member.id)).scalars().all()
    return [_snapshot(r) for r in rows]


def get_member(db, member_id: str) -> MemberSnapshot | None:
    row = db.get(Member, member_id)
    if row is None:
        return None
    # Pointer columns change through bulk UPDATEs; never trust the identity map.
    db.refresh(row)
    return _snapshot(row)


def fetch_unpaired_members(db, exclude_id: str | None = None) -> list[MemberSnapshot]:
    """Active members without a partner, longest-waiting (oldest ``joined_at``) first."""
    stmt = (
        select(Member)
        .where(Member.is_active.is_(True), Member.current_partner_id.is_(None))
        .order_by(Member.joined_at, Member.id)
    )
    if exclude_id is not None:
        stmt = stmt.where(Member.id != exclude_id)
    return [_snapshot(r) for r in db.execute(stmt).scalars().all()]


def upsert_member(db, member_id: str, display_name: str, joined_at: datetime) -> MemberSnapshot:
    row = db.get(Member, member_id)
    if row is None:
        row = Member(
            id=member_id,
            display_name=display_name,
            joined_at=joined_at,
            is_active=True,
            paired_this_week=False,
        )
        db.add(row)
    else:
        row.display_name = display_name
        row.is_active = True
    db.flush()
    return _snapshot(row)


def set_inactive(db, member_id: str) -> None:
    db.execute(update(Member).where(Member.id == member_id).values(is_active=False))


def claim_partner(db, member_id: str, partner_id: str) -> bool:
    """Compare-and-set: point ``member_id`` at ``partner_id`` only while it has no partner."""
    res = db.execute(
        update(Member)
        .where(Member.id == member_id, Member.current_partner_id.is_(None), Member.is_active.is_(True))
        .values(current_partner_id=partner_id, last_paired_with_id=partner_id, paired_this_week=True)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0) == 1


def assign_partner(db, member_id: str, partner_id: str) -> None:
    db.execute(
        update(Member)
        .where(Member.id == member_id)
        .values(current_partner_id=partner_id, last_paired_with_id=partner_id, paired_this_week=True)
        .execution_options(synchronize_session=False)
    )


def clear_partner(db, member_id: str, expected_partner_id: str | None = None) -> bool:
    stmt = update(Member).where(Member.id == member_id)
    if expected_partner_id is not None:
        stmt = stmt.where(Member.current_partner_id == expected_partner_id)
    res = db.execute(
        stmt.values(current_partner_id=None, paired_this_week=False).execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0) == 1


def clear_all_partners(db) -> int:
    res = db.execute(
        update(Member)
        .where(Member.current_partner_id.is_not(None))
        .values(current_partner_id=None, paired_this_week=False)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


def member_names(db, member_ids: list[str]) -> dict[str, str]:
    if not member_ids:
        return {}
    rows = db.execute(select(Member.id, Member.display_name).where(Member.id.in_(member_ids))).all()
    return {str(r[0]): str(r[1] or "") for r in rows}


def member_payload(member: MemberSnapshot) -> dict[str, Any]:
    return {
        "id": member.id,
        "display_name": member.display_name,
        "joined_at": member.joined_at.isoformat() if member.joined_at else None,
        "current_partner_id": member.current_partner_id,
        "paired_this_week": member.paired_this_week,
        "last_paired_with_id": member.last_paired_with_id,
    }
