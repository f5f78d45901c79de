from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from ..models import PartnershipRecord
from .clock import as_utc
from .errors import DuplicatePartnership

NOTE_AUTOMATIC = "automatic"
NOTE_MANUAL = "manual"
NOTE_IMMEDIATE = "immediate"
NOTE_REQUESTED = "requested"


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    member1_id: str
    member2_id: str
    week_number: int
    year: int
    pair_date: datetime
    is_active: bool
    notes: str
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "member1_id": self.member1_id,
            "member2_id": self.member2_id,
            "week_number": self.week_number,
            "year": self.year,
            "pair_date": self.pair_date.isoformat() if self.pair_date else None,
            "is_active": self.is_active,
            "notes": self.notes,
            "score": self.score,
        }


def canonical_pair(member_a: str, member_b: str) -> tuple[str, str]:
    return tuple(sorted((member_a, member_b)))


def _entry(row: PartnershipRecord) -> LedgerEntry:
    return LedgerEntry(
        id=str(row.id),
        member1_id=row.member1_id,
        member2_id=row.member2_id,
        week_number=int(row.week_number),
        year=int(row.year),
        pair_date=as_utc(row.pair_date),
        is_active=bool(row.is_active),
        notes=row.notes,
        score=row.score,
    )


def insert_partnership(
    db,
    member_a: str,
    member_b: str,
    *,
    week_number: int,
    year: int,
    pair_date: datetime,
    notes: str,
    score: float | None = None,
) -> LedgerEntry:
    m1, m2 = canonical_pair(member_a, member_b)
    row = PartnershipRecord(
        id=str(uuid.uuid4()),
        member1_id=m1,
        member2_id=m2,
        week_number=week_number,
        year=year,
        pair_date=pair_date,
        is_active=True,
        notes=notes,
        score=score,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicatePartnership(
            f"Pair {m1}/{m2} is already recorded for week {week_number} of {year}",
            hint="Reactivate the existing record instead of inserting a new one.",
        ) from exc
    return _entry(row)


def find_partnership(db, member_a: str, member_b: str, *, week_number: int, year: int) -> LedgerEntry | None:
    m1, m2 = canonical_pair(member_a, member_b)
    row = db.execute(
        select(PartnershipRecord).where(
            PartnershipRecord.member1_id == m1,
            PartnershipRecord.member2_id == m2,
            PartnershipRecord.week_number == week_number,
            PartnershipRecord.year == year,
        )
    ).scalars().first()
    return _entry(row) if row is not None else None


def record_partnership(
    db,
    member_a: str,
    member_b: str,
    *,
    week_number: int,
    year: int,
    pair_date: datetime,
    notes: str,
    score: float | None = None,
) -> LedgerEntry:
    """Append a pairing for the week, reactivating the week's record when the pair already has one."""
    existing = find_partnership(db, member_a, member_b, week_number=week_number, year=year)
    if existing is None:
        return insert_partnership(
            db, member_a, member_b, week_number=week_number, year=year, pair_date=pair_date, notes=notes, score=score
        )
    db.execute(
        update(PartnershipRecord)
        .where(PartnershipRecord.id == existing.id)
        .values(is_active=True, notes=notes, score=score, pair_date=pair_date)
        .execution_options(synchronize_session=False)
    )
    return LedgerEntry(
        id=existing.id,
        member1_id=existing.member1_id,
        member2_id=existing.member2_id,
        week_number=week_number,
        year=year,
        pair_date=pair_date,
        is_active=True,
        notes=notes,
        score=score,
    )


def deactivate_all_active(db) -> list[str]:
    ids = [str(r) for r in db.execute(select(PartnershipRecord.id).where(PartnershipRecord.is_active.is_(True))).scalars().all()]
    if ids:
        db.execute(
            update(PartnershipRecord)
            .where(PartnershipRecord.id.in_(ids))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
    return ids


def deactivate_for_member(db, member_id: str) -> int:
    res = db.execute(
        update(PartnershipRecord)
        .where(
            PartnershipRecord.is_active.is_(True),
            or_(PartnershipRecord.member1_id == member_id, PartnershipRecord.member2_id == member_id),
        )
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


def active_record_for_pair(db, member_a: str, member_b: str) -> LedgerEntry | None:
    m1, m2 = canonical_pair(member_a, member_b)
    row = db.execute(
        select(PartnershipRecord)
        .where(
            PartnershipRecord.member1_id == m1,
            PartnershipRecord.member2_id == m2,
            PartnershipRecord.is_active.is_(True),
        )
        .order_by(PartnershipRecord.pair_date.desc())
    ).scalars().first()
    return _entry(row) if row is not None else None


def fetch_active(db) -> list[LedgerEntry]:
    rows = db.execute(
        select(PartnershipRecord)
        .where(PartnershipRecord.is_active.is_(True))
        .order_by(PartnershipRecord.pair_date, PartnershipRecord.member1_id, PartnershipRecord.member2_id)
    ).scalars().all()
    return [_entry(r) for r in rows]


def fetch_since(db, since: datetime) -> list[LedgerEntry]:
    rows = db.execute(
        select(PartnershipRecord).where(PartnershipRecord.pair_date >= since).order_by(PartnershipRecord.pair_date)
    ).scalars().all()
    return [_entry(r) for r in rows]


def fetch_history(db, limit: int) -> list[LedgerEntry]:
    rows = db.execute(
        select(PartnershipRecord)
        .order_by(PartnershipRecord.pair_date.desc(), PartnershipRecord.member1_id, PartnershipRecord.member2_id)
        .limit(limit)
    ).scalars().all()
    return [_entry(r) for r in rows]


def deactivate_pair(db, member_a: str, member_b: str) -> int:
    m1, m2 = canonical_pair(member_a, member_b)
    res = db.execute(
        update(PartnershipRecord)
        .where(
            PartnershipRecord.member1_id == m1,
            PartnershipRecord.member2_id == m2,
            PartnershipRecord.is_active.is_(True),
        )
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)
