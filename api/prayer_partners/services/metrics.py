from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

from ..models import Member, PartnershipRecord


def pairing_summary(db) -> dict[str, Any]:
    total_members = int(db.execute(select(func.count()).select_from(Member)).scalar() or 0)
    active_members = int(db.execute(select(func.count()).select_from(Member).where(Member.is_active.is_(True))).scalar() or 0)
    paired_members = int(
        db.execute(
            select(func.count()).select_from(Member).where(Member.is_active.is_(True), Member.current_partner_id.is_not(None))
        ).scalar()
        or 0
    )
    active_pairs = int(
        db.execute(select(func.count()).select_from(PartnershipRecord).where(PartnershipRecord.is_active.is_(True))).scalar()
        or 0
    )
    notes_rows = db.execute(
        select(PartnershipRecord.notes, func.count()).group_by(PartnershipRecord.notes)
    ).all()

    def ratio(num: int, den: int) -> float:
        if den <= 0:
            return 0.0
        return round(100.0 * num / den, 1)

    return {
        "total_members": total_members,
        "active_members": active_members,
        "paired_members": paired_members,
        "unpaired_members": max(0, active_members - paired_members),
        "active_pairs": active_pairs,
        "pairing_rate": f"{ratio(paired_members, active_members)}%",
        "records_by_source": {str(r[0]): int(r[1]) for r in notes_rows},
    }
