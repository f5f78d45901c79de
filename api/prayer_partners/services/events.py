import json
import uuid
from typing import Any

from sqlalchemy import text


def log_pairing_event(
    db,
    member_id: str,
    week_number: int,
    year: int,
    event_type: str,
    payload: dict[str, Any] | None = None,
) -> None:
    payload = payload or {}
    db.execute(
        text(
            """
            INSERT INTO pairing_event (id, member_id, week_number, year, event_type, payload)
            VALUES (:id, :member_id, :week_number, :year, :event_type, :payload)
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "member_id": member_id,
            "week_number": week_number,
            "year": year,
            "event_type": event_type,
            "payload": json.dumps(payload),
        },
    )


def log_pair_events(
    db,
    member1_id: str,
    member2_id: str,
    week_number: int,
    year: int,
    event_type: str,
    payload: dict[str, Any] | None = None,
) -> None:
    for member_id, partner_id in [(member1_id, member2_id), (member2_id, member1_id)]:
        log_pairing_event(
            db,
            member_id=member_id,
            week_number=week_number,
            year=year,
            event_type=event_type,
            payload={"partner_id": partner_id, **(payload or {})},
        )


def fetch_recent_events(db, member_id: str, limit: int = 20) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT id, member_id, week_number, year, event_type, payload, created_at
            FROM pairing_event
            WHERE member_id = :member_id
            ORDER BY created_at DESC
            LIMIT :limit
            """
        ),
        {"member_id": member_id, "limit": limit},
    ).mappings().all()
    out = []
    for row in rows:
        item = dict(row)
        try:
            item["payload"] = json.loads(item.get("payload") or "{}")
        except json.JSONDecodeError:
            item["payload"] = {}
        out.append(item)
    return out
