from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select, update

from ..config import REQUEST_EXPIRY_DAYS, REQUEST_MESSAGE_MAX_LENGTH
from ..models import PartnershipRequest
from .clock import as_utc
from .errors import ConcurrencyConflict, InvalidRequest, MemberNotFound, RequestForbidden, RequestNotFound
from .events import log_pair_events, log_pairing_event
from .ledger import NOTE_REQUESTED, LedgerEntry, record_partnership
from .members import MemberSnapshot, claim_partner, get_member, member_names

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"
STATUS_DECLINED = "declined"
STATUS_EXPIRED = "expired"
REQUEST_STATUSES = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_DECLINED, STATUS_EXPIRED)


@dataclass(frozen=True)
class RequestEntry:
    id: str
    requester_id: str
    recipient_id: str
    message: str
    status: str
    created_at: datetime
    expires_at: datetime
    responded_at: datetime | None = None
    responded_by: str | None = None
    admin_notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "recipient_id": self.recipient_id,
            "message": self.message,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "responded_by": self.responded_by,
            "admin_notes": self.admin_notes,
        }


def _entry(row: PartnershipRequest) -> RequestEntry:
    return RequestEntry(
        id=str(row.id),
        requester_id=row.requester_id,
        recipient_id=row.recipient_id,
        message=row.message or "",
        status=row.status,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        responded_at=as_utc(row.responded_at),
        responded_by=row.responded_by,
        admin_notes=row.admin_notes,
    )


def _get(db, request_id: str) -> RequestEntry:
    row = db.get(PartnershipRequest, request_id)
    if row is None:
        raise RequestNotFound(f"Partnership request {request_id} not found")
    db.refresh(row)
    return _entry(row)


def _require_active(db, member_id: str) -> MemberSnapshot:
    member = get_member(db, member_id)
    if member is None:
        raise MemberNotFound(f"Member {member_id} not found")
    if not member.is_active:
        raise InvalidRequest(f"Member {member_id} is not active")
    return member


def _require_open(entry: RequestEntry, responder_id: str, now: datetime) -> None:
    if entry.recipient_id != responder_id:
        raise RequestForbidden("Only the recipient can respond to this request")
    if entry.status != STATUS_PENDING:
        raise InvalidRequest(f"Request {entry.id} is already {entry.status}")
    if entry.expires_at <= as_utc(now):
        raise InvalidRequest(f"Request {entry.id} has expired", hint="Send a new request.")


def _close(db, request_id: str, status: str, responder_id: str, now: datetime) -> None:
    # Only one responder may move a request out of pending.
    res = db.execute(
        update(PartnershipRequest)
        .where(PartnershipRequest.id == request_id, PartnershipRequest.status == STATUS_PENDING)
        .values(status=status, responded_at=now, responded_by=responder_id)
        .execution_options(synchronize_session=False)
    )
    if int(res.rowcount or 0) != 1:
        raise ConcurrencyConflict(f"Request {request_id} was answered by a concurrent update")


def send_request(
    db,
    requester_id: str,
    recipient_id: str,
    message: str = "",
    *,
    now: datetime,
    week_number: int,
    year: int,
    expiry_days: int = REQUEST_EXPIRY_DAYS,
) -> RequestEntry:
    """Open a pending request from one member to another. Caller commits."""
    if requester_id == recipient_id:
        raise InvalidRequest("Cannot send a prayer partner request to yourself")
    message = (message or "").strip()
    if len(message) > REQUEST_MESSAGE_MAX_LENGTH:
        raise InvalidRequest(f"Message is longer than {REQUEST_MESSAGE_MAX_LENGTH} characters")
    requester = _require_active(db, requester_id)
    _require_active(db, recipient_id)
    if requester.current_partner_id == recipient_id:
        raise InvalidRequest("These members are already prayer partners")

    existing = db.execute(
        select(PartnershipRequest.id).where(
            PartnershipRequest.status == STATUS_PENDING,
            PartnershipRequest.expires_at > now,
            or_(
                (PartnershipRequest.requester_id == requester_id) & (PartnershipRequest.recipient_id == recipient_id),
                (PartnershipRequest.requester_id == recipient_id) & (PartnershipRequest.recipient_id == requester_id),
            ),
        )
    ).first()
    if existing is not None:
        raise InvalidRequest(
            "A prayer partner request already exists between these members",
            hint="Wait for the pending request to be answered or to expire.",
        )

    row = PartnershipRequest(
        id=str(uuid.uuid4()),
        requester_id=requester_id,
        recipient_id=recipient_id,
        message=message,
        status=STATUS_PENDING,
        created_at=now,
        expires_at=now + timedelta(days=expiry_days),
    )
    db.add(row)
    db.flush()
    log_pairing_event(db, recipient_id, week_number, year, "request_received", {"request_id": row.id, "requester_id": requester_id})
    logger.info("[REQUEST] %s -> %s request=%s", requester_id, recipient_id, row.id)
    return _entry(row)


def accept_request(
    db, request_id: str, responder_id: str, *, now: datetime, week_number: int, year: int
) -> tuple[RequestEntry, LedgerEntry]:
    """Accept a pending request and pair both members for the week. Caller commits."""
    entry = _get(db, request_id)
    _require_open(entry, responder_id, now)
    requester = _require_active(db, entry.requester_id)
    recipient = _require_active(db, entry.recipient_id)
    if requester.current_partner_id is not None or recipient.current_partner_id is not None:
        raise InvalidRequest(
            "One or both members are already paired with someone else",
            hint="Unpair the existing partnership first.",
        )

    if not claim_partner(db, requester.id, recipient.id) or not claim_partner(db, recipient.id, requester.id):
        raise ConcurrencyConflict(f"Member {requester.id} or {recipient.id} was paired by a concurrent update")
    _close(db, request_id, STATUS_ACCEPTED, responder_id, now)

    record = record_partnership(
        db, requester.id, recipient.id, week_number=week_number, year=year, pair_date=now, notes=NOTE_REQUESTED
    )
    log_pair_events(db, requester.id, recipient.id, week_number, year, "paired", {"notes": NOTE_REQUESTED, "request_id": request_id})
    logger.info("[REQUEST] Accepted request=%s: %s <-> %s", request_id, requester.id, recipient.id)
    return _get(db, request_id), record


def decline_request(db, request_id: str, responder_id: str, *, now: datetime) -> RequestEntry:
    entry = _get(db, request_id)
    _require_open(entry, responder_id, now)
    _close(db, request_id, STATUS_DECLINED, responder_id, now)
    logger.info("[REQUEST] Declined request=%s by %s", request_id, responder_id)
    return _get(db, request_id)


def pending_for(db, member_id: str, *, now: datetime) -> list[dict[str, Any]]:
    """Requests still waiting on ``member_id``, newest first."""
    rows = db.execute(
        select(PartnershipRequest)
        .where(
            PartnershipRequest.recipient_id == member_id,
            PartnershipRequest.status == STATUS_PENDING,
            PartnershipRequest.expires_at > now,
        )
        .order_by(PartnershipRequest.created_at.desc(), PartnershipRequest.id)
    ).scalars().all()
    entries = [_entry(r) for r in rows]
    names = member_names(db, sorted({e.requester_id for e in entries}))
    now = as_utc(now)
    return [
        {
            **e.to_dict(),
            "requester_name": names.get(e.requester_id, ""),
            "age_in_hours": int((now - e.created_at).total_seconds() // 3600),
        }
        for e in entries
    ]


def sent_by(db, member_id: str) -> list[dict[str, Any]]:
    rows = db.execute(
        select(PartnershipRequest)
        .where(PartnershipRequest.requester_id == member_id)
        .order_by(PartnershipRequest.created_at.desc(), PartnershipRequest.id)
    ).scalars().all()
    entries = [_entry(r) for r in rows]
    names = member_names(db, sorted({e.recipient_id for e in entries}))
    return [{**e.to_dict(), "recipient_name": names.get(e.recipient_id, "")} for e in entries]


def list_requests(db, status: str | None = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
    page = max(1, int(page))
    limit = min(100, max(1, int(limit)))
    stmt = select(PartnershipRequest)
    count_stmt = select(func.count()).select_from(PartnershipRequest)
    if status and status != "all":
        if status not in REQUEST_STATUSES:
            raise InvalidRequest(f"Unknown request status {status!r}")
        stmt = stmt.where(PartnershipRequest.status == status)
        count_stmt = count_stmt.where(PartnershipRequest.status == status)
    total = int(db.execute(count_stmt).scalar() or 0)
    rows = db.execute(
        stmt.order_by(PartnershipRequest.created_at.desc(), PartnershipRequest.id).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "requests": [_entry(r).to_dict() for r in rows],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_count": total,
            "has_next_page": page < total_pages,
            "has_prev_page": page > 1,
        },
    }


def request_stats(db) -> dict[str, int]:
    rows = db.execute(select(PartnershipRequest.status, func.count()).group_by(PartnershipRequest.status)).all()
    out = {status: 0 for status in REQUEST_STATUSES}
    for status, count in rows:
        out[str(status)] = int(count)
    out["total"] = sum(out[s] for s in REQUEST_STATUSES)
    return out


def expire_stale(db, *, now: datetime) -> int:
    """Mark pending requests past ``expires_at`` as expired. Caller commits."""
    res = db.execute(
        update(PartnershipRequest)
        .where(PartnershipRequest.status == STATUS_PENDING, PartnershipRequest.expires_at < now)
        .values(status=STATUS_EXPIRED, responded_at=now)
        .execution_options(synchronize_session=False)
    )
    expired = int(res.rowcount or 0)
    logger.info("[REQUEST] Expired %s stale requests", expired)
    return expired


def expire_for_member(db, member_id: str, *, now: datetime, note: str) -> int:
    """Expire every pending request the member sent or received. Caller commits."""
    res = db.execute(
        update(PartnershipRequest)
        .where(
            PartnershipRequest.status == STATUS_PENDING,
            or_(PartnershipRequest.requester_id == member_id, PartnershipRequest.recipient_id == member_id),
        )
        .values(status=STATUS_EXPIRED, responded_at=now, admin_notes=note)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)
