from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..deps import http_error, require_admin
from ..schemas import PartnershipRequestCreate, PartnershipRequestResponse
from ..services.errors import PairingError

router = APIRouter(dependencies=[Depends(require_admin)])


def _engine():
    from .. import main as m

    return m.get_pairing_engine()


@router.post("/partnership-requests", status_code=201)
def send_request(payload: PartnershipRequestCreate) -> dict[str, Any]:
    try:
        entry = _engine().send_partnership_request(payload.requester_id, payload.recipient_id, payload.message)
    except PairingError as exc:
        raise http_error(exc)
    return jsonable_encoder({"success": True, "request": entry.to_dict()})


@router.get("/members/{member_id}/partnership-requests/pending")
def pending_requests(member_id: str) -> dict[str, Any]:
    try:
        rows = _engine().pending_partnership_requests(member_id)
    except PairingError as exc:
        raise http_error(exc)
    return jsonable_encoder({"requests": rows, "count": len(rows)})


@router.get("/members/{member_id}/partnership-requests/sent")
def sent_requests(member_id: str) -> dict[str, Any]:
    try:
        rows = _engine().sent_partnership_requests(member_id)
    except PairingError as exc:
        raise http_error(exc)
    return jsonable_encoder({"requests": rows, "count": len(rows)})


@router.post("/partnership-requests/{request_id}/accept")
def accept_request(request_id: str, payload: PartnershipRequestResponse) -> dict[str, Any]:
    try:
        entry, record = _engine().accept_partnership_request(request_id, payload.member_id)
    except PairingError as exc:
        raise http_error(exc)
    return jsonable_encoder({"success": True, "request": entry.to_dict(), "record": record.to_dict()})


@router.post("/partnership-requests/{request_id}/decline")
def decline_request(request_id: str, payload: PartnershipRequestResponse) -> dict[str, Any]:
    try:
        entry = _engine().decline_partnership_request(request_id, payload.member_id)
    except PairingError as exc:
        raise http_error(exc)
    return jsonable_encoder({"success": True, "request": entry.to_dict()})


@router.get("/admin/partnership-requests")
def all_requests(status: str | None = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
    try:
        return jsonable_encoder(_engine().list_partnership_requests(status, page, limit))
    except PairingError as exc:
        raise http_error(exc)


@router.get("/admin/partnership-requests/stats")
def request_stats() -> dict[str, Any]:
    try:
        return jsonable_encoder({"stats": _engine().partnership_request_stats()})
    except PairingError as exc:
        raise http_error(exc)


@router.post("/admin/partnership-requests/cleanup-expired")
def cleanup_expired() -> dict[str, Any]:
    try:
        expired = _engine().expire_partnership_requests()
    except PairingError as exc:
        raise http_error(exc)
    return {"success": True, "expired_count": expired}
