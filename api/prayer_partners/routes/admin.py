from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..deps import http_error, require_admin
from ..schemas import ManualPairRequest, ReshuffleResponse, UnpairRequest
from ..services.errors import PairingError

router = APIRouter(dependencies=[Depends(require_admin)])


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


def _engine():
    from .. import main as m

    return m.get_pairing_engine()


@router.post("/admin/pairs/reshuffle", response_model=ReshuffleResponse)
def force_reshuffle() -> dict[str, Any]:
    try:
        outcome = _engine().trigger_reshuffle(trigger="admin")
    except PairingError as exc:
        raise http_error(exc)
    return _json(outcome.to_dict())


@router.get("/admin/pairs/current")
def current_pairs() -> dict[str, Any]:
    try:
        return _json(_engine().get_current_pairs())
    except PairingError as exc:
        raise http_error(exc)


@router.post("/admin/pairs")
def create_manual_pair(payload: ManualPairRequest) -> dict[str, Any]:
    try:
        entry = _engine().create_manual_pair(payload.member1_id, payload.member2_id)
    except PairingError as exc:
        raise http_error(exc)
    return _json({"success": True, "record": entry.to_dict()})


@router.post("/admin/pairs/unpair")
def remove_pair(payload: UnpairRequest) -> dict[str, Any]:
    try:
        out = _engine().remove_pair(payload.member1_id, payload.member2_id)
    except PairingError as exc:
        raise http_error(exc)
    return _json({"success": True, **out})


@router.get("/admin/pairs/history")
def pairing_history(limit: int = 50) -> dict[str, Any]:
    try:
        rows = _engine().get_pairing_history(limit)
    except PairingError as exc:
        raise http_error(exc)
    return _json({"records": rows, "count": len(rows)})


@router.get("/admin/pairs/runs")
def reshuffle_runs() -> dict[str, Any]:
    engine = _engine()
    return _json({"state": engine.gate.state, "runs": engine.orchestrator.recent_runs()})


@router.get("/admin/pairs/stats")
def pairing_stats() -> dict[str, Any]:
    try:
        return _json(_engine().summary())
    except PairingError as exc:
        raise http_error(exc)


@router.get("/admin/pairs/integrity")
def pairing_integrity() -> dict[str, Any]:
    try:
        return _json(_engine().verify_integrity())
    except PairingError as exc:
        raise http_error(exc)


@router.post("/admin/pairs/integrity/fix")
def fix_pairing_integrity() -> dict[str, Any]:
    try:
        return _json(_engine().fix_integrity())
    except PairingError as exc:
        raise http_error(exc)


@router.get("/admin/members/{member_id}/events")
def member_events(member_id: str, limit: int = 20) -> dict[str, Any]:
    try:
        rows = _engine().member_events(member_id, max(1, min(limit, 200)))
    except PairingError as exc:
        raise http_error(exc)
    return _json({"member_id": member_id, "events": rows})
