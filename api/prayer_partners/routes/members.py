from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.encoders import jsonable_encoder

from ..deps import http_error, require_admin
from ..schemas import MemberRegistered
from ..services.errors import PairingError
from ..services.members import member_payload

router = APIRouter(dependencies=[Depends(require_admin)])


def _engine():
    from .. import main as m

    return m.get_pairing_engine()


@router.post("/members/registered", status_code=202)
def member_registered(payload: MemberRegistered, background_tasks: BackgroundTasks) -> dict[str, Any]:
    engine = _engine()
    try:
        member = engine.register_member(payload.member_id, payload.display_name, payload.joined_at)
    except PairingError as exc:
        raise http_error(exc)
    # Registration never waits on, or fails because of, immediate pairing.
    background_tasks.add_task(engine.immediate.pair_new_member, member.id)
    return jsonable_encoder({"member": member_payload(member), "immediate_pairing": "scheduled"})


@router.post("/members/{member_id}/departed")
def member_departed(member_id: str) -> dict[str, Any]:
    try:
        out = _engine().release_member(member_id)
    except PairingError as exc:
        raise http_error(exc)
    return jsonable_encoder({"success": True, **out})
