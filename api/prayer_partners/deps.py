import hmac
import uuid
from typing import Any

from fastapi import Header, HTTPException

from . import config
from .services.errors import PairingError


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or not hmac.compare_digest(token, admin_token):
        raise HTTPException(status_code=401, detail="Invalid admin token")


def require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    validate_admin_token(x_admin_token, config.ADMIN_TOKEN)


def error_detail(*, message: str, hint: str | None = None, errors: list[dict[str, Any]] | None = None, trace_id: str | None = None) -> dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "hint": hint,
        "errors": errors or [],
        "trace_id": trace_id or str(uuid.uuid4()),
    }


def http_error(exc: PairingError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail=error_detail(message=exc.message, hint=exc.hint, errors=[{"type": exc.__class__.__name__}]),
    )
