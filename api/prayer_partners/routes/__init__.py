from fastapi import APIRouter, FastAPI

from .admin import router as admin_router
from .members import router as members_router
from .requests import router as requests_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(members_router, tags=["members"])
    app.include_router(requests_router, tags=["partnership-requests"])
    app.include_router(admin_router, tags=["admin"])


__all__ = ["include_modular_routers", "APIRouter"]
