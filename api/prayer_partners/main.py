import logging
import os
import time
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .config import API_HOST, API_PORT, SCHEDULER_ENABLED
from .database import SessionLocal
from .engine import PairingEngine
from .routes import include_modular_routers

logger = logging.getLogger(__name__)

app = FastAPI(title="Prayer Partners API")
include_modular_routers(app)

_pairing_engine: PairingEngine | None = None


def get_pairing_engine() -> PairingEngine:
    global _pairing_engine
    if _pairing_engine is None:
        _pairing_engine = PairingEngine(SessionLocal)
    return _pairing_engine


def run_migrations() -> None:
    env_dir = os.getenv("MIGRATIONS_DIR", "").strip()
    docker_dir = Path("/app/migrations")
    local_dir = Path(__file__).resolve().parents[1] / "migrations"

    if env_dir:
        migrations_dir = Path(env_dir)
    elif docker_dir.exists():
        migrations_dir = docker_dir
    else:
        migrations_dir = local_dir

    if not migrations_dir.exists() or not migrations_dir.is_dir():
        raise FileNotFoundError(
            "Migrations directory not found. Checked: "
            f"MIGRATIONS_DIR={env_dir or '<unset>'}, {docker_dir}, {local_dir}"
        )

    files = sorted([f.name for f in migrations_dir.iterdir() if f.is_file() and f.suffix == ".sql"])
    with SessionLocal() as db:
        for fname in files:
            sql = (migrations_dir / fname).read_text(encoding="utf-8")
            db.execute(text(sql))
        db.commit()


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    run_migrations()
    engine = get_pairing_engine()
    engine.start(scheduler_enabled=SCHEDULER_ENABLED)
    logger.info("[SCHEDULER] Startup complete (scheduler_enabled=%s)", SCHEDULER_ENABLED)


@app.on_event("shutdown")
def on_shutdown() -> None:
    if _pairing_engine is not None:
        _pairing_engine.shutdown()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def run() -> None:
    logging.basicConfig(level=logging.INFO)
    config = uvicorn.Config(app, host=API_HOST, port=API_PORT, log_level="info")
    uvicorn.Server(config).run()


if __name__ == "__main__":
    run()
