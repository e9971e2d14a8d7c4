from fastapi import APIRouter, Request
from sqlalchemy import text

from pledge_engine.infrastructure.db import database

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    db_connected = False
    try:
        database.init_engine()
        async with database.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        db_connected = True
    except Exception:
        db_connected = False

    engine = getattr(request.app.state, "auto_engine", None)
    return {
        "status": "ready" if db_connected else "not_ready",
        "db_connected": db_connected,
        "auto_execution": {
            "enabled": bool(engine and engine.enabled),
            "running": bool(engine and engine.running),
        },
    }
