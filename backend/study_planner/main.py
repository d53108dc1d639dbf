import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .db.session import get_engine
from .logging_config import configure_logging
from .plan_routes import router as plan_router


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Study Planner Backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(plan_router)

settings_snapshot = get_settings()
logger.info("Backend starting; database configured: %s", bool(settings_snapshot.database_url))
logger.info(
    "Planning window: default %sd, max %sd, min slice %.2fh",
    settings_snapshot.default_horizon_days,
    settings_snapshot.max_horizon_days,
    settings_snapshot.min_slice_hours,
)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "mode": "study-planner"}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError) as exc:
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "dialect": engine.dialect.name,
        "pool": engine.pool.status(),
    }
