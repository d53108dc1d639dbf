import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging() -> None:
    """Configure process logging from STUDYPLAN_* environment flags."""
    level = os.getenv("STUDYPLAN_LOG_LEVEL", "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
            "loggers": {
                "study_planner.scheduling": {
                    "level": os.getenv("STUDYPLAN_ENGINE_LOG_LEVEL", level).upper(),
                },
            },
        }
    )

    if os.getenv("STUDYPLAN_DEBUG_SQL", "0") == "1":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
    if os.getenv("STUDYPLAN_DEBUG_HTTP", "0") == "1":
        logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)
