import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="STUDYPLAN_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDYPLAN_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDYPLAN_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDYPLAN_DATABASE_ECHO")
    default_daily_study_hours: float = Field(3.0, gt=0, alias="STUDYPLAN_DEFAULT_DAILY_HOURS")
    default_horizon_days: int = Field(30, ge=1, alias="STUDYPLAN_DEFAULT_HORIZON_DAYS")
    max_horizon_days: int = Field(90, ge=1, alias="STUDYPLAN_MAX_HORIZON_DAYS")
    min_slice_hours: float = Field(0.25, ge=0, alias="STUDYPLAN_MIN_SLICE_HOURS")
    priority_drop_percentile: float = Field(0.2, ge=0, lt=1, alias="STUDYPLAN_PRIORITY_DROP_PERCENTILE")
    proximity_weight: float = Field(1.0, ge=0, alias="STUDYPLAN_PROXIMITY_WEIGHT")
    carryover_bonus: float = Field(1.0, ge=0, alias="STUDYPLAN_CARRYOVER_BONUS")
    missed_window_days: int = Field(7, ge=1, alias="STUDYPLAN_MISSED_WINDOW_DAYS")
    plan_lock_timeout_seconds: float = Field(5.0, ge=0, alias="STUDYPLAN_LOCK_TIMEOUT_SECONDS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
