"""Apply the study plan schema with Alembic once the database answers.

Deploys run this before the API starts so every plan table exists when the
first generation request arrives.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Iterable, Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("study_planner.migrations")
DEFAULT_TIMEOUT = int(os.getenv("STUDYPLAN_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("STUDYPLAN_DB_MIGRATION_POLL_INTERVAL", "3"))
SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_ROOT = SCRIPT_DIR.parent
PLAN_TABLES = (
    "study_preferences",
    "courses",
    "topics",
    "study_plan_days",
    "study_plan_items",
    "plan_runs",
)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the study plan schema.")
    parser.add_argument(
        "--revision",
        default=os.getenv("STUDYPLAN_DB_MIGRATION_REVISION", "head"),
        help="Alembic revision to upgrade to (default: head).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for the database (default: {DEFAULT_TIMEOUT}).",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between readiness probes (default: {DEFAULT_POLL_INTERVAL}).",
    )
    parser.add_argument(
        "--config",
        default=str(BACKEND_ROOT / "alembic.ini"),
        help="Path to alembic.ini.",
    )
    parser.add_argument(
        "--skip-verify",
        action="store_true",
        help="Do not check for the plan tables after upgrading.",
    )
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    env_url = os.getenv("STUDYPLAN_DATABASE_URL")
    if not env_url:
        raise RuntimeError("STUDYPLAN_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url.replace("%", "%%"))
    return env_url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    """Probe with ``SELECT 1`` until it succeeds or ``timeout`` elapses."""
    deadline = time.time() + timeout
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None

    try:
        engine = create_engine(database_url, future=True, pool_pre_ping=True)
        while time.time() < deadline:
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database is reachable.")
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready yet: %s", exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness probe: %s", exc)
                break
            time.sleep(poll_interval)
    finally:
        if engine is not None:
            engine.dispose()

    raise RuntimeError("Database did not become ready in time.") from last_error


def missing_tables(database_url: str, expected: Iterable[str] = PLAN_TABLES) -> list[str]:
    engine = create_engine(database_url, future=True)
    try:
        present = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    return [name for name in expected if name not in present]


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
    verify: bool = True,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    LOGGER.info("Upgrading study plan schema to %s (timeout=%ss poll=%ss)", revision, timeout, poll_interval)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    if verify and revision == "head":
        absent = missing_tables(database_url)
        if absent:
            raise RuntimeError(f"Plan tables missing after upgrade: {', '.join(absent)}")
    LOGGER.info("Migrations complete.")


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("STUDYPLAN_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=get_alembic_config(args.config),
            verify=not args.skip_verify,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
