#!/usr/bin/env python3
"""
Wait for the database, run migrations (same process, same DATABASE_URL),
then exec uvicorn. Tables exist before the app rebuilds its deadline timers.
"""
import logging
import os
import sys
import time

from alembic import command
from alembic.config import Config
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from roro.core.config import settings
from roro.core.logging import configure_logging
from roro.db.session import make_engine

logger = logging.getLogger("start_api")


def wait_for_db(url: str, timeout_s: int) -> None:
    engine = make_engine(url)
    start = time.time()
    try:
        while True:
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("database is ready")
                return
            except OperationalError as e:
                if time.time() - start > timeout_s:
                    logger.error("timed out waiting for database: %s", e)
                    raise
                time.sleep(1)
    finally:
        engine.dispose()


configure_logging()

# 1) Wait for DB
wait_for_db(settings.DATABASE_URL, int(os.getenv("DB_WAIT_TIMEOUT", "60")))

# 2) Run migrations using the same settings as the app
alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")

# 3) Start uvicorn (replace current process)
os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "roro.main:app", "--host", "0.0.0.0", "--port", "8000"],
)
