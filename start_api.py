#!/usr/bin/env python3
"""
Container entrypoint: wait for Postgres, migrate, seed, then exec uvicorn.
"""
import os
import sys

import wait_for_db

from alembic import command
from alembic.config import Config

from app.core.config import settings
from app.core.logging_config import configure_logging


def main() -> None:
    configure_logging()
    wait_for_db.wait(settings.DATABASE_URL)

    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    command.upgrade(alembic_cfg, "head")

    from app.seed import run as run_seed
    run_seed()

    port = os.getenv("PORT", "8000")
    os.execv(
        sys.executable,
        [sys.executable, "-m", "uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", port],
    )


if __name__ == "__main__":
    main()
