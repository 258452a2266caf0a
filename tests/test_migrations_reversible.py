import os

from alembic import command
from alembic.config import Config
import pytest

DSN = os.environ.get("DATABASE_URL", "")


def _alembic_config() -> Config:
    cfg = Config("alembic.ini")
    # env.py translates the async DSN to a sync driver for Alembic.
    return cfg


@pytest.mark.skipif(not DSN.startswith("postgresql"), reason="needs a Postgres DATABASE_URL")
def test_migrations_are_reversible():
    """Smoke-test: upgrade head -> downgrade base -> upgrade head."""

    psycopg = pytest.importorskip("psycopg")
    sync_dsn = DSN.replace("postgresql+asyncpg://", "postgresql://")
    with psycopg.connect(sync_dsn) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")

    cfg = _alembic_config()

    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")
    command.upgrade(cfg, "head")
