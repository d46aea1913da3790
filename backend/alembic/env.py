"""
Alembic environment for the portal schema.

Run from backend/:  alembic upgrade head
The target database is DATABASE_URL (same variable the app reads), so
alembic.ini deliberately carries no sqlalchemy.url.
"""
import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from portal.db.base import Base  # noqa: E402
from portal import models  # noqa: F401, E402  (registers tables on Base.metadata)

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./portal.db")


def _configure(**kwargs) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **kwargs)


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    _configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool, future=True)
    with engine.connect() as connection:
        # SQLite can only ALTER through table rebuilds
        _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
