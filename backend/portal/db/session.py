# backend/portal/db/session.py
"""
Engine, session factory and the `get_db` request dependency.

Cursor events time every statement into the current request scope and warn on
statements slower than SLOW_QUERY_MS. Bound parameters are never logged, since
they can carry code hashes and login token digests.
"""
import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from portal.core.config import settings
from portal.core.request_context import get_request_id, note_query

logger = logging.getLogger("portal.db")

SLOW_QUERY_MS = 250.0
_START_ATTR = "_portal_started_at"


def build_engine(url: str) -> Engine:
    kwargs = {"future": True}
    if url.startswith("sqlite"):
        # Request handlers and the TestClient run on different threads
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def instrument(target: Engine) -> Engine:
    """Attach statement timing hooks to an engine."""

    def _started(conn, cursor, statement, parameters, context, executemany):
        setattr(context, _START_ATTR, time.perf_counter())

    def _finished(conn, cursor, statement, parameters, context, executemany):
        started = getattr(context, _START_ATTR, None)
        if started is None:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        note_query(elapsed_ms)
        if elapsed_ms >= SLOW_QUERY_MS:
            logger.warning(
                "slow_db_query request_id=%s duration_ms=%.2f sql=%s",
                get_request_id(),
                elapsed_ms,
                " ".join((statement or "").split())[:240],
            )

    event.listen(target, "before_cursor_execute", _started)
    event.listen(target, "after_cursor_execute", _finished)
    return target


engine = instrument(build_engine(settings.database_url or "sqlite:///./portal.db"))

SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
