# backend/portal/core/request_context.py
"""
Per-request state shared by the HTTP middleware, the SQLAlchemy hooks and logging.

The middleware opens a scope with `begin_request`, and everything running inside
that request (log records, cursor events) reads it back through `current_scope`.
"""
from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class QueryStats:
    count: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.slowest_ms = max(self.slowest_ms, duration_ms)


@dataclass
class RequestScope:
    request_id: str
    queries: QueryStats = field(default_factory=QueryStats)


_scope: ContextVar[Optional[RequestScope]] = ContextVar("portal_request_scope", default=None)


def begin_request(request_id: str) -> RequestScope:
    scope = RequestScope(request_id=request_id)
    _scope.set(scope)
    return scope


def end_request() -> None:
    _scope.set(None)


def current_scope() -> Optional[RequestScope]:
    return _scope.get()


def get_request_id() -> str:
    scope = _scope.get()
    return scope.request_id if scope is not None else "-"


def note_query(duration_ms: float) -> None:
    # Scripts and migrations run queries outside any request
    scope = _scope.get()
    if scope is not None:
        scope.queries.add(float(duration_ms))
