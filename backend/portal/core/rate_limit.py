# backend/portal/core/rate_limit.py
import time
from collections import deque
from typing import Deque, Dict

from fastapi import HTTPException, Request, status

from portal.core.config import settings


def client_ip(request: Request) -> str:
    # Behind a proxy, X-Forwarded-For is "client, proxy1, proxy2"
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client and request.client.host else "unknown"


class SlidingWindowLimiter:
    """
    Per-IP sliding window held in process memory, so limits are per worker.

    Client codes can only be found by guessing, which makes the join endpoints
    the ones this has to hold on.
    """

    def __init__(self, name: str, limit: int, window_seconds: int):
        self.name = name
        self.limit = int(limit)
        self.window_seconds = int(window_seconds)
        self._hits: Dict[str, Deque[float]] = {}

    def reset(self) -> None:
        self._hits.clear()

    def check(self, ip: str, now: float) -> None:
        hits = self._hits.setdefault(ip, deque())
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

        if len(hits) >= self.limit:
            retry_after = max(1, int(hits[0] + self.window_seconds - now) + 1)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please slow down.",
                headers={"Retry-After": str(retry_after)},
            )
        hits.append(now)

    # FastAPI inspects this signature for parameters; keep it to the request alone
    async def __call__(self, request: Request) -> None:
        self.check(client_ip(request), time.monotonic())


code_attempt_limiter = SlidingWindowLimiter(
    "client_code", settings.code_attempt_limit, settings.code_attempt_window_seconds
)
magic_link_limiter = SlidingWindowLimiter(
    "magic_link", settings.magic_link_limit, settings.magic_link_window_seconds
)

code_attempt_rate_limit = code_attempt_limiter
magic_link_rate_limit = magic_link_limiter
