"""Fixed-window rate limiting.

Each (identity, route) pair gets a counter and an expiry. The first
attempt after expiry starts a new window of ``window_seconds`` with a
count of one; later attempts in the window increment the count and are
rejected once it exceeds the ceiling.

Fixed windows allow bursts at window edges: a client can spend the
whole ceiling at the end of one window and again at the start of the
next, so up to twice the ceiling can pass in a short span.

Thread safety:
    ``MemoryRateStore.hit`` performs the read-increment-write under a
    lock, so concurrent checks on one key never lose an increment.
"""

import hashlib
import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from switchyard.errors import RateLimitExceeded
from switchyard.http.request import RequestContext
from switchyard.routing.declaration import RateLimit
from switchyard.routing.pattern import CompiledRoute

logger = logging.getLogger("switchyard.ratelimit")


@dataclass(frozen=True, slots=True)
class RateOutcome:
    """An allowed attempt: how many remain and when the window resets."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: int

    def headers(self) -> tuple[tuple[str, str], ...]:
        return (
            ("X-RateLimit-Limit", str(self.limit)),
            ("X-RateLimit-Remaining", str(self.remaining)),
            ("X-RateLimit-Reset", str(self.reset_at)),
        )


class RateStore(Protocol):
    """Counter storage for ``RateWindow``.

    ``hit`` must be atomic per key: concurrent calls for the same key
    must each observe a distinct count.
    """

    def hit(self, key: str, window_seconds: int, now: float) -> tuple[int, float]:
        """Count one attempt for *key*; return ``(attempts, window_expires_at)``.

        Starts a fresh window when *key* is unknown or its window has
        expired (``now >= expires_at``).
        """
        ...


class MemoryRateStore:
    """In-process ``RateStore`` guarded by a single lock."""

    __slots__ = ("_lock", "_state")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # key -> (attempts, window_expires_at)
        self._state: dict[str, tuple[int, float]] = {}

    def hit(self, key: str, window_seconds: int, now: float) -> tuple[int, float]:
        with self._lock:
            attempts, expires_at = self._state.get(key, (0, 0.0))
            if attempts == 0 or now >= expires_at:
                attempts, expires_at = 0, now + window_seconds
            attempts += 1
            self._state[key] = (attempts, expires_at)
            return attempts, expires_at

    def cleanup(self, now: float | None = None) -> int:
        """Drop expired windows. Returns how many were removed.

        Not needed for correctness (expiry is checked on every hit);
        keeps memory bounded for long-running processes.
        """
        now = time.time() if now is None else now
        with self._lock:
            expired = [key for key, (_, expires_at) in self._state.items() if now >= expires_at]
            for key in expired:
                del self._state[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._state)


class RateWindow:
    """Fixed-window limiter over a ``RateStore``.

    Usage::

        window = RateWindow()
        outcome = window.check("ratelimit:ip:10.0.0.1:GET /login", ceiling=5, window_seconds=60)
        outcome.remaining  # 4
    """

    __slots__ = ("_clock", "_store")

    def __init__(
        self,
        store: RateStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store: RateStore = store if store is not None else MemoryRateStore()
        self._clock = clock

    @property
    def store(self) -> RateStore:
        return self._store

    def check(self, identity: str, ceiling: int, window_seconds: int) -> RateOutcome:
        """Count one attempt for *identity*.

        Returns a ``RateOutcome`` when the attempt is within *ceiling*.
        Raises ``RateLimitExceeded`` otherwise; the attempt is still
        counted.
        """
        now = self._clock()
        key = hashlib.sha256(identity.encode()).hexdigest()
        attempts, expires_at = self._store.hit(key, window_seconds, now)
        reset_at = math.ceil(expires_at)

        if attempts > ceiling:
            retry_after = max(1, math.ceil(expires_at - now))
            logger.debug("Rate limit hit for %s (%d/%d)", identity, attempts, ceiling)
            raise RateLimitExceeded(retry_after, limit=ceiling, reset_at=reset_at)

        return RateOutcome(
            allowed=True,
            limit=ceiling,
            remaining=max(0, ceiling - attempts),
            reset_at=reset_at,
        )


def rate_limit_identity(
    policy: RateLimit,
    ctx: RequestContext,
    route: CompiledRoute,
    *,
    trust_forwarded_for: bool = False,
) -> str:
    """Build the limiter identity for *ctx* on *route*.

    Combines the policy's partition key with the route's method and
    template so limits on different routes never share a counter::

        "ratelimit:ip:10.0.0.7:POST /login"
    """
    if policy.by == "user_id":
        value = ctx.user_id or "guest"
    elif policy.by == "api_key":
        value = ctx.headers.get("x-api-key") or "none"
    else:
        value = _client_address(ctx, trust_forwarded_for)
    return f"ratelimit:{policy.by}:{value}:{route.method} {route.uri}"


def _client_address(ctx: RequestContext, trust_forwarded_for: bool) -> str:
    if trust_forwarded_for:
        raw = ctx.headers.get("x-forwarded-for")
        if raw:
            # Standard comma-separated proxy chain, first hop is the client.
            forwarded = raw.split(",")[0].strip()
            if forwarded:
                return forwarded
    return ctx.client or "unknown"
