"""Per-client admission control for the verification endpoint.

Fixed-window counter keyed by client identity. A record is created on the
first request of a window, incremented while the window is open, and
replaced (not incremented) once the window has elapsed.

The backing store is pluggable: InMemoryRateLimitStore is process-local and
resets on restart. Deployments running several instances should supply a
shared RateLimitStore so limits hold across instances.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

log = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for admission control.

    Attributes:
        max_requests: Requests allowed per client per window.
        window_ms: Window length in milliseconds.
    """
    max_requests: int = 100
    window_ms: int = 60_000


@dataclass
class RateLimitRecord:
    """Window state for one client identity."""
    count: int
    window_reset_at: int  # epoch millis


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check.

    limit/remaining/reset_at are advisory and only feed response headers;
    `allowed` is the sole gate.
    """
    allowed: bool
    remaining: int
    reset_at: int  # epoch millis
    limit: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at // 1000),
        }


class RateLimitStore(ABC):
    """Backing store for rate-limit records.

    Implementations must make hit() atomic per client: two concurrent calls
    for the same identity never both see count < max_requests when only one
    increment should succeed.
    """

    @abstractmethod
    def hit(self, client_id: str, now_ms: int, config: RateLimitConfig) -> RateLimitDecision:
        """Admit-and-increment for one request."""

    @abstractmethod
    def size(self) -> int:
        """Number of tracked client identities."""

    @abstractmethod
    def clear(self) -> None:
        """Drop all records."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store guarded by a single lock.

    Expired records are evicted lazily on every hit so the table is bounded
    by the number of clients active within one window.
    """

    def __init__(self):
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def hit(self, client_id: str, now_ms: int, config: RateLimitConfig) -> RateLimitDecision:
        with self._lock:
            self._evict_expired(now_ms)

            record = self._records.get(client_id)
            if record is None or now_ms >= record.window_reset_at:
                record = RateLimitRecord(count=1, window_reset_at=now_ms + config.window_ms)
                self._records[client_id] = record
                return RateLimitDecision(
                    allowed=True,
                    remaining=config.max_requests - 1,
                    reset_at=record.window_reset_at,
                    limit=config.max_requests,
                )

            if record.count >= config.max_requests:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_at=record.window_reset_at,
                    limit=config.max_requests,
                )

            record.count += 1
            return RateLimitDecision(
                allowed=True,
                remaining=config.max_requests - record.count,
                reset_at=record.window_reset_at,
                limit=config.max_requests,
            )

    def _evict_expired(self, now_ms: int) -> None:
        """Remove records whose window has elapsed. Caller holds the lock."""
        expired = [k for k, r in self._records.items() if r.window_reset_at <= now_ms]
        for key in expired:
            del self._records[key]

    def get(self, client_id: str) -> Optional[RateLimitRecord]:
        with self._lock:
            return self._records.get(client_id)

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class RateLimiter:
    """Admission controller gating the verification orchestrator."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        store: Optional[RateLimitStore] = None,
    ):
        self.config = config or RateLimitConfig()
        self.store = store or InMemoryRateLimitStore()

    def admit(self, client_id: Optional[str], now_ms: Optional[int] = None) -> RateLimitDecision:
        """Decide whether a request from client_id may proceed.

        Args:
            client_id: Identity derived from the network origin. None or
                empty buckets into the shared "unknown" identity.
            now_ms: Current epoch millis (defaults to wall clock).

        Returns:
            RateLimitDecision for this request.
        """
        from app.core.config import UNKNOWN_CLIENT_ID

        client_id = (client_id or "").strip() or UNKNOWN_CLIENT_ID
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        decision = self.store.hit(client_id, now_ms, self.config)
        if not decision.allowed:
            log.warning("rate_limited", extra={"client_id": client_id})
        return decision


def client_id_from_headers(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> str:
    """Derive the client identity used as the rate-limit key.

    Precedence: first entry of X-Forwarded-For, then X-Real-IP, then the
    socket peer address, else the shared "unknown" sentinel.
    """
    from app.core.config import UNKNOWN_CLIENT_ID

    headers = {k.lower(): v for k, v in headers.items()}
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if remote_addr:
        return remote_addr

    return UNKNOWN_CLIENT_ID


# Module-level singleton
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the rate limiter singleton.

    Configuration is read from app.core.config on first access.
    """
    global _rate_limiter
    if _rate_limiter is None:
        from app.core.config import RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_MS

        _rate_limiter = RateLimiter(
            RateLimitConfig(max_requests=RATE_LIMIT_MAX_REQUESTS, window_ms=RATE_LIMIT_WINDOW_MS)
        )
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the rate limiter singleton (for testing)."""
    global _rate_limiter
    _rate_limiter = None
