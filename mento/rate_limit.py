"""Rate limiting for the Mento backend.

Two layers:

* ``limiter`` - slowapi per-IP throttle on public write endpoints. Only
  honors X-Forwarded-For from trusted proxies to prevent spoofing.
* ``FixedWindowRateLimiter`` - per logical key (``send_otp:<mobile>``,
  ``refresh:<ip>``) counters kept in the ``rate_limits`` table, so limits
  hold across every API instance.
"""

import asyncio
import ipaddress
import math
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated, Callable, Optional

from fastapi import Depends
from postgrest.exceptions import APIError
from slowapi import Limiter
from slowapi.util import get_remote_address
from supabase import Client

from .database import (
    RATE_LIMITS_TABLE,
    Database,
    is_unique_violation,
    parse_timestamp,
    utc_now,
)
from .errors import RateLimited
from .logging_config import get_logger

logger = get_logger("mento.rate_limit")

# =============================================================================
# Client IP resolution
# =============================================================================

# Trusted proxy CIDRs: only these sources can set X-Forwarded-For.
# Override with TRUSTED_PROXY_CIDRS env var (comma-separated CIDRs).
_DEFAULT_TRUSTED_CIDRS = [
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "::1/128",
]


def _load_trusted_cidrs() -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """Load trusted proxy CIDRs from env or defaults."""
    raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
    cidrs = [s.strip() for s in raw.split(",") if s.strip()] if raw else _DEFAULT_TRUSTED_CIDRS
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr}")
    return networks


_trusted_networks: Optional[list] = None


def _get_trusted_networks():
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = _load_trusted_cidrs()
    return _trusted_networks


def _is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _get_trusted_networks())


def get_client_ip(request) -> str:
    """Resolve client IP, only honoring X-Forwarded-For from trusted proxies.

    When the direct peer is a trusted reverse proxy the leftmost forwarded
    address is the original client. Otherwise the peer address is used.
    """
    direct_ip = get_remote_address(request)

    if _is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip

    return direct_ip


# Per-IP limiter for decorated routes
limiter = Limiter(key_func=get_client_ip)


# =============================================================================
# Fixed-window counters
# =============================================================================


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    expires_at: datetime
    now: datetime

    @property
    def retry_after(self) -> int:
        """Seconds until the current window closes (at least 1)."""
        return max(1, math.ceil((self.expires_at - self.now).total_seconds()))


class FixedWindowRateLimiter:
    """Fixed-window counter keyed by an arbitrary string.

    State per key is ``{count, expires_at}``. Every write is conditional on
    the row still holding the values that were read (compare-and-set), and
    the first insert relies on the unique ``key`` column, so concurrent
    requests cannot push a key past its limit.
    """

    def __init__(
        self,
        db: Client,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: int = 5,
    ):
        self.db = db
        self.clock = clock
        self.max_attempts = max_attempts

    def _attempt(self, key: str, limit: int, window: timedelta) -> RateLimitDecision | None:
        """One read-then-CAS round. Returns None when the race was lost."""
        now = self.clock()
        table = self.db.table(RATE_LIMITS_TABLE)
        result = table.select("*").eq("key", key).limit(1).execute()
        fresh_expiry = now + window

        if not result.data:
            try:
                self.db.table(RATE_LIMITS_TABLE).insert(
                    {"key": key, "count": 1, "expires_at": fresh_expiry.isoformat()}
                ).execute()
            except APIError as e:
                if is_unique_violation(e):
                    return None
                raise
            return RateLimitDecision(True, 1, limit, fresh_expiry, now)

        row = result.data[0]
        count = int(row.get("count") or 0)
        stored_expiry = row.get("expires_at")
        expires_at = parse_timestamp(stored_expiry)

        if expires_at is None or now >= expires_at:
            new_count, new_expiry = 1, fresh_expiry
        elif count < limit:
            new_count, new_expiry = count + 1, expires_at
        else:
            return RateLimitDecision(False, count, limit, expires_at, now)

        updated = (
            self.db.table(RATE_LIMITS_TABLE)
            .update({"count": new_count, "expires_at": new_expiry.isoformat()})
            .eq("key", key)
            .eq("count", count)
            .eq("expires_at", stored_expiry)
            .execute()
        )
        if not updated.data:
            return None
        return RateLimitDecision(True, new_count, limit, new_expiry, now)

    async def hit(self, key: str, limit: int, window: timedelta) -> RateLimitDecision:
        """Count one request against ``key``."""
        for _ in range(self.max_attempts):
            decision = await asyncio.to_thread(self._attempt, key, limit, window)
            if decision is not None:
                return decision

        # Sustained contention on one key: refuse rather than let it through
        logger.warning(f"Rate limit CAS contention on {key}; denying request")
        now = self.clock()
        return RateLimitDecision(False, limit, limit, now + window, now)

    async def enforce(self, key: str, limit: int, window: timedelta) -> RateLimitDecision:
        """Like ``hit`` but raises ``RateLimited`` when the request is refused."""
        decision = await self.hit(key, limit, window)
        if not decision.allowed:
            logger.info(f"Rate limited: {key} ({decision.count}/{limit})")
            raise RateLimited(retry_after=decision.retry_after)
        return decision


def get_rate_limiter(db: Database) -> FixedWindowRateLimiter:
    """FastAPI dependency for the shared fixed-window limiter."""
    return FixedWindowRateLimiter(db)


KeyRateLimiter = Annotated[FixedWindowRateLimiter, Depends(get_rate_limiter)]
