"""Per-caller burst limiter (Redis token bucket).

This protects the service from request floods. It is unrelated to subscription
quotas, which cap paid LLM spend per billing period (see `sqyros.core.ledger`).
"""

from __future__ import annotations

from dataclasses import dataclass
import time

import redis.asyncio as redis


# KEYS[1] bucket key; ARGV: capacity, refill rate (tokens/s), now (s), cost
_TOKEN_BUCKET_LUA = r"""
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])

local state = redis.call("HMGET", KEYS[1], "tokens", "ts")
local tokens = tonumber(state[1]) or capacity
local last = tonumber(state[2]) or now

local elapsed = math.max(0, now - last)
tokens = math.min(capacity, tokens + elapsed * rate)

local allowed = 0
local wait = 0
if tokens >= cost then
  allowed = 1
  tokens = tokens - cost
else
  wait = (cost - tokens) / rate
end

redis.call("HSET", KEYS[1], "tokens", tokens, "ts", now)
redis.call("EXPIRE", KEYS[1], math.ceil(capacity / rate) * 2)

return {allowed, tostring(tokens), tostring(wait)}
"""


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: float
    retry_after_s: float
    limit: int


@dataclass(frozen=True)
class RateLimiterConfig:
    redis_url: str
    requests_per_min: int = 30
    burst: int = 10
    key_prefix: str = "sqyros:rl"


class RateLimiter:
    """Token bucket shared across API replicas through Redis."""

    def __init__(self, config: RateLimiterConfig, *, client: redis.Redis | None = None) -> None:
        if config.requests_per_min <= 0 or config.burst <= 0:
            raise ValueError("Rate limiter config must be positive")
        self._config = config
        self._client = client or redis.from_url(config.redis_url)

    async def ping(self) -> None:
        await self._client.ping()

    async def close(self) -> None:
        await self._client.aclose()

    async def allow(self, identity: str) -> RateLimitResult:
        rate = self._config.requests_per_min / 60.0

        # Floats are returned as strings: Redis truncates Lua numbers to integers.
        allowed, remaining, retry_after = await self._client.eval(
            _TOKEN_BUCKET_LUA,
            1,
            f"{self._config.key_prefix}:{identity}",
            self._config.burst,
            rate,
            time.time(),
            1,
        )

        return RateLimitResult(
            allowed=bool(int(allowed)),
            remaining=float(remaining),
            retry_after_s=float(retry_after),
            limit=self._config.requests_per_min,
        )
