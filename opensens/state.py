"""Shared OsintState: the mutable state behind every connector call."""

from dataclasses import dataclass, field

from .circuit_breaker import CircuitBreaker
from .core.config import OpensensConfig
from .credentials import CredentialGate, TokenCache
from .rate_limiter import RateLimiter
from .swr_cache import SWRCache


@dataclass
class OsintState:
    """
    Rate limiter, circuit breaker, SWR cache, credential gate and token
    cache owned together.

    One instance is shared by all requests of a process (the FastAPI app
    keeps it on app.state); tests build their own with fake clocks.
    """
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    cache: SWRCache = field(default_factory=SWRCache)
    gate: CredentialGate = field(default_factory=lambda: CredentialGate({}))
    tokens: TokenCache = field(default_factory=TokenCache)

    @classmethod
    def from_config(cls, config: OpensensConfig) -> "OsintState":
        return cls(
            rate_limiter=RateLimiter(mode=config.rate_limit_mode, max_wait=config.rate_limit_max_wait),
            breaker=CircuitBreaker(
                failure_threshold=config.breaker_failure_threshold,
                cooldown_seconds=config.breaker_cooldown_seconds,
            ),
            cache=SWRCache(fresh_ttl=config.cache_fresh_ttl, stale_ttl=config.cache_stale_ttl),
            gate=CredentialGate(config.secrets),
            tokens=TokenCache(refresh_margin=config.token_refresh_margin, user_agent=config.user_agent),
        )

    async def aclose(self) -> None:
        """Cancel background cache revalidations."""
        await self.cache.aclose()
