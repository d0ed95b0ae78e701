"""OpenSens OSINT aggregation configuration."""

import os
from dataclasses import dataclass, field
from typing import Dict, List

from dotenv import load_dotenv

from .logger import get_logger

logger = get_logger(__name__)

# Environment variables that carry connector credentials
SECRET_ENV_VARS = (
    "REDDIT_CLIENT_ID",
    "REDDIT_CLIENT_SECRET",
    "OPENSENS_X_BEARER_TOKEN",
    "ACLED_EMAIL",
    "ACLED_PASSWORD",
    "ACLED_ACCESS_TOKEN",
)

RATE_LIMIT_MODES = ("defer", "reject")
LOG_FORMATS = ("console", "json")
CREDIBILITY_WEIGHTINGS = ("squared", "linear")


@dataclass
class OpensensConfig:
    # Connector invocation
    connector_timeout: float = 8.0       # seconds per connector call
    max_concurrency: int = 4             # concurrent outbound connector calls per request

    # Rate limiting
    rate_limit_mode: str = "defer"       # defer | reject
    rate_limit_max_wait: float = 5.0     # longest a deferred call may wait before rejection

    # Circuit breaker
    breaker_failure_threshold: int = 3
    breaker_cooldown_seconds: float = 60.0

    # SWR cache (seconds since the result was stored)
    cache_fresh_ttl: float = 300.0       # 5 min
    cache_stale_ttl: float = 900.0       # 15 min

    # OAuth tokens are renewed this long before their reported expiry
    token_refresh_margin: float = 3600.0

    # Fusion
    credibility_weighting: str = "squared"

    user_agent: str = "OpenSens-OSINT/1.0 (+https://opensens.io)"

    # console for terminals, json for log shippers
    log_format: str = "console"

    # Watchlist matched against user-generated text before it is discarded
    keywords: List[str] = field(default_factory=lambda: [
        "protest", "strike", "sanctions", "conflict", "evacuation", "blackout",
        "outage", "cyberattack", "flood", "earthquake", "wildfire", "drought",
        "grid", "solar", "battery storage", "microgrid", "starlink", "pipeline",
    ])

    mastodon_instances: List[str] = field(default_factory=lambda: [
        "mastodon.social", "fosstodon.org", "hachyderm.io",
    ])

    reddit_subreddits: List[str] = field(default_factory=lambda: [
        "geopolitics", "worldnews", "energy", "solar", "offgrid", "StarlinkEngineering",
    ])

    # Credential bundle, keyed by environment variable name
    secrets: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.rate_limit_mode not in RATE_LIMIT_MODES:
            raise ValueError(f"rate_limit_mode must be one of {RATE_LIMIT_MODES}")
        if self.credibility_weighting not in CREDIBILITY_WEIGHTINGS:
            raise ValueError(f"credibility_weighting must be one of {CREDIBILITY_WEIGHTINGS}")
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
        if self.cache_stale_ttl < self.cache_fresh_ttl:
            raise ValueError("cache_stale_ttl must be >= cache_fresh_ttl")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

    def secret(self, name: str) -> str:
        """Return a configured secret, or "" when unset."""
        return (self.secrets.get(name) or "").strip()

    @classmethod
    def from_env(cls) -> "OpensensConfig":
        """Build a config from OPENSENS_* variables (and .env if present)."""
        load_dotenv()
        kwargs = {
            "connector_timeout": _env_float("OPENSENS_CONNECTOR_TIMEOUT", cls.connector_timeout),
            "max_concurrency": _env_int("OPENSENS_MAX_CONCURRENCY", cls.max_concurrency),
            "rate_limit_mode": os.getenv("OPENSENS_RATE_LIMIT_MODE", cls.rate_limit_mode).strip().lower(),
            "rate_limit_max_wait": _env_float("OPENSENS_RATE_LIMIT_MAX_WAIT", cls.rate_limit_max_wait),
            "breaker_failure_threshold": _env_int("OPENSENS_BREAKER_THRESHOLD", cls.breaker_failure_threshold),
            "breaker_cooldown_seconds": _env_float("OPENSENS_BREAKER_COOLDOWN", cls.breaker_cooldown_seconds),
            "cache_fresh_ttl": _env_float("OPENSENS_CACHE_FRESH_TTL", cls.cache_fresh_ttl),
            "cache_stale_ttl": _env_float("OPENSENS_CACHE_STALE_TTL", cls.cache_stale_ttl),
            "token_refresh_margin": _env_float("OPENSENS_TOKEN_REFRESH_MARGIN", cls.token_refresh_margin),
            "credibility_weighting": os.getenv(
                "OPENSENS_CREDIBILITY_WEIGHTING", cls.credibility_weighting
            ).strip().lower(),
            "user_agent": os.getenv("OPENSENS_USER_AGENT", cls.user_agent),
            "log_format": os.getenv("OPENSENS_LOG_FORMAT", cls.log_format).strip().lower(),
            "secrets": {name: os.getenv(name, "") for name in SECRET_ENV_VARS},
        }
        for attr, var in (
            ("keywords", "OPENSENS_KEYWORDS"),
            ("mastodon_instances", "OPENSENS_MASTODON_INSTANCES"),
            ("reddit_subreddits", "OPENSENS_REDDIT_SUBREDDITS"),
        ):
            values = _env_list(var)
            if values:
                kwargs[attr] = values
        return cls(**kwargs)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config_invalid_float", name=name, value=raw, default=default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config_invalid_int", name=name, value=raw, default=default)
        return default


def _env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


# Global singleton
_config: OpensensConfig | None = None


def get_config() -> OpensensConfig:
    global _config
    if _config is None:
        _config = OpensensConfig.from_env()
    return _config
