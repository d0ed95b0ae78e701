"""
OpenSens OSINT signal aggregation.

Pluggable connectors poll unreliable upstream sources (official APIs, public
social timelines, gated paid APIs) behind a credential/opt-in gate, a
per-connector rate limiter, a circuit breaker and a stale-while-revalidate
cache. Their aggregate-only signals are fused per bbox/time range into one
CompositeSignal.
"""
from .aggregator import Aggregator, fuse, weighted_credibility
from .registry import ConnectorRegistry, RegistryError, default_registry
from .signals import (
    CompositeSignal,
    ConnectorMetadata,
    InvalidRequestError,
    OsintSignal,
    RateLimitPolicy,
    Sentiment,
    SourceTier,
)
from .state import OsintState

__version__ = "1.0.0"

__all__ = [
    "Aggregator", "fuse", "weighted_credibility",
    "ConnectorRegistry", "RegistryError", "default_registry",
    "CompositeSignal", "ConnectorMetadata", "InvalidRequestError",
    "OsintSignal", "RateLimitPolicy", "Sentiment", "SourceTier",
    "OsintState",
]
