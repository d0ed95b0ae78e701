"""OSINT aggregator / fusion engine.

Usage:
    async with Aggregator() as agg:
        composite = await agg.aggregate("-10,35,30,60", "3d", ["gdelt", "acled"])

aggregate() raises InvalidRequestError for malformed input and nothing
else: every connector outcome (gated, rate limited, errored, circuit open)
degrades to a non-contributing signal recorded in `skipped`.
"""

import asyncio
import math
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx

from .core.config import OpensensConfig, get_config
from .core.logger import get_logger
from .invoker import ConnectorInvoker
from .registry import ConnectorRegistry, default_registry
from .signals import (
    BBox,
    CompositeSignal,
    InvalidRequestError,
    OsintSignal,
    Sentiment,
    error_signal,
    merge_keyword_counts,
    parse_time_range,
    sorted_unique,
    validate_bbox,
)
from .state import OsintState

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------

def _squared(credibilities: Sequence[float]) -> float:
    total = math.fsum(credibilities)
    return math.fsum(c * c for c in credibilities) / total if total > 0 else 0.0


def _linear(credibilities: Sequence[float]) -> float:
    return math.fsum(credibilities) / len(credibilities) if credibilities else 0.0


WEIGHTINGS: Dict[str, Callable[[Sequence[float]], float]] = {
    "squared": _squared,   # Σc² / Σc
    "linear": _linear,     # plain mean
}


def weighted_credibility(credibilities: Iterable[float], weighting: str = "squared") -> float:
    """Composite trust score over contributor credibilities (zeros ignored)."""
    try:
        fn = WEIGHTINGS[weighting]
    except KeyError:
        raise ValueError(f"unknown credibility weighting: {weighting!r}") from None
    return fn([c for c in credibilities if c > 0])


def fuse(
    signals: Iterable[OsintSignal],
    bbox: BBox,
    time_range: str,
    weighting: str = "squared",
    skipped: Optional[Mapping[str, str]] = None,
    bucket_start_iso: Optional[str] = None,
) -> CompositeSignal:
    """
    Merge per-connector signals into one CompositeSignal.

    Order-independent: counts are integer sums, credibility uses exact
    float summation, and all id/country lists are sorted.
    """
    signals = list(signals)
    reasons: Dict[str, str] = dict(skipped or {})
    contributors: List[OsintSignal] = []
    for signal in signals:
        if signal.is_contributor:
            contributors.append(signal)
        else:
            reasons[signal.connector_id] = signal.error or "no data"

    sentiment = Sentiment()
    for signal in contributors:
        sentiment = sentiment + signal.sentiment

    return CompositeSignal(
        bbox=tuple(bbox),
        time_range=time_range,
        bucket_start_iso=bucket_start_iso or _bucket_start(time_range),
        countries=tuple(sorted_unique(code for s in contributors for code in s.countries)),
        event_count=sum(s.event_count for s in contributors),
        keyword_counts=dict(sorted(merge_keyword_counts(s.keyword_counts for s in contributors).items())),
        sentiment=sentiment,
        weighted_credibility=weighted_credibility((s.credibility for s in contributors), weighting),
        contributors=tuple(sorted_unique(s.connector_id for s in contributors)),
        stale_contributors=tuple(sorted_unique(s.connector_id for s in contributors if s.stale)),
        skipped=dict(sorted(reasons.items())),
    )


def _bucket_start(time_range: str) -> str:
    """Start of the requested window, truncated to the hour (UTC)."""
    start = datetime.now(timezone.utc) - parse_time_range(time_range)
    return start.replace(minute=0, second=0, microsecond=0).isoformat()


def _enabled_ids(value) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        raise InvalidRequestError("enabled connector ids must be a list of strings")
    ids = []
    for cid in value:
        if not isinstance(cid, str) or not cid.strip():
            raise InvalidRequestError("enabled connector ids must be non-empty strings")
        ids.append(cid.strip())
    return sorted(set(ids))


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class Aggregator:
    """
    Runs the enabled connectors for a bbox/time range and fuses the results.

    State (limiter, breaker, caches, tokens) comes from the injected
    OsintState; the HTTP client is created and owned here unless one is
    passed in.
    """

    def __init__(
        self,
        registry: Optional[ConnectorRegistry] = None,
        state: Optional[OsintState] = None,
        config: Optional[OpensensConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self.registry = registry or default_registry()
        self.state = state or OsintState.from_config(self.config)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": self.config.user_agent},
            timeout=self.config.connector_timeout,
            follow_redirects=True,
        )
        self._invoker = ConnectorInvoker(self.state, self.client, self.config)

    async def aggregate(
        self,
        bbox,
        time_range: str,
        enabled_connector_ids: Optional[Iterable[str]] = None,
    ) -> CompositeSignal:
        region = validate_bbox(bbox)
        parse_time_range(time_range)
        enabled = _enabled_ids(enabled_connector_ids)

        connectors, skipped = self.registry.select(enabled)
        explicit = set(enabled or ())
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _run(connector):
            async with semaphore:
                return await self._invoker.invoke(connector, region, time_range, connector.id in explicit)

        t0 = asyncio.get_running_loop().time()
        results = await asyncio.gather(*(_run(c) for c in connectors), return_exceptions=True)

        signals: List[OsintSignal] = []
        for connector, result in zip(connectors, results):
            if isinstance(result, BaseException):
                logger.error(
                    "connector_call_failed",
                    connector=connector.id,
                    error=f"{type(result).__name__}: {result}",
                )
                result = error_signal(connector.id, region, f"{connector.id} failed unexpectedly")
            signals.append(result)

        composite = fuse(
            signals,
            region,
            time_range,
            weighting=self.config.credibility_weighting,
            skipped=skipped,
        )
        logger.info(
            "osint_aggregate_complete",
            bbox=list(region),
            time_range=time_range,
            contributors=list(composite.contributors),
            skipped=len(composite.skipped),
            event_count=composite.event_count,
            elapsed_ms=round((asyncio.get_running_loop().time() - t0) * 1000),
        )
        return composite

    async def aclose(self) -> None:
        await self.state.aclose()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "Aggregator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
