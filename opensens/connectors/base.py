"""Connector contract shared by every OSINT source."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import httpx

from ..core.config import OpensensConfig
from ..core.logger import get_logger
from ..credentials import CredentialGate, TokenCache
from ..rate_limiter import parse_retry_after
from ..signals import (
    BBox,
    ConnectorMetadata,
    OsintSignal,
    Sentiment,
    error_signal,
    normalize_countries,
    normalize_keyword_counts,
)

logger = get_logger(__name__)

# Statuses whose Retry-After header is forwarded to the rate limiter
_RETRY_AFTER_STATUSES = (429, 503)


class UpstreamError(Exception):
    """An upstream call failed (non-success status, bad payload, auth failure)."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after


@dataclass
class ConnectorContext:
    """Per-call collaborators handed to Connector.fetch()."""
    client: httpx.AsyncClient
    gate: CredentialGate
    tokens: TokenCache
    config: OpensensConfig = field(default_factory=OpensensConfig)
    on_retry_after: Callable[[float], None] = lambda seconds: None


class Connector(ABC):
    """
    One upstream OSINT source.

    Subclasses set `meta` and implement `_collect()`, which may raise
    UpstreamError or httpx errors freely. `fetch()` is the public entry
    point and never raises for recoverable conditions: failures come back
    as a zero-credibility signal with `error` set.
    """

    meta: ConnectorMetadata

    @property
    def id(self) -> str:
        return self.meta.id

    async def fetch(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        try:
            return await self._collect(region, time_range, ctx)
        except UpstreamError as e:
            logger.warning("connector_upstream_error", connector=self.id, status=e.status, error=str(e))
            return error_signal(self.id, region, str(e))
        except httpx.TimeoutException:
            logger.warning("connector_timeout", connector=self.id)
            return error_signal(self.id, region, f"{self.id} request timed out")
        except httpx.HTTPError as e:
            logger.warning("connector_http_error", connector=self.id, error=type(e).__name__)
            return error_signal(self.id, region, f"{self.id} request failed: {type(e).__name__}")
        except (ArithmeticError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("connector_normalize_failed", connector=self.id, error=str(e))
            return error_signal(self.id, region, f"{self.id} returned an unexpected payload")

    @abstractmethod
    async def _collect(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        """Fetch raw upstream data and normalize it to an OsintSignal."""
        ...

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    async def _request_json(
        self,
        ctx: ConnectorContext,
        url: str,
        *,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Issue one request; raise UpstreamError on any non-2xx or non-JSON reply."""
        merged = {"User-Agent": ctx.config.user_agent, "Accept": "application/json"}
        if headers:
            merged.update(headers)
        resp = await ctx.client.request(
            method,
            url,
            params=params,
            json=json,
            headers=merged,
            timeout=ctx.config.connector_timeout,
        )

        retry_after = None
        if resp.status_code in _RETRY_AFTER_STATUSES:
            retry_after = parse_retry_after(resp.headers.get("Retry-After"))
            if retry_after:
                ctx.on_retry_after(retry_after)

        if not resp.is_success:
            raise UpstreamError(
                f"{self.id} returned HTTP {resp.status_code}",
                status=resp.status_code,
                retry_after=retry_after,
            )
        try:
            return resp.json()
        except ValueError:
            raise UpstreamError(f"{self.id} returned malformed JSON", status=resp.status_code) from None

    def _signal(
        self,
        region: BBox,
        event_count: int,
        keyword_counts: Mapping[str, int],
        sentiment: Sentiment,
        countries: Iterable[str] = (),
    ) -> OsintSignal:
        """Build the normalized, aggregate-only signal for this connector."""
        return OsintSignal(
            connector_id=self.id,
            bbox=region,
            countries=normalize_countries(countries),
            event_count=max(0, int(event_count)),
            keyword_counts=normalize_keyword_counts(keyword_counts),
            sentiment=sentiment,
            credibility=self.meta.credibility,
        )
