"""Aggregate-only OSINT signal schema.

Every connector normalizes its upstream payload into an OsintSignal. The
schema carries derived counts only: keyword occurrence counts, sentiment
bins, event totals and country codes. Raw text, usernames, URLs and post
identifiers never enter a signal; keyword keys are validated on
construction so a connector that leaks free text fails loudly instead of
persisting it.
"""

import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

BBox = Tuple[float, float, float, float]   # (minLon, minLat, maxLon, maxLat)

GLOBAL_BBOX: BBox = (-180.0, -90.0, 180.0, 90.0)

MAX_KEYWORD_LENGTH = 48
MAX_KEYWORD_WORDS = 4
MAX_ERROR_LENGTH = 300
MAX_TIME_RANGE = timedelta(days=90)

_KEYWORD_RE = re.compile(r"^[\w][\w .&/+'\-]*$", re.UNICODE)
_COUNTRY_RE = re.compile(r"^[A-Z]{2,3}$")
_TIME_RANGE_RE = re.compile(r"^(\d{1,4})([hdw])$")
_TIME_UNITS = {"h": "hours", "d": "days", "w": "weeks"}


class InvalidRequestError(ValueError):
    """Raised for malformed aggregation parameters (the only hard failure)."""


class SourceTier(str, Enum):
    OFFICIAL_API = "official-api"
    USER_GENERATED = "user-generated"
    GATED_OPT_IN = "gated-opt-in"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Connector metadata
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    window_seconds: float

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

    @property
    def min_interval(self) -> float:
        """Spacing between calls when the policy is a fixed interval."""
        return self.window_seconds / self.max_requests

    def to_dict(self) -> dict:
        return {"maxRequests": self.max_requests, "windowSeconds": self.window_seconds}


@dataclass(frozen=True)
class ConnectorMetadata:
    id: str
    name: str
    source_tier: SourceTier
    requires_opt_in: bool
    rate_limit: RateLimitPolicy
    credibility: float
    # Any one fully configured set of secret names satisfies the gate
    credential_sets: Tuple[Tuple[str, ...], ...] = ()

    def __post_init__(self):
        if not self.id:
            raise ValueError("connector id must be non-empty")
        if not 0.0 <= self.credibility <= 1.0:
            raise ValueError(f"{self.id}: credibility must be within [0, 1]")
        if self.source_tier is SourceTier.GATED_OPT_IN and not self.requires_opt_in:
            raise ValueError(f"{self.id}: gated-opt-in connectors must require opt-in")

    @property
    def is_gated(self) -> bool:
        return self.source_tier is SourceTier.GATED_OPT_IN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sourceTier": self.source_tier.value,
            "requiresOptIn": self.requires_opt_in,
            "rateLimit": self.rate_limit.to_dict(),
            "credibility": self.credibility,
        }


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sentiment:
    positive: int = 0
    neutral: int = 0
    negative: int = 0

    def __post_init__(self):
        for name in ("positive", "neutral", "negative"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"sentiment.{name} must be a non-negative integer")

    def __add__(self, other: "Sentiment") -> "Sentiment":
        return Sentiment(
            positive=self.positive + other.positive,
            neutral=self.neutral + other.neutral,
            negative=self.negative + other.negative,
        )

    @property
    def total(self) -> int:
        return self.positive + self.neutral + self.negative

    def to_dict(self) -> dict:
        return {"positive": self.positive, "neutral": self.neutral, "negative": self.negative}


@dataclass(frozen=True)
class OsintSignal:
    connector_id: str
    bbox: BBox
    countries: Tuple[str, ...] = ()
    event_count: int = 0
    keyword_counts: Mapping[str, int] = field(default_factory=dict)
    sentiment: Sentiment = field(default_factory=Sentiment)
    bucket_start_iso: str = field(default_factory=utc_now_iso)
    credibility: float = 0.0
    error: Optional[str] = None
    stale: bool = False

    def __post_init__(self):
        object.__setattr__(self, "bbox", tuple(float(v) for v in self.bbox))
        object.__setattr__(self, "countries", tuple(self.countries))
        object.__setattr__(self, "keyword_counts", MappingProxyType(dict(self.keyword_counts)))
        if len(self.bbox) != 4:
            raise ValueError("bbox must have four values")
        if not isinstance(self.event_count, int) or self.event_count < 0:
            raise ValueError("event_count must be a non-negative integer")
        if not 0.0 <= self.credibility <= 1.0:
            raise ValueError("credibility must be within [0, 1]")
        if self.error is not None and self.credibility > 0:
            raise ValueError("an errored signal must carry zero credibility")
        for code in self.countries:
            if not _COUNTRY_RE.match(code):
                raise ValueError(f"invalid country code: {code!r}")
        for key, count in self.keyword_counts.items():
            if not is_derived_keyword(key):
                raise ValueError("keyword_counts may only hold derived keyword tokens")
            if not isinstance(count, int) or count < 0:
                raise ValueError("keyword counts must be non-negative integers")

    @property
    def is_contributor(self) -> bool:
        return self.credibility > 0

    def as_stale(self) -> "OsintSignal":
        return replace(self, stale=True)

    def to_dict(self) -> dict:
        data = {
            "connectorId": self.connector_id,
            "bbox": list(self.bbox),
            "countries": list(self.countries),
            "eventCount": self.event_count,
            "keywordCounts": dict(self.keyword_counts),
            "sentiment": self.sentiment.to_dict(),
            "bucketStartIso": self.bucket_start_iso,
            "credibility": self.credibility,
            "stale": self.stale,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class CompositeSignal:
    bbox: BBox
    time_range: str
    bucket_start_iso: str
    countries: Tuple[str, ...] = ()
    event_count: int = 0
    keyword_counts: Mapping[str, int] = field(default_factory=dict)
    sentiment: Sentiment = field(default_factory=Sentiment)
    weighted_credibility: float = 0.0
    contributors: Tuple[str, ...] = ()
    stale_contributors: Tuple[str, ...] = ()
    skipped: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "keyword_counts", MappingProxyType(dict(self.keyword_counts)))
        object.__setattr__(self, "skipped", MappingProxyType(dict(self.skipped)))

    @property
    def has_data(self) -> bool:
        return bool(self.contributors)

    def to_dict(self) -> dict:
        return {
            "bbox": list(self.bbox),
            "timeRange": self.time_range,
            "bucketStartIso": self.bucket_start_iso,
            "countries": list(self.countries),
            "eventCount": self.event_count,
            "keywordCounts": dict(self.keyword_counts),
            "sentiment": self.sentiment.to_dict(),
            "weightedCredibility": self.weighted_credibility,
            "contributors": list(self.contributors),
            "staleContributors": list(self.stale_contributors),
            "skipped": dict(self.skipped),
        }


# ---------------------------------------------------------------------------
# Normalization helpers (privacy enforcement)
# ---------------------------------------------------------------------------

def is_derived_keyword(key) -> bool:
    """True for short derived tokens; False for anything resembling raw content."""
    if not isinstance(key, str) or not key or len(key) > MAX_KEYWORD_LENGTH:
        return False
    if "@" in key or "://" in key or key.lower().startswith("www."):
        return False
    if len(key.split()) > MAX_KEYWORD_WORDS:
        return False
    return bool(_KEYWORD_RE.match(key))


def normalize_keyword_counts(counts: Mapping) -> Dict[str, int]:
    """Drop non-derived keys and non-positive counts."""
    result: Dict[str, int] = {}
    for key, count in counts.items():
        if not is_derived_keyword(key):
            continue
        try:
            value = int(count)
        except (TypeError, ValueError):
            continue
        if value > 0:
            result[key] = result.get(key, 0) + value
    return result


def normalize_countries(codes: Iterable) -> Tuple[str, ...]:
    """Upper-case ISO codes, drop anything that is not a 2/3 letter code."""
    seen = set()
    for code in codes:
        if not isinstance(code, str):
            continue
        code = code.strip().upper()
        if _COUNTRY_RE.match(code):
            seen.add(code)
    return tuple(sorted(seen))


def error_signal(connector_id: str, bbox: BBox, error: str) -> OsintSignal:
    """Zero-credibility signal returned when a connector could not run."""
    return OsintSignal(
        connector_id=connector_id,
        bbox=bbox,
        credibility=0.0,
        error=(error or "unknown error")[:MAX_ERROR_LENGTH],
    )


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------

def validate_bbox(value: Union[str, Sequence]) -> BBox:
    """Parse "minLon,minLat,maxLon,maxLat" (or a 4-sequence) into a BBox."""
    if isinstance(value, str):
        parts: Sequence = [p for p in value.split(",")]
    elif isinstance(value, (list, tuple)):
        parts = value
    else:
        raise InvalidRequestError("bbox must be a list of four numbers")
    if len(parts) != 4:
        raise InvalidRequestError("bbox must have exactly four values: minLon,minLat,maxLon,maxLat")
    try:
        min_lon, min_lat, max_lon, max_lat = (float(p) for p in parts)
    except (TypeError, ValueError):
        raise InvalidRequestError("bbox values must be numbers") from None
    if not all(math.isfinite(v) for v in (min_lon, min_lat, max_lon, max_lat)):
        raise InvalidRequestError("bbox values must be finite")
    if not (-180.0 <= min_lon <= max_lon <= 180.0):
        raise InvalidRequestError("bbox longitudes must satisfy -180 <= minLon <= maxLon <= 180")
    if not (-90.0 <= min_lat <= max_lat <= 90.0):
        raise InvalidRequestError("bbox latitudes must satisfy -90 <= minLat <= maxLat <= 90")
    return (min_lon, min_lat, max_lon, max_lat)


def parse_time_range(value: str) -> timedelta:
    """Parse "24h" / "3d" / "1w" into a timedelta."""
    if not isinstance(value, str):
        raise InvalidRequestError("time range must be a string such as '3d'")
    match = _TIME_RANGE_RE.match(value.strip())
    if not match:
        raise InvalidRequestError("time range must look like '24h', '3d' or '1w'")
    amount = int(match.group(1))
    span = timedelta(**{_TIME_UNITS[match.group(2)]: amount})
    if amount < 1 or span > MAX_TIME_RANGE:
        raise InvalidRequestError("time range must be between 1h and 90d")
    return span


def bbox_contains(bbox: BBox, lon: float, lat: float) -> bool:
    min_lon, min_lat, max_lon, max_lat = bbox
    return min_lon <= lon <= max_lon and min_lat <= lat <= max_lat


def bbox_center(bbox: BBox) -> Tuple[float, float]:
    """(lat, lon) of the bbox center."""
    min_lon, min_lat, max_lon, max_lat = bbox
    return (min_lat + max_lat) / 2, (min_lon + max_lon) / 2


def merge_keyword_counts(maps: Iterable[Mapping[str, int]]) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for counts in maps:
        for key, count in counts.items():
            merged[key] = merged.get(key, 0) + count
    return merged


def sorted_unique(values: Iterable[str]) -> List[str]:
    return sorted(set(values))
