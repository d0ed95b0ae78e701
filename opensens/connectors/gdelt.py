"""GDELT connector (Global Knowledge Graph via the GEO 2.0 API).

Source tier: official-api, no API key. GDELT data is free for
non-commercial research use; the project asks clients to stay under about
one request per second, and this connector is limited to one call every
two seconds.

Only theme counts and tone bins leave this module. GDELT already
aggregates over millions of articles, and article titles and URLs are
dropped during normalization.
"""

import math
from typing import Dict

from ..signals import BBox, ConnectorMetadata, OsintSignal, RateLimitPolicy, Sentiment, SourceTier, bbox_center
from .base import Connector, ConnectorContext

GDELT_GEO_BASE = "https://api.gdeltproject.org/api/v2/geo/geo"

THEMES = [
    "ENV_SOLAR", "ENV_WIND", "ENV_POWER", "ECON_AFFORD_ENERGY", "INFRASTRUCTURE",
    "PROTEST", "ARMEDCONFLICT", "CYBER_ATTACK", "NATURAL_DISASTER",
]

# GDELT tone is roughly -10..+10; values within ±1 are treated as neutral
TONE_NEUTRAL_BAND = 1.0
KM_PER_DEGREE = 111.0
MAX_RECORDS = 250


class GdeltConnector(Connector):
    meta = ConnectorMetadata(
        id="gdelt",
        name="GDELT Project (Global Knowledge Graph)",
        source_tier=SourceTier.OFFICIAL_API,
        requires_opt_in=False,
        rate_limit=RateLimitPolicy(max_requests=1, window_seconds=2),
        credibility=0.70,   # aggregates unverified media; moderate credibility
    )

    async def _collect(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        min_lon, min_lat, max_lon, max_lat = region
        lat, lon = bbox_center(region)
        radius_km = max(1.0, max(max_lat - min_lat, max_lon - min_lon) * KM_PER_DEGREE / 2)
        params = {
            "query": " OR ".join(f"theme:{t}" for t in THEMES),
            "mode": "artlist",
            "maxrecords": str(MAX_RECORDS),
            "timespan": time_range,
            "format": "json",
            "lat": f"{lat:.4f}",
            "lon": f"{lon:.4f}",
            "radius": f"{radius_km:.0f}",
        }
        data = await self._request_json(ctx, GDELT_GEO_BASE, params=params)
        return self._normalize(data, region)

    def _normalize(self, raw, region: BBox) -> OsintSignal:
        articles = (raw.get("articles") or []) if isinstance(raw, dict) else []
        themes: Dict[str, int] = {}
        pos = neu = neg = 0

        for art in articles:
            if not isinstance(art, dict):
                continue
            for theme in str(art.get("themes") or "").split(";"):
                theme = theme.strip()
                if theme:
                    themes[theme] = themes.get(theme, 0) + 1
            tone = _first_float(art.get("tone"))
            if tone > TONE_NEUTRAL_BAND:
                pos += 1
            elif tone < -TONE_NEUTRAL_BAND:
                neg += 1
            else:
                neu += 1

        return self._signal(
            region,
            event_count=pos + neu + neg,
            keyword_counts=themes,
            sentiment=Sentiment(positive=pos, neutral=neu, negative=neg),
        )


def _first_float(value) -> float:
    """First comma-separated component of a GDELT tone field; NaN-safe."""
    try:
        tone = float(str(value or "").split(",")[0])
    except ValueError:
        return 0.0
    return tone if math.isfinite(tone) else 0.0
