"""ReliefWeb connector (UN OCHA humanitarian reports).

Source tier: official-api, no key (an appname query parameter identifies
the client). Report titles and URLs are never requested, only
country, disaster and date fields. A report counts toward the signal
when one of its tagged countries lies inside the requested bbox.
"""

from datetime import datetime, timezone
from typing import Dict, List

from ..signals import (
    BBox,
    ConnectorMetadata,
    OsintSignal,
    RateLimitPolicy,
    Sentiment,
    SourceTier,
    bbox_contains,
    parse_time_range,
)
from .base import Connector, ConnectorContext

RELIEFWEB_REPORTS_URL = "https://api.reliefweb.int/v1/reports"
APP_NAME = "opensens"
REPORT_LIMIT = 200


class ReliefWebConnector(Connector):
    meta = ConnectorMetadata(
        id="reliefweb",
        name="ReliefWeb Crisis Reports (UN OCHA)",
        source_tier=SourceTier.OFFICIAL_API,
        requires_opt_in=False,
        rate_limit=RateLimitPolicy(max_requests=1, window_seconds=2),
        credibility=0.80,   # curated humanitarian reporting
    )

    async def _collect(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        since = (datetime.now(timezone.utc) - parse_time_range(time_range)).strftime("%Y-%m-%dT%H:%M:%S+00:00")
        body = {
            "filter": {
                "operator": "AND",
                "conditions": [{"field": "date.created", "value": {"from": since}}],
            },
            "fields": {"include": ["date.created", "country", "disaster"]},
            "sort": ["date.created:desc"],
            "limit": REPORT_LIMIT,
        }
        data = await self._request_json(
            ctx,
            RELIEFWEB_REPORTS_URL,
            method="POST",
            params={"appname": APP_NAME},
            json=body,
        )
        return self._normalize(data, region)

    def _normalize(self, raw, region: BBox) -> OsintSignal:
        items = (raw.get("data") or []) if isinstance(raw, dict) else []
        disaster_counts: Dict[str, int] = {}
        countries: List[str] = []
        neutral = negative = 0

        for item in items:
            fields = (item.get("fields") or {}) if isinstance(item, dict) else {}
            inside = [c for c in fields.get("country") or [] if _country_in_bbox(c, region)]
            if not inside:
                continue
            countries.extend(str(c.get("iso3") or "") for c in inside)

            disasters = fields.get("disaster") or []
            for disaster in disasters:
                for dtype in disaster.get("type") or []:
                    name = str(dtype.get("name") or "").strip()
                    if name:
                        disaster_counts[name] = disaster_counts.get(name, 0) + 1
            if disasters:
                negative += 1
            else:
                neutral += 1

        return self._signal(
            region,
            event_count=neutral + negative,
            keyword_counts=disaster_counts,
            sentiment=Sentiment(neutral=neutral, negative=negative),
            countries=countries,
        )


def _country_in_bbox(country, region: BBox) -> bool:
    if not isinstance(country, dict):
        return False
    location = country.get("location") or {}
    try:
        lat = float(location["lat"])
        lon = float(location["lon"])
    except (KeyError, TypeError, ValueError):
        return False
    return bbox_contains(region, lon, lat)
