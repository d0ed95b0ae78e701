"""ACLED connector (Armed Conflict Location & Event Data, gated).

Source tier: gated-opt-in. Credentials are either ACLED_EMAIL +
ACLED_PASSWORD, exchanged for a bearer token via OAuth (password grant,
then refresh-token renewal through the shared token cache), or a static
ACLED_ACCESS_TOKEN used as-is. The read API is queried for the bbox and
the time window. Only event-type counts, fatality-based sentiment bins and
ISO3 country codes are kept; actors, notes and sources are dropped.
"""

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..credentials import OAuthProvider
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
from .base import Connector, ConnectorContext, UpstreamError

TOKEN_URL = "https://acleddata.com/oauth/token"
READ_URL = "https://acleddata.com/api/acled/read"
EVENT_TYPES = "Battles|Explosions/Remote violence|Violence against civilians|Protests|Riots"
EVENT_LIMIT = 500


class AcledConnector(Connector):
    meta = ConnectorMetadata(
        id="acled",
        name="ACLED Conflict Events (OAuth, gated)",
        source_tier=SourceTier.GATED_OPT_IN,
        requires_opt_in=True,
        rate_limit=RateLimitPolicy(max_requests=1, window_seconds=2),
        credibility=0.85,   # researcher-coded event data
        credential_sets=(("ACLED_EMAIL", "ACLED_PASSWORD"), ("ACLED_ACCESS_TOKEN",)),
    )

    async def _token(self, ctx: ConnectorContext) -> Optional[str]:
        email = ctx.gate.secret("ACLED_EMAIL")
        password = ctx.gate.secret("ACLED_PASSWORD")
        if email and password:
            provider = OAuthProvider(
                name="acled",
                token_url=TOKEN_URL,
                grant={
                    "username": email,
                    "password": password,
                    "grant_type": "password",
                    "client_id": "acled",
                },
                refresh_extra={"client_id": "acled"},
            )
            token = await ctx.tokens.get_token(provider, ctx.client)
            if token:
                return token
        # Static token from env
        return ctx.gate.secret("ACLED_ACCESS_TOKEN") or None

    async def _collect(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        token = await self._token(ctx)
        if not token:
            raise UpstreamError("acled authentication failed")

        end = datetime.now(timezone.utc)
        start = end - parse_time_range(time_range)
        min_lon, min_lat, max_lon, max_lat = region
        params = {
            "event_type": EVENT_TYPES,
            "event_date": f"{start:%Y-%m-%d}|{end:%Y-%m-%d}",
            "event_date_where": "BETWEEN",
            "latitude": f"{min_lat}|{max_lat}",
            "latitude_where": "BETWEEN",
            "longitude": f"{min_lon}|{max_lon}",
            "longitude_where": "BETWEEN",
            "limit": str(EVENT_LIMIT),
            "_format": "json",
        }
        data = await self._request_json(
            ctx, READ_URL, params=params, headers={"Authorization": f"Bearer {token}"}
        )
        return self._normalize(data, region)

    def _normalize(self, raw, region: BBox) -> OsintSignal:
        events = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(events, list):
            events = []
        type_counts: Dict[str, int] = {}
        countries: List[str] = []
        neutral = negative = 0

        for event in events:
            try:
                lat = float(event.get("latitude"))
                lon = float(event.get("longitude"))
            except (TypeError, ValueError):
                continue
            if not (math.isfinite(lat) and math.isfinite(lon)) or not bbox_contains(region, lon, lat):
                continue

            event_type = str(event.get("event_type") or "").strip()
            if event_type:
                type_counts[event_type] = type_counts.get(event_type, 0) + 1
            if event.get("iso3"):
                countries.append(str(event["iso3"]))
            if _int(event.get("fatalities")) > 0:
                negative += 1
            else:
                neutral += 1

        return self._signal(
            region,
            event_count=neutral + negative,
            keyword_counts=type_counts,
            sentiment=Sentiment(neutral=neutral, negative=negative),
            countries=countries,
        )


def _int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
