"""X (Twitter) API v2 connector (gated, paid).

Source tier: gated-opt-in. Needs OPENSENS_X_BEARER_TOKEN (Basic plan or
higher) plus explicit enablement. The search requests no author
expansions. Tweet text is matched and scored in memory and then dropped,
as required by the X developer terms for derived aggregate use.

Rate limit: 100 search queries / 15 min. Recent search only reaches back
seven days, so longer time ranges are clamped.
"""

from datetime import datetime, timedelta, timezone

from ..signals import (
    GLOBAL_BBOX,
    BBox,
    ConnectorMetadata,
    OsintSignal,
    RateLimitPolicy,
    SourceTier,
    parse_time_range,
)
from ..sentiment import TextTally
from .base import Connector, ConnectorContext

SEARCH_URL = "https://api.twitter.com/2/tweets/search/recent"
MAX_RESULTS = 100
SEARCH_HORIZON = timedelta(days=7) - timedelta(minutes=1)


class XTwitterConnector(Connector):
    meta = ConnectorMetadata(
        id="x-twitter",
        name="X (Twitter) API v2 (gated, paid)",
        source_tier=SourceTier.GATED_OPT_IN,
        requires_opt_in=True,
        rate_limit=RateLimitPolicy(max_requests=100, window_seconds=900),
        credibility=0.65,
        credential_sets=(("OPENSENS_X_BEARER_TOKEN",),),
    )

    async def _collect(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        keywords = ctx.config.keywords
        span = min(parse_time_range(time_range), SEARCH_HORIZON)
        start = datetime.now(timezone.utc) - span
        terms = " OR ".join(f'"{kw}"' if " " in kw else kw for kw in keywords)
        params = {
            "query": f"({terms}) -is:retweet",
            "max_results": MAX_RESULTS,
            "start_time": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "tweet.fields": "created_at",
        }
        data = await self._request_json(
            ctx,
            SEARCH_URL,
            params=params,
            headers={"Authorization": f"Bearer {ctx.gate.secret('OPENSENS_X_BEARER_TOKEN')}"},
        )

        tally = TextTally(keywords)
        for tweet in data.get("data") or []:
            tally.add(str(tweet.get("text") or ""))

        return self._signal(
            GLOBAL_BBOX,
            event_count=tally.matched,
            keyword_counts=tally.keyword_counts,
            sentiment=tally.sentiment,
        )
