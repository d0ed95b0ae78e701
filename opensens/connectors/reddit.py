"""Reddit connector (OAuth2, gated).

Source tier: gated-opt-in. Requires a registered Reddit app
(REDDIT_CLIENT_ID + REDDIT_CLIENT_SECRET) and explicit enablement by the
caller; with either missing the gate short-circuits before any network
call. Reddit's Data API terms forbid retaining post content, so post
titles are matched against the watchlist, scored, and discarded.

Reddit allows 100 OAuth requests per minute. The limiter admits one permit
per fetch and a fetch costs up to one token request plus one listing per
subreddit, so subreddits are capped per fetch and the declared policy is
the upstream quota divided by that worst-case cost.
"""

from datetime import datetime, timezone

import httpx

from ..core.logger import get_logger
from ..credentials import OAuthProvider
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
from .base import Connector, ConnectorContext, UpstreamError

logger = get_logger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
API_BASE = "https://oauth.reddit.com"
POSTS_PER_SUBREDDIT = 25
MAX_SUBREDDITS_PER_FETCH = 6
UPSTREAM_REQUESTS_PER_MINUTE = 100


class RedditConnector(Connector):
    meta = ConnectorMetadata(
        id="reddit",
        name="Reddit (OAuth2, gated)",
        source_tier=SourceTier.GATED_OPT_IN,
        requires_opt_in=True,
        rate_limit=RateLimitPolicy(
            max_requests=UPSTREAM_REQUESTS_PER_MINUTE // (MAX_SUBREDDITS_PER_FETCH + 1),
            window_seconds=60,
        ),
        credibility=0.60,
        credential_sets=(("REDDIT_CLIENT_ID", "REDDIT_CLIENT_SECRET"),),
    )

    def _provider(self, ctx: ConnectorContext) -> OAuthProvider:
        return OAuthProvider(
            name="reddit",
            token_url=TOKEN_URL,
            grant={"grant_type": "client_credentials"},
            basic_auth=(ctx.gate.secret("REDDIT_CLIENT_ID"), ctx.gate.secret("REDDIT_CLIENT_SECRET")),
        )

    async def _collect(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        token = await ctx.tokens.get_token(self._provider(ctx), ctx.client)
        if not token:
            raise UpstreamError("reddit OAuth token exchange failed")

        since = (datetime.now(timezone.utc) - parse_time_range(time_range)).timestamp()
        subreddits = ctx.config.reddit_subreddits[:MAX_SUBREDDITS_PER_FETCH]
        if len(ctx.config.reddit_subreddits) > MAX_SUBREDDITS_PER_FETCH:
            logger.warning(
                "reddit_subreddits_truncated",
                configured=len(ctx.config.reddit_subreddits),
                used=MAX_SUBREDDITS_PER_FETCH,
            )
        tally = TextTally(ctx.config.keywords)
        reachable = 0

        for sub in subreddits:
            try:
                listing = await self._request_json(
                    ctx,
                    f"{API_BASE}/r/{sub}/hot",
                    params={"limit": POSTS_PER_SUBREDDIT, "raw_json": 1},
                    headers={"Authorization": f"Bearer {token}"},
                )
            except (UpstreamError, httpx.HTTPError) as e:
                logger.debug("reddit_subreddit_skipped", subreddit=sub, error=str(e) or type(e).__name__)
                continue
            reachable += 1
            for child in listing.get("data", {}).get("children", []):
                post = child.get("data") or {}
                if post.get("stickied") or float(post.get("created_utc") or since) < since:
                    continue
                tally.add(str(post.get("title") or ""))

        if subreddits and reachable == 0:
            raise UpstreamError("reddit: no subreddit listing could be fetched")

        return self._signal(
            GLOBAL_BBOX,
            event_count=tally.matched,
            keyword_counts=tally.keyword_counts,
            sentiment=tally.sentiment,
        )
