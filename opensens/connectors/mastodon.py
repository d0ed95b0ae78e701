"""Mastodon public-timeline connector.

Source tier: user-generated, no auth. Only PUBLIC posts are reachable
this way. Post content is matched against the keyword watchlist and scored
with VADER, then discarded. Usernames, avatars, post text and URLs are never
kept.

Most instances allow ~300 requests / 5 min; the connector is limited to
one call every two seconds and forwards Retry-After hints. An unavailable
instance is skipped. Only when every instance fails is the call reported
as an upstream failure.
"""

from datetime import datetime, timezone
from typing import List, Optional

import httpx

from ..core.logger import get_logger
from ..signals import (
    GLOBAL_BBOX,
    BBox,
    ConnectorMetadata,
    OsintSignal,
    RateLimitPolicy,
    SourceTier,
    parse_time_range,
)
from ..sentiment import TextTally, strip_html
from .base import Connector, ConnectorContext, UpstreamError

logger = get_logger(__name__)

TIMELINE_LIMIT = 40


class MastodonConnector(Connector):
    meta = ConnectorMetadata(
        id="mastodon",
        name="Mastodon Public Timeline",
        source_tier=SourceTier.USER_GENERATED,
        requires_opt_in=False,
        rate_limit=RateLimitPolicy(max_requests=1, window_seconds=2),
        credibility=0.55,   # user-generated content; moderate-low credibility
    )

    async def _collect(self, region: BBox, time_range: str, ctx: ConnectorContext) -> OsintSignal:
        since = datetime.now(timezone.utc) - parse_time_range(time_range)
        instances = ctx.config.mastodon_instances
        tally = TextTally(ctx.config.keywords)
        reachable = 0
        last_error: Optional[Exception] = None

        for instance in instances:
            try:
                toots = await self._request_json(
                    ctx,
                    f"https://{instance}/api/v1/timelines/public",
                    params={"limit": TIMELINE_LIMIT, "local": "false"},
                )
            except (UpstreamError, httpx.HTTPError) as e:
                logger.debug("mastodon_instance_skipped", instance=instance, error=str(e) or type(e).__name__)
                last_error = e
                continue
            reachable += 1
            for text in _public_texts(toots, since):
                tally.add(text)

        if instances and reachable == 0:
            raise UpstreamError(f"mastodon: all {len(instances)} instances unavailable ({last_error})")

        # Posts are global; the signal covers the whole map
        return self._signal(
            GLOBAL_BBOX,
            event_count=tally.matched,
            keyword_counts=tally.keyword_counts,
            sentiment=tally.sentiment,
        )


def _public_texts(toots, since: datetime) -> List[str]:
    """Plain text of public toots created after `since`."""
    if not isinstance(toots, list):
        raise UpstreamError("mastodon returned an unexpected timeline payload")
    texts = []
    for toot in toots:
        if not isinstance(toot, dict) or toot.get("visibility", "public") != "public":
            continue
        created = _parse_iso(toot.get("created_at"))
        if created is not None and created < since:
            continue
        texts.append(strip_html(toot.get("content") or "").lower())
    return texts


def _parse_iso(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
