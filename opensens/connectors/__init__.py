"""OSINT source connectors."""
from .base import Connector, ConnectorContext, UpstreamError
from .gdelt import GdeltConnector
from .reliefweb import ReliefWebConnector
from .mastodon import MastodonConnector
from .reddit import RedditConnector
from .x_twitter import XTwitterConnector
from .acled import AcledConnector

__all__ = [
    "Connector", "ConnectorContext", "UpstreamError",
    "GdeltConnector", "ReliefWebConnector", "MastodonConnector",
    "RedditConnector", "XTwitterConnector", "AcledConnector",
]
