"""Derived text metrics for user-generated sources.

Text passes through here exactly once: it is matched against the keyword
watchlist and scored with VADER, and only the resulting counts survive.
Nothing in this module stores the text itself.
"""

import re
from typing import Dict, Iterable, List, Optional

from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

from .signals import Sentiment

# VADER's conventional compound-score cut-offs
POSITIVE_THRESHOLD = 0.05
NEGATIVE_THRESHOLD = -0.05

_MAX_TEXT_CHARS = 1000
_HTML_TAG_RE = re.compile(r"<[^>]+>")

_sia: Optional[SentimentIntensityAnalyzer] = None


def _analyzer() -> SentimentIntensityAnalyzer:
    """Lazy module-level singleton (lexicon load is not free)."""
    global _sia
    if _sia is None:
        _sia = SentimentIntensityAnalyzer()
    return _sia


def vader_compound(text: str) -> float:
    """VADER compound score -1..1."""
    return _analyzer().polarity_scores(text[:_MAX_TEXT_CHARS])["compound"]


def strip_html(text: str) -> str:
    return _HTML_TAG_RE.sub(" ", text or "")


def match_keywords(text: str, keywords: Iterable[str]) -> List[str]:
    """Watchlist keywords present in text (case-insensitive substring match)."""
    lower = (text or "").lower()
    return [kw for kw in keywords if kw.lower() in lower]


class TextTally:
    """
    Accumulates keyword counts and sentiment bins over a batch of texts.

    Only texts that hit at least one watchlist keyword are counted, unless
    require_match is False.
    """

    def __init__(self, keywords: Iterable[str], require_match: bool = True):
        self._keywords = [k for k in keywords if k]
        self._require_match = require_match
        self.keyword_counts: Dict[str, int] = {}
        self.matched = 0
        self._positive = 0
        self._neutral = 0
        self._negative = 0

    def add(self, text: str) -> bool:
        """Score one text; returns True if it was counted."""
        if not text or not text.strip():
            return False
        hits = match_keywords(text, self._keywords)
        if self._require_match and not hits:
            return False
        for kw in hits:
            self.keyword_counts[kw] = self.keyword_counts.get(kw, 0) + 1
        self.matched += 1

        compound = vader_compound(text)
        if compound >= POSITIVE_THRESHOLD:
            self._positive += 1
        elif compound <= NEGATIVE_THRESHOLD:
            self._negative += 1
        else:
            self._neutral += 1
        return True

    @property
    def sentiment(self) -> Sentiment:
        return Sentiment(positive=self._positive, neutral=self._neutral, negative=self._negative)
