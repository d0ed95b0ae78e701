"""Tests for the aggregate-only signal schema and request validation."""
import json
from datetime import timedelta

import pytest

from opensens.signals import (
    GLOBAL_BBOX,
    CompositeSignal,
    ConnectorMetadata,
    InvalidRequestError,
    OsintSignal,
    RateLimitPolicy,
    Sentiment,
    SourceTier,
    bbox_center,
    bbox_contains,
    error_signal,
    is_derived_keyword,
    normalize_countries,
    normalize_keyword_counts,
    parse_time_range,
    validate_bbox,
)


class TestDerivedKeywords:
    """Privacy filter on keyword keys."""

    @pytest.mark.parametrize("key", ["protest", "battery storage", "ENV_SOLAR", "Explosions/Remote violence"])
    def test_short_tokens_accepted(self, key):
        assert is_derived_keyword(key)

    @pytest.mark.parametrize("key", [
        "https://example.com/post/1",
        "@someuser",
        "www.example.com",
        "this is clearly a whole sentence from a post",
        "x" * 49,
        "",
        42,
    ])
    def test_raw_content_rejected(self, key):
        assert not is_derived_keyword(key)

    def test_normalize_drops_leaks_and_non_positive(self):
        """Test that URLs, handles and zero counts are dropped."""
        counts = normalize_keyword_counts({
            "flood": 3,
            "https://t.co/abc": 1,
            "@handle": 2,
            "drought": 0,
            "grid": "2",
        })
        assert counts == {"flood": 3, "grid": 2}


class TestOsintSignal:
    """Tests for OsintSignal invariants."""

    def test_rejects_raw_text_keys(self):
        with pytest.raises(ValueError):
            OsintSignal(
                connector_id="x",
                bbox=GLOBAL_BBOX,
                keyword_counts={"breaking: see https://news.example/story": 1},
            )

    def test_error_requires_zero_credibility(self):
        with pytest.raises(ValueError):
            OsintSignal(connector_id="x", bbox=GLOBAL_BBOX, credibility=0.5, error="boom")

    def test_credibility_bounds(self):
        with pytest.raises(ValueError):
            OsintSignal(connector_id="x", bbox=GLOBAL_BBOX, credibility=1.5)

    def test_negative_event_count_rejected(self):
        with pytest.raises(ValueError):
            OsintSignal(connector_id="x", bbox=GLOBAL_BBOX, event_count=-1)

    def test_invalid_country_rejected(self):
        with pytest.raises(ValueError):
            OsintSignal(connector_id="x", bbox=GLOBAL_BBOX, countries=("France",))

    def test_to_dict_is_camel_case(self):
        """Test JSON shape of a live signal."""
        signal = OsintSignal(
            connector_id="gdelt",
            bbox=(0, 0, 1, 1),
            countries=("FRA",),
            event_count=4,
            keyword_counts={"flood": 2},
            sentiment=Sentiment(positive=1, neutral=2, negative=1),
            credibility=0.7,
        )
        data = signal.to_dict()
        assert data["connectorId"] == "gdelt"
        assert data["eventCount"] == 4
        assert data["keywordCounts"] == {"flood": 2}
        assert data["sentiment"] == {"positive": 1, "neutral": 2, "negative": 1}
        assert data["stale"] is False
        assert "error" not in data
        json.dumps(data)

    def test_as_stale(self):
        signal = OsintSignal(connector_id="gdelt", bbox=GLOBAL_BBOX, credibility=0.7)
        stale = signal.as_stale()
        assert stale.stale and not signal.stale
        assert stale.credibility == 0.7

    def test_keyword_counts_read_only(self):
        """Test a shared (cached) signal cannot be altered through its mapping."""
        source = {"flood": 2}
        signal = OsintSignal(connector_id="gdelt", bbox=GLOBAL_BBOX, keyword_counts=source, credibility=0.7)
        source["flood"] = 99
        assert signal.keyword_counts == {"flood": 2}
        with pytest.raises(TypeError):
            signal.keyword_counts["flood"] = 5
        exported = signal.to_dict()["keywordCounts"]
        exported["flood"] = 7
        assert signal.keyword_counts["flood"] == 2
        assert signal.as_stale().keyword_counts == {"flood": 2}

    def test_composite_mappings_read_only(self):
        composite = CompositeSignal(
            bbox=GLOBAL_BBOX,
            time_range="3d",
            bucket_start_iso="2025-01-01T00:00:00+00:00",
            keyword_counts={"flood": 1},
            skipped={"acled": "rate limited"},
        )
        with pytest.raises(TypeError):
            composite.skipped["acled"] = "ok"
        with pytest.raises(TypeError):
            composite.keyword_counts["grid"] = 1
        assert composite.to_dict()["skipped"] == {"acled": "rate limited"}

    def test_error_signal(self):
        signal = error_signal("acled", GLOBAL_BBOX, "e" * 500)
        assert signal.credibility == 0.0
        assert signal.event_count == 0
        assert len(signal.error) == 300
        assert not signal.is_contributor
        assert signal.to_dict()["error"]


class TestSentimentAndMetadata:
    """Tests for Sentiment bins and ConnectorMetadata."""

    def test_sentiment_addition(self):
        total = Sentiment(1, 2, 3) + Sentiment(positive=4)
        assert total == Sentiment(5, 2, 3)
        assert total.total == 10

    def test_sentiment_rejects_negative(self):
        with pytest.raises(ValueError):
            Sentiment(positive=-1)

    def test_gated_connector_must_require_opt_in(self):
        with pytest.raises(ValueError):
            ConnectorMetadata(
                id="bad",
                name="Bad",
                source_tier=SourceTier.GATED_OPT_IN,
                requires_opt_in=False,
                rate_limit=RateLimitPolicy(1, 2),
                credibility=0.5,
            )

    def test_rate_limit_policy(self):
        policy = RateLimitPolicy(max_requests=100, window_seconds=900)
        assert policy.min_interval == 9.0
        assert policy.to_dict() == {"maxRequests": 100, "windowSeconds": 900}
        with pytest.raises(ValueError):
            RateLimitPolicy(max_requests=0, window_seconds=1)


class TestValidation:
    """Tests for bbox / time range parsing."""

    def test_bbox_from_string(self):
        assert validate_bbox("-10, 35, 30, 60") == (-10.0, 35.0, 30.0, 60.0)

    def test_bbox_from_list(self):
        assert validate_bbox([0, 0, 1, 1]) == (0.0, 0.0, 1.0, 1.0)

    @pytest.mark.parametrize("bbox", [
        "1,2,3",
        "a,b,c,d",
        "10,0,5,1",
        "0,10,1,5",
        "-181,0,0,1",
        "0,-91,1,0",
        "nan,0,1,1",
        None,
        {"minLon": 0},
    ])
    def test_bad_bbox(self, bbox):
        with pytest.raises(InvalidRequestError):
            validate_bbox(bbox)

    def test_invalid_request_is_value_error(self):
        assert issubclass(InvalidRequestError, ValueError)

    @pytest.mark.parametrize("value,expected", [
        ("24h", timedelta(hours=24)),
        ("3d", timedelta(days=3)),
        ("1w", timedelta(weeks=1)),
        ("90d", timedelta(days=90)),
    ])
    def test_time_range(self, value, expected):
        assert parse_time_range(value) == expected

    @pytest.mark.parametrize("value", ["0h", "91d", "14w", "3x", "d3", "", 3, None])
    def test_bad_time_range(self, value):
        with pytest.raises(InvalidRequestError):
            parse_time_range(value)

    def test_bbox_helpers(self):
        bbox = (-10.0, 35.0, 30.0, 60.0)
        assert bbox_center(bbox) == (47.5, 10.0)
        assert bbox_contains(bbox, 2.35, 48.85)
        assert not bbox_contains(bbox, 100.0, 48.85)

    def test_normalize_countries(self):
        assert normalize_countries(["fra", "DEU", "", "France", None, "fra"]) == ("DEU", "FRA")
