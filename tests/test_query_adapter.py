"""Tests for GAQL building, response-shape normalization, retry and fallback."""
from __future__ import annotations

from datetime import date
from types import SimpleNamespace

import pytest

from adpilot.errors import UpstreamQueryError
from adpilot.query_adapter import (
    DateRange,
    ResponseShape,
    RetryPolicy,
    build_query,
    classify_response,
    fetch_metric_rows,
    normalize_response,
)
from adpilot.services.mock_service import InMemoryAdsService

RANGE = DateRange(start=date(2024, 5, 1), end=date(2024, 5, 30))

CAMPAIGN_ROWS = [
    {"campaign": {"id": "111", "name": "Brand"}, "metrics": {"impressions": 100, "clicks": 5}},
    {"campaign": {"id": "222", "name": "Generic"}, "metrics": {"impressions": 50, "clicks": 1}},
]


def _no_sleep(_seconds):
    pass


class TestDateRange:
    def test_last_n_days_ends_yesterday(self):
        r = DateRange.last_n_days(30, today=date(2024, 6, 1))
        assert r.end == date(2024, 5, 31)
        assert r.start == date(2024, 5, 2)
        assert r.days == 30

    def test_invalid_n(self):
        with pytest.raises(ValueError):
            DateRange.last_n_days(0)


class TestBuildQuery:
    def test_primary_includes_extended_fields(self):
        q = build_query("keyword", RANGE)
        assert "FROM keyword_view" in q
        assert "ad_group_criterion.quality_info.quality_score" in q
        assert "segments.date BETWEEN '2024-05-01' AND '2024-05-30'" in q

    def test_fallback_drops_extended_fields(self):
        q = build_query("campaign", RANGE, fallback=True)
        assert "campaign_budget.amount_micros" not in q
        assert "metrics.cost_micros" in q

    def test_campaign_filter(self):
        q = build_query("campaign", RANGE, campaign_ids=["111"])
        assert "campaign.id IN (111)" in q

    def test_managed_label_scope_on_both_variants(self):
        labels = ["customers/1/labels/42", "customers/1/labels/43"]
        clause = "campaign.labels CONTAINS ANY ('customers/1/labels/42', 'customers/1/labels/43')"
        assert clause in build_query("keyword", RANGE, label_resources=labels)
        assert clause in build_query("keyword", RANGE, fallback=True, label_resources=labels)

    def test_no_label_scope_by_default(self):
        assert "campaign.labels" not in build_query("campaign", RANGE)

    def test_non_numeric_campaign_rejected(self):
        with pytest.raises(ValueError):
            build_query("campaign", RANGE, campaign_ids=["1; DROP"])

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            build_query("account", RANGE)


class TestResponseShapes:
    @pytest.mark.parametrize(
        "response, shape",
        [
            (None, ResponseShape.EMPTY),
            ([], ResponseShape.LIST),
            ({"rows": [1]}, ResponseShape.ROWS_WRAPPER),
            ({"results": [1]}, ResponseShape.RESULTS_WRAPPER),
            (SimpleNamespace(results=[1]), ResponseShape.RESULTS_WRAPPER),
            (iter([1]), ResponseShape.ITERABLE),
            ("text", ResponseShape.UNKNOWN),
            (42, ResponseShape.UNKNOWN),
        ],
    )
    def test_classify(self, response, shape):
        assert classify_response(response) == shape

    def test_normalize_wrapper(self):
        shape, records = normalize_response({"results": [1, 2]})
        assert shape == ResponseShape.RESULTS_WRAPPER
        assert records == [1, 2]

    def test_normalize_unknown_raises(self):
        with pytest.raises(UpstreamQueryError):
            normalize_response(42)

    @pytest.mark.parametrize("shape", ["list", "rows", "results", "iterable"])
    def test_every_shape_yields_same_rows(self, shape):
        svc = InMemoryAdsService(rows={"campaign": CAMPAIGN_ROWS}, shape=shape)
        result = fetch_metric_rows(svc, RANGE, sleep=_no_sleep)
        assert [r.campaign_id for r in result.rows] == ["111", "222"]
        assert result.notes == []

    def test_empty_response(self):
        svc = InMemoryAdsService(rows={"campaign": CAMPAIGN_ROWS}, shape="none")
        result = fetch_metric_rows(svc, RANGE, sleep=_no_sleep)
        assert result.rows == []
        assert not result.failed


class TestFallback:
    def test_primary_failure_uses_fallback(self):
        svc = InMemoryAdsService(rows={"campaign": CAMPAIGN_ROWS}, fail_primary=["campaign"])
        result = fetch_metric_rows(svc, RANGE, sleep=_no_sleep)
        assert result.used_fallback
        assert len(result.rows) == 2
        assert len(result.notes) == 1
        assert [q["fallback"] for q in svc.query_log] == [False, True]

    def test_fallback_keeps_label_scope(self):
        svc = InMemoryAdsService(rows={"campaign": CAMPAIGN_ROWS}, fail_primary=["campaign"])
        fetch_metric_rows(svc, RANGE, sleep=_no_sleep, label_resources=["customers/1/labels/42"])
        assert len(svc.query_log) == 2
        assert all("campaign.labels CONTAINS ANY" in q["query"] for q in svc.query_log)

    def test_both_fail_returns_empty_with_note(self):
        svc = InMemoryAdsService(
            rows={"campaign": CAMPAIGN_ROWS},
            fail_primary=["campaign"],
            fail_fallback=["campaign"],
        )
        result = fetch_metric_rows(svc, RANGE, sleep=_no_sleep)
        assert result.failed
        assert result.rows == []
        assert result.notes and result.notes[0].startswith("Could not load campaign metrics")

    def test_rows_without_campaign_are_dropped(self):
        rows = CAMPAIGN_ROWS + [{"metrics": {"impressions": 9}}]
        svc = InMemoryAdsService(rows={"campaign": rows})
        result = fetch_metric_rows(svc, RANGE, sleep=_no_sleep)
        assert len(result.rows) == 2
        assert result.dropped_rows == 1


class _FlakyService:
    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    def query(self, query, timeout=None):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return CAMPAIGN_ROWS


class TestRetry:
    def test_retryable_error_is_retried(self):
        svc = _FlakyService([RuntimeError("429 Too Many Requests")])
        sleeps = []
        result = fetch_metric_rows(
            svc, RANGE, retry_policy=RetryPolicy(max_retries=2, jitter_seconds=0.0), sleep=sleeps.append
        )
        assert svc.calls == 2
        assert len(sleeps) == 1
        assert len(result.rows) == 2
        assert not result.used_fallback

    def test_non_retryable_goes_straight_to_fallback(self):
        svc = _FlakyService([RuntimeError("INVALID_ARGUMENT: bad field")])
        result = fetch_metric_rows(svc, RANGE, sleep=_no_sleep)
        assert svc.calls == 2
        assert result.used_fallback

    def test_backoff_is_capped(self):
        policy = RetryPolicy(backoff_base_seconds=1.0, backoff_max_seconds=4.0, jitter_seconds=0.0)
        assert policy.delay(0) == 1.0
        assert policy.delay(5) == 4.0
