"""Tests for the in-memory Ads service."""
from __future__ import annotations

from datetime import date

import pytest

from adpilot.query_adapter import DateRange, build_query
from adpilot.schema import MutationOperation
from adpilot.services.mock_service import InMemoryAdsService, _detect_level, _is_fallback

_OP = MutationOperation("update", "campaign", "customers/1/campaigns/2", {"status": "PAUSED"}, ["status"])


@pytest.mark.parametrize(
    "query, level",
    [
        ("SELECT campaign.id FROM campaign WHERE x", "campaign"),
        ("SELECT ad_group.id\nFROM ad_group", "ad_group"),
        ("SELECT a FROM keyword_view", "keyword"),
        ("select a from ad_group_ad", "ad"),
        ("SELECT 1", "unknown"),
    ],
)
def test_detect_level(query, level):
    assert _detect_level(query) == level


def test_retried_primary_is_not_the_fallback():
    rng = DateRange(start=date(2024, 5, 1), end=date(2024, 5, 30))
    primary = build_query("campaign", rng)
    basic = build_query("campaign", rng, fallback=True)
    svc = InMemoryAdsService(rows={"campaign": [{"campaign_id": "1"}]}, fail_primary=["campaign"])
    for _ in range(2):
        with pytest.raises(RuntimeError):
            svc.query(primary)
    assert svc.query(basic) == [{"campaign_id": "1"}]
    assert [q["fallback"] for q in svc.query_log] == [False, False, True]


@pytest.mark.parametrize("level", ["campaign", "ad_group", "keyword", "ad"])
def test_fallback_detected_at_every_level(level):
    rng = DateRange(start=date(2024, 5, 1), end=date(2024, 5, 30))
    assert not _is_fallback(level, build_query(level, rng))
    assert _is_fallback(level, build_query(level, rng, fallback=True))


def test_mutate_records_calls():
    svc = InMemoryAdsService()
    resp = svc.mutate([_OP, _OP])
    assert resp.results == []
    assert svc.stats() == {"queries": 0, "mutate_calls": 1, "operations": 2}


def test_partial_failure_results():
    svc = InMemoryAdsService(supports_partial_failure=True, fail_indices=[1])
    resp = svc.mutate([_OP, _OP])
    assert [r.success for r in resp.failed] == [False]
    assert resp.failed[0].index == 1
