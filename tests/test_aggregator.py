"""Tests for per-entity aggregation."""
from __future__ import annotations

import pytest

from adpilot.aggregator import (
    account_totals,
    aggregate_level,
    keyword_key,
    metrics_frame,
)
from adpilot.schema import EntityType, MetricRow


def _row(**kw) -> MetricRow:
    base = dict(campaign_id="111", campaign_name="Brand")
    base.update(kw)
    return MetricRow(**base)


class TestCampaignAggregation:
    def test_ratios_recomputed_from_sums(self):
        rows = [
            _row(date="2024-05-01", impressions=100, clicks=5, cost_micros=60_000_000),
            _row(date="2024-05-02", impressions=200, clicks=3, cost_micros=60_000_000),
        ]
        out = aggregate_level(rows, EntityType.CAMPAIGN)
        m = out["111"]
        assert m.impressions == 300
        assert m.clicks == 8
        assert m.cost == 120.0
        assert m.ctr == pytest.approx(2.6666666, rel=1e-6)
        assert m.average_cpc == 15.0

    def test_zero_denominators_give_zero(self):
        out = aggregate_level([_row(impressions=0, clicks=0)], EntityType.CAMPAIGN)
        m = out["111"]
        assert m.ctr == 0.0
        assert m.cpa == 0.0
        assert m.roas == 0.0
        assert m.budget_utilization == 0.0

    def test_budget_uses_window_days(self):
        rows = [
            _row(date="2024-05-01", cost_micros=150_000_000, daily_budget_micros=100_000_000),
            _row(date="2024-05-02", cost_micros=150_000_000, daily_budget_micros=100_000_000),
        ]
        m = aggregate_level(rows, EntityType.CAMPAIGN, window_days=5)["111"]
        assert m.daily_budget == 100.0
        assert m.budget == 500.0
        assert m.budget_utilization == pytest.approx(60.0)

    def test_budget_defaults_to_distinct_dates(self):
        rows = [
            _row(date="2024-05-01", cost_micros=10_000_000, daily_budget_micros=10_000_000),
            _row(date="2024-05-02", cost_micros=10_000_000, daily_budget_micros=10_000_000),
        ]
        m = aggregate_level(rows, EntityType.CAMPAIGN)["111"]
        assert m.days == 2
        assert m.budget_utilization == pytest.approx(100.0)

    def test_latest_impression_share_wins(self):
        rows = [
            _row(date="2024-05-02", search_impression_share=0.5),
            _row(date="2024-05-01", search_impression_share=0.2),
            _row(date="2024-05-03"),
        ]
        m = aggregate_level(rows, EntityType.CAMPAIGN)["111"]
        assert m.search_impression_share == pytest.approx(50.0)

    def test_separate_campaigns(self):
        rows = [_row(impressions=10), _row(campaign_id="222", impressions=20)]
        out = aggregate_level(rows, EntityType.CAMPAIGN)
        assert sorted(out) == ["111", "222"]


class TestKeywordAggregation:
    def test_rows_without_keyword_text_are_skipped(self):
        rows = [
            _row(ad_group_id="5", keyword_text="shoes", match_type="EXACT", impressions=10),
            _row(ad_group_id="5", keyword_text=None, impressions=99),
        ]
        out = aggregate_level(rows, EntityType.KEYWORD)
        assert list(out) == ["111|5|shoes|EXACT"]
        assert out["111|5|shoes|EXACT"].impressions == 10

    def test_match_type_is_part_of_key(self):
        a = _row(ad_group_id="5", keyword_text="shoes", match_type="EXACT")
        b = _row(ad_group_id="5", keyword_text="shoes", match_type="BROAD")
        assert keyword_key(a) != keyword_key(b)
        assert len(aggregate_level([a, b], EntityType.KEYWORD)) == 2

    def test_bid_and_quality_carried(self):
        rows = [
            _row(
                date="2024-05-01",
                ad_group_id="5",
                criterion_id="77",
                keyword_text="shoes",
                cpc_bid_micros=1_200_000,
                quality_score=4,
            )
        ]
        m = aggregate_level(rows, EntityType.KEYWORD)["111|5|shoes|"]
        assert m.cpc_bid == 1.2
        assert m.quality_score == 4
        assert m.criterion_id == "77"
        assert m.entity_id == "77"


def test_ad_level_requires_ad_id():
    rows = [_row(ad_group_id="5", ad_id="9", clicks=3), _row(ad_group_id="5", clicks=4)]
    out = aggregate_level(rows, EntityType.AD)
    assert list(out) == ["111|5|9"]


def test_empty_input():
    assert aggregate_level([], EntityType.CAMPAIGN) == {}


def test_account_totals():
    rows = [
        _row(impressions=100, clicks=10, cost_micros=20_000_000, conversions=2, daily_budget_micros=10_000_000),
        _row(campaign_id="222", impressions=100, clicks=0, cost_micros=0, daily_budget_micros=30_000_000),
    ]
    campaigns = aggregate_level(rows, EntityType.CAMPAIGN)
    acct = account_totals(campaigns)
    assert acct.entity_type == EntityType.ACCOUNT
    assert acct.impressions == 200
    assert acct.ctr == 5.0
    assert acct.daily_budget == 40.0
    assert acct.cpa == 10.0


def test_metrics_frame_sorted_by_key():
    rows = [_row(campaign_id="222"), _row(campaign_id="111")]
    df = metrics_frame(aggregate_level(rows, EntityType.CAMPAIGN))
    assert list(df["key"]) == ["111", "222"]
