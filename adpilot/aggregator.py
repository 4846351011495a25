"""Metrics Aggregator: reduce MetricRows to one summary per entity key."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

import pandas as pd

from adpilot.schema import AggregatedEntityMetrics, EntityType, MetricRow
from adpilot.units import micros_to_currency, normalize_percent, to_float, to_int

logger = logging.getLogger(__name__)

KeyFn = Callable[[MetricRow], Optional[str]]

_COUNTERS = ["impressions", "clicks", "cost_micros", "conversions", "conversion_value"]
_IDENTITY = [
    "campaign_id",
    "campaign_name",
    "ad_group_id",
    "ad_group_name",
    "criterion_id",
    "keyword_text",
    "match_type",
    "ad_id",
    "ad_text",
    "budget_id",
]
# Point-in-time attributes: the most recent non-null observation wins.
_LATEST = [
    "bidding_strategy",
    "cpc_bid_micros",
    "quality_score",
    "search_impression_share",
]


# ─────────────────────────────────────────────────────────────────────────────
# Entity keys (None = row lacks a required identifier and is skipped)
# ─────────────────────────────────────────────────────────────────────────────


def campaign_key(row: MetricRow) -> Optional[str]:
    return row.campaign_id or None


def ad_group_key(row: MetricRow) -> Optional[str]:
    if not row.campaign_id or not row.ad_group_id:
        return None
    return f"{row.campaign_id}|{row.ad_group_id}"


def keyword_key(row: MetricRow) -> Optional[str]:
    if not row.campaign_id or not row.ad_group_id or not row.keyword_text:
        return None
    return "|".join([row.campaign_id, row.ad_group_id, row.keyword_text, row.match_type or ""])


def ad_key(row: MetricRow) -> Optional[str]:
    if not row.campaign_id or not row.ad_group_id or not row.ad_id:
        return None
    return f"{row.campaign_id}|{row.ad_group_id}|{row.ad_id}"


KEY_FUNCTIONS: Dict[EntityType, KeyFn] = {
    EntityType.CAMPAIGN: campaign_key,
    EntityType.AD_GROUP: ad_group_key,
    EntityType.KEYWORD: keyword_key,
    EntityType.AD: ad_key,
}


def _present(v: Any) -> bool:
    if v is None:
        return False
    try:
        return not pd.isna(v)
    except (TypeError, ValueError):
        return True


def _opt_str(v: Any) -> Optional[str]:
    return str(v) if _present(v) else None


def _opt_int(v: Any) -> Optional[int]:
    return to_int(v) if _present(v) else None


def aggregate(
    rows: Iterable[MetricRow],
    key_fn: KeyFn,
    entity_type: EntityType,
    window_days: Optional[int] = None,
) -> Dict[str, AggregatedEntityMetrics]:
    """Group *rows* by ``key_fn`` and sum raw counters per entity.

    Derived ratios are recomputed from the sums, never averaged across rows.
    ``window_days`` sizes the budget; when omitted the number of distinct
    dates seen for the entity is used.
    """
    records: List[Dict[str, Any]] = []
    skipped = 0
    for row in rows:
        key = key_fn(row)
        if key is None:
            skipped += 1
            continue
        rec = asdict(row)
        rec["key"] = key
        records.append(rec)

    if skipped:
        logger.debug("skipped %d row(s) without %s identifiers", skipped, entity_type.value.lower())
    if not records:
        return {}

    df = pd.DataFrame(records)
    for col in ("daily_budget_micros", "cpc_bid_micros", "quality_score", "search_impression_share"):
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.sort_values("date", na_position="first", kind="stable")
    g = df.groupby("key", sort=True)

    sums = g[_COUNTERS].sum()
    ident = g[_IDENTITY].first()
    latest = g[_LATEST].last()
    budgets = g["daily_budget_micros"].max()
    n_dates = g["date"].nunique()

    out: Dict[str, AggregatedEntityMetrics] = {}
    for key in sums.index:
        s = sums.loc[key]
        i = ident.loc[key]
        lt = latest.loc[key]
        budget_micros = budgets.loc[key]
        share = lt["search_impression_share"]
        cpc_bid_micros = lt["cpc_bid_micros"]

        m = AggregatedEntityMetrics(
            entity_type=entity_type,
            key=str(key),
            campaign_id=str(i["campaign_id"]),
            campaign_name=_opt_str(i["campaign_name"]) or "",
            ad_group_id=_opt_str(i["ad_group_id"]),
            ad_group_name=_opt_str(i["ad_group_name"]),
            criterion_id=_opt_str(i["criterion_id"]),
            keyword_text=_opt_str(i["keyword_text"]),
            match_type=_opt_str(i["match_type"]),
            ad_id=_opt_str(i["ad_id"]),
            ad_text=_opt_str(i["ad_text"]),
            budget_id=_opt_str(i["budget_id"]),
            bidding_strategy=_opt_str(lt["bidding_strategy"]),
            impressions=to_int(s["impressions"]),
            clicks=to_int(s["clicks"]),
            cost=micros_to_currency(s["cost_micros"]),
            conversions=to_float(s["conversions"]),
            conversion_value=to_float(s["conversion_value"]),
            daily_budget=micros_to_currency(budget_micros) if _present(budget_micros) else 0.0,
            cpc_bid=micros_to_currency(cpc_bid_micros) if _present(cpc_bid_micros) else None,
            quality_score=_opt_int(lt["quality_score"]),
            search_impression_share=(
                normalize_percent(share, kind="fraction") if _present(share) else None
            ),
            days=window_days or max(int(n_dates.loc[key]), 1),
        )
        m.recompute_metrics()
        out[m.key] = m
    return out


def aggregate_level(
    rows: Iterable[MetricRow],
    entity_type: EntityType,
    window_days: Optional[int] = None,
) -> Dict[str, AggregatedEntityMetrics]:
    return aggregate(rows, KEY_FUNCTIONS[entity_type], entity_type, window_days)


def account_totals(campaigns: Dict[str, AggregatedEntityMetrics]) -> AggregatedEntityMetrics:
    """Sum campaign summaries into one ACCOUNT entity and recompute ratios."""
    total = AggregatedEntityMetrics(entity_type=EntityType.ACCOUNT, key="account", campaign_id="")
    days = 1
    for c in campaigns.values():
        total.impressions += c.impressions
        total.clicks += c.clicks
        total.cost += c.cost
        total.conversions += c.conversions
        total.conversion_value += c.conversion_value
        total.daily_budget += c.daily_budget
        days = max(days, c.days)
    total.days = days
    total.recompute_metrics()
    return total


def metrics_frame(metrics: Dict[str, AggregatedEntityMetrics]) -> pd.DataFrame:
    """Tabular view of a summary mapping, ordered by key."""
    data = [metrics[k].to_dict() for k in sorted(metrics)]
    return pd.DataFrame(data)
