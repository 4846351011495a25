"""Mapping utilities between raw Ads Query Service rows and MetricRow."""
from __future__ import annotations

from typing import Any, Dict, Optional

from adpilot.errors import PartialRowError
from adpilot.schema import MetricRow
from adpilot.units import to_float, to_int

# Match types sometimes arrive as raw enum numbers.
_MATCH_TYPE_CODES = {2: "EXACT", 3: "PHRASE", 4: "BROAD"}


def _get(obj: Any, *path: str) -> Any:
    """Walk *path* through nested dicts or attribute objects."""
    cur = obj
    for part in path:
        if cur is None:
            return None
        if isinstance(cur, dict):
            cur = cur.get(part)
        else:
            cur = getattr(cur, part, None)
    return cur


def _text(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _id(v: Any) -> Optional[str]:
    """Ids arrive as ints or strings; 0 means unset in proto messages."""
    s = _text(v)
    if s in (None, "0"):
        return None
    return s


def _enum_name(v: Any) -> Optional[str]:
    if v is None:
        return None
    name = getattr(v, "name", None)
    if name:
        return str(name)
    if isinstance(v, int) and not isinstance(v, bool):
        return _MATCH_TYPE_CODES.get(v, str(v))
    return _text(v)


def _budget_id_from_resource(resource_name: Any) -> Optional[str]:
    # customers/123/campaignBudgets/456 → 456
    s = _text(resource_name)
    if not s or "/campaignBudgets/" not in s:
        return None
    return s.rsplit("/", 1)[-1] or None


def _optional_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    n = to_int(v, default=0)
    return n if n > 0 else None


def _optional_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    f = to_float(v, default=-1.0)
    return f if f >= 0 else None


def _is_flat(record: Any) -> bool:
    return isinstance(record, dict) and "campaign_id" in record


def _map_flat(record: Dict[str, Any]) -> MetricRow:
    campaign_id = _id(record.get("campaign_id"))
    if not campaign_id:
        raise PartialRowError("row has no campaign_id")
    return MetricRow(
        campaign_id=campaign_id,
        campaign_name=_text(record.get("campaign_name")) or "",
        date=_text(record.get("date")),
        ad_group_id=_id(record.get("ad_group_id")),
        ad_group_name=_text(record.get("ad_group_name")),
        criterion_id=_id(record.get("criterion_id")),
        keyword_text=_text(record.get("keyword_text")),
        match_type=_enum_name(record.get("match_type")),
        ad_id=_id(record.get("ad_id")),
        ad_text=_text(record.get("ad_text")),
        impressions=to_int(record.get("impressions")),
        clicks=to_int(record.get("clicks")),
        cost_micros=to_int(record.get("cost_micros")),
        conversions=to_float(record.get("conversions")),
        conversion_value=to_float(record.get("conversion_value")),
        daily_budget_micros=_optional_int(record.get("daily_budget_micros")),
        budget_id=_id(record.get("budget_id")),
        cpc_bid_micros=_optional_int(record.get("cpc_bid_micros")),
        bidding_strategy=_enum_name(record.get("bidding_strategy")),
        quality_score=_optional_int(record.get("quality_score")),
        search_impression_share=_optional_float(record.get("search_impression_share")),
    )


def map_record_to_metric_row(record: Any) -> MetricRow:
    """Map one API row (nested dict or proto-plus message) to a MetricRow.

    Flat dicts keyed like MetricRow fields (offline fixtures) are accepted
    too. Raises PartialRowError when the campaign id is missing.
    """
    if _is_flat(record):
        return _map_flat(record)

    campaign_id = _id(_get(record, "campaign", "id"))
    if not campaign_id:
        raise PartialRowError("row has no campaign.id")

    criterion = _get(record, "ad_group_criterion")
    ad = _get(record, "ad_group_ad", "ad")
    metrics = _get(record, "metrics")

    budget_id = _id(_get(record, "campaign_budget", "id")) or _budget_id_from_resource(
        _get(record, "campaign", "campaign_budget")
    )
    cpc_bid = _optional_int(_get(criterion, "effective_cpc_bid_micros")) or _optional_int(
        _get(criterion, "cpc_bid_micros")
    )

    return MetricRow(
        campaign_id=campaign_id,
        campaign_name=_text(_get(record, "campaign", "name")) or "",
        date=_text(_get(record, "segments", "date")),
        ad_group_id=_id(_get(record, "ad_group", "id")),
        ad_group_name=_text(_get(record, "ad_group", "name")),
        criterion_id=_id(_get(criterion, "criterion_id")),
        keyword_text=_text(_get(criterion, "keyword", "text")),
        match_type=_enum_name(_get(criterion, "keyword", "match_type")),
        ad_id=_id(_get(ad, "id")),
        ad_text=_text(_get(ad, "name")),
        impressions=to_int(_get(metrics, "impressions")),
        clicks=to_int(_get(metrics, "clicks")),
        cost_micros=to_int(_get(metrics, "cost_micros")),
        conversions=to_float(_get(metrics, "conversions")),
        conversion_value=to_float(_get(metrics, "conversions_value")),
        daily_budget_micros=_optional_int(_get(record, "campaign_budget", "amount_micros")),
        budget_id=budget_id,
        cpc_bid_micros=cpc_bid,
        bidding_strategy=_enum_name(_get(record, "campaign", "bidding_strategy_type")),
        quality_score=_optional_int(_get(criterion, "quality_info", "quality_score")),
        search_impression_share=_optional_float(_get(metrics, "search_impression_share")),
    )
