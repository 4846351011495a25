"""Rule Evaluator: stateless threshold rules over aggregated entity metrics.

Each rule is a plain function ``(metrics, ctx) -> List[Action]``. Rules are
independent; all matching rules fire and none vetoes another. Output order
is deterministic: registry order first, then entity keys sorted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from adpilot.config import ThresholdConfig
from adpilot.schema import (
    Action,
    ActionStatus,
    ActionType,
    AggregatedEntityMetrics,
    EntityType,
    Impact,
    OptimizationSettings,
    Priority,
)

logger = logging.getLogger(__name__)

MAXIMIZE_CLICKS_STRATEGIES = {"TARGET_SPEND", "MAXIMIZE_CLICKS"}
TARGET_CPA_STRATEGIES = {"TARGET_CPA"}


@dataclass
class RuleContext:
    settings: OptimizationSettings = field(default_factory=OptimizationSettings)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    label: str = "AdPilot_UNDERPERFORMING"
    label_id: Optional[str] = None

    @property
    def pause_ctr(self) -> float:
        ctr = self.settings.pause_threshold.ctr
        return self.thresholds.default_pause_ctr if ctr is None else ctr


RuleFn = Callable[[AggregatedEntityMetrics, RuleContext], List[Action]]


@dataclass(frozen=True)
class Rule:
    rule_id: str
    entity_type: EntityType
    categories: Tuple[str, ...]
    fn: RuleFn
    advisory: bool = False

    def applies_to(self, optimization_type: str) -> bool:
        return self.advisory or optimization_type == "ALL" or optimization_type in self.categories


def _action(
    m: AggregatedEntityMetrics,
    action_type: ActionType,
    reason: str,
    evidence: str = "",
    metrics: Optional[Dict[str, float]] = None,
    *,
    execute: bool = False,
    impact: Impact = Impact.POSITIVE,
    priority: Priority = Priority.MEDIUM,
    **params,
) -> Action:
    fields_ = dict(
        campaign_id=m.campaign_id or None,
        ad_group_id=m.ad_group_id,
        criterion_id=m.criterion_id,
        ad_id=m.ad_id,
        budget_id=m.budget_id,
        keyword_text=m.keyword_text,
        match_type=m.match_type,
    )
    fields_.update(params)
    return Action(
        action_type=action_type,
        entity_type=m.entity_type,
        entity_id=m.entity_id,
        entity_name=m.entity_name,
        reason=reason,
        evidence=evidence,
        metrics=metrics or {},
        impact=impact,
        priority=priority,
        execute=execute,
        **fields_,
    )


def _r(v: float) -> float:
    return round(float(v), 4)


# ─────────────────────────────────────────────────────────────────────────────
# Keyword rules
# ─────────────────────────────────────────────────────────────────────────────


def zero_traffic_keyword(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    if m.impressions < ctx.thresholds.zero_traffic_min_impressions or m.clicks != 0:
        return []
    return [
        _action(
            m,
            ActionType.PAUSE,
            f"Keyword '{m.keyword_text}' has {m.impressions:,} impressions and no clicks",
            f"{m.impressions:,} impressions, 0 clicks",
            {"impressions": m.impressions, "clicks": 0},
            priority=Priority.HIGH,
        )
    ]


def low_quality_keyword(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    qs = m.quality_score
    if qs is None or m.clicks < t.low_quality_min_clicks:
        return []
    poor_no_conv = m.conversions == 0 and qs <= t.poor_quality_max_score
    if qs > t.low_quality_max_score and not poor_no_conv:
        return []
    return [
        _action(
            m,
            ActionType.ARCHIVE,
            f"Low quality keyword '{m.keyword_text}' (quality score {qs}, {m.conversions:g} conversions)",
            f"quality score {qs}, {m.clicks} clicks, {m.conversions:g} conversions",
            {"quality_score": qs, "clicks": m.clicks, "conversions": _r(m.conversions)},
            execute=m.criterion_id is not None,
            priority=Priority.HIGH,
        )
    ]


def _bid_decrease(bid: float, pct: float, floor_ratio: float) -> float:
    return round(max(bid * (1 - pct / 100.0), bid * floor_ratio), 2)


def _bid_increase(bid: float, pct: float, cap_ratio: float) -> float:
    return round(min(bid * (1 + pct / 100.0), bid * cap_ratio), 2)


def low_ctr_keyword(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if m.impressions < t.keyword_low_ctr_min_impressions or m.ctr >= ctx.pause_ctr:
        return []
    evidence = f"CTR {m.ctr:.2f}% on {m.impressions:,} impressions (threshold {ctx.pause_ctr:g}%)"
    metrics = {"ctr": _r(m.ctr), "impressions": m.impressions, "clicks": m.clicks}

    if ctx.settings.pause_low_performing:
        return [
            _action(
                m,
                ActionType.PAUSE,
                f"Pause low-CTR keyword '{m.keyword_text}'",
                evidence,
                metrics,
                execute=m.criterion_id is not None,
                priority=Priority.HIGH,
            )
        ]

    bid = m.cpc_bid or m.average_cpc
    pct = ctx.settings.min_cpc_decrease
    execute = pct is not None and m.cpc_bid is not None and m.criterion_id is not None
    pct = t.default_bid_decrease_pct if pct is None else pct
    return [
        _action(
            m,
            ActionType.BID_DECREASE,
            f"Reduce bid on low-CTR keyword '{m.keyword_text}' by {pct:g}%",
            evidence,
            metrics,
            execute=execute,
            current_value=round(bid, 2) if bid else None,
            new_value=_bid_decrease(bid, pct, t.min_bid_floor_ratio) if bid else None,
        )
    ]


def threshold_pause_keyword(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    thr = ctx.settings.pause_threshold
    reasons: List[str] = []
    if (
        thr.conversion_rate is not None
        and m.clicks >= t.threshold_pause_min_clicks
        and m.conversion_rate < thr.conversion_rate
    ):
        reasons.append(f"conversion rate {m.conversion_rate:.2f}% < {thr.conversion_rate:g}%")
    if thr.cpa is not None and m.conversions > 0 and m.cpa > thr.cpa:
        reasons.append(f"CPA ${m.cpa:.2f} > ${thr.cpa:.2f}")
    if not reasons:
        return []
    return [
        _action(
            m,
            ActionType.PAUSE,
            f"Pause keyword '{m.keyword_text}' below performance threshold",
            "; ".join(reasons),
            {"conversion_rate": _r(m.conversion_rate), "cpa": _r(m.cpa), "clicks": m.clicks},
            execute=ctx.settings.pause_low_performing and m.criterion_id is not None,
            priority=Priority.HIGH,
        )
    ]


def high_performer(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    """Increase bids where CTR is strong on limited volume.

    Only keyword bids are executable; campaign level is advisory.
    """
    t = ctx.thresholds
    if (
        m.impressions < t.high_performer_min_impressions
        or m.ctr < t.high_performer_min_ctr
        or m.clicks < t.high_performer_min_clicks
    ):
        return []
    bid = m.cpc_bid or m.average_cpc
    pct = ctx.settings.max_cpc_increase
    execute = (
        m.entity_type == EntityType.KEYWORD
        and pct is not None
        and m.cpc_bid is not None
        and m.criterion_id is not None
    )
    if pct is None:
        new_bid = round(min(bid * t.high_performer_bid_multiplier, bid * t.max_bid_cap_ratio), 2)
    else:
        new_bid = _bid_increase(bid, pct, t.max_bid_cap_ratio)
    share = ""
    if m.search_impression_share is not None:
        share = f", {m.search_impression_share:.1f}% impression share"
    return [
        _action(
            m,
            ActionType.BID_INCREASE,
            f"Increase bid for high performer {m.entity_name}",
            f"CTR {m.ctr:.2f}% with {m.clicks} clicks on {m.impressions:,} impressions{share}",
            {"ctr": _r(m.ctr), "clicks": m.clicks, "impressions": m.impressions},
            execute=execute,
            current_value=round(bid, 2) if bid else None,
            new_value=new_bid if bid else None,
        )
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Campaign rules
# ─────────────────────────────────────────────────────────────────────────────


def low_ctr_campaign(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if m.impressions < t.campaign_low_ctr_min_impressions or m.ctr >= ctx.pause_ctr:
        return []
    pct = ctx.settings.min_cpc_decrease
    pct = t.default_bid_decrease_pct if pct is None else pct
    return [
        _action(
            m,
            ActionType.BID_DECREASE,
            f"Reduce CPC bids in {m.campaign_name} by {pct:g}%",
            f"CTR {m.ctr:.2f}% on {m.impressions:,} impressions (threshold {ctx.pause_ctr:g}%)",
            {"ctr": _r(m.ctr), "impressions": m.impressions},
            current_value=round(m.average_cpc, 2) if m.average_cpc else None,
            new_value=_bid_decrease(m.average_cpc, pct, t.min_bid_floor_ratio) if m.average_cpc else None,
        )
    ]


def budget_underutilized(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if (
        m.daily_budget <= 0
        or m.budget_utilization >= t.underutilized_max_utilization
        or m.impressions <= t.underutilized_min_impressions
    ):
        return []
    ceiling = round(max(m.average_cpc * t.max_clicks_ceiling_multiplier, t.max_clicks_ceiling_floor), 2)
    already = (m.bidding_strategy or "").upper() in MAXIMIZE_CLICKS_STRATEGIES
    return [
        _action(
            m,
            ActionType.BIDDING_STRATEGY,
            f"Switch {m.campaign_name} to MAXIMIZE_CLICKS"
            + (" (already active, review the CPC ceiling)" if already else ""),
            f"budget utilization {m.budget_utilization:.1f}% on {m.impressions:,} impressions",
            {"budget_utilization": _r(m.budget_utilization), "impressions": m.impressions},
            execute=not already,
            bidding_strategy="MAXIMIZE_CLICKS",
            current_value=round(m.average_cpc, 2),
            new_value=ceiling,
        )
    ]


def high_cost_low_conversions(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if (
        m.average_cpc <= t.high_cost_min_cpc
        or m.conversions >= t.high_cost_max_conversions
        or m.clicks <= t.high_cost_min_clicks
    ):
        return []
    target = round(max(m.average_cpc * t.target_cpa_multiplier, t.target_cpa_floor), 2)
    already = (m.bidding_strategy or "").upper() in TARGET_CPA_STRATEGIES
    return [
        _action(
            m,
            ActionType.BIDDING_STRATEGY,
            f"Switch {m.campaign_name} to TARGET_CPA bidding"
            + (" (already active, review the target)" if already else ""),
            f"CPC ${m.average_cpc:.2f} with {m.conversions:g} conversions from {m.clicks} clicks",
            {"average_cpc": _r(m.average_cpc), "conversions": _r(m.conversions), "clicks": m.clicks},
            execute=not already,
            priority=Priority.HIGH,
            bidding_strategy="TARGET_CPA",
            current_value=round(m.average_cpc, 2),
            new_value=target,
        )
    ]


def scale_winner(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if (
        m.budget_utilization <= t.scale_min_utilization
        or m.conversion_rate <= t.scale_min_conversion_rate
        or m.cost <= t.scale_min_cost
        or m.daily_budget <= 0
    ):
        return []
    new_budget = m.daily_budget * (1 + t.scale_budget_increase_pct / 100.0)
    return [
        _action(
            m,
            ActionType.BUDGET_INCREASE,
            f"Increase daily budget of {m.campaign_name} by {t.scale_budget_increase_pct:g}%",
            f"budget utilization {m.budget_utilization:.1f}%, conversion rate "
            f"{m.conversion_rate:.2f}%, cost ${m.cost:.2f}",
            {
                "budget_utilization": _r(m.budget_utilization),
                "conversion_rate": _r(m.conversion_rate),
                "cost": _r(m.cost),
            },
            execute=True,
            current_value=round(m.daily_budget, 2),
            new_value=round(new_budget, 6),
        )
    ]


def underperforming_label(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if m.conversions <= 0 or m.cost <= t.label_min_cost or m.cpa <= t.label_min_cpa:
        return []
    return [
        _action(
            m,
            ActionType.LABEL,
            f"Label {m.campaign_name} as underperforming",
            f"cost per conversion ${m.cpa:.2f} (threshold ${t.label_min_cpa:.2f})",
            {"cpa": _r(m.cpa), "cost": _r(m.cost), "conversions": _r(m.conversions)},
            execute=ctx.label_id is not None,
            impact=Impact.NEUTRAL,
            label=ctx.label,
        )
    ]


def negative_keywords(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    return [
        _action(
            m,
            ActionType.NEGATIVE_KEYWORD,
            f"Add negative keyword '{kw}' to {m.campaign_name}",
            "requested by caller",
            execute=True,
            keyword_text=kw,
            match_type="BROAD",
        )
        for kw in ctx.settings.add_negative_keywords
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Ad / ad group rules
# ─────────────────────────────────────────────────────────────────────────────


def high_cpa_ad(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if m.conversions <= 0 or m.clicks < t.ad_min_clicks or m.cpa <= t.ad_max_cpa:
        return []
    return [
        _action(
            m,
            ActionType.PAUSE,
            f"Pause ad {m.ad_id} with high cost per conversion",
            f"CPA ${m.cpa:.2f} over {m.clicks} clicks (threshold ${t.ad_max_cpa:.2f})",
            {"cpa": _r(m.cpa), "clicks": m.clicks, "conversions": _r(m.conversions)},
            execute=True,
            priority=Priority.HIGH,
        )
    ]


def low_ctr_ad_group(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if m.impressions < t.ad_group_low_ctr_min_impressions or m.ctr >= t.ad_group_low_ctr:
        return []
    return [
        _action(
            m,
            ActionType.IMPROVE_CTR,
            f"Refresh ad copy in ad group {m.ad_group_name or m.ad_group_id}",
            f"CTR {m.ctr:.2f}% on {m.impressions:,} impressions",
            {"ctr": _r(m.ctr), "impressions": m.impressions},
            priority=Priority.MEDIUM,
        )
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Advisories
# ─────────────────────────────────────────────────────────────────────────────


def campaign_advisories(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    out: List[Action] = []
    if m.impressions >= t.advisory_min_impressions and m.ctr < t.advisory_ctr:
        out.append(
            _action(
                m,
                ActionType.IMPROVE_CTR,
                f"Improve CTR for {m.campaign_name}, currently {m.ctr:.2f}%",
                f"CTR {m.ctr:.2f}% (target {t.advisory_ctr:g}%)",
                {"ctr": _r(m.ctr)},
                priority=Priority.HIGH,
            )
        )
    if m.clicks > 0 and m.conversion_rate < t.advisory_conversion_rate:
        out.append(
            _action(
                m,
                ActionType.IMPROVE_CONVERSION_RATE,
                f"Optimize landing pages for {m.campaign_name}",
                f"conversion rate {m.conversion_rate:.2f}% (target {t.advisory_conversion_rate:g}%)",
                {"conversion_rate": _r(m.conversion_rate)},
            )
        )
    return out


def keyword_quality_advisory(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    qs = m.quality_score
    if qs is None or qs <= t.low_quality_max_score or qs >= t.advisory_quality_score:
        return []
    return [
        _action(
            m,
            ActionType.IMPROVE_QUALITY_SCORE,
            f"Improve ad relevance for keyword '{m.keyword_text}'",
            f"quality score {qs}/10",
            {"quality_score": qs},
            priority=Priority.LOW,
        )
    ]


def account_advisories(m: AggregatedEntityMetrics, ctx: RuleContext) -> List[Action]:
    t = ctx.thresholds
    if m.impressions <= 0:
        return []
    out: List[Action] = []
    if m.ctr < t.advisory_ctr:
        out.append(
            _action(
                m,
                ActionType.IMPROVE_CTR,
                f"Account CTR is below {t.advisory_ctr:g}%; refresh ad copy and prune weak keywords",
                f"account CTR {m.ctr:.2f}%",
                {"ctr": _r(m.ctr)},
                priority=Priority.HIGH,
            )
        )
    if m.clicks > 0 and m.conversion_rate < t.advisory_conversion_rate:
        out.append(
            _action(
                m,
                ActionType.IMPROVE_CONVERSION_RATE,
                "Account conversion rate is low; review landing pages and conversion tracking",
                f"account conversion rate {m.conversion_rate:.2f}%",
                {"conversion_rate": _r(m.conversion_rate)},
            )
        )
    if m.budget > 0 and m.budget_utilization < t.advisory_budget_utilization:
        out.append(
            _action(
                m,
                ActionType.EXPAND_REACH,
                "Budget is underused; expand keywords or raise bids to capture more traffic",
                f"account budget utilization {m.budget_utilization:.1f}%",
                {"budget_utilization": _r(m.budget_utilization)},
                priority=Priority.LOW,
            )
        )
    if m.conversions > 0 and m.cpa > t.advisory_cpa:
        out.append(
            _action(
                m,
                ActionType.REVIEW_CPA,
                "Cost per conversion is high; tighten targeting or switch to TARGET_CPA",
                f"account CPA ${m.cpa:.2f}",
                {"cpa": _r(m.cpa)},
                priority=Priority.HIGH,
            )
        )
    return out


RULES: List[Rule] = [
    Rule("zero_traffic_keyword", EntityType.KEYWORD, ("KEYWORDS",), zero_traffic_keyword),
    Rule("low_quality_keyword", EntityType.KEYWORD, ("KEYWORDS",), low_quality_keyword),
    Rule("low_ctr_keyword", EntityType.KEYWORD, ("KEYWORDS", "BIDS"), low_ctr_keyword),
    Rule("threshold_pause_keyword", EntityType.KEYWORD, ("KEYWORDS",), threshold_pause_keyword),
    Rule("high_performer_keyword", EntityType.KEYWORD, ("BIDS",), high_performer),
    Rule("low_ctr_campaign", EntityType.CAMPAIGN, ("BIDS",), low_ctr_campaign),
    Rule("high_performer_campaign", EntityType.CAMPAIGN, ("BIDS",), high_performer),
    Rule("budget_underutilized", EntityType.CAMPAIGN, ("BUDGET", "BIDS"), budget_underutilized),
    Rule("high_cost_low_conversions", EntityType.CAMPAIGN, ("BIDS",), high_cost_low_conversions),
    Rule("scale_winner", EntityType.CAMPAIGN, ("BUDGET",), scale_winner),
    Rule("underperforming_label", EntityType.CAMPAIGN, ("BUDGET",), underperforming_label),
    Rule("negative_keywords", EntityType.CAMPAIGN, ("KEYWORDS", "TARGETING"), negative_keywords),
    Rule("high_cpa_ad", EntityType.AD, ("ADS",), high_cpa_ad),
    Rule("low_ctr_ad_group", EntityType.AD_GROUP, ("ADS",), low_ctr_ad_group),
    Rule("campaign_advisories", EntityType.CAMPAIGN, (), campaign_advisories, advisory=True),
    Rule("keyword_quality_advisory", EntityType.KEYWORD, (), keyword_quality_advisory, advisory=True),
    Rule("account_advisories", EntityType.ACCOUNT, (), account_advisories, advisory=True),
]


# Executable actions writing the same field of the same resource conflict.
_SLOTS = {
    ActionType.PAUSE: "status",
    ActionType.ARCHIVE: "status",
    ActionType.BID_INCREASE: "bid",
    ActionType.BID_DECREASE: "bid",
    ActionType.BIDDING_STRATEGY: "strategy",
    ActionType.BUDGET_INCREASE: "budget",
    ActionType.LABEL: "label",
    ActionType.NEGATIVE_KEYWORD: "negative",
}
# Removal deletes the resource, so it claims every slot on it.
_REMOVALS = {ActionType.ARCHIVE}


def _resource(a: Action) -> Tuple[str, ...]:
    return (a.entity_type.value, a.campaign_id or "", a.ad_group_id or "", a.entity_id)


def _slot(a: Action) -> Tuple[str, ...]:
    extra = (a.keyword_text or "").lower() if a.action_type == ActionType.NEGATIVE_KEYWORD else ""
    return _resource(a) + (_SLOTS[a.action_type], extra)


def _resolve_conflicts(actions: List[Action]) -> None:
    """Demote later executable actions that target an already-claimed slot
    or a resource an earlier action removes."""
    claimed: Dict[Tuple[str, ...], str] = {}
    removed: Dict[Tuple[str, ...], str] = {}
    for a in actions:
        if not a.execute:
            continue
        slot = _slot(a)
        winner = removed.get(_resource(a)) or claimed.get(slot)
        if winner:
            a.execute = False
            a.reason = f"{a.reason} (superseded by {winner})"
            continue
        claimed[slot] = a.rule_id
        if a.action_type in _REMOVALS:
            removed[_resource(a)] = a.rule_id


def evaluate_rules(
    metrics: Dict[EntityType, Dict[str, AggregatedEntityMetrics]],
    ctx: Optional[RuleContext] = None,
    optimization_type: str = "ALL",
    account: Optional[AggregatedEntityMetrics] = None,
    rules: Optional[List[Rule]] = None,
) -> List[Action]:
    """Run every applicable rule over every entity and return the actions.

    *metrics* maps each granularity to its summaries. Evaluating the same
    snapshot twice yields an identical list.
    """
    ctx = ctx or RuleContext()
    registry = RULES if rules is None else rules
    actions: List[Action] = []

    for rule in registry:
        if not rule.applies_to(optimization_type):
            continue
        if rule.entity_type == EntityType.ACCOUNT:
            entities = {"account": account} if account is not None else {}
        else:
            entities = metrics.get(rule.entity_type, {})
        for key in sorted(entities):
            for a in rule.fn(entities[key], ctx):
                a.rule_id = rule.rule_id
                a.category = rule.categories[0] if rule.categories else "ADVISORY"
                actions.append(a)

    _resolve_conflicts(actions)
    for a in actions:
        a.status = ActionStatus.PENDING if a.execute else ActionStatus.RECOMMENDED

    logger.info(
        "rules produced %d action(s), %d executable",
        len(actions),
        sum(1 for a in actions if a.execute),
    )
    return actions
