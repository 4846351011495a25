"""Internal data model: raw metric rows, aggregates, actions and responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from adpilot.units import ratio_percent, safe_divide


class EntityType(str, Enum):
    ACCOUNT = "ACCOUNT"
    CAMPAIGN = "CAMPAIGN"
    AD_GROUP = "AD_GROUP"
    KEYWORD = "KEYWORD"
    AD = "AD"


class ActionType(str, Enum):
    PAUSE = "PAUSE"
    ARCHIVE = "ARCHIVE"
    BID_INCREASE = "BID_INCREASE"
    BID_DECREASE = "BID_DECREASE"
    BUDGET_INCREASE = "BUDGET_INCREASE"
    BIDDING_STRATEGY = "BIDDING_STRATEGY"
    LABEL = "LABEL"
    NEGATIVE_KEYWORD = "NEGATIVE_KEYWORD"
    # advisory only, never turned into mutations
    IMPROVE_CTR = "IMPROVE_CTR"
    IMPROVE_CONVERSION_RATE = "IMPROVE_CONVERSION_RATE"
    IMPROVE_QUALITY_SCORE = "IMPROVE_QUALITY_SCORE"
    EXPAND_REACH = "EXPAND_REACH"
    REVIEW_CPA = "REVIEW_CPA"


class Impact(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ActionStatus(str, Enum):
    PENDING = "pending"
    RECOMMENDED = "recommended"
    WOULD_APPLY = "would_apply"
    APPLIED = "applied"
    FAILED = "failed"


OPTIMIZATION_TYPES = ("BIDS", "KEYWORDS", "ADS", "TARGETING", "BUDGET", "ALL")


# ─────────────────────────────────────────────────────────────────────────────
# Raw rows and aggregates
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MetricRow:
    """One raw observation for a single entity on a single date."""

    campaign_id: str
    campaign_name: str = ""
    date: Optional[str] = None

    ad_group_id: Optional[str] = None
    ad_group_name: Optional[str] = None
    criterion_id: Optional[str] = None
    keyword_text: Optional[str] = None
    match_type: Optional[str] = None
    ad_id: Optional[str] = None
    ad_text: Optional[str] = None

    impressions: int = 0
    clicks: int = 0
    cost_micros: int = 0
    conversions: float = 0.0
    conversion_value: float = 0.0

    daily_budget_micros: Optional[int] = None
    budget_id: Optional[str] = None
    cpc_bid_micros: Optional[int] = None
    bidding_strategy: Optional[str] = None

    quality_score: Optional[int] = None
    search_impression_share: Optional[float] = None


@dataclass
class AggregatedEntityMetrics:
    entity_type: EntityType
    key: str
    campaign_id: str
    campaign_name: str = ""
    ad_group_id: Optional[str] = None
    ad_group_name: Optional[str] = None
    criterion_id: Optional[str] = None
    keyword_text: Optional[str] = None
    match_type: Optional[str] = None
    ad_id: Optional[str] = None
    ad_text: Optional[str] = None
    budget_id: Optional[str] = None
    bidding_strategy: Optional[str] = None

    impressions: int = 0
    clicks: int = 0
    cost: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0

    # percentages (0..100)
    ctr: float = 0.0
    conversion_rate: float = 0.0
    budget_utilization: float = 0.0
    # currency
    average_cpc: float = 0.0
    cpa: float = 0.0
    roas: float = 0.0
    daily_budget: float = 0.0
    budget: float = 0.0
    cpc_bid: Optional[float] = None

    quality_score: Optional[int] = None
    search_impression_share: Optional[float] = None
    days: int = 1

    def recompute_metrics(self) -> None:
        """Derive every ratio from the summed counters."""
        self.ctr = ratio_percent(self.clicks, self.impressions)
        self.conversion_rate = ratio_percent(self.conversions, self.clicks)
        self.average_cpc = safe_divide(self.cost, self.clicks)
        self.cpa = safe_divide(self.cost, self.conversions)
        self.roas = safe_divide(self.conversion_value, self.cost)
        self.budget = self.daily_budget * max(self.days, 1) if self.daily_budget > 0 else 0.0
        self.budget_utilization = ratio_percent(self.cost, self.budget)

    @property
    def entity_id(self) -> str:
        if self.entity_type == EntityType.CAMPAIGN:
            return self.campaign_id
        if self.entity_type == EntityType.AD_GROUP:
            return self.ad_group_id or ""
        if self.entity_type == EntityType.KEYWORD:
            return self.criterion_id or self.keyword_text or ""
        if self.entity_type == EntityType.AD:
            return self.ad_id or ""
        return self.key

    @property
    def entity_name(self) -> str:
        if self.entity_type == EntityType.CAMPAIGN:
            return self.campaign_name
        if self.entity_type == EntityType.AD_GROUP:
            return self.ad_group_name or ""
        if self.entity_type == EntityType.KEYWORD:
            return self.keyword_text or ""
        if self.entity_type == EntityType.AD:
            return self.ad_text or self.ad_id or ""
        return "Account"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "key": self.key,
            "campaign_id": self.campaign_id,
            "campaign_name": self.campaign_name,
            "ad_group_id": self.ad_group_id,
            "ad_group_name": self.ad_group_name,
            "keyword_text": self.keyword_text,
            "match_type": self.match_type,
            "ad_id": self.ad_id,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "cost": self.cost,
            "conversions": self.conversions,
            "conversion_value": self.conversion_value,
            "ctr": self.ctr,
            "average_cpc": self.average_cpc,
            "conversion_rate": self.conversion_rate,
            "cpa": self.cpa,
            "roas": self.roas,
            "daily_budget": self.daily_budget,
            "budget": self.budget,
            "budget_utilization": self.budget_utilization,
            "quality_score": self.quality_score,
            "search_impression_share": self.search_impression_share,
            "days": self.days,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Actions and mutations
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class Action:
    """A decided mutation intent. ``execute=False`` makes it a recommendation."""

    action_type: ActionType
    entity_type: EntityType
    entity_id: str
    entity_name: str
    reason: str
    evidence: str = ""
    metrics: Dict[str, float] = field(default_factory=dict)
    impact: Impact = Impact.POSITIVE
    priority: Priority = Priority.MEDIUM
    rule_id: str = ""
    category: str = ""
    execute: bool = False

    campaign_id: Optional[str] = None
    ad_group_id: Optional[str] = None
    criterion_id: Optional[str] = None
    ad_id: Optional[str] = None
    budget_id: Optional[str] = None

    current_value: Optional[float] = None
    new_value: Optional[float] = None
    bidding_strategy: Optional[str] = None
    label: Optional[str] = None
    keyword_text: Optional[str] = None
    match_type: Optional[str] = None

    status: ActionStatus = ActionStatus.PENDING
    error: Optional[str] = None

    @property
    def is_recommendation(self) -> bool:
        return not self.execute

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.action_type.value,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "entityName": self.entity_name,
            "reason": self.reason,
            "evidence": self.evidence,
            "metrics": dict(self.metrics),
            "impact": self.impact.value,
            "priority": self.priority.value,
            "ruleId": self.rule_id,
            "status": self.status.value,
        }
        optional = {
            "campaignId": self.campaign_id,
            "adGroupId": self.ad_group_id,
            "currentValue": self.current_value,
            "newValue": self.new_value,
            "biddingStrategy": self.bidding_strategy,
            "label": self.label,
            "keywordText": self.keyword_text,
            "matchType": self.match_type,
            "error": self.error,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        return out


@dataclass
class MutationOperation:
    """One create/update/remove instruction targeting one external resource."""

    operation: str  # create | update | remove
    resource_type: str
    resource_name: str
    fields: Dict[str, Any] = field(default_factory=dict)
    update_mask: List[str] = field(default_factory=list)
    action_index: int = -1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "resource_type": self.resource_type,
            "resource_name": self.resource_name,
            "fields": dict(self.fields),
            "update_mask": list(self.update_mask),
        }


@dataclass
class OperationResult:
    index: int
    success: bool
    resource_name: str = ""
    error: Optional[str] = None


@dataclass
class MutationResponse:
    """Outcome of one batch submission.

    ``results`` holds one entry per submitted operation when the service
    reports per-operation outcomes, otherwise it is empty and the batch is
    all-or-nothing.
    """

    results: List[OperationResult] = field(default_factory=list)
    validate_only: bool = False

    @property
    def failed(self) -> List[OperationResult]:
        return [r for r in self.results if not r.success]


# ─────────────────────────────────────────────────────────────────────────────
# Request / response envelope
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class PauseThreshold:
    ctr: Optional[float] = None  # percent
    conversion_rate: Optional[float] = None  # percent
    cpa: Optional[float] = None  # currency


@dataclass
class OptimizationSettings:
    max_cpc_increase: Optional[float] = None  # percent
    min_cpc_decrease: Optional[float] = None  # percent
    pause_low_performing: bool = False
    pause_threshold: PauseThreshold = field(default_factory=PauseThreshold)
    add_negative_keywords: List[str] = field(default_factory=list)


@dataclass
class OptimizationRequest:
    optimization_type: str
    campaign_id: Optional[str] = None
    settings: OptimizationSettings = field(default_factory=OptimizationSettings)
    lookback_days: Optional[int] = None


@dataclass
class OptimizationSummary:
    total_changes: int = 0
    expected_improvement: str = ""
    risk_level: str = "LOW"
    mode: str = "validate_only"
    campaigns_analyzed: int = 0
    recommendations: int = 0
    failed_changes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalChanges": self.total_changes,
            "expectedImprovement": self.expected_improvement,
            "riskLevel": self.risk_level,
            "mode": self.mode,
            "campaignsAnalyzed": self.campaigns_analyzed,
            "recommendations": self.recommendations,
            "failedChanges": self.failed_changes,
        }


@dataclass
class OptimizationResponse:
    success: bool
    applied: List[Action] = field(default_factory=list)
    recommendations: List[Action] = field(default_factory=list)
    summary: Optional[OptimizationSummary] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_details: Dict[str, Any] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.summary is not None:
            out["optimizations"] = {
                "applied": [a.to_dict() for a in self.applied],
                "recommendations": [r.to_dict() for r in self.recommendations],
                "summary": self.summary.to_dict(),
            }
        if self.error is not None:
            out["error"] = self.error
        if self.error_code is not None:
            out["errorCode"] = self.error_code
        if self.error_details:
            out["errorDetails"] = dict(self.error_details)
        if self.notes:
            out["notes"] = list(self.notes)
        return out
