"""Execution controller: query → aggregate → rules → batch → (validate | apply)."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import Template

from adpilot.access import AccessPolicy
from adpilot.aggregator import account_totals, aggregate_level
from adpilot.config import AppConfig
from adpilot.errors import (
    AccessDenied,
    OperationCancelled,
    OptimizerError,
    UpstreamMutationError,
    ValidationError,
)
from adpilot.config_google_ads import format_customer_id
from adpilot.mutations import build_mutation_batch, describe_operation, label_path
from adpilot.query_adapter import DateRange, RetryPolicy, fetch_metric_rows
from adpilot.rules import RuleContext, evaluate_rules
from adpilot.schema import (
    Action,
    ActionStatus,
    AggregatedEntityMetrics,
    EntityType,
    MutationOperation,
    OptimizationRequest,
    OptimizationResponse,
    OptimizationSummary,
)
from adpilot.services.base import AdsQueryService, MutationService
from adpilot.validator import validate_request

logger = logging.getLogger(__name__)

_REPORT_TEMPLATE_PATH = Path(__file__).parent / "templates" / "report.md.j2"

_LEVELS = {
    "BIDS": ("campaign", "keyword"),
    "KEYWORDS": ("campaign", "keyword"),
    "ADS": ("campaign", "ad_group", "ad"),
    "TARGETING": ("campaign",),
    "BUDGET": ("campaign",),
    "ALL": ("campaign", "ad_group", "keyword", "ad"),
}

_LEVEL_ENTITY = {
    "campaign": EntityType.CAMPAIGN,
    "ad_group": EntityType.AD_GROUP,
    "keyword": EntityType.KEYWORD,
    "ad": EntityType.AD,
}

DRY_RUN_IMPROVEMENT = "Optimizations would be applied in production"
APPLIED_IMPROVEMENT = "Applied optimizations should improve performance over time"
NO_CHANGES_IMPROVEMENT = "No changes required"


def _failure(exc: OptimizerError) -> OptimizationResponse:
    code = exc.code
    details: Dict[str, Any] = {}
    if isinstance(exc, UpstreamMutationError):
        code = exc.upstream_code or exc.code
        details = dict(exc.details)
    return OptimizationResponse(
        success=False,
        error=exc.message or str(exc),
        error_code=code,
        error_details=details,
    )


def risk_level(operation_count: int, medium_threshold: int = 10) -> str:
    return "MEDIUM" if operation_count > medium_threshold else "LOW"


# ─────────────────────────────────────────────────────────────────────────────
# Stages
# ─────────────────────────────────────────────────────────────────────────────


def managed_label_resources(customer_id: str, cfg: AppConfig) -> List[str]:
    """Label resource names that scope every query to managed campaigns."""
    cid = format_customer_id(customer_id)
    resources = [label_path(cid, lid) for lid in cfg.query.managed_label_ids]
    if not resources:
        logger.warning("no managed label configured; every enabled campaign is in scope")
    return resources


def collect_metrics(
    query_service: AdsQueryService,
    request: OptimizationRequest,
    cfg: AppConfig,
    today: Optional[date] = None,
) -> Tuple[Dict[EntityType, Dict[str, AggregatedEntityMetrics]], List[str]]:
    """Fetch and aggregate every level the optimization type needs."""
    date_range = DateRange.last_n_days(request.lookback_days or cfg.query.lookback_days, today=today)
    retry = RetryPolicy.from_config(cfg.retry_api)
    campaign_ids = [request.campaign_id] if request.campaign_id else None
    label_resources = managed_label_resources(query_service.customer_id, cfg)

    metrics: Dict[EntityType, Dict[str, AggregatedEntityMetrics]] = {}
    notes: List[str] = []
    for level in _LEVELS[request.optimization_type]:
        result = fetch_metric_rows(
            query_service,
            date_range,
            level=level,
            campaign_ids=campaign_ids,
            retry_policy=retry,
            timeout=cfg.query.timeout_seconds,
            label_resources=label_resources,
        )
        notes.extend(result.notes)
        entity_type = _LEVEL_ENTITY[level]
        metrics[entity_type] = aggregate_level(result.rows, entity_type, window_days=date_range.days)
        logger.info("%s: %d row(s) → %d entities", level, len(result.rows), len(metrics[entity_type]))
    return metrics, notes


def _submit(
    mutation_service: MutationService,
    ops: List[MutationOperation],
    actions: List[Action],
    cfg: AppConfig,
) -> int:
    """Submit *ops* in one call and mark the originating actions. Returns failures."""
    try:
        response = mutation_service.mutate(
            ops, validate_only=False, timeout=cfg.execution.mutation_timeout_seconds
        )
    except UpstreamMutationError:
        raise
    except Exception as exc:
        code = getattr(exc, "code", None)
        raise UpstreamMutationError(
            str(exc), upstream_code=code if isinstance(code, str) else None
        ) from exc

    if not (mutation_service.supports_partial_failure and response.results):
        for op in ops:
            actions[op.action_index].status = ActionStatus.APPLIED
        return 0

    failed = 0
    by_index = {r.index: r for r in response.results}
    for i, op in enumerate(ops):
        action = actions[op.action_index]
        result = by_index.get(i)
        if result is not None and result.success:
            action.status = ActionStatus.APPLIED
        else:
            action.status = ActionStatus.FAILED
            action.error = result.error if result is not None else "no result reported"
            failed += 1
    return failed


def run_optimization(
    payload: Any,
    *,
    query_service: AdsQueryService,
    mutation_service: Optional[MutationService] = None,
    cfg: Optional[AppConfig] = None,
    caller: Optional[str] = None,
    validate_only: Optional[bool] = None,
    cancel_event: Optional[threading.Event] = None,
    today: Optional[date] = None,
) -> OptimizationResponse:
    """Run one optimization request end to end.

    Parameters
    ----------
    payload:
        Request body (``optimizationType``, optional ``campaignId`` and
        ``settings``).
    query_service / mutation_service:
        Injected external services; built once by the caller.
    validate_only:
        Overrides ``cfg.execution.validate_only`` when given.
    cancel_event:
        Checked right before submission. Once the mutation call is issued
        it runs to completion.

    Returns
    -------
    OptimizationResponse. Typed failures are returned as ``success=False``
    envelopes; query failures only add notes.
    """
    cfg = cfg or AppConfig()
    try:
        request = validate_request(payload)
    except ValidationError as exc:
        logger.warning("invalid request: %s", exc)
        return _failure(exc)

    dry_run = cfg.execution.validate_only if validate_only is None else validate_only
    mode = "validate_only" if dry_run else "apply"

    if not dry_run:
        try:
            AccessPolicy.from_config(cfg.execution).require_apply(caller)
        except AccessDenied as exc:
            return _failure(exc)
        if mutation_service is None:
            raise ValueError("apply mode needs a mutation_service")

    logger.info(
        "optimization start: type=%s campaign=%s mode=%s",
        request.optimization_type,
        request.campaign_id or "*",
        mode,
    )

    metrics, notes = collect_metrics(query_service, request, cfg, today=today)
    campaigns = metrics.get(EntityType.CAMPAIGN, {})
    account = account_totals(campaigns) if campaigns else None

    ctx = RuleContext(
        settings=request.settings,
        thresholds=cfg.thresholds,
        label=cfg.execution.underperforming_label,
        label_id=cfg.execution.underperforming_label_id,
    )
    actions = evaluate_rules(metrics, ctx, request.optimization_type, account)
    executable = [a for a in actions if a.execute]
    recommendations = [a for a in actions if not a.execute]

    customer_id = (mutation_service or query_service).customer_id
    try:
        ops = build_mutation_batch(actions, customer_id, ctx.label_id) if executable else []
    except OptimizerError as exc:
        return _failure(exc)

    failed = 0
    if dry_run:
        for a in executable:
            a.status = ActionStatus.WOULD_APPLY
        for op in ops:
            logger.info("[validate-only] %s", describe_operation(op))
    elif ops:
        if cancel_event is not None and cancel_event.is_set():
            return _failure(OperationCancelled("Run cancelled before submitting mutations"))
        try:
            failed = _submit(mutation_service, ops, actions, cfg)
        except UpstreamMutationError as exc:
            logger.error("mutation batch failed: %s", exc)
            return _failure(exc)

    if not ops:
        improvement = NO_CHANGES_IMPROVEMENT
    elif dry_run:
        improvement = DRY_RUN_IMPROVEMENT
    else:
        improvement = APPLIED_IMPROVEMENT

    summary = OptimizationSummary(
        total_changes=len(ops),
        expected_improvement=improvement,
        risk_level=risk_level(len(ops), cfg.execution.medium_risk_operations),
        mode=mode,
        campaigns_analyzed=len(campaigns),
        recommendations=len(recommendations),
        failed_changes=failed,
    )
    response = OptimizationResponse(
        success=failed == 0,
        applied=executable,
        recommendations=recommendations,
        summary=summary,
        notes=notes,
    )
    if failed:
        response.error = f"{failed} of {len(ops)} mutation operation(s) failed"
        response.error_code = "PARTIAL_FAILURE"

    logger.info(
        "optimization done: %d change(s), %d recommendation(s), %d failed",
        len(ops),
        len(recommendations),
        failed,
    )
    return response


# ─────────────────────────────────────────────────────────────────────────────
# Report
# ─────────────────────────────────────────────────────────────────────────────


def format_report(response: OptimizationResponse, title: str = "AdPilot Optimization Report") -> str:
    """Render *response* as Markdown."""
    tmpl = Template(_REPORT_TEMPLATE_PATH.read_text(encoding="utf-8"), trim_blocks=True, lstrip_blocks=True)
    return tmpl.render(
        title=title,
        generated_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        response=response,
        summary=response.summary,
        applied=response.applied,
        recommendations=response.recommendations,
        notes=response.notes,
    )
