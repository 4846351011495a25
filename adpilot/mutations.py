"""Mutation Batch Builder: executable Actions → MutationOperations.

Resource names are derived from entity ids only, so the same actions always
produce the same batch. Nothing here talks to the Mutation Service.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from adpilot.config_google_ads import format_customer_id
from adpilot.errors import OptimizerError
from adpilot.schema import Action, ActionType, EntityType, MutationOperation
from adpilot.units import currency_to_micros


class MutationBuildError(OptimizerError, ValueError):
    code = "MUTATION_BUILD_ERROR"


# ─────────────────────────────────────────────────────────────────────────────
# Resource names
# ─────────────────────────────────────────────────────────────────────────────


def campaign_path(customer_id: str, campaign_id: str) -> str:
    return f"customers/{customer_id}/campaigns/{campaign_id}"


def campaign_budget_path(customer_id: str, budget_id: str) -> str:
    return f"customers/{customer_id}/campaignBudgets/{budget_id}"


def ad_group_criterion_path(customer_id: str, ad_group_id: str, criterion_id: str) -> str:
    return f"customers/{customer_id}/adGroupCriteria/{ad_group_id}~{criterion_id}"


def ad_group_ad_path(customer_id: str, ad_group_id: str, ad_id: str) -> str:
    return f"customers/{customer_id}/adGroupAds/{ad_group_id}~{ad_id}"


def label_path(customer_id: str, label_id: str) -> str:
    return f"customers/{customer_id}/labels/{label_id}"


def campaign_label_path(customer_id: str, campaign_id: str, label_id: str) -> str:
    return f"customers/{customer_id}/campaignLabels/{campaign_id}~{label_id}"


def _require(action: Action, *names: str) -> None:
    missing = [n for n in names if not getattr(action, n)]
    if missing:
        raise MutationBuildError(
            f"{action.action_type.value} on {action.entity_type.value} {action.entity_id!r} "
            f"is missing {', '.join(missing)}"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Per-action translation
# ─────────────────────────────────────────────────────────────────────────────


def _keyword_op(action: Action, cid: str) -> MutationOperation:
    _require(action, "ad_group_id", "criterion_id")
    rn = ad_group_criterion_path(cid, action.ad_group_id, action.criterion_id)
    if action.action_type == ActionType.PAUSE:
        return MutationOperation("update", "ad_group_criterion", rn, {"status": "PAUSED"}, ["status"])
    if action.action_type == ActionType.ARCHIVE:
        return MutationOperation("remove", "ad_group_criterion", rn)
    if action.action_type in (ActionType.BID_INCREASE, ActionType.BID_DECREASE):
        _require(action, "new_value")
        return MutationOperation(
            "update",
            "ad_group_criterion",
            rn,
            {"cpc_bid_micros": currency_to_micros(action.new_value)},
            ["cpc_bid_micros"],
        )
    raise MutationBuildError(f"Unsupported keyword action {action.action_type.value}")


def _ad_op(action: Action, cid: str) -> MutationOperation:
    _require(action, "ad_group_id", "ad_id")
    if action.action_type != ActionType.PAUSE:
        raise MutationBuildError(f"Unsupported ad action {action.action_type.value}")
    rn = ad_group_ad_path(cid, action.ad_group_id, action.ad_id)
    return MutationOperation("update", "ad_group_ad", rn, {"status": "PAUSED"}, ["status"])


def _campaign_op(action: Action, cid: str, label_id: Optional[str]) -> MutationOperation:
    _require(action, "campaign_id")
    campaign_rn = campaign_path(cid, action.campaign_id)
    t = action.action_type

    if t == ActionType.BIDDING_STRATEGY:
        _require(action, "new_value", "bidding_strategy")
        if action.bidding_strategy == "MAXIMIZE_CLICKS":
            path = "target_spend.cpc_bid_ceiling_micros"
        elif action.bidding_strategy == "TARGET_CPA":
            path = "target_cpa.target_cpa_micros"
        else:
            raise MutationBuildError(f"Unsupported bidding strategy {action.bidding_strategy}")
        return MutationOperation(
            "update", "campaign", campaign_rn, {path: currency_to_micros(action.new_value)}, [path]
        )

    if t == ActionType.BUDGET_INCREASE:
        _require(action, "new_value")
        budget_rn = campaign_budget_path(cid, action.budget_id or action.campaign_id)
        return MutationOperation(
            "update",
            "campaign_budget",
            budget_rn,
            {"amount_micros": currency_to_micros(action.new_value)},
            ["amount_micros"],
        )

    if t == ActionType.LABEL:
        if not label_id:
            raise MutationBuildError("LABEL action requires a label id")
        return MutationOperation(
            "create",
            "campaign_label",
            campaign_label_path(cid, action.campaign_id, label_id),
            {"campaign": campaign_rn, "label": label_path(cid, label_id)},
        )

    if t == ActionType.NEGATIVE_KEYWORD:
        _require(action, "keyword_text")
        return MutationOperation(
            "create",
            "campaign_criterion",
            campaign_rn,
            {
                "campaign": campaign_rn,
                "negative": True,
                "status": "ENABLED",
                "keyword.text": action.keyword_text,
                "keyword.match_type": action.match_type or "BROAD",
            },
        )

    raise MutationBuildError(f"Unsupported campaign action {t.value}")


def build_operation(action: Action, customer_id: str, label_id: Optional[str] = None) -> MutationOperation:
    cid = format_customer_id(customer_id)
    if action.entity_type == EntityType.KEYWORD:
        return _keyword_op(action, cid)
    if action.entity_type == EntityType.AD:
        return _ad_op(action, cid)
    if action.entity_type == EntityType.CAMPAIGN:
        return _campaign_op(action, cid, label_id)
    raise MutationBuildError(
        f"No mutation for {action.action_type.value} on {action.entity_type.value}"
    )


def build_mutation_batch(
    actions: Sequence[Action],
    customer_id: str,
    label_id: Optional[str] = None,
) -> List[MutationOperation]:
    """One operation per executable action, in input order.

    ``action_index`` on each operation points back into *actions*.
    """
    if not format_customer_id(customer_id):
        raise MutationBuildError("customer_id is required to build mutations")
    ops: List[MutationOperation] = []
    for i, action in enumerate(actions):
        if not action.execute:
            continue
        op = build_operation(action, customer_id, label_id)
        op.action_index = i
        ops.append(op)
    return ops


def describe_operation(op: MutationOperation) -> str:
    """One-line human description used in dry-run reports."""
    if op.operation == "remove":
        return f"remove {op.resource_type} {op.resource_name}"
    changes = ", ".join(f"{k}={v}" for k, v in op.fields.items())
    return f"{op.operation} {op.resource_type} {op.resource_name} ({changes})"
