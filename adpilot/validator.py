"""Validate an incoming optimization request payload."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from adpilot.errors import ValidationError
from adpilot.schema import (
    OPTIMIZATION_TYPES,
    OptimizationRequest,
    OptimizationSettings,
    PauseThreshold,
)


def _optional_number(raw: Dict[str, Any], key: str, errors: List[str], *, minimum: float = 0.0) -> Optional[float]:
    if raw.get(key) is None:
        return None
    value = raw[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(f"{key} must be a number")
        return None
    if value < minimum:
        errors.append(f"{key} must be >= {minimum:g}")
        return None
    return float(value)


def validate_settings(raw: Any) -> OptimizationSettings:
    if raw is None:
        return OptimizationSettings()
    if not isinstance(raw, dict):
        raise ValidationError("settings must be an object")

    errors: List[str] = []
    max_inc = _optional_number(raw, "maxCpcIncrease", errors)
    min_dec = _optional_number(raw, "minCpcDecrease", errors)
    if min_dec is not None and min_dec >= 100:
        errors.append("minCpcDecrease must be < 100")

    pause_low = raw.get("pauseLowPerforming", False)
    if not isinstance(pause_low, bool):
        errors.append("pauseLowPerforming must be a boolean")
        pause_low = False

    threshold_raw = raw.get("pauseThreshold") or {}
    if not isinstance(threshold_raw, dict):
        errors.append("pauseThreshold must be an object")
        threshold_raw = {}
    threshold = PauseThreshold(
        ctr=_optional_number(threshold_raw, "ctr", errors),
        conversion_rate=_optional_number(threshold_raw, "conversionRate", errors),
        cpa=_optional_number(threshold_raw, "cpa", errors),
    )

    negatives_raw = raw.get("addNegativeKeywords") or []
    negatives: List[str] = []
    if not isinstance(negatives_raw, list):
        errors.append("addNegativeKeywords must be a list of strings")
    else:
        for kw in negatives_raw:
            if not isinstance(kw, str):
                errors.append("addNegativeKeywords must be a list of strings")
                break
            text = kw.strip()
            # duplicates would produce duplicate create operations
            if text and text.lower() not in {n.lower() for n in negatives}:
                negatives.append(text)

    if errors:
        raise ValidationError("; ".join(errors))

    return OptimizationSettings(
        max_cpc_increase=max_inc,
        min_cpc_decrease=min_dec,
        pause_low_performing=pause_low,
        pause_threshold=threshold,
        add_negative_keywords=negatives,
    )


def validate_request(payload: Any) -> OptimizationRequest:
    """Return a typed request or raise ValidationError.

    ``optimizationType`` is required; everything else is optional.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be an object")

    opt_type = payload.get("optimizationType")
    if not opt_type:
        raise ValidationError("optimizationType is required")
    opt_type = str(opt_type).strip().upper()
    if opt_type not in OPTIMIZATION_TYPES:
        raise ValidationError(
            f"optimizationType must be one of {', '.join(OPTIMIZATION_TYPES)} (got {opt_type!r})"
        )

    campaign_id = payload.get("campaignId")
    if campaign_id is not None:
        campaign_id = str(campaign_id).strip()
        if not campaign_id.isdigit():
            raise ValidationError("campaignId must be a numeric id")

    lookback = payload.get("lookbackDays")
    if lookback is not None:
        if isinstance(lookback, bool) or not isinstance(lookback, int) or not 1 <= lookback <= 90:
            raise ValidationError("lookbackDays must be an integer between 1 and 90")

    return OptimizationRequest(
        optimization_type=opt_type,
        campaign_id=campaign_id or None,
        settings=validate_settings(payload.get("settings")),
        lookback_days=lookback,
    )
