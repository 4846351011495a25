"""Load and validate config.yaml (plus environment overrides)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv


class ConfigError(ValueError):
    pass


@dataclass
class QueryConfig:
    lookback_days: int = 30
    timeout_seconds: float = 30.0
    # Only campaigns carrying one of these label ids are queried; empty = all enabled campaigns.
    managed_label_ids: List[str] = field(default_factory=list)


@dataclass
class RetryConfig:
    """Exponential-backoff settings for outbound Ads API calls."""

    max_api_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 15.0
    jitter_seconds: float = 0.5


@dataclass
class ThresholdConfig:
    """Rule constants. Percentages are on a 0..100 scale, money in currency."""

    # keyword level
    zero_traffic_min_impressions: int = 500
    low_quality_max_score: int = 3
    # scores up to this bucket count as poor quality once a keyword has no conversions
    poor_quality_max_score: int = 4
    low_quality_min_clicks: int = 10
    keyword_low_ctr_min_impressions: int = 100
    threshold_pause_min_clicks: int = 20
    # campaign level
    campaign_low_ctr_min_impressions: int = 200
    default_pause_ctr: float = 1.0
    default_bid_decrease_pct: float = 10.0
    min_bid_floor_ratio: float = 0.5
    max_bid_cap_ratio: float = 2.0
    high_performer_min_impressions: int = 50
    high_performer_min_ctr: float = 3.0
    high_performer_min_clicks: int = 5
    high_performer_bid_multiplier: float = 1.5
    underutilized_max_utilization: float = 60.0
    underutilized_min_impressions: int = 1000
    max_clicks_ceiling_multiplier: float = 1.5
    max_clicks_ceiling_floor: float = 0.50
    high_cost_min_cpc: float = 2.0
    high_cost_max_conversions: float = 2.0
    high_cost_min_clicks: int = 50
    target_cpa_multiplier: float = 10.0
    target_cpa_floor: float = 20.0
    scale_min_utilization: float = 90.0
    scale_min_conversion_rate: float = 2.0
    scale_min_cost: float = 100.0
    scale_budget_increase_pct: float = 20.0
    label_min_cost: float = 200.0
    label_min_cpa: float = 100.0
    # ad level
    ad_min_clicks: int = 100
    ad_max_cpa: float = 50.0
    # ad group level
    ad_group_low_ctr_min_impressions: int = 1000
    ad_group_low_ctr: float = 0.5
    # advisories
    advisory_min_impressions: int = 100
    advisory_ctr: float = 2.0
    advisory_conversion_rate: float = 3.0
    advisory_quality_score: int = 6
    advisory_budget_utilization: float = 80.0
    advisory_cpa: float = 50.0


@dataclass
class ExecutionConfig:
    validate_only: bool = True
    allowed_callers: List[str] = field(default_factory=list)
    underperforming_label: str = "AdPilot_UNDERPERFORMING"
    underperforming_label_id: Optional[str] = None
    medium_risk_operations: int = 10
    mutation_timeout_seconds: float = 30.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


@dataclass
class AppConfig:
    query: QueryConfig = field(default_factory=QueryConfig)
    retry_api: RetryConfig = field(default_factory=RetryConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_bool(value, name: str = "value") -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def parse_caller_list(value) -> List[str]:
    """Split a comma separated allow-list; entries are lower-cased."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    return [str(v).strip().lower() for v in items if str(v).strip()]


def parse_id_list(value, name: str = "value") -> List[str]:
    """Split a comma separated list of numeric ids."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    ids = [str(v).strip() for v in items if str(v).strip()]
    bad = [i for i in ids if not i.isdigit()]
    if bad:
        raise ConfigError(f"{name} must hold numeric ids, got {', '.join(bad)}")
    return ids


def _section(raw: dict, name: str, cls):
    data = raw.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    try:
        return cls(**data)
    except TypeError as exc:
        raise ConfigError(f"Invalid keys in config section '{name}': {exc}") from exc


def apply_env_overrides(cfg: AppConfig) -> AppConfig:
    """Apply ADPILOT_* environment variables on top of file values."""
    validate_only = os.environ.get("ADPILOT_VALIDATE_ONLY")
    if validate_only is not None and validate_only.strip():
        cfg.execution.validate_only = parse_bool(validate_only, "ADPILOT_VALIDATE_ONLY")

    admins = os.environ.get("ADPILOT_ADMIN_EMAILS")
    if admins is not None:
        cfg.execution.allowed_callers = parse_caller_list(admins)

    label = os.environ.get("ADPILOT_LABEL")
    if label:
        cfg.execution.underperforming_label = f"{label.strip()}_UNDERPERFORMING"

    label_id = os.environ.get("ADPILOT_LABEL_ID")
    if label_id:
        cfg.execution.underperforming_label_id = label_id.strip()

    managed = os.environ.get("ADPILOT_MANAGED_LABEL_IDS")
    if managed is not None and managed.strip():
        cfg.query.managed_label_ids = parse_id_list(managed, "ADPILOT_MANAGED_LABEL_IDS")

    level = os.environ.get("ADPILOT_LOG_LEVEL")
    if level:
        cfg.logging.level = level.strip().upper()
    return cfg


def load_config(
    path: str | Path = "config.yaml",
    env_file: Optional[str] = None,
    use_env: bool = True,
) -> AppConfig:
    """Load config from YAML file, falling back to defaults.

    Environment variables (optionally read from a ``.env`` file first) take
    priority over the file.
    """
    p = Path(path)
    raw: dict = {}
    if p.exists():
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = AppConfig(
        query=_section(raw, "query", QueryConfig),
        retry_api=_section(raw, "retry_api", RetryConfig),
        thresholds=_section(raw, "thresholds", ThresholdConfig),
        execution=_section(raw, "execution", ExecutionConfig),
        logging=_section(raw, "logging", LoggingConfig),
    )
    cfg.execution.validate_only = parse_bool(
        cfg.execution.validate_only, "execution.validate_only"
    )
    cfg.execution.allowed_callers = parse_caller_list(cfg.execution.allowed_callers)
    cfg.query.managed_label_ids = parse_id_list(cfg.query.managed_label_ids, "query.managed_label_ids")

    if use_env:
        load_dotenv(env_file, override=False)
        apply_env_overrides(cfg)
    return cfg
