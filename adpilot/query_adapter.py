"""Query Adapter: dated GAQL queries against the Ads Query Service.

Every response shape the service may hand back is normalized to a flat
list of MetricRow. Failures never propagate to the caller: after bounded
retries of the primary query a simplified fallback is tried once, and if
that fails too the result is empty with a diagnostic note.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from adpilot.config import RetryConfig
from adpilot.errors import PartialRowError, UpstreamQueryError
from adpilot.mappers import map_record_to_metric_row
from adpilot.schema import MetricRow

logger = logging.getLogger(__name__)

LEVELS = ("campaign", "ad_group", "keyword", "ad")


@dataclass
class RetryPolicy:
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 15.0
    jitter_seconds: float = 0.5

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=cfg.max_api_retries,
            backoff_base_seconds=cfg.backoff_base_seconds,
            backoff_max_seconds=cfg.backoff_max_seconds,
            jitter_seconds=cfg.jitter_seconds,
        )

    def delay(self, attempt: int) -> float:
        sleep_s = min(self.backoff_base_seconds * (2**attempt), self.backoff_max_seconds)
        return sleep_s + random.uniform(0, self.jitter_seconds)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @classmethod
    def last_n_days(cls, n: int, today: Optional[date] = None) -> "DateRange":
        """Window of *n* full days ending yesterday."""
        if n < 1:
            raise ValueError("n must be >= 1")
        end = (today or date.today()) - timedelta(days=1)
        return cls(start=end - timedelta(days=n - 1), end=end)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def gaql(self) -> str:
        return f"segments.date BETWEEN '{self.start.isoformat()}' AND '{self.end.isoformat()}'"


@dataclass
class QueryResult:
    rows: List[MetricRow] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    used_fallback: bool = False
    failed: bool = False
    dropped_rows: int = 0


# ─────────────────────────────────────────────────────────────────────────────
# GAQL
# ─────────────────────────────────────────────────────────────────────────────

_FROM = {
    "campaign": "campaign",
    "ad_group": "ad_group",
    "keyword": "keyword_view",
    "ad": "ad_group_ad",
}

_STRUCTURE = {
    "campaign": ["campaign.id", "campaign.name"],
    "ad_group": ["campaign.id", "campaign.name", "ad_group.id", "ad_group.name"],
    "keyword": [
        "campaign.id",
        "campaign.name",
        "ad_group.id",
        "ad_group.name",
        "ad_group_criterion.criterion_id",
        "ad_group_criterion.keyword.text",
        "ad_group_criterion.keyword.match_type",
        "ad_group_criterion.cpc_bid_micros",
    ],
    "ad": [
        "campaign.id",
        "campaign.name",
        "ad_group.id",
        "ad_group.name",
        "ad_group_ad.ad.id",
        "ad_group_ad.ad.name",
    ],
}

_CORE_METRICS = [
    "metrics.impressions",
    "metrics.clicks",
    "metrics.cost_micros",
    "metrics.conversions",
    "metrics.conversions_value",
]

# Fields some accounts or API versions refuse; only requested by the primary query.
EXTENDED_FIELDS = {
    "campaign": [
        "campaign.bidding_strategy_type",
        "campaign.campaign_budget",
        "campaign_budget.id",
        "campaign_budget.amount_micros",
        "metrics.search_impression_share",
    ],
    "ad_group": ["campaign_budget.amount_micros", "metrics.search_impression_share"],
    "keyword": [
        "ad_group_criterion.effective_cpc_bid_micros",
        "ad_group_criterion.quality_info.quality_score",
        "metrics.search_impression_share",
    ],
    "ad": ["campaign.bidding_strategy_type"],
}

_STATUS_FILTERS = {
    "campaign": ["campaign.status = 'ENABLED'"],
    "ad_group": ["campaign.status = 'ENABLED'", "ad_group.status = 'ENABLED'"],
    "keyword": [
        "campaign.status = 'ENABLED'",
        "ad_group.status = 'ENABLED'",
        "ad_group_criterion.status = 'ENABLED'",
        "ad_group_criterion.negative = FALSE",
    ],
    "ad": [
        "campaign.status = 'ENABLED'",
        "ad_group.status = 'ENABLED'",
        "ad_group_ad.status = 'ENABLED'",
    ],
}


def _check_level(level: str) -> None:
    if level not in LEVELS:
        raise ValueError(f"Unsupported level {level!r}; expected one of {', '.join(LEVELS)}")


def _campaign_filter(campaign_ids: Optional[Sequence[str]]) -> List[str]:
    if not campaign_ids:
        return []
    ids = [str(c).strip() for c in campaign_ids if str(c).strip()]
    bad = [c for c in ids if not c.isdigit()]
    if bad:
        raise ValueError(f"Campaign ids must be numeric: {', '.join(bad)}")
    return [f"campaign.id IN ({', '.join(ids)})"] if ids else []


def _label_filter(label_resources: Optional[Sequence[str]]) -> List[str]:
    if not label_resources:
        return []
    quoted = ", ".join(f"'{r}'" for r in label_resources)
    return [f"campaign.labels CONTAINS ANY ({quoted})"]


def build_query(
    level: str,
    date_range: DateRange,
    campaign_ids: Optional[Sequence[str]] = None,
    fallback: bool = False,
    label_resources: Optional[Sequence[str]] = None,
) -> str:
    """Build the GAQL statement for *level*.

    The fallback variant keeps identifiers and core counters only. Both
    variants honour the campaign id and managed-label scope.
    """
    _check_level(level)
    select = list(_STRUCTURE[level]) + ["segments.date"] + _CORE_METRICS
    if not fallback:
        select += EXTENDED_FIELDS[level]
    where = _STATUS_FILTERS[level] + [date_range.gaql()] + _campaign_filter(campaign_ids)
    where += _label_filter(label_resources)
    return (
        "SELECT\n  "
        + ",\n  ".join(select)
        + f"\nFROM {_FROM[level]}\nWHERE "
        + "\n  AND ".join(where)
    )


# ─────────────────────────────────────────────────────────────────────────────
# Response-shape normalization
# ─────────────────────────────────────────────────────────────────────────────


class ResponseShape(str, Enum):
    EMPTY = "empty"
    LIST = "list"
    ROWS_WRAPPER = "rows_wrapper"
    RESULTS_WRAPPER = "results_wrapper"
    ITERABLE = "iterable"
    UNKNOWN = "unknown"


def _wrapped(response: Any, key: str) -> Any:
    if isinstance(response, dict):
        return response.get(key)
    return getattr(response, key, None)


def classify_response(response: Any) -> ResponseShape:
    if response is None:
        return ResponseShape.EMPTY
    if isinstance(response, (list, tuple)):
        return ResponseShape.LIST
    if isinstance(_wrapped(response, "rows"), (list, tuple)):
        return ResponseShape.ROWS_WRAPPER
    if isinstance(_wrapped(response, "results"), (list, tuple)):
        return ResponseShape.RESULTS_WRAPPER
    if isinstance(response, (str, bytes, dict)):
        return ResponseShape.UNKNOWN
    if hasattr(response, "__iter__"):
        return ResponseShape.ITERABLE
    return ResponseShape.UNKNOWN


def normalize_response(response: Any) -> Tuple[ResponseShape, List[Any]]:
    """Return ``(shape, flat_records)`` for any supported response shape.

    Raises UpstreamQueryError for shapes that cannot be interpreted.
    """
    shape = classify_response(response)
    if shape == ResponseShape.EMPTY:
        return shape, []
    if shape == ResponseShape.LIST:
        return shape, list(response)
    if shape == ResponseShape.ROWS_WRAPPER:
        return shape, list(_wrapped(response, "rows"))
    if shape == ResponseShape.RESULTS_WRAPPER:
        return shape, list(_wrapped(response, "results"))
    if shape == ResponseShape.ITERABLE:
        return shape, list(response)
    raise UpstreamQueryError(f"Unrecognized response shape: {type(response).__name__}")


# ─────────────────────────────────────────────────────────────────────────────
# Retry
# ─────────────────────────────────────────────────────────────────────────────


def _is_retryable_error(exc: Exception) -> bool:
    s = str(exc).lower()
    return any(
        k in s
        for k in [
            "rate",
            "quota",
            "resource exhausted",
            "429",
            "too many requests",
            "unavailable",
            "deadline",
            "timeout",
            "timed out",
            "503",
        ]
    )


def _query_with_retry(
    service,
    query: str,
    retry: RetryPolicy,
    timeout: Optional[float],
    sleep: Callable[[float], None] = time.sleep,
) -> List[Any]:
    attempt = 0
    while True:
        try:
            response = service.query(query, timeout=timeout)
            _, records = normalize_response(response)
            return records
        except UpstreamQueryError:
            raise
        except Exception as exc:
            if attempt >= retry.max_retries or not _is_retryable_error(exc):
                raise UpstreamQueryError(f"Ads query failed after {attempt + 1} attempt(s): {exc}") from exc
            delay = retry.delay(attempt)
            logger.info("retryable query error (attempt %d): %s; sleeping %.2fs", attempt + 1, exc, delay)
            sleep(delay)
            attempt += 1


def _map_rows(records: Iterable[Any]) -> Tuple[List[MetricRow], int]:
    rows: List[MetricRow] = []
    dropped = 0
    for record in records:
        try:
            rows.append(map_record_to_metric_row(record))
        except PartialRowError as exc:
            dropped += 1
            logger.debug("dropping row: %s", exc)
    return rows, dropped


def fetch_metric_rows(
    service,
    date_range: DateRange,
    level: str = "campaign",
    campaign_ids: Optional[Sequence[str]] = None,
    retry_policy: Optional[RetryPolicy] = None,
    timeout: Optional[float] = 30.0,
    sleep: Callable[[float], None] = time.sleep,
    label_resources: Optional[Sequence[str]] = None,
) -> QueryResult:
    """Fetch and normalize rows for *level* over *date_range*.

    *label_resources* limits both queries to campaigns carrying one of the
    given label resource names.

    Never raises for upstream failures; see ``QueryResult.notes``.
    """
    retry = retry_policy or RetryPolicy()
    result = QueryResult()

    primary = build_query(level, date_range, campaign_ids, label_resources=label_resources)
    try:
        records = _query_with_retry(service, primary, retry, timeout, sleep)
    except UpstreamQueryError as primary_exc:
        logger.warning("%s query failed, trying basic metrics query: %s", level, primary_exc)
        fallback = build_query(level, date_range, campaign_ids, fallback=True, label_resources=label_resources)
        try:
            records = _query_with_retry(service, fallback, retry, timeout, sleep)
        except UpstreamQueryError as fallback_exc:
            logger.error("%s fallback query failed: %s", level, fallback_exc)
            result.failed = True
            result.notes.append(
                f"Could not load {level} metrics: {primary_exc.message} "
                f"(fallback: {fallback_exc.message})"
            )
            return result
        result.used_fallback = True
        result.notes.append(
            f"{level} metrics loaded with the basic query; quality and budget fields are unavailable"
        )

    result.rows, result.dropped_rows = _map_rows(records)
    if result.dropped_rows:
        logger.info("dropped %d %s row(s) without a campaign id", result.dropped_rows, level)
    logger.debug("fetched %d %s rows", len(result.rows), level)
    return result
