"""In-memory Ads service for offline runs and tests: no network calls."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from adpilot.query_adapter import EXTENDED_FIELDS
from adpilot.schema import MutationOperation, MutationResponse, OperationResult
from adpilot.services.base import AdsQueryService, MutationService

_FROM_TO_LEVEL = {
    "campaign": "campaign",
    "ad_group": "ad_group",
    "keyword_view": "keyword",
    "ad_group_ad": "ad",
}


def _detect_level(query: str) -> str:
    """Return the entity level a GAQL statement targets."""
    m = re.search(r"\bFROM\s+(\w+)", query, flags=re.IGNORECASE)
    if not m:
        return "unknown"
    return _FROM_TO_LEVEL.get(m.group(1).lower(), "unknown")


def _is_fallback(level: str, query: str) -> bool:
    """The basic fallback statement leaves out every extended field."""
    extended = EXTENDED_FIELDS.get(level, [])
    return bool(extended) and not any(f in query for f in extended)


class InMemoryAdsService(AdsQueryService, MutationService):
    """Serves canned rows per level and records every call.

    Parameters
    ----------
    rows:
        ``{level: [records]}`` where level is campaign, ad_group, keyword or ad.
    shape:
        How responses are wrapped: ``list``, ``rows``, ``results``,
        ``iterable`` or ``none``.
    fail_primary / fail_fallback:
        Levels whose full (or basic fallback) query raises ``query_error``.
        The two are told apart by the extended fields in the statement, so
        retries of the full query stay primary.
    mutate_error:
        Raised from :meth:`mutate` when set.
    fail_indices:
        Operation indices reported as failed when partial failure is on.
    """

    def __init__(
        self,
        rows: Optional[Dict[str, List[Any]]] = None,
        customer_id: str = "1234567890",
        shape: str = "list",
        fail_primary: Iterable[str] = (),
        fail_fallback: Iterable[str] = (),
        query_error: Optional[Exception] = None,
        mutate_error: Optional[Exception] = None,
        supports_partial_failure: bool = False,
        fail_indices: Iterable[int] = (),
    ):
        self.rows = rows or {}
        self.customer_id = customer_id
        self.shape = shape
        self.fail_primary: Set[str] = set(fail_primary)
        self.fail_fallback: Set[str] = set(fail_fallback)
        self.query_error = query_error or RuntimeError("INVALID_ARGUMENT: unrecognized field")
        self.mutate_error = mutate_error
        self.supports_partial_failure = supports_partial_failure
        self.fail_indices: Set[int] = set(fail_indices)

        self.query_log: List[Dict[str, Any]] = []
        self.mutate_calls: List[List[MutationOperation]] = []

    # ── AdsQueryService ──────────────────────────────────────────────────────

    def _wrap(self, records: List[Any]) -> Any:
        if self.shape == "rows":
            return {"rows": records}
        if self.shape == "results":
            return {"results": records}
        if self.shape == "iterable":
            return iter(records)
        if self.shape == "none":
            return None
        return list(records)

    def query(self, query: str, timeout: Optional[float] = None) -> Any:
        level = _detect_level(query)
        fallback = _is_fallback(level, query)
        self.query_log.append({"level": level, "fallback": fallback, "timeout": timeout, "query": query})

        failing = self.fail_fallback if fallback else self.fail_primary
        if level in failing:
            raise self.query_error
        return self._wrap(list(self.rows.get(level, [])))

    # ── MutationService ──────────────────────────────────────────────────────

    @property
    def mutate_call_count(self) -> int:
        return len(self.mutate_calls)

    def mutate(
        self,
        operations: Sequence[MutationOperation],
        validate_only: bool = False,
        timeout: Optional[float] = None,
    ) -> MutationResponse:
        self.mutate_calls.append(list(operations))
        if self.mutate_error is not None:
            raise self.mutate_error
        if not self.supports_partial_failure:
            return MutationResponse(validate_only=validate_only)
        results = [
            OperationResult(
                index=i,
                success=i not in self.fail_indices,
                resource_name=op.resource_name,
                error=f"operation {i} rejected" if i in self.fail_indices else None,
            )
            for i, op in enumerate(operations)
        ]
        return MutationResponse(results=results, validate_only=validate_only)

    def stats(self) -> Dict[str, int]:
        return {
            "queries": len(self.query_log),
            "mutate_calls": self.mutate_call_count,
            "operations": sum(len(c) for c in self.mutate_calls),
        }
