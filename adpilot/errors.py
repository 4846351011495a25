"""Error kinds raised inside the optimization engine."""

from __future__ import annotations

from typing import Any, Dict, Optional


class OptimizerError(Exception):
    """Base class. ``code`` is the stable identifier surfaced as ``errorCode``."""

    code = "OPTIMIZER_ERROR"

    def __init__(self, message: str = "", *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class AccessDenied(OptimizerError):
    code = "ACCESS_DENIED"


class ValidationError(OptimizerError, ValueError):
    code = "VALIDATION_ERROR"


class UpstreamQueryError(OptimizerError, RuntimeError):
    code = "UPSTREAM_QUERY_ERROR"


class UpstreamMutationError(OptimizerError, RuntimeError):
    """Mutation Service rejected or failed the batch.

    ``upstream_code`` carries the platform's own error code when known and
    ``details`` any structured payload it attached.
    """

    code = "UPSTREAM_MUTATION_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        upstream_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.upstream_code = upstream_code
        self.details = details or {}


class PartialRowError(OptimizerError, ValueError):
    """A raw row is missing an identifier; the row is dropped."""

    code = "PARTIAL_ROW"


class OperationCancelled(OptimizerError):
    code = "CANCELLED"
