"""Abstract interfaces for the external Ads Query and Mutation services."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from adpilot.schema import MutationOperation, MutationResponse


class AdsQueryService(ABC):
    """Interface that all query backends must implement."""

    customer_id: str = ""

    @abstractmethod
    def query(self, query: str, timeout: Optional[float] = None) -> Any:
        """Run a GAQL statement and return rows in any supported shape."""
        ...


class MutationService(ABC):
    """Interface that all mutation backends must implement.

    ``supports_partial_failure`` declares whether :meth:`mutate` reports a
    per-operation outcome. When False a raised error means nothing was
    applied and a normal return means everything was.
    """

    customer_id: str = ""
    supports_partial_failure: bool = False

    @abstractmethod
    def mutate(
        self,
        operations: Sequence[MutationOperation],
        validate_only: bool = False,
        timeout: Optional[float] = None,
    ) -> MutationResponse:
        """Submit *operations* as one batch."""
        ...
