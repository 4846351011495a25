"""External service interfaces and the in-memory implementation."""
from adpilot.services.base import AdsQueryService, MutationService
from adpilot.services.mock_service import InMemoryAdsService

__all__ = ["AdsQueryService", "MutationService", "InMemoryAdsService"]
