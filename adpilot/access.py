"""Allow-list gate for apply mode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from adpilot.config import ExecutionConfig, parse_caller_list
from adpilot.errors import AccessDenied

logger = logging.getLogger(__name__)


@dataclass
class AccessPolicy:
    allowed_callers: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, cfg: ExecutionConfig) -> "AccessPolicy":
        return cls(allowed_callers=parse_caller_list(cfg.allowed_callers))

    def is_allowed(self, caller: Optional[str]) -> bool:
        if not caller:
            return False
        return caller.strip().lower() in self.allowed_callers

    def require_apply(self, caller: Optional[str]) -> None:
        """Raise AccessDenied unless *caller* may run apply mode.

        An empty allow-list denies everyone.
        """
        if self.is_allowed(caller):
            return
        logger.warning("apply mode denied for caller=%r", caller)
        if not self.allowed_callers:
            raise AccessDenied("Apply mode is disabled: no callers are allow-listed")
        raise AccessDenied(f"Caller {caller or '<anonymous>'} is not allowed to apply optimizations")
