from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from txflow.exception import TxflowError

from .interfaces import FailureKind

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.1


@dataclass(frozen=True)
class RetryPolicy:
    """Decides whether a failed unit of work is worth another attempt and
    how long to wait before it.

    Attempt `k` (1-based) is followed by a delay of
    `base_delay * 2 ** (k - 1)` seconds, capped at `max_delay` when set.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise TxflowError("max_attempts: must be an integer of at least 1")
        if self.base_delay < 0:
            raise TxflowError("base_delay: must not be negative")
        if self.max_delay is not None and self.max_delay < 0:
            raise TxflowError("max_delay: must not be negative")

    def is_retryable(self, failure: BaseException) -> bool:
        """Only conflicts reported by the store are retried"""
        return getattr(failure, "kind", None) is FailureKind.CONFLICT

    def delay_for(self, attempt: int) -> float:
        if attempt < 1:
            raise TxflowError("attempt: numbering starts at 1")
        delay = self.base_delay * 2 ** (attempt - 1)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


@dataclass
class RetryState:
    attempt: int = 0
    total_delay: float = 0.0
