"""Deterministic exponential backoff for feed reconnects."""

from __future__ import annotations

from dataclasses import dataclass

from .types import ReconnectConfig

# 2**62 seconds already dwarfs any sane max_delay
_MAX_EXPONENT = 62


@dataclass(frozen=True)
class ReconnectionPolicy:
    """Pure backoff calculator: ``min(base_delay * 2**attempt, max_delay)``.

    No jitter. With the defaults, attempts 0..9 wait
    1, 2, 4, 8, 16, 30, 30, 30, 30, 30 seconds and attempt 10 is refused.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 10

    @classmethod
    def from_config(cls, config: ReconnectConfig) -> ReconnectionPolicy:
        return cls(
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            max_attempts=config.max_attempts,
        )

    def next_delay(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        exponent = min(attempt, _MAX_EXPONENT)
        return min(self.base_delay * float(2 ** exponent), self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def schedule(self) -> list[float]:
        """Every delay the policy will ever hand out, in order."""
        return [self.next_delay(a) for a in range(self.max_attempts)]
