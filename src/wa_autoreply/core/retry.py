"""Bounded retry budget shared by every reconnect path."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    interval: float = 5.0  # seconds between a failure and the next create()

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.interval < 0:
            raise ValueError("interval must be >= 0")


@dataclass(frozen=True, slots=True)
class RetryBudget:
    attempts: int = 0
    max: int = 5

    @classmethod
    def from_policy(cls, policy: RetryPolicy) -> RetryBudget:
        return cls(attempts=0, max=policy.max_attempts)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max

    def consume(self) -> RetryBudget:
        return replace(self, attempts=self.attempts + 1)

    def reset(self) -> RetryBudget:
        return replace(self, attempts=0)
