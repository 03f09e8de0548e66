"""
delay.py - Speed-scaled pauses

All built-in pauses go through ``DelayController`` so one multiplier makes a
run faster or slower. 2.0 halves every delay; 0.5 doubles it.
"""

from __future__ import annotations

from dataclasses import dataclass

SPEED_MIN = 0.25
SPEED_MAX = 3.0

BASE_ITERATION_MS = 500
BASE_CLICK_MS = 50
BASE_INDICATOR_MS = 300
BASE_BATCH_STEP_MS = 100
BASE_SETTLE_MS = 200
BASE_PARSE_ERROR_MS = 500
BASE_PROVIDER_ERROR_MS = 1000


@dataclass
class DelayController:
    speed_multiplier: float = 1.0

    def __post_init__(self) -> None:
        self.speed_multiplier = min(max(self.speed_multiplier, SPEED_MIN), SPEED_MAX)

    def scale(self, base_ms: float) -> float:
        """Scaled delay in seconds; never below one millisecond."""
        return max(base_ms / self.speed_multiplier, 1.0) / 1000

    @property
    def iteration(self) -> float:
        return self.scale(BASE_ITERATION_MS)

    @property
    def click(self) -> float:
        return self.scale(BASE_CLICK_MS)

    @property
    def indicator(self) -> float:
        return self.scale(BASE_INDICATOR_MS)

    @property
    def batch_step(self) -> float:
        return self.scale(BASE_BATCH_STEP_MS)

    @property
    def settle(self) -> float:
        return self.scale(BASE_SETTLE_MS)

    @property
    def parse_error(self) -> float:
        return self.scale(BASE_PARSE_ERROR_MS)

    @property
    def provider_error(self) -> float:
        return self.scale(BASE_PROVIDER_ERROR_MS)

    def remaining_iteration_delay(self, elapsed: float) -> float:
        """Iteration pause left after ``elapsed`` seconds already spent waiting on the model."""
        return max(self.iteration - elapsed, 0.0)


__all__ = ["DelayController"]
