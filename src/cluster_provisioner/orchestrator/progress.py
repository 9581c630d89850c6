"""
cluster_provisioner.orchestrator.progress

Bounded, monotonic completion estimate for a provisioning request.

Responsibilities:
- Time phase: linear extrapolation up to a cap strictly below 100.
- Confirmation phase: small poll-driven steps once the nominal duration has passed.
- Ratchet: provider milestones raise a floor; shown values never regress.
- Human-readable status bands for the time phase.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

PROGRESS_READY = 100
PROGRESS_FAILED = 0


class Milestone:
    # Floors implied by provider-confirmed events.
    acknowledged = 10
    confirmed_creating = 20


_BANDS: tuple[tuple[int, str], ...] = (
    (25, "Initializing cluster configuration..."),
    (40, "Provisioning cloud infrastructure..."),
    (55, "Setting up database instances..."),
    (70, "Configuring replication and security..."),
    (85, "Finalizing cluster setup..."),
)


@dataclass(frozen=True, slots=True)
class ProgressEstimator:
    """
    Pure estimator: callers pass elapsed time plus the last shown value and floor,
    and persist whatever it returns. Only confirmed-ready may produce 100.
    """

    nominal_duration_seconds: float
    cap: int = 95
    confirmation_step: int = 1
    ceiling: int = 99

    def __post_init__(self) -> None:
        if self.nominal_duration_seconds <= 0:
            raise ValueError("nominal_duration_seconds must be positive")
        if not 0 < self.cap < PROGRESS_READY:
            raise ValueError("cap must be strictly between 0 and 100")
        if not self.cap <= self.ceiling < PROGRESS_READY:
            raise ValueError("ceiling must be >= cap and < 100")

    def time_based(self, elapsed_seconds: float) -> int:
        if elapsed_seconds <= 0:
            return 0
        raw = math.floor((elapsed_seconds / self.nominal_duration_seconds) * self.cap)
        return min(self.cap, raw)

    def on_tick(self, *, elapsed_seconds: float, shown: int, floor: int) -> int:
        return self._bounded(max(shown, floor, self.time_based(elapsed_seconds)))

    def on_poll(self, *, elapsed_seconds: float, shown: int, floor: int) -> int:
        value = self.on_tick(elapsed_seconds=elapsed_seconds, shown=shown, floor=floor)
        if elapsed_seconds >= self.nominal_duration_seconds:
            # Past the nominal duration only polls move the needle, one step at a time.
            value = max(value, shown + self.confirmation_step)
        return self._bounded(value)

    def ratchet(self, *, floor: int, milestone: int) -> int:
        return max(floor, self._bounded(milestone))

    def _bounded(self, value: int) -> int:
        return min(self.ceiling, max(PROGRESS_FAILED, value))


def describe(progress: int) -> str:
    for upper, message in _BANDS:
        if progress < upper:
            return message
    return "Almost complete..."


# --- Module Notes -----------------------------------------------------------
# The estimator holds no per-request state; `progress_percent` and `progress_floor`
# live on the record so the ratchet survives restarts.
