"""
Advisory memory accounting for resident chunks.
"""

from __future__ import annotations

from typing import Iterable, Protocol


class _Sized(Protocol):
    def estimated_bytes(self) -> int: ...


class MemoryMonitor:
    """
    Tracks the summed size estimate of resident chunks against a target.

    Figures are estimates, not OS measurements. ``recompute`` only sums the
    size each chunk keeps current, so it is cheap enough to run under the
    registry lock after every structural change.
    """

    def __init__(self, target: int) -> None:
        if target <= 0:
            raise ValueError("memory target must be > 0")
        self.target = target
        self.usage = 0

    def recompute(self, chunks: Iterable[_Sized]) -> int:
        self.usage = sum(chunk.estimated_bytes() for chunk in chunks)
        return self.usage

    @property
    def over_budget(self) -> bool:
        return self.usage > self.target

    def snapshot(self) -> dict[str, int]:
        return {"usage_bytes": self.usage, "target_bytes": self.target}
