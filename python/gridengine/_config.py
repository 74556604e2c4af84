"""Recalculation settings."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CalcSettings:
    """Tunables for the recalculation driver.

    tolerance:
        Numeric results closer than this to the previous cached value are
        not reported as changed.
    max_chain_depth:
        Warning threshold, not a limit.  A recompute pass whose longest
        dependency chain is deeper than this still evaluates every cell and
        logs a warning.
    """

    tolerance: float = 1e-10
    max_chain_depth: int = 10_000

    def __post_init__(self) -> None:
        if self.tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        if self.max_chain_depth < 1:
            raise ValueError("max_chain_depth must be at least 1")


DEFAULT_SETTINGS = CalcSettings()
