"""Clocks behind ``check_deadline``.

Every loop step over documents, lines, items and findings charges one tick.
``GasMeter`` caps a run at ``--gas-limit`` ticks so that a huge or pathological
tree fails with a timeout report instead of running unbounded.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol

from agentdocs.invariants import never

GAS_LIMIT_HINT = "raise --gas-limit or AGENTDOCS_GAS_LIMIT"


class DeadlineClock(Protocol):
    def consume(self, ticks: int = 1) -> None:
        """Charge logical progress units."""

    def get_mark(self) -> int:
        """Return the current monotonic mark."""


@dataclass(frozen=True)
class GasUsage:
    limit: int
    used: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    def describe(self) -> str:
        return f"gas: used {self.used} of {self.limit} tick(s), {self.remaining} remaining"


class DeadlineClockExhausted(RuntimeError):
    def __init__(self, usage: GasUsage) -> None:
        super().__init__(f"gas limit of {usage.limit} tick(s) exhausted; {GAS_LIMIT_HINT}")
        self.usage = usage


@dataclass(frozen=True)
class MonotonicClock:
    """Wall-clock mode; charges nothing."""

    def consume(self, ticks: int = 1) -> None:
        return

    def get_mark(self) -> int:
        return time.monotonic_ns()


class GasMeter:
    """Tick budget for one agentdocs run."""

    def __init__(self, limit: int) -> None:
        if int(limit) <= 0:
            never("invalid gas limit", limit=limit)
        self.limit = int(limit)
        self.used = 0

    def consume(self, ticks: int = 1) -> None:
        if int(ticks) <= 0:
            never("invalid gas ticks", ticks=ticks)
        self.used += int(ticks)
        if self.used >= self.limit:
            raise DeadlineClockExhausted(self.usage())

    def get_mark(self) -> int:
        return self.used

    def usage(self) -> GasUsage:
        return GasUsage(limit=self.limit, used=self.used)
