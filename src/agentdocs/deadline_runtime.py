from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from agentdocs.deadline_clock import GasMeter
from agentdocs.invariants import never
from agentdocs.timeout_context import (
    Deadline,
    deadline_clock_scope,
    deadline_scope,
)

_DEFAULT_TIMEOUT_TICKS = 120_000
_DEFAULT_TIMEOUT_TICK_NS = 1_000_000
_DEFAULT_AUDIT_GAS_LIMIT = 50_000_000
AUDIT_GAS_LIMIT_ENV = "AGENTDOCS_GAS_LIMIT"
AUDIT_TIMEOUT_MS_ENV = "AGENTDOCS_TIMEOUT_MS"


@dataclass(frozen=True)
class DeadlineBudget:
    ticks: int
    tick_ns: int

    def __post_init__(self) -> None:
        ticks_value = int(self.ticks)
        tick_ns_value = int(self.tick_ns)
        if ticks_value <= 0:
            never("invalid deadline budget ticks", ticks=self.ticks)
        if tick_ns_value <= 0:
            never("invalid deadline budget tick_ns", tick_ns=self.tick_ns)
        object.__setattr__(self, "ticks", ticks_value)
        object.__setattr__(self, "tick_ns", tick_ns_value)


DEFAULT_TIMEOUT_BUDGET = DeadlineBudget(
    ticks=_DEFAULT_TIMEOUT_TICKS,
    tick_ns=_DEFAULT_TIMEOUT_TICK_NS,
)


def _positive_env_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        never("invalid integer environment value", name=name, value=raw)
    if value <= 0:
        never("invalid integer environment value", name=name, value=value)
    return value


def audit_gas_limit(override: int | None = None) -> int:
    if override is not None:
        if int(override) <= 0:
            never("invalid audit gas limit", value=override)
        return int(override)
    value = _positive_env_int(AUDIT_GAS_LIMIT_ENV)
    return _DEFAULT_AUDIT_GAS_LIMIT if value is None else value


def timeout_budget_from_env(
    *,
    default_budget: DeadlineBudget = DEFAULT_TIMEOUT_BUDGET,
) -> DeadlineBudget:
    millis = _positive_env_int(AUDIT_TIMEOUT_MS_ENV)
    if millis is None:
        return default_budget
    return DeadlineBudget(ticks=millis, tick_ns=1_000_000)


@contextmanager
def deadline_scope_from_ticks(
    budget: DeadlineBudget,
    *,
    gas_limit: int | None = None,
) -> Iterator[GasMeter]:
    limit = budget.ticks if gas_limit is None else int(gas_limit)
    if limit <= 0:
        never("invalid deadline gas limit", gas_limit=gas_limit)
    with deadline_scope(Deadline.from_timeout_ticks(budget.ticks, budget.tick_ns)):
        meter = GasMeter(limit=limit)
        with deadline_clock_scope(meter):  # pragma: no branch
            yield meter


@contextmanager
def audit_deadline_scope(*, gas_limit: int | None = None) -> Iterator[GasMeter]:
    with deadline_scope_from_ticks(
        timeout_budget_from_env(),
        gas_limit=audit_gas_limit(gas_limit),
    ) as meter:
        yield meter
