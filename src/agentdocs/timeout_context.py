from __future__ import annotations

import inspect
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from agentdocs.deadline_clock import (
    DeadlineClock,
    DeadlineClockExhausted,
    MonotonicClock,
)
from agentdocs.invariants import never

_LoopItem = TypeVar("_LoopItem")


@dataclass(frozen=True)
class TimeoutContext:
    """Where the budget ran out: the innermost agentdocs frame and its caller chain."""

    site: str
    path: str
    line: int
    stack: tuple[str, ...]
    reason: str


class TimeoutExceeded(TimeoutError):
    def __init__(self, context: TimeoutContext) -> None:
        super().__init__(f"Audit timed out at {context.site} ({context.reason}).")
        self.context = context


_SYSTEM_CLOCK = MonotonicClock()


@dataclass(frozen=True)
class Deadline:
    deadline_ns: int

    @classmethod
    def from_timeout_ticks(cls, ticks: int, tick_ns: int) -> "Deadline":
        ticks_value = int(ticks)
        tick_ns_value = int(tick_ns)
        if ticks_value < 0:
            never("invalid timeout ticks", ticks=ticks)
        if tick_ns_value <= 0:
            never("invalid timeout tick_ns", tick_ns=tick_ns)
        total_ns = ticks_value * tick_ns_value
        return cls(deadline_ns=_SYSTEM_CLOCK.get_mark() + total_ns)

    @classmethod
    def from_timeout_ms(cls, milliseconds: int) -> "Deadline":
        return cls.from_timeout_ticks(milliseconds, 1_000_000)

    def expired(self) -> bool:
        return _SYSTEM_CLOCK.get_mark() >= self.deadline_ns


_deadline_var: ContextVar[object] = ContextVar("agentdocs_deadline", default=None)
_deadline_clock_var: ContextVar[object] = ContextVar(
    "agentdocs_deadline_clock", default=None
)


def set_deadline(deadline: Deadline):
    if deadline is None:
        never("deadline carrier missing")
    return _deadline_var.set(deadline)


def reset_deadline(token) -> None:
    _deadline_var.reset(token)


def get_deadline() -> Deadline:
    deadline = _deadline_var.get()
    if deadline is None:
        never("deadline carrier missing")
    return deadline


def set_deadline_clock(clock: DeadlineClock):
    if clock is None:
        never("deadline clock missing")
    return _deadline_clock_var.set(clock)


def reset_deadline_clock(token) -> None:
    _deadline_clock_var.reset(token)


def get_deadline_clock() -> DeadlineClock:
    clock = _deadline_clock_var.get()
    if clock is None:
        never("deadline clock missing")
    return clock


@contextmanager
def deadline_scope(deadline: Deadline):
    if deadline is None:
        never("deadline carrier missing")
    token = set_deadline(deadline)
    try:
        yield
    finally:
        reset_deadline(token)


@contextmanager
def deadline_clock_scope(clock: DeadlineClock):
    token = set_deadline_clock(clock)
    try:
        yield
    finally:
        reset_deadline_clock(token)


def _package_root() -> Path:
    return Path(__file__).resolve().parent


def build_timeout_context_from_stack(reason: str) -> TimeoutContext:
    root = _package_root()
    sites: list[tuple[str, str, int]] = []
    for frame_info in inspect.stack()[1:]:
        filename = Path(frame_info.filename)
        try:
            rel = filename.resolve().relative_to(root).as_posix()
        except ValueError:
            continue
        if rel == "timeout_context.py":
            continue
        sites.append((f"{rel}::{frame_info.function}", rel, frame_info.lineno))
    if not sites:
        return TimeoutContext(site="<unknown>", path="", line=0, stack=(), reason=reason)
    site, path, line = sites[0]
    return TimeoutContext(
        site=site,
        path=path,
        line=line,
        stack=tuple(entry[0] for entry in sites),
        reason=reason,
    )


def check_deadline(deadline: Deadline | None = None) -> None:
    active = deadline if deadline is not None else get_deadline()
    consume_deadline_ticks()
    if active.expired():
        raise TimeoutExceeded(build_timeout_context_from_stack("wall clock"))


def deadline_loop_iter(values: Iterable[_LoopItem]) -> Iterator[_LoopItem]:
    for value in values:
        check_deadline()
        yield value


def consume_deadline_ticks(ticks: int = 1) -> None:
    clock = _deadline_clock_var.get()
    if clock is None:
        never("deadline clock missing")
    try:
        clock.consume(ticks)
    except DeadlineClockExhausted as exc:
        raise TimeoutExceeded(build_timeout_context_from_stack(str(exc))) from exc
