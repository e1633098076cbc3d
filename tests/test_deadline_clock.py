from __future__ import annotations

import pytest

from agentdocs.deadline_clock import (
    DeadlineClockExhausted,
    GasMeter,
    GasUsage,
    MonotonicClock,
)
from agentdocs.exceptions import NeverThrown


def test_monotonic_clock_charges_nothing() -> None:
    clock = MonotonicClock()
    first = clock.get_mark()
    clock.consume(1_000)
    assert clock.get_mark() >= first


def test_gas_meter_reports_usage_until_exhausted() -> None:
    meter = GasMeter(limit=3)
    meter.consume()
    meter.consume()
    assert meter.usage() == GasUsage(limit=3, used=2)
    assert meter.usage().describe() == "gas: used 2 of 3 tick(s), 1 remaining"
    with pytest.raises(DeadlineClockExhausted) as exc_info:
        meter.consume()
    assert exc_info.value.usage.remaining == 0
    assert str(exc_info.value) == (
        "gas limit of 3 tick(s) exhausted; raise --gas-limit or AGENTDOCS_GAS_LIMIT"
    )


def test_gas_meter_rejects_non_positive_values() -> None:
    with pytest.raises(NeverThrown):
        GasMeter(limit=0)
    with pytest.raises(NeverThrown):
        GasMeter(limit=2).consume(0)
