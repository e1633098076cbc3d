from __future__ import annotations

import pytest

from agentdocs.exceptions import NeverThrown
from agentdocs.order_contract import (
    OrderPolicy,
    get_order_policy,
    order_policy,
    order_telemetry,
    ordered_or_sorted,
    sort_once,
)
from tests.env_helpers import clean_agentdocs_env


def test_ordered_or_sorted_sorts_by_default(env_scope, restore_env) -> None:
    previous = env_scope(clean_agentdocs_env())
    try:
        assert ordered_or_sorted(["b", "a", "c"], source="test") == ["a", "b", "c"]
    finally:
        restore_env(previous)


def test_ordered_or_sorted_check_policy_sorts_only_on_regression() -> None:
    observed: list[dict[str, object]] = []
    with order_policy(OrderPolicy.CHECK):
        ordered = ordered_or_sorted(
            ["b", "a", "c"],
            source="test",
            on_unsorted=lambda payload: observed.append(payload),
        )
        assert ordered_or_sorted(["a", "b"], source="test", on_unsorted=observed.append) == [
            "a",
            "b",
        ]
    assert ordered == ["a", "b", "c"]
    assert len(observed) == 1
    assert observed[0]["violation_kind"] == "out_of_order"


def test_ordered_or_sorted_trust_policy_keeps_caller_order() -> None:
    with order_policy(OrderPolicy.TRUST):
        assert ordered_or_sorted(["b", "a", "c"], source="test") == ["b", "a", "c"]


def test_policy_argument_overrides_context() -> None:
    with order_policy(OrderPolicy.TRUST):
        assert ordered_or_sorted(["b", "a"], source="test", policy="sort") == ["a", "b"]
        assert sort_once(["b", "a"], source="test") == ["a", "b"]


def test_enforce_policy_raises_on_regression() -> None:
    with order_policy(OrderPolicy.ENFORCE):
        assert ordered_or_sorted([3, 2, 1], source="test", reverse=True) == [3, 2, 1]
        with pytest.raises(NeverThrown):
            ordered_or_sorted(["b", "a"], source="test")
        with pytest.raises(NeverThrown):
            ordered_or_sorted([{"a": 1}, {"b": 2}], source="incomparable")


def test_check_policy_records_context_telemetry() -> None:
    with order_policy(OrderPolicy.CHECK):
        with order_telemetry() as events:
            ordered_or_sorted(["b", "a"], source="test", key=str.lower)
    assert len(events) == 1
    assert events[0]["action"] == "fallback_sort"
    assert events[0]["source"] == "test"


def test_get_order_policy_reads_env(env_scope, restore_env) -> None:
    previous = env_scope(clean_agentdocs_env(AGENTDOCS_ORDER_POLICY="off"))
    try:
        assert get_order_policy() is OrderPolicy.SORT
        env_scope({"AGENTDOCS_ORDER_POLICY": "   "})
        assert get_order_policy() is OrderPolicy.SORT
        env_scope({"AGENTDOCS_ORDER_POLICY": "on"})
        assert get_order_policy() is OrderPolicy.ENFORCE
        env_scope({"AGENTDOCS_ORDER_POLICY": "Check"})
        assert get_order_policy() is OrderPolicy.CHECK
        with order_policy("trust"):
            assert get_order_policy() is OrderPolicy.TRUST
    finally:
        restore_env(previous)


def test_get_order_policy_rejects_unknown_env_policy(env_scope, restore_env) -> None:
    previous = env_scope(clean_agentdocs_env(AGENTDOCS_ORDER_POLICY="nonsense"))
    try:
        with pytest.raises(NeverThrown):
            get_order_policy()
    finally:
        restore_env(previous)
