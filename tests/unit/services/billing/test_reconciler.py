import pytest
from decimal import Decimal

from billing_exporter.schemas.billing import AggregatedElement, GroupingKey
from billing_exporter.services.billing.reconciler import CounterState, reconcile

KEY = GroupingKey("111", "AmazonEC2", "USD")


def _element(cost, account="111", service="AmazonEC2", currency="USD"):
    return AggregatedElement(account_id=account, service_name=service, currency=currency, cumulative_cost=Decimal(cost))


def test_first_observation_emits_full_value():
    state = CounterState("aws")

    deltas = reconcile([_element("12.50")], state)

    assert deltas == [(KEY, Decimal("12.50"))]
    assert state.get(KEY) == Decimal("12.50")


def test_increase_emits_difference():
    state = CounterState("aws")
    reconcile([_element("10")], state)

    deltas = reconcile([_element("12.75")], state)

    assert deltas == [(KEY, Decimal("2.75"))]
    assert state.get(KEY) == Decimal("12.75")


def test_unchanged_value_emits_zero_delta():
    state = CounterState("aws")
    reconcile([_element("10")], state)

    assert reconcile([_element("10")], state) == [(KEY, Decimal("0"))]


def test_regression_is_skipped_and_state_kept():
    """100 then 80 then 120: the drop is ignored and 120 is measured against 100."""
    state = CounterState("aws")
    regressions = []

    assert reconcile([_element("100")], state) == [(KEY, Decimal("100"))]
    assert reconcile([_element("80")], state, on_regression=lambda k, d: regressions.append((k, d))) == []
    assert state.get(KEY) == Decimal("100")
    assert regressions == [(KEY, Decimal("-20"))]

    assert reconcile([_element("120")], state) == [(KEY, Decimal("20"))]


def test_regression_of_one_key_does_not_block_others():
    state = CounterState("gcp")
    reconcile([_element("5", account="a"), _element("5", account="b")], state)

    deltas = reconcile([_element("4", account="a"), _element("6", account="b")], state)

    assert deltas == [(GroupingKey("b", "AmazonEC2", "USD"), Decimal("1"))]


def test_counters_are_monotonic_over_any_sequence():
    state = CounterState("aws")
    applied = Decimal("0")
    for value in ["1", "3", "2", "2", "7", "0", "7.5"]:
        for _, delta in reconcile([_element(value)], state):
            assert delta >= 0
            applied += delta

    assert applied == Decimal("7.5")


def test_state_entries_are_never_removed():
    state = CounterState("aws")
    reconcile([_element("1", account="a"), _element("1", account="b")], state)
    reconcile([_element("2", account="a")], state)

    assert len(state) == 2
    assert GroupingKey("b", "AmazonEC2", "USD") in state


def test_decimal_sums_are_exact():
    state = CounterState("aws")
    total = Decimal("0")
    cumulative = Decimal("0")
    for _ in range(10):
        cumulative += Decimal("0.1")
        total += sum(d for _, d in reconcile([_element(str(cumulative))], state))

    assert total == Decimal("1.0")


@pytest.mark.asyncio
async def test_state_reconcile_holds_lock():
    state = CounterState("aws")

    deltas = await state.reconcile([_element("3")])

    assert deltas == [(KEY, Decimal("3"))]
    assert not state.lock.locked()
