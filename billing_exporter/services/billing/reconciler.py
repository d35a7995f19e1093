"""
Counter Reconciler

Turns freshly reduced cumulative costs into non-negative deltas for
monotonic counters. The last applied cumulative value per grouping key is
kept in a CounterState owned by one billing source.
"""

import asyncio
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from billing_exporter.schemas.billing import AggregatedElement, GroupingKey

logger = structlog.get_logger()

ZERO = Decimal("0")

Delta = Tuple[GroupingKey, Decimal]


class CounterState:
    """
    Last observed cumulative cost per grouping key.

    Entries are created on first observation and never removed: report
    rotation must not reset counters that are scraped over time.
    """

    def __init__(self, provider: str = ""):
        self.provider = provider
        self.lock = asyncio.Lock()
        self._values: Dict[GroupingKey, Decimal] = {}

    def get(self, key: GroupingKey) -> Decimal:
        return self._values.get(key, ZERO)

    def snapshot(self) -> Dict[GroupingKey, Decimal]:
        return dict(self._values)

    def __contains__(self, key: GroupingKey) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    async def reconcile(self, aggregated: Sequence[AggregatedElement]) -> List[Delta]:
        """Run one reconciliation pass with the state lock held."""
        async with self.lock:
            return reconcile(aggregated, self)


def reconcile(
    aggregated: Sequence[AggregatedElement],
    state: CounterState,
    on_regression: Optional[Callable[[GroupingKey, Decimal], None]] = None,
) -> List[Delta]:
    """
    Compute the delta of every element against the state and advance it.

    Must be called with state.lock held for the whole pass. A decreasing
    cumulative value (billing correction upstream) is skipped and leaves the
    state untouched, so the next increase is measured against the last
    applied value.
    """
    deltas: List[Delta] = []
    for element in aggregated:
        key = element.key
        delta = element.cumulative_cost - state.get(key)
        if delta < 0:
            logger.warning(
                "cost_regression_skipped",
                provider=state.provider,
                account_id=key.account_id,
                service_name=key.service_name,
                currency=key.currency,
                delta=str(delta),
            )
            if on_regression is not None:
                on_regression(key, delta)
            continue
        state._values[key] = element.cumulative_cost
        deltas.append((key, delta))
    return deltas
