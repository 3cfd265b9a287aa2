"""
Module: count_kernel.selectors.count_selector
Responsibility: Read-only queries over a count store: the current count,
    its items, per-location totals, the location list, the completed-count
    history, and the period-over-period comparison.
Architecture position: Kernel > Selectors.  May import from store/ and
    domain/.  Selectors NEVER save; every method loads a fresh snapshot.

Invariants enforced:
    - Returned values are frozen dataclasses; callers cannot change the
      store through them.
    - Aggregates are derived from items on every read; nothing is cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from count_kernel.domain.values import (
    ZERO,
    Count,
    CountedItem,
    CountHistory,
    CountHistoryRecord,
    FacilityConfig,
    Location,
)
from count_kernel.exceptions import InsufficientHistoryError
from count_kernel.store.base import CountStore

_PERCENT_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class LocationItems:
    """Items of the active count at one location, with their totals."""

    location_id: str
    items: tuple[CountedItem, ...]
    item_count: int
    total_value: Decimal


@dataclass(frozen=True)
class CountComparison:
    """
    Difference between the two most recent completed counts.

    ``value_diff_percent`` is None when the previous total value is zero.
    """

    previous: CountHistoryRecord
    current: CountHistoryRecord
    item_count_diff: int
    value_diff: Decimal
    value_diff_percent: Decimal | None


def percent_change(previous: Decimal, current: Decimal) -> Decimal | None:
    """(current - previous) / previous as a percentage, half-up to 2 places."""
    if previous == 0:
        return None
    change = (current - previous) / previous * Decimal(100)
    return change.quantize(_PERCENT_PLACES, rounding=ROUND_HALF_UP)


class CountSelector:
    """
    Read-only view of a ``CountStore``.

    Contract:
        Loads a snapshot per call and returns DTOs or domain values.  Never
        takes the writer lock and never saves.
    """

    def __init__(self, store: CountStore):
        self.store = store

    def facility(self) -> FacilityConfig:
        return self.store.load().facility

    def history(self) -> CountHistory:
        return self.store.load().history

    def current(self) -> Count:
        """The count in the facility's current slot, whatever its status."""
        return self.facility().current_count

    def items(self) -> tuple[CountedItem, ...]:
        return self.current().items

    def locations(self) -> tuple[Location, ...]:
        return self.facility().locations

    def items_by_location(self, location_id: str) -> LocationItems:
        items = self.current().items_at(location_id)
        return LocationItems(
            location_id=location_id,
            items=items,
            item_count=len(items),
            total_value=sum((item.total_value for item in items), ZERO),
        )

    def comparison(self) -> CountComparison:
        """
        Raises:
            InsufficientHistoryError: fewer than two completed counts.
        """
        records = self.history().records
        if len(records) < 2:
            raise InsufficientHistoryError(available=len(records))
        previous, current = records[-2], records[-1]
        return CountComparison(
            previous=previous,
            current=current,
            item_count_diff=current.items_counted - previous.items_counted,
            value_diff=current.total_value - previous.total_value,
            value_diff_percent=percent_change(previous.total_value, current.total_value),
        )
