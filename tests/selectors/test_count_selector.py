"""
Selector tests: per-location totals and count comparison.
"""

from datetime import date
from decimal import Decimal

import pytest

from count_kernel.domain.values import CountHistoryRecord
from count_kernel.exceptions import InsufficientHistoryError
from count_kernel.selectors.count_selector import CountSelector, percent_change
from count_kernel.store.base import StoreSnapshot
from count_kernel.store.memory import InMemoryCountStore
from tests.conftest import make_item


def _record(count_id, items, value):
    return CountHistoryRecord(
        count_id=count_id, count_date=date(2025, 1, 1), start_date=None, end_date=None,
        last_order_date_included=None, people_on_site=2,
        items_counted=items, total_value=Decimal(value),
    )


def _store_with_history(seeded_snapshot, *records):
    history = seeded_snapshot.history
    for record in records:
        history = history.appended(record)
    return InMemoryCountStore(StoreSnapshot(seeded_snapshot.facility, history))


class TestPercentChange:
    """percent_change rounding and the zero baseline."""

    def test_zero_previous(self):
        assert percent_change(Decimal("0"), Decimal("10")) is None

    def test_half_up(self):
        assert percent_change(Decimal("3"), Decimal("4")) == Decimal("33.33")
        assert percent_change(Decimal("8"), Decimal("9")) == Decimal("12.50")
        assert percent_change(Decimal("200"), Decimal("100")) == Decimal("-50.00")


class TestComparison:
    """Comparison of the two most recent records."""

    def test_needs_two_records(self, store):
        """The seeded baseline alone is not enough to compare."""
        with pytest.raises(InsufficientHistoryError) as exc_info:
            CountSelector(store).comparison()
        assert exc_info.value.available == 1

    def test_baseline_counts_as_record(self, seeded_snapshot):
        selector = CountSelector(_store_with_history(seeded_snapshot, _record("COUNT-002", 25, "6000")))

        comparison = selector.comparison()

        assert comparison.previous.count_id == "COUNT-001"
        assert comparison.item_count_diff == 5
        assert comparison.value_diff == Decimal("1000.00")
        assert comparison.value_diff_percent == Decimal("20.00")

    def test_uses_last_two(self, seeded_snapshot):
        selector = CountSelector(_store_with_history(
            seeded_snapshot,
            _record("COUNT-002", 10, "0"),
            _record("COUNT-003", 12, "500"),
        ))

        comparison = selector.comparison()

        assert comparison.previous.count_id == "COUNT-002"
        assert comparison.current.count_id == "COUNT-003"
        assert comparison.value_diff_percent is None


class TestItemsByLocation:
    """Per-location views of the active count."""

    def test_location_totals(self, started_manager):
        started_manager.add_item(make_item())
        started_manager.add_item(make_item(item_code="2", quantity=2, unit_price="1.25"))
        started_manager.add_item(make_item(location="DRY-C", item_code="3"))

        freezer = started_manager.items_by_location("FREEZER-A")

        assert freezer.item_count == 2
        assert freezer.total_value == Decimal("344.50")
        assert started_manager.items_by_location("COOLER-B").item_count == 0
