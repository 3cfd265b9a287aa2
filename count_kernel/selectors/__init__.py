"""Read-only query selectors."""

from count_kernel.selectors.count_selector import (
    CountComparison,
    CountSelector,
    LocationItems,
    percent_change,
)

__all__ = ["CountComparison", "CountSelector", "LocationItems", "percent_change"]
