"""
RuleValidator -- business rules for the physical count lifecycle.

Responsibility:
    Checks a proposed lifecycle transition (start, item add, complete)
    against the facility document and the active count, and reports every
    blocking error and advisory warning it finds.

Architecture position:
    Kernel > Domain -- pure functional core.  Reads its inputs, never
    mutates them, performs no I/O.  Time comes from the injected Clock.

Invariants enforced:
    - The validator never raises.  Malformed input (wrong types, unparsable
      dates, non-numeric quantities) becomes a ``ValidationIssue``.
    - ``result.valid`` is true iff ``result.errors`` is empty.

Error codes:
    Start     COUNT_IN_PROGRESS, REQUIRED_FIELD, INVALID_DATE,
              INVALID_DATE_RANGE, INVALID_PEOPLE_COUNT, INVALID_COUNT_SEQUENCE
    Item add  REQUIRED_FIELD, INVALID_LOCATION, INVALID_QUANTITY,
              INVALID_PRICE, NEGATIVE_PRICE
    Complete  NO_COUNT_IN_PROGRESS, INSUFFICIENT_ITEMS

Warning codes:
    Start     LONG_COUNT_DURATION, FUTURE_DATE, HIGH_PEOPLE_COUNT,
              ORDER_DATE_AFTER_COUNT, OLD_ORDER_DATE
    Item add  HIGH_QUANTITY, FRACTIONAL_QUANTITY, ZERO_PRICE, HIGH_PRICE,
              HIGH_TOTAL_VALUE, DUPLICATE_ITEM, MULTI_LOCATION_ITEM,
              INVALID_ITEM_CODE_FORMAT
    Complete  LOW_ITEM_COUNT, NO_LOCATIONS, ZERO_VALUE
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from count_kernel.domain.clock import Clock, SystemClock
from count_kernel.domain.dates import days_between, try_parse_instant
from count_kernel.domain.validation import (
    IssueCollector,
    ValidationReport,
    ValidationResult,
)
from count_kernel.domain.values import (
    Count,
    CountBaseline,
    CountHistory,
    CountHistoryRecord,
    FacilityConfig,
)
from count_kernel.domain.workflow import CountStatus
from count_kernel.logging_config import get_logger

logger = get_logger("domain.rule_validator")


DEFAULT_WHOLE_NUMBER_UNITS = frozenset({
    "CS", "EA", "BX", "DZ", "CT", "PK", "PC",
    "CASE", "EACH", "BOX", "DOZEN", "CARTON", "PACK", "PIECE",
})

START_REQUIRED_FIELDS = ("start_date", "end_date", "last_order_date", "people_on_site")
ITEM_REQUIRED_FIELDS = ("location", "item_code", "item_name", "quantity", "unit")


@dataclass(frozen=True)
class ValidationThresholds:
    """
    Tunable limits for the rule validator.

    Defaults reproduce the facility's long-standing business rules; override
    them through ``count_config`` rather than in code.
    """
    max_count_duration_days: int = 7
    max_people_on_site: int = 20
    max_order_age_days: int = 30
    max_quantity: Decimal = Decimal("10000")
    max_unit_price: Decimal = Decimal("10000")
    max_line_value: Decimal = Decimal("100000")
    low_item_ratio: Decimal = Decimal("0.5")
    whole_number_units: frozenset[str] = DEFAULT_WHOLE_NUMBER_UNITS
    item_code_pattern: str = r"^\d{1,10}$"

    def __post_init__(self):
        if self.max_count_duration_days <= 0:
            raise ValueError("max_count_duration_days must be positive")
        if self.max_people_on_site <= 0:
            raise ValueError("max_people_on_site must be positive")
        if self.max_order_age_days < 0:
            raise ValueError("max_order_age_days cannot be negative")
        for name in ("max_quantity", "max_unit_price", "max_line_value"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not (Decimal("0") <= self.low_item_ratio <= Decimal("1")):
            raise ValueError("low_item_ratio must be between 0 and 1")
        try:
            re.compile(self.item_code_pattern)
        except re.error as exc:
            raise ValueError(f"item_code_pattern is not a valid regex: {exc}") from exc


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_decimal(value: Any) -> Decimal | None:
    """Numeric coercion that rejects bools, NaN and infinities."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not number.is_finite():
        return None
    return number


def _to_int(value: Any) -> int | None:
    number = _to_decimal(value)
    if number is None or number != number.to_integral_value():
        return None
    return int(number)


def _fmt(value: Decimal) -> str:
    return format(value.normalize(), "f")


class RuleValidator:
    """
    Business-rule checks for the three lifecycle transitions.

    Contract:
        Every public ``validate_*`` method returns a ``ValidationResult``;
        none of them raises or mutates its arguments.

    Non-goals:
        - Does not persist anything or write audit entries (the lifecycle
          manager does both).
        - Does not coerce input; the lifecycle manager builds the typed
          ``CountedItem`` only after validation passes.
    """

    def __init__(
        self,
        thresholds: ValidationThresholds | None = None,
        clock: Clock | None = None,
    ):
        self._thresholds = thresholds or ValidationThresholds()
        self._clock = clock or SystemClock()
        self._item_code_re = re.compile(self._thresholds.item_code_pattern)

    @property
    def thresholds(self) -> ValidationThresholds:
        return self._thresholds

    # =========================================================================
    # Count start
    # =========================================================================

    def validate_count_start(
        self,
        params: Mapping[str, Any],
        config: FacilityConfig,
    ) -> ValidationResult:
        """
        Validate the parameters of a new count.

        Expected keys: ``start_date``, ``end_date``, ``last_order_date``,
        ``people_on_site``.
        """
        issues = IssueCollector()
        params = params if isinstance(params, Mapping) else {}

        if config.current_count.status == CountStatus.IN_PROGRESS:
            issues.error(
                "status",
                "A count is already in progress. Please complete it first.",
                "COUNT_IN_PROGRESS",
            )

        for name in START_REQUIRED_FIELDS:
            if _is_missing(params.get(name)):
                issues.error(name, f"{name} is required", "REQUIRED_FIELD")

        start = self._parse_date(params, "start_date", issues)
        end = self._parse_date(params, "end_date", issues)
        last_order = self._parse_date(params, "last_order_date", issues)

        self._check_date_range(start, end, issues)
        self._check_people(params.get("people_on_site"), issues)
        self._check_order_date(last_order, start, end, issues)
        self._check_sequence(start, config.first_count, issues)

        result = issues.result(self._clock.now_utc())
        self._log_result("count_start", result)
        return result

    def _parse_date(
        self,
        params: Mapping[str, Any],
        name: str,
        issues: IssueCollector,
    ) -> datetime | None:
        value = params.get(name)
        if _is_missing(value):
            return None
        parsed = try_parse_instant(value)
        if parsed is None:
            issues.error(name, f"Invalid {name.replace('_', ' ')} format", "INVALID_DATE")
        return parsed

    def _check_date_range(
        self,
        start: datetime | None,
        end: datetime | None,
        issues: IssueCollector,
    ) -> None:
        if start is not None and end is not None:
            if end < start:
                issues.error(
                    "end_date",
                    "End date must be on or after start date",
                    "INVALID_DATE_RANGE",
                )
            span = days_between(start, end)
            if span > self._thresholds.max_count_duration_days:
                issues.warn(
                    "date_range",
                    f"Count spans {span:.1f} days. Counts should typically be "
                    f"completed within {self._thresholds.max_count_duration_days} days.",
                    "LONG_COUNT_DURATION",
                )
        if start is not None and start > self._clock.now_utc():
            issues.warn("start_date", "Start date is in the future", "FUTURE_DATE")

    def _check_people(self, value: Any, issues: IssueCollector) -> None:
        if _is_missing(value):
            return
        people = _to_int(value)
        if people is None or people < 1:
            issues.error(
                "people_on_site",
                "Number of people must be a whole number of at least 1",
                "INVALID_PEOPLE_COUNT",
            )
            return
        if people > self._thresholds.max_people_on_site:
            issues.warn(
                "people_on_site",
                f"Unusually high number of people on site: {people}",
                "HIGH_PEOPLE_COUNT",
            )

    def _check_order_date(
        self,
        last_order: datetime | None,
        start: datetime | None,
        end: datetime | None,
        issues: IssueCollector,
    ) -> None:
        if last_order is None:
            return
        if end is not None and last_order > end:
            issues.warn(
                "last_order_date",
                "Last order date is after count end date. This may cause discrepancies.",
                "ORDER_DATE_AFTER_COUNT",
            )
        if start is not None:
            age = days_between(last_order, start)
            if age > self._thresholds.max_order_age_days:
                issues.warn(
                    "last_order_date",
                    f"Last order date is {age:.0f} days before count. "
                    "Consider updating inventory with recent orders.",
                    "OLD_ORDER_DATE",
                )

    def _check_sequence(
        self,
        start: datetime | None,
        first_count: CountBaseline | None,
        issues: IssueCollector,
    ) -> None:
        if start is None or first_count is None:
            return
        first_date = datetime.combine(first_count.count_date, time.min, tzinfo=timezone.utc)
        if start < first_date:
            issues.error(
                "start_date",
                f"Count start date cannot be before first count date "
                f"({first_count.count_date.isoformat()})",
                "INVALID_COUNT_SEQUENCE",
            )

    # =========================================================================
    # Item add
    # =========================================================================

    def validate_item_add(
        self,
        item: Mapping[str, Any],
        current_count: Count | None,
        config: FacilityConfig,
    ) -> ValidationResult:
        """
        Validate one counted line before it joins the active count.

        Expected keys: ``location``, ``item_code``, ``item_name``,
        ``quantity``, ``unit`` and optionally ``unit_price``.
        """
        issues = IssueCollector()
        item = item if isinstance(item, Mapping) else {}

        for name in ITEM_REQUIRED_FIELDS:
            if _is_missing(item.get(name)):
                issues.error(name, f"{name} is required", "REQUIRED_FIELD")

        location = item.get("location")
        if not _is_missing(location) and not config.has_location(str(location)):
            issues.error(
                "location",
                f"Location {location} does not exist",
                "INVALID_LOCATION",
            )

        quantity = None
        if not _is_missing(item.get("quantity")):
            quantity = self._check_quantity(item.get("quantity"), item.get("unit"), issues)

        if item.get("unit_price") is not None:
            self._check_pricing(item.get("unit_price"), quantity, issues)

        self._check_duplicates(item, current_count, issues)

        item_code = item.get("item_code")
        if not _is_missing(item_code) and not self._item_code_re.match(str(item_code).strip()):
            issues.warn(
                "item_code",
                "Item code should be numeric (1-10 digits)",
                "INVALID_ITEM_CODE_FORMAT",
            )

        result = issues.result(self._clock.now_utc())
        self._log_result("item_add", result)
        return result

    def _check_quantity(
        self,
        value: Any,
        unit: Any,
        issues: IssueCollector,
    ) -> Decimal | None:
        quantity = _to_decimal(value)
        if quantity is None:
            issues.error("quantity", "Quantity must be a valid number", "INVALID_QUANTITY")
            return None

        if quantity <= 0:
            issues.error("quantity", "Quantity must be greater than 0", "INVALID_QUANTITY")

        if quantity > self._thresholds.max_quantity:
            issues.warn(
                "quantity",
                f"Unusually high quantity: {_fmt(quantity)}. Please verify.",
                "HIGH_QUANTITY",
            )

        unit_code = str(unit).strip().upper() if unit is not None else ""
        if unit_code in self._thresholds.whole_number_units and quantity % 1 != 0:
            issues.warn(
                "quantity",
                f"Fractional quantity ({_fmt(quantity)}) for unit {unit_code}. "
                "Should typically be whole number.",
                "FRACTIONAL_QUANTITY",
            )
        return quantity

    def _check_pricing(
        self,
        value: Any,
        quantity: Decimal | None,
        issues: IssueCollector,
    ) -> None:
        price = _to_decimal(value)
        if price is None:
            issues.error("unit_price", "Unit price must be a valid number", "INVALID_PRICE")
            return

        if price < 0:
            issues.error("unit_price", "Unit price cannot be negative", "NEGATIVE_PRICE")
        elif price == 0:
            issues.warn(
                "unit_price",
                "Unit price is 0. Item will not contribute to total value.",
                "ZERO_PRICE",
            )

        if price > self._thresholds.max_unit_price:
            issues.warn(
                "unit_price",
                f"Unusually high unit price: {_fmt(price)}. Please verify.",
                "HIGH_PRICE",
            )

        if quantity is not None and quantity > 0 and price > 0:
            line_value = quantity * price
            if line_value > self._thresholds.max_line_value:
                issues.warn(
                    "total_value",
                    f"Very high item value: {line_value:.2f}. Please verify quantity and price.",
                    "HIGH_TOTAL_VALUE",
                )

    def _check_duplicates(
        self,
        item: Mapping[str, Any],
        current_count: Count | None,
        issues: IssueCollector,
    ) -> None:
        if current_count is None or _is_missing(item.get("item_code")):
            return
        code = str(item.get("item_code")).strip()
        location = str(item.get("location") or "").strip()

        if any(i.item_code == code and i.location == location for i in current_count.items):
            issues.warn(
                "item_code",
                f"Item {code} already counted in {location}. Consider updating existing entry.",
                "DUPLICATE_ITEM",
            )

        elsewhere = next(
            (i for i in current_count.items if i.item_code == code and i.location != location),
            None,
        )
        if elsewhere is not None:
            issues.warn(
                "location",
                f"Item {code} was previously counted in {elsewhere.location}. "
                "Item exists in multiple locations.",
                "MULTI_LOCATION_ITEM",
            )

    # =========================================================================
    # Count complete
    # =========================================================================

    def validate_count_complete(
        self,
        current_count: Count,
        config: FacilityConfig,
        history: CountHistory | None = None,
    ) -> ValidationResult:
        """
        Validate that the active count may be completed.

        The low-item comparison uses the most recent completed count, or the
        facility's first-count baseline when no history is available.
        """
        issues = IssueCollector()

        if current_count.status != CountStatus.IN_PROGRESS:
            issues.error("status", "No count in progress to complete", "NO_COUNT_IN_PROGRESS")

        if current_count.items_counted < 1:
            issues.error("items_counted", "Count must have at least 1 item", "INSUFFICIENT_ITEMS")

        prior = self._prior_count(config, history)
        if prior is not None and prior.items_counted > 0:
            floor = Decimal(prior.items_counted) * self._thresholds.low_item_ratio
            if Decimal(current_count.items_counted) < floor:
                issues.warn(
                    "items_counted",
                    f"Count has significantly fewer items ({current_count.items_counted}) "
                    f"than prior count {prior.count_id} ({prior.items_counted})",
                    "LOW_ITEM_COUNT",
                )

        if not current_count.locations_counted:
            issues.warn("locations_counted", "No locations have been counted", "NO_LOCATIONS")

        if current_count.total_value <= 0:
            issues.warn(
                "total_value",
                "Total count value is 0. Ensure all items have prices.",
                "ZERO_VALUE",
            )

        result = issues.result(self._clock.now_utc())
        self._log_result("count_complete", result)
        return result

    @staticmethod
    def _prior_count(
        config: FacilityConfig,
        history: CountHistory | None,
    ) -> CountHistoryRecord | CountBaseline | None:
        if history is not None and history.latest is not None:
            return history.latest
        return config.first_count

    # =========================================================================
    # Reporting
    # =========================================================================

    def generate_report(self, result: ValidationResult) -> ValidationReport:
        """Summarize ``result`` with its severity classification."""
        return ValidationReport.from_result(result)

    def _log_result(self, check: str, result: ValidationResult) -> None:
        logger.debug(
            "validation_evaluated",
            extra={
                "check": check,
                "valid": result.valid,
                "error_codes": list(result.error_codes),
                "warning_codes": list(result.warning_codes),
                "severity": result.severity.value,
            },
        )
