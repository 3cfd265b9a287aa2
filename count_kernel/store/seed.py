"""Initial facility and history documents for a new deployment."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timezone
from decimal import Decimal

from count_kernel.domain.clock import Clock, SystemClock
from count_kernel.domain.values import (
    Count,
    CountBaseline,
    CountHistory,
    CountHistoryRecord,
    FacilityConfig,
    Location,
    NextCountTemplate,
)
from count_kernel.domain.workflow import CountStatus
from count_kernel.store.base import StoreSnapshot
from count_kernel.utils.ids import next_count_id

DEFAULT_LOCATIONS: tuple[Location, ...] = (
    Location("WALK_IN_COOLER", "Walk-in Cooler", "REFRIGERATED"),
    Location("WALK_IN_FREEZER", "Walk-in Freezer", "FROZEN"),
    Location("DRY_STORAGE_C1", "Dry Storage C1", "DRY"),
    Location("DRY_STORAGE_C2", "Dry Storage C2", "DRY"),
    Location("DRY_STORAGE_C3", "Dry Storage C3", "DRY"),
    Location("REACH_IN_COOLER_1", "Reach-in Cooler 1", "REFRIGERATED"),
    Location("REACH_IN_COOLER_2", "Reach-in Cooler 2", "REFRIGERATED"),
    Location("REACH_IN_FREEZER", "Reach-in Freezer", "FROZEN"),
    Location("PREP_AREA", "Prep Area", "ACTIVE"),
    Location("KITCHEN", "Kitchen", "ACTIVE"),
)

DEFAULT_BASELINE = CountBaseline(
    count_id="COUNT-001",
    count_date=date(2025, 6, 30),
    items_counted=640,
    total_value=Decimal("208435.97"),
    people_on_site=3,
    last_order_date=date(2025, 6, 30),
    notes="First inventory count completed",
)


def _baseline_record(baseline: CountBaseline) -> CountHistoryRecord:
    midnight = datetime.combine(baseline.count_date, datetime.min.time(), tzinfo=timezone.utc)
    last_order = (
        datetime.combine(baseline.last_order_date, datetime.min.time(), tzinfo=timezone.utc)
        if baseline.last_order_date
        else None
    )
    return CountHistoryRecord(
        count_id=baseline.count_id,
        count_date=baseline.count_date,
        start_date=midnight,
        end_date=midnight,
        last_order_date_included=last_order,
        people_on_site=baseline.people_on_site,
        items_counted=baseline.items_counted,
        total_value=baseline.total_value,
        notes=baseline.notes,
    )


def seed_facility(
    facility_id: str = "default",
    locations: Sequence[Location] = DEFAULT_LOCATIONS,
    baseline: CountBaseline | None = DEFAULT_BASELINE,
    clock: Clock | None = None,
) -> StoreSnapshot:
    """
    Build the documents of a facility whose next count is READY.

    With a ``baseline`` the baseline is also the first history record and
    the READY template follows it in sequence (``COUNT-002`` after
    ``COUNT-001``).
    """
    now = (clock or SystemClock()).now_utc()

    history = CountHistory()
    if baseline is not None:
        history = history.appended(_baseline_record(baseline))
    template_id = next_count_id(history.total_counts_performed)

    facility = FacilityConfig(
        facility_id=facility_id,
        current_count=Count(count_id=template_id, status=CountStatus.READY),
        locations=tuple(locations),
        first_count=baseline,
        created_at=now,
        updated_at=now,
    )
    return StoreSnapshot(
        facility=facility,
        history=CountHistory(
            records=history.records,
            total_counts_performed=history.total_counts_performed,
            last_count_date=history.last_count_date,
            next_count=NextCountTemplate(count_id=template_id),
        ),
    )
