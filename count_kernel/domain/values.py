"""
Count Domain Values (``count_kernel.domain.values``).

Responsibility
--------------
Frozen value objects for the nouns of a physical inventory count: counted
items, counts, locations, the facility document, and the completed-count
history.

Architecture
------------
Layer: **Kernel domain** -- pure data structures, no I/O.  Every mutation
produces a new object via ``dataclasses.replace``; the lifecycle manager
persists the new snapshot or discards it, so a rejected or failed operation
can never leave a half-applied change behind.

Invariants
----------
- ``Count.items_counted == len(Count.items)`` and
  ``Count.total_value == sum(item.total_value)`` hold by construction
  (both are derived properties).
- ``Count.locations_counted`` is derived from the items, in the order each
  location was first counted.
- ``CountedItem.total_value == quantity * unit_price``.
- Quantities and money are ``Decimal`` -- never ``float``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from count_kernel.domain.workflow import CountStatus

ZERO = Decimal("0")

SYSTEM_ACTOR = "SYSTEM"


@dataclass(frozen=True)
class ActorContext:
    """
    Who is performing an operation, as supplied by the identity provider.

    Feeds audit metadata (``sessionId``, ``ipAddress``, ``userAgent``) and the
    ``userId`` recorded in audit data.
    """
    user_id: str = SYSTEM_ACTOR
    session_id: str = "SYSTEM"
    ip_address: str = "unknown"
    user_agent: str = "unknown"

    @classmethod
    def system(cls) -> ActorContext:
        return cls()

    def audit_metadata(self) -> dict[str, str]:
        return {
            "sessionId": self.session_id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
        }


@dataclass(frozen=True)
class CountedItem:
    """
    One counted line: an item at a location with a quantity and price.

    Owned by its parent ``Count`` and addressed by index; never persisted on
    its own.
    """
    location: str
    item_code: str
    item_name: str
    quantity: Decimal
    unit: str
    unit_price: Decimal = ZERO
    notes: str = ""
    added_at: datetime | None = None
    added_by: str = SYSTEM_ACTOR

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class Location:
    """A physical storage area.  ``counted`` mirrors the active count."""
    id: str
    name: str = ""
    type: str = ""
    counted: bool = False


@dataclass(frozen=True)
class Count:
    """
    One physical inventory count and its accumulated items.

    Contract: immutable; ``with_item`` / ``without_item`` return new counts.
    """
    count_id: str
    status: CountStatus = CountStatus.READY
    start_date: datetime | None = None
    end_date: datetime | None = None
    last_order_date: datetime | None = None
    people_on_site: int | None = None
    items: tuple[CountedItem, ...] = ()
    notes: str = ""
    performed_by: tuple[str, ...] = ()
    started_by: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def items_counted(self) -> int:
        return len(self.items)

    @property
    def total_value(self) -> Decimal:
        return sum((item.total_value for item in self.items), ZERO)

    @property
    def locations_counted(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(item.location for item in self.items))

    @property
    def is_active(self) -> bool:
        return self.status == CountStatus.IN_PROGRESS

    def items_at(self, location_id: str) -> tuple[CountedItem, ...]:
        return tuple(item for item in self.items if item.location == location_id)

    def with_item(self, item: CountedItem) -> Count:
        return replace(self, items=self.items + (item,))

    def without_item(self, index: int) -> tuple[Count, CountedItem]:
        """Remove the item at ``index``; caller guarantees the index is valid."""
        removed = self.items[index]
        remaining = self.items[:index] + self.items[index + 1:]
        return replace(self, items=remaining), removed

    def aggregates(self) -> CountAggregates:
        return CountAggregates(
            items_counted=self.items_counted,
            total_value=self.total_value,
            locations_counted=self.locations_counted,
        )


@dataclass(frozen=True)
class CountAggregates:
    """Derived totals returned with every item mutation."""
    items_counted: int
    total_value: Decimal
    locations_counted: tuple[str, ...]


@dataclass(frozen=True)
class CountBaseline:
    """The facility's first-ever count, used for sequencing and comparisons."""
    count_id: str
    count_date: date
    items_counted: int = 0
    total_value: Decimal = ZERO
    people_on_site: int | None = None
    last_order_date: date | None = None
    notes: str = ""


@dataclass(frozen=True)
class FacilityConfig:
    """
    The facility configuration document.

    Holds the known locations, the first-count baseline and the single
    current count slot (READY template, IN_PROGRESS, or just COMPLETED).
    ``extras`` carries unrelated top-level keys through load/save untouched.
    """
    facility_id: str
    current_count: Count
    locations: tuple[Location, ...] = ()
    first_count: CountBaseline | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def location_ids(self) -> frozenset[str]:
        return frozenset(loc.id for loc in self.locations)

    def has_location(self, location_id: str) -> bool:
        return any(loc.id == location_id for loc in self.locations)

    def location(self, location_id: str) -> Location | None:
        for loc in self.locations:
            if loc.id == location_id:
                return loc
        return None

    def with_location_counted(self, location_id: str, counted: bool) -> FacilityConfig:
        locations = tuple(
            replace(loc, counted=counted) if loc.id == location_id else loc
            for loc in self.locations
        )
        return replace(self, locations=locations)

    def with_all_locations_cleared(self) -> FacilityConfig:
        return replace(
            self,
            locations=tuple(replace(loc, counted=False) for loc in self.locations),
        )


@dataclass(frozen=True)
class CountHistoryRecord:
    """
    Immutable archival snapshot of a COMPLETED count.

    ``items_counted`` and ``total_value`` are stored, not derived: archived
    baselines may carry totals without their item lines.
    """
    count_id: str
    count_date: date | None
    start_date: datetime | None
    end_date: datetime | None
    last_order_date_included: datetime | None
    people_on_site: int | None
    items_counted: int
    total_value: Decimal
    locations_counted: tuple[str, ...] = ()
    notes: str = ""
    performed_by: tuple[str, ...] = ()
    completed_at: datetime | None = None
    items: tuple[CountedItem, ...] = ()
    status: CountStatus = CountStatus.COMPLETED

    @classmethod
    def from_count(cls, count: Count) -> CountHistoryRecord:
        return cls(
            count_id=count.count_id,
            count_date=count.end_date.date() if count.end_date else None,
            start_date=count.start_date,
            end_date=count.end_date,
            last_order_date_included=count.last_order_date,
            people_on_site=count.people_on_site,
            items_counted=count.items_counted,
            total_value=count.total_value,
            locations_counted=count.locations_counted,
            notes=count.notes,
            performed_by=count.performed_by,
            completed_at=count.completed_at,
            items=count.items,
        )


READY_REQUIRED_FIELDS: tuple[str, ...] = (
    "startDate",
    "endDate",
    "lastOrderDateIncluded",
    "peopleOnSite",
    "locationsCounted",
)


@dataclass(frozen=True)
class NextCountTemplate:
    """The READY slot advertised by the history document."""
    count_id: str
    status: CountStatus = CountStatus.READY
    required_fields: tuple[str, ...] = READY_REQUIRED_FIELDS


@dataclass(frozen=True)
class CountHistory:
    """Ordered sequence of completed counts plus the next READY template."""
    records: tuple[CountHistoryRecord, ...] = ()
    total_counts_performed: int = 0
    last_count_date: date | None = None
    next_count: NextCountTemplate | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def latest(self) -> CountHistoryRecord | None:
        return self.records[-1] if self.records else None

    def appended(self, record: CountHistoryRecord) -> CountHistory:
        return replace(
            self,
            records=self.records + (record,),
            total_counts_performed=self.total_counts_performed + 1,
            last_count_date=record.count_date or self.last_count_date,
        )
