"""
Document codec (``count_kernel.store.documents``).

Responsibility:
    Translates between the typed domain values and the two persisted JSON
    documents -- the facility configuration and the count history -- in
    their camelCase on-disk shape.

Architecture position:
    Kernel > Store -- the boundary where untyped JSON becomes typed values.
    Every decode validates shape and raises ``DocumentSchemaError`` naming
    the offending field; nothing downstream trusts raw document data.

Facility document::

    {"facilityId": ..., "locations": [{"id", "name", "type", "counted"}],
     "counts": {"firstCount": {...}, "secondCount": {...current count...}},
     "meta": {"createdAt", "updatedAt"}, ...passthrough keys...}

History document::

    {"counts": [...completed records...],
     "nextCount": {"countId", "status": "READY", "requiredFields": [...]},
     "meta": {"totalCountsPerformed", "lastCountDate", ...}}
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from count_kernel.domain.dates import format_instant, parse_instant
from count_kernel.domain.values import (
    READY_REQUIRED_FIELDS,
    ZERO,
    Count,
    CountBaseline,
    CountedItem,
    CountHistory,
    CountHistoryRecord,
    FacilityConfig,
    Location,
    NextCountTemplate,
)
from count_kernel.domain.workflow import CountStatus
from count_kernel.exceptions import DocumentSchemaError
from count_kernel.utils.hashing import decimal_text

FACILITY_DOCUMENT = "facility"
HISTORY_DOCUMENT = "history"

# Legacy documents call the template slot PENDING.
_STATUS_ALIASES = {"PENDING": CountStatus.READY}

_FACILITY_KEYS = {"facilityId", "locations", "counts", "meta"}
_HISTORY_KEYS = {"counts", "nextCount", "meta"}
_HISTORY_META_KEYS = {"totalCountsPerformed", "lastCountDate"}


# =============================================================================
# Scalar helpers
# =============================================================================


def _money(value: Decimal) -> str:
    return decimal_text(value)


def _require(doc: dict[str, Any], key: str, document: str, path: str) -> Any:
    if key not in doc or doc[key] is None:
        raise DocumentSchemaError(document, f"{path}.{key}", "missing")
    return doc[key]


def _object(value: Any, document: str, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise DocumentSchemaError(document, path, f"expected object, got {type(value).__name__}")
    return value


def _list(value: Any, document: str, path: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DocumentSchemaError(document, path, f"expected array, got {type(value).__name__}")
    return value


def _decimal(value: Any, document: str, path: str, default: Decimal = ZERO) -> Decimal:
    if value is None:
        return default
    if isinstance(value, bool):
        raise DocumentSchemaError(document, path, "expected number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise DocumentSchemaError(document, path, f"not a number: {value!r}") from exc
    if not number.is_finite():
        raise DocumentSchemaError(document, path, f"not a finite number: {value!r}")
    return number


def _int(value: Any, document: str, path: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise DocumentSchemaError(document, path, "expected integer")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise DocumentSchemaError(document, path, f"not an integer: {value!r}") from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise DocumentSchemaError(document, path, f"not an integer: {value!r}")
    return int(number)


def _instant(value: Any, document: str, path: str) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return parse_instant(value)
    except ValueError as exc:
        raise DocumentSchemaError(document, path, str(exc)) from exc


def _day(value: Any, document: str, path: str) -> date | None:
    instant = _instant(value, document, path)
    return instant.date() if instant else None


def _status(value: Any, document: str, path: str) -> CountStatus:
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return CountStatus(value)
    except ValueError as exc:
        raise DocumentSchemaError(document, path, f"unknown status {value!r}") from exc


def _strings(value: Any, document: str, path: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,) if value else ()
    return tuple(str(v) for v in _list(value, document, path))


# =============================================================================
# Items and counts
# =============================================================================


def encode_item(item: CountedItem) -> dict[str, Any]:
    return {
        "location": item.location,
        "itemCode": item.item_code,
        "itemName": item.item_name,
        "quantity": _money(item.quantity),
        "unit": item.unit,
        "unitPrice": _money(item.unit_price),
        "totalValue": _money(item.total_value),
        "notes": item.notes,
        "addedAt": format_instant(item.added_at),
        "addedBy": item.added_by,
    }


def decode_item(doc: Any, document: str, path: str) -> CountedItem:
    doc = _object(doc, document, path)
    return CountedItem(
        location=str(_require(doc, "location", document, path)),
        item_code=str(_require(doc, "itemCode", document, path)),
        item_name=str(doc.get("itemName") or ""),
        quantity=_decimal(_require(doc, "quantity", document, path), document, f"{path}.quantity"),
        unit=str(doc.get("unit") or ""),
        unit_price=_decimal(doc.get("unitPrice"), document, f"{path}.unitPrice"),
        notes=str(doc.get("notes") or ""),
        added_at=_instant(doc.get("addedAt"), document, f"{path}.addedAt"),
        added_by=str(doc.get("addedBy") or "SYSTEM"),
    )


def encode_count(count: Count) -> dict[str, Any]:
    aggregates = count.aggregates()
    return {
        "countId": count.count_id,
        "status": count.status.value,
        "startDate": format_instant(count.start_date),
        "endDate": format_instant(count.end_date),
        "lastOrderDate": format_instant(count.last_order_date),
        "peopleOnSite": count.people_on_site,
        "itemsCounted": aggregates.items_counted,
        "totalValue": _money(aggregates.total_value),
        "locationsCounted": list(aggregates.locations_counted),
        "items": [encode_item(item) for item in count.items],
        "notes": count.notes,
        "performedBy": list(count.performed_by),
        "startedBy": count.started_by,
        "startedAt": format_instant(count.started_at),
        "completedAt": format_instant(count.completed_at),
    }


def decode_count(doc: Any, document: str, path: str) -> Count:
    """Aggregates in the document are ignored; they are re-derived from items."""
    doc = _object(doc, document, path)
    items = tuple(
        decode_item(raw, document, f"{path}.items[{i}]")
        for i, raw in enumerate(_list(doc.get("items"), document, f"{path}.items"))
    )
    return Count(
        count_id=str(_require(doc, "countId", document, path)),
        status=_status(doc.get("status", "READY"), document, f"{path}.status"),
        start_date=_instant(doc.get("startDate"), document, f"{path}.startDate"),
        end_date=_instant(doc.get("endDate"), document, f"{path}.endDate"),
        last_order_date=_instant(doc.get("lastOrderDate"), document, f"{path}.lastOrderDate"),
        people_on_site=_int(doc.get("peopleOnSite"), document, f"{path}.peopleOnSite"),
        items=items,
        notes=str(doc.get("notes") or ""),
        performed_by=_strings(doc.get("performedBy"), document, f"{path}.performedBy"),
        started_by=doc.get("startedBy"),
        started_at=_instant(doc.get("startedAt"), document, f"{path}.startedAt"),
        completed_at=_instant(doc.get("completedAt"), document, f"{path}.completedAt"),
    )


def encode_location(location: Location) -> dict[str, Any]:
    return {
        "id": location.id,
        "name": location.name,
        "type": location.type,
        "counted": location.counted,
    }


def decode_location(doc: Any, document: str, path: str) -> Location:
    doc = _object(doc, document, path)
    return Location(
        id=str(_require(doc, "id", document, path)),
        name=str(doc.get("name") or ""),
        type=str(doc.get("type") or ""),
        counted=bool(doc.get("counted", False)),
    )


def encode_baseline(baseline: CountBaseline) -> dict[str, Any]:
    return {
        "countId": baseline.count_id,
        "countDate": baseline.count_date.isoformat(),
        "status": CountStatus.COMPLETED.value,
        "lastOrderDate": baseline.last_order_date.isoformat() if baseline.last_order_date else None,
        "peopleOnSite": baseline.people_on_site,
        "itemsCounted": baseline.items_counted,
        "totalValue": _money(baseline.total_value),
        "notes": baseline.notes,
    }


def decode_baseline(doc: Any, document: str, path: str) -> CountBaseline:
    doc = _object(doc, document, path)
    return CountBaseline(
        count_id=str(_require(doc, "countId", document, path)),
        count_date=_day(_require(doc, "countDate", document, path), document, f"{path}.countDate"),
        items_counted=_int(doc.get("itemsCounted"), document, f"{path}.itemsCounted") or 0,
        total_value=_decimal(doc.get("totalValue"), document, f"{path}.totalValue"),
        people_on_site=_int(doc.get("peopleOnSite"), document, f"{path}.peopleOnSite"),
        last_order_date=_day(doc.get("lastOrderDate"), document, f"{path}.lastOrderDate"),
        notes=str(doc.get("notes") or ""),
    )


# =============================================================================
# Facility document
# =============================================================================


def encode_facility(config: FacilityConfig) -> dict[str, Any]:
    counts: dict[str, Any] = {"secondCount": encode_count(config.current_count)}
    if config.first_count is not None:
        counts["firstCount"] = encode_baseline(config.first_count)
    doc = dict(config.extras)
    doc.update({
        "facilityId": config.facility_id,
        "locations": [encode_location(loc) for loc in config.locations],
        "counts": counts,
        "meta": {
            "createdAt": format_instant(config.created_at),
            "updatedAt": format_instant(config.updated_at),
        },
    })
    return doc


def decode_facility(doc: Any, facility_id: str = "default") -> FacilityConfig:
    """
    Raises:
        DocumentSchemaError: if the document does not have the facility shape.
    """
    document = FACILITY_DOCUMENT
    doc = _object(doc, document, "$")
    counts = _object(_require(doc, "counts", document, "$"), document, "$.counts")
    first_raw = counts.get("firstCount")
    meta = _object(doc.get("meta") or {}, document, "$.meta")
    return FacilityConfig(
        facility_id=str(doc.get("facilityId") or facility_id),
        current_count=decode_count(
            _require(counts, "secondCount", document, "$.counts"),
            document,
            "$.counts.secondCount",
        ),
        locations=tuple(
            decode_location(raw, document, f"$.locations[{i}]")
            for i, raw in enumerate(_list(doc.get("locations"), document, "$.locations"))
        ),
        first_count=decode_baseline(first_raw, document, "$.counts.firstCount") if first_raw else None,
        created_at=_instant(meta.get("createdAt"), document, "$.meta.createdAt"),
        updated_at=_instant(meta.get("updatedAt"), document, "$.meta.updatedAt"),
        extras={k: v for k, v in doc.items() if k not in _FACILITY_KEYS},
    )


# =============================================================================
# History document
# =============================================================================


def encode_record(record: CountHistoryRecord) -> dict[str, Any]:
    return {
        "countId": record.count_id,
        "countDate": record.count_date.isoformat() if record.count_date else None,
        "startDate": format_instant(record.start_date),
        "endDate": format_instant(record.end_date),
        "lastOrderDateIncluded": format_instant(record.last_order_date_included),
        "peopleOnSite": record.people_on_site,
        "status": record.status.value,
        "itemsCounted": record.items_counted,
        "totalValue": _money(record.total_value),
        "locationsCounted": list(record.locations_counted),
        "notes": record.notes,
        "performedBy": list(record.performed_by),
        "completedAt": format_instant(record.completed_at),
        "items": [encode_item(item) for item in record.items],
    }


def decode_record(doc: Any, document: str, path: str) -> CountHistoryRecord:
    doc = _object(doc, document, path)
    items = tuple(
        decode_item(raw, document, f"{path}.items[{i}]")
        for i, raw in enumerate(_list(doc.get("items"), document, f"{path}.items"))
    )
    items_counted = _int(doc.get("itemsCounted"), document, f"{path}.itemsCounted")
    return CountHistoryRecord(
        count_id=str(_require(doc, "countId", document, path)),
        count_date=_day(doc.get("countDate"), document, f"{path}.countDate"),
        start_date=_instant(doc.get("startDate"), document, f"{path}.startDate"),
        end_date=_instant(doc.get("endDate"), document, f"{path}.endDate"),
        last_order_date_included=_instant(
            doc.get("lastOrderDateIncluded"), document, f"{path}.lastOrderDateIncluded"
        ),
        people_on_site=_int(doc.get("peopleOnSite"), document, f"{path}.peopleOnSite"),
        items_counted=items_counted if items_counted is not None else len(items),
        total_value=_decimal(doc.get("totalValue"), document, f"{path}.totalValue"),
        locations_counted=_strings(doc.get("locationsCounted"), document, f"{path}.locationsCounted"),
        notes=str(doc.get("notes") or ""),
        performed_by=_strings(doc.get("performedBy"), document, f"{path}.performedBy"),
        completed_at=_instant(doc.get("completedAt"), document, f"{path}.completedAt"),
        items=items,
        status=_status(doc.get("status", "COMPLETED"), document, f"{path}.status"),
    )


def encode_history(history: CountHistory) -> dict[str, Any]:
    doc = dict(history.extras)
    meta = dict(doc.pop("meta", {}) or {})
    meta.update({
        "totalCountsPerformed": history.total_counts_performed,
        "lastCountDate": history.last_count_date.isoformat() if history.last_count_date else None,
    })
    doc.update({
        "counts": [encode_record(record) for record in history.records],
        "meta": meta,
    })
    if history.next_count is not None:
        doc["nextCount"] = {
            "countId": history.next_count.count_id,
            "status": history.next_count.status.value,
            "requiredFields": list(history.next_count.required_fields),
        }
    return doc


def decode_history(doc: Any) -> CountHistory:
    """
    Raises:
        DocumentSchemaError: if the document does not have the history shape.
    """
    document = HISTORY_DOCUMENT
    doc = _object(doc, document, "$")
    records = tuple(
        decode_record(raw, document, f"$.counts[{i}]")
        for i, raw in enumerate(_list(doc.get("counts"), document, "$.counts"))
    )
    meta = _object(doc.get("meta") or {}, document, "$.meta")
    total = _int(meta.get("totalCountsPerformed"), document, "$.meta.totalCountsPerformed")

    next_raw = doc.get("nextCount")
    next_count = None
    if next_raw:
        next_raw = _object(next_raw, document, "$.nextCount")
        next_count = NextCountTemplate(
            count_id=str(_require(next_raw, "countId", document, "$.nextCount")),
            status=_status(next_raw.get("status", "READY"), document, "$.nextCount.status"),
            required_fields=_strings(
                next_raw.get("requiredFields", list(READY_REQUIRED_FIELDS)),
                document,
                "$.nextCount.requiredFields",
            ),
        )

    extras = {k: v for k, v in doc.items() if k not in _HISTORY_KEYS}
    passthrough_meta = {k: v for k, v in meta.items() if k not in _HISTORY_META_KEYS}
    if passthrough_meta:
        extras["meta"] = passthrough_meta

    return CountHistory(
        records=records,
        total_counts_performed=total if total is not None else len(records),
        last_count_date=_day(meta.get("lastCountDate"), document, "$.meta.lastCountDate"),
        next_count=next_count,
        extras=extras,
    )
