"""JSON views of kernel values for CLI output."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

from count_kernel.domain.audit import AuditLogEntry
from count_kernel.domain.validation import ValidationReport
from count_kernel.domain.values import Count, CountedItem, CountHistory, Location
from count_kernel.exceptions import CountKernelError
from count_kernel.selectors.count_selector import CountComparison, LocationItems
from count_kernel.services.audit_trail import (
    AuditReport,
    AuditStatistics,
    CleanupResult,
    CountAuditTrail,
    IntegrityCheckResult,
    IntegritySweepResult,
)
from count_kernel.services.count_lifecycle import LifecycleResult
from count_kernel.store.documents import (
    encode_count,
    encode_history,
    encode_item,
    encode_location,
    encode_record,
)
from count_kernel.utils.hashing import decimal_text, to_json_native


def dumps(payload: Any) -> str:
    return json.dumps(to_json_native(payload), indent=2, ensure_ascii=False)


def lifecycle_result(result: LifecycleResult) -> dict[str, Any]:
    view: dict[str, Any] = {
        "status": result.status.value,
        "validation": validation_report(ValidationReport.from_result(result.validation)),
        "auditEntryId": result.audit_entry_id,
    }
    if result.count is not None:
        view["count"] = encode_count(result.count)
    if result.item is not None:
        view["item"] = encode_item(result.item)
    if result.aggregates is not None:
        view["aggregates"] = {
            "itemsCounted": result.aggregates.items_counted,
            "totalValue": decimal_text(result.aggregates.total_value),
            "locationsCounted": list(result.aggregates.locations_counted),
        }
    if result.next_count_id is not None:
        view["nextCountId"] = result.next_count_id
    return view


def count(value: Count) -> dict[str, Any]:
    return encode_count(value)


def items(values: tuple[CountedItem, ...]) -> list[dict[str, Any]]:
    return [encode_item(item) for item in values]


def location_items(view: LocationItems) -> dict[str, Any]:
    return {
        "location": view.location_id,
        "items": [encode_item(item) for item in view.items],
        "itemCount": view.item_count,
        "totalValue": decimal_text(view.total_value),
    }


def locations(values: tuple[Location, ...]) -> list[dict[str, Any]]:
    return [encode_location(loc) for loc in values]


def history(value: CountHistory) -> dict[str, Any]:
    return encode_history(value)


def comparison(value: CountComparison) -> dict[str, Any]:
    percent = value.value_diff_percent
    return {
        "previous": encode_record(value.previous),
        "current": encode_record(value.current),
        "itemCountDiff": value.item_count_diff,
        "valueDiff": decimal_text(value.value_diff),
        "valueDiffPercent": "N/A" if percent is None else str(percent),
    }


def audit_entries(entries: list[AuditLogEntry]) -> list[dict[str, Any]]:
    return [entry.to_record() for entry in entries]


def audit_trail(trail: CountAuditTrail) -> dict[str, Any]:
    return {
        "countId": trail.count_id,
        "totalOperations": trail.total_operations,
        "timeline": audit_entries(list(trail.timeline)),
        "summary": asdict(trail.summary),
    }


def audit_report(report: AuditReport | AuditStatistics) -> dict[str, Any]:
    return asdict(report)


def integrity(result: IntegrityCheckResult) -> dict[str, Any]:
    return asdict(result)


def cleanup(result: CleanupResult) -> dict[str, Any]:
    return asdict(result)


def sweep(result: IntegritySweepResult) -> dict[str, Any]:
    return {
        "checked": result.checked,
        "passed": result.passed,
        "failedIds": list(result.failed_ids),
        "auditEntryId": result.audit_entry_id,
    }


def validation_report(report: ValidationReport) -> dict[str, Any]:
    return {
        "timestamp": report.timestamp,
        "valid": report.valid,
        "errorCount": report.error_count,
        "warningCount": report.warning_count,
        "severity": report.severity.value,
        "errors": [e.to_dict() for e in report.errors],
        "warnings": [w.to_dict() for w in report.warnings],
    }


def error(exc: CountKernelError | ValueError) -> dict[str, Any]:
    return {
        "error": getattr(exc, "code", "INVALID_ARGUMENT"),
        "message": str(exc),
    }
