"""
Count lifecycle tests.

Verifies:
- READY -> IN_PROGRESS -> COMPLETED -> new READY transitions
- Rejections persist nothing and are audited
- State violations raise typed errors after a VALIDATION_FAILURE entry
- Persist-then-audit ordering, rollback and the inconsistent-store guard
"""

from decimal import Decimal

import pytest

from count_kernel.domain.audit import AuditOperation
from count_kernel.domain.workflow import CountStatus
from count_kernel.exceptions import (
    AuditWriteError,
    CountInProgressError,
    ItemIndexOutOfRangeError,
    NoCountInProgressError,
    PersistenceError,
    StoreInconsistentError,
)
from count_kernel.services.count_lifecycle import LifecycleStatus
from count_kernel.store.base import StoreSnapshot
from tests.conftest import VALID_START, make_item


def _ops(manager, operation):
    return manager.audit_trail.query_logs(operation=operation)


def _add_items(manager, count, location="DRY-C"):
    for i in range(count):
        result = manager.add_item(
            make_item(location=location, item_code=str(5000 + i), item_name=f"Item {i}")
        )
        assert result.success


class TestStart:
    """Starting a count from the READY template."""

    def test_start_promotes_ready_template(self, manager, actor):
        result = manager.start(dict(VALID_START, notes="Q1"), actor)

        assert result.status == LifecycleStatus.SUCCESS
        assert result.count.count_id == "COUNT-002"
        current = manager.current()
        assert current.status == CountStatus.IN_PROGRESS
        assert current.people_on_site == 3
        assert current.notes == "Q1"
        assert current.started_by == "counter-1"
        assert current.items == ()

    def test_start_writes_count_start_entry(self, manager, actor):
        result = manager.start(VALID_START, actor)

        entries = _ops(manager, AuditOperation.COUNT_START)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.id == result.audit_entry_id
        assert entry.data["countId"] == "COUNT-002"
        assert entry.data["userId"] == "counter-1"
        assert entry.metadata["sessionId"] == "sess-42"
        assert entry.metadata["severity"] == "HIGH"

    def test_start_while_in_progress_raises(self, started_manager):
        """A second start raises COUNT_IN_PROGRESS and leaves the count untouched."""
        started_manager.add_item(make_item())
        before = started_manager.current()

        with pytest.raises(CountInProgressError) as exc_info:
            started_manager.start(VALID_START)

        assert exc_info.value.code == "COUNT_IN_PROGRESS"
        assert started_manager.current() == before
        failures = _ops(started_manager, AuditOperation.VALIDATION_FAILURE)
        assert failures[0].data["errors"][0]["code"] == "COUNT_IN_PROGRESS"

    def test_invalid_start_is_rejected(self, manager, store):
        saves = store.save_count
        result = manager.start(dict(VALID_START, end_date="2024-12-01"))

        assert result.status == LifecycleStatus.REJECTED
        assert "INVALID_DATE_RANGE" in result.validation.error_codes
        assert manager.current().status == CountStatus.READY
        assert store.save_count == saves

    def test_rejection_audits_failure_and_warnings(self, manager):
        """Errors and warnings of a rejected start each get an entry."""
        manager.start(dict(VALID_START, people_on_site=0, last_order_date="2024-11-01"))

        failure = _ops(manager, AuditOperation.VALIDATION_FAILURE)[0]
        warning = _ops(manager, AuditOperation.VALIDATION_WARNING)[0]
        assert failure.data["operation"] == "start"
        assert failure.data["errorCount"] == 1
        assert failure.data["attemptedData"]["people_on_site"] == 0
        assert warning.data["warnings"][0]["code"] == "OLD_ORDER_DATE"

    def test_start_clears_location_flags(self, manager, store, seeded_snapshot):
        facility = seeded_snapshot.facility.with_location_counted("FREEZER-A", True)
        store.save(StoreSnapshot(facility, seeded_snapshot.history))

        manager.start(VALID_START)

        assert not any(loc.counted for loc in manager.locations())

    def test_people_on_site_accepts_numeric_text(self, manager):
        result = manager.start(dict(VALID_START, people_on_site="3.0"))
        assert result.success
        assert manager.current().people_on_site == 3


class TestAddItem:
    """Adding counted lines to the active count."""

    def test_add_item_updates_aggregates(self, started_manager, actor):
        result = started_manager.add_item(make_item(), actor)

        assert result.success
        assert result.item.quantity == Decimal("4")
        assert result.item.added_by == "counter-1"
        assert result.aggregates.items_counted == 1
        assert result.aggregates.total_value == Decimal("342.00")
        assert result.aggregates.locations_counted == ("FREEZER-A",)

    def test_add_item_marks_location_counted(self, started_manager):
        started_manager.add_item(make_item())
        flags = {loc.id: loc.counted for loc in started_manager.locations()}
        assert flags == {"FREEZER-A": True, "COOLER-B": False, "DRY-C": False}

    def test_add_item_writes_item_add_entry(self, started_manager):
        result = started_manager.add_item(make_item())
        entry = _ops(started_manager, AuditOperation.ITEM_ADD)[0]
        assert entry.id == result.audit_entry_id
        assert entry.data["item"]["itemCode"] == "10010421"
        assert entry.data["item"]["totalValue"] == "342"

    def test_add_without_active_count(self, manager):
        with pytest.raises(NoCountInProgressError):
            manager.add_item(make_item())
        assert _ops(manager, AuditOperation.VALIDATION_FAILURE)

    def test_negative_quantity_rejected(self, started_manager):
        """quantity=-5 is rejected and aggregates are unchanged."""
        started_manager.add_item(make_item())

        result = started_manager.add_item(make_item(item_code="777", quantity=-5))

        assert result.status == LifecycleStatus.REJECTED
        assert "INVALID_QUANTITY" in result.validation.error_codes
        current = started_manager.current()
        assert current.items_counted == 1
        assert current.total_value == Decimal("342.00")

    def test_high_quantity_accepted_with_warning(self, started_manager):
        """quantity=15000 succeeds with HIGH_QUANTITY and the item is added."""
        result = started_manager.add_item(make_item(quantity=15000))

        assert result.success
        assert "HIGH_QUANTITY" in result.validation.warning_codes
        assert started_manager.current().items_counted == 1
        warning = _ops(started_manager, AuditOperation.VALIDATION_WARNING)[0]
        assert "HIGH_QUANTITY" in [w["code"] for w in warning.data["warnings"]]

    def test_duplicate_item_warns(self, started_manager):
        started_manager.add_item(make_item())
        result = started_manager.add_item(make_item())

        assert result.success
        assert "DUPLICATE_ITEM" in result.validation.warning_codes
        assert started_manager.current().items_counted == 2

    def test_missing_price_counts_as_zero(self, started_manager):
        item = make_item()
        del item["unit_price"]
        result = started_manager.add_item(item)
        assert result.item.unit_price == Decimal("0")


class TestDeleteItem:
    """Removing counted lines by index."""

    def test_delete_clears_location_when_last_item(self, started_manager):
        started_manager.add_item(make_item())
        started_manager.add_item(make_item(location="COOLER-B", item_code="222"))

        result = started_manager.delete_item(0)

        assert result.success
        assert result.item.location == "FREEZER-A"
        assert result.aggregates.locations_counted == ("COOLER-B",)
        flags = {loc.id: loc.counted for loc in started_manager.locations()}
        assert flags["FREEZER-A"] is False
        assert flags["COOLER-B"] is True

    def test_delete_keeps_flag_when_items_remain(self, started_manager):
        started_manager.add_item(make_item())
        started_manager.add_item(make_item(item_code="333"))

        started_manager.delete_item(1)

        assert started_manager.facility().location("FREEZER-A").counted

    def test_delete_writes_item_delete_entry(self, started_manager):
        started_manager.add_item(make_item())
        started_manager.delete_item(0)
        entry = _ops(started_manager, AuditOperation.ITEM_DELETE)[0]
        assert entry.data["index"] == 0
        assert entry.data["deletedItem"]["itemCode"] == "10010421"
        assert entry.metadata["severity"] == "HIGH"

    @pytest.mark.parametrize("index", [-1, 1, 5, True, "0"])
    def test_out_of_range_index(self, started_manager, index):
        started_manager.add_item(make_item())

        with pytest.raises(ItemIndexOutOfRangeError):
            started_manager.delete_item(index)

        assert started_manager.current().items_counted == 1
        failure = _ops(started_manager, AuditOperation.VALIDATION_FAILURE)[0]
        assert failure.data["errors"][0]["code"] == "ITEM_NOT_FOUND"

    def test_delete_without_active_count(self, manager):
        with pytest.raises(NoCountInProgressError):
            manager.delete_item(0)


class TestComplete:
    """Completing the active count and opening the next one."""

    def test_complete_without_items_rejected(self, started_manager):
        result = started_manager.complete()

        assert result.status == LifecycleStatus.REJECTED
        assert "INSUFFICIENT_ITEMS" in result.validation.error_codes
        assert started_manager.current().status == CountStatus.IN_PROGRESS

    def test_low_item_count_warning(self, started_manager):
        """5 items after a 20-item prior count completes with LOW_ITEM_COUNT."""
        _add_items(started_manager, 5)

        result = started_manager.complete()

        assert result.success
        assert "LOW_ITEM_COUNT" in result.validation.warning_codes

    def test_complete_archives_and_opens_next(self, started_manager, actor):
        _add_items(started_manager, 12)

        result = started_manager.complete(notes="done", actor=actor)

        assert result.success
        assert result.next_count_id == "COUNT-003"
        assert result.history_record.count_id == "COUNT-002"
        assert result.history_record.items_counted == 12
        assert result.history_record.performed_by == ("counter-1",)

        current = started_manager.current()
        assert current.count_id == "COUNT-003"
        assert current.status == CountStatus.READY
        assert current.items == ()
        assert not any(loc.counted for loc in started_manager.locations())

        history = started_manager.history()
        assert history.total_counts_performed == 2
        assert history.latest.count_id == "COUNT-002"
        assert history.latest.notes == "done"
        assert history.next_count.count_id == "COUNT-003"
        assert history.last_count_date == history.latest.count_date

    def test_complete_writes_critical_entry(self, started_manager):
        _add_items(started_manager, 12)
        result = started_manager.complete()
        entry = _ops(started_manager, AuditOperation.COUNT_COMPLETE)[0]
        assert entry.id == result.audit_entry_id
        assert entry.metadata["severity"] == "CRITICAL"
        assert entry.data["itemsCounted"] == 12

    def test_explicit_performers(self, started_manager):
        _add_items(started_manager, 12)
        result = started_manager.complete(performed_by=["alice", "bob"])
        assert result.history_record.performed_by == ("alice", "bob")

    def test_complete_without_active_count(self, manager):
        with pytest.raises(NoCountInProgressError):
            manager.complete()

    def test_next_count_can_start(self, started_manager):
        _add_items(started_manager, 12)
        started_manager.complete()

        result = started_manager.start(VALID_START)

        assert result.success
        assert result.count.count_id == "COUNT-003"

    def test_comparison_after_completion(self, started_manager):
        _add_items(started_manager, 12)
        started_manager.complete()

        comparison = started_manager.comparison()

        assert comparison.previous.count_id == "COUNT-001"
        assert comparison.current.count_id == "COUNT-002"
        assert comparison.item_count_diff == -8


class TestFailureHandling:
    """Persist-then-audit ordering and rollback."""

    def test_persistence_failure_changes_nothing(self, started_manager, store):
        store.fail_next_saves = 1

        with pytest.raises(PersistenceError):
            started_manager.add_item(make_item())

        assert started_manager.current().items == ()
        assert _ops(started_manager, AuditOperation.ITEM_ADD) == []

    def test_audit_failure_restores_previous_snapshot(self, manager, audit_trail, monkeypatch):
        def broken(*args, **kwargs):
            raise AuditWriteError("COUNT_START", "audit-2025-01-02.jsonl", "disk full")

        monkeypatch.setattr(audit_trail, "log_count_start", broken)

        with pytest.raises(AuditWriteError):
            manager.start(VALID_START)

        assert manager.current().status == CountStatus.READY
        assert manager.store.is_consistent

    def test_failed_rollback_marks_store_inconsistent(self, manager, store, audit_trail, monkeypatch):
        def broken(*args, **kwargs):
            raise AuditWriteError("COUNT_START", "audit-2025-01-02.jsonl", "disk full")

        real_save = store.save
        calls = []

        def save_once(snapshot):
            calls.append(snapshot)
            if len(calls) > 1:
                raise PersistenceError("restore failed")
            real_save(snapshot)

        monkeypatch.setattr(audit_trail, "log_count_start", broken)
        monkeypatch.setattr(store, "save", save_once)

        with pytest.raises(StoreInconsistentError) as exc_info:
            manager.start(VALID_START)

        assert isinstance(exc_info.value.__cause__, AuditWriteError)
        assert not store.is_consistent

    def test_unencodable_item_name_rolls_back(self, started_manager):
        with pytest.raises(AuditWriteError):
            started_manager.add_item(make_item(item_name="Bacon \udcff"))

        assert started_manager.current().items == ()
        assert _ops(started_manager, AuditOperation.ITEM_ADD) == []
        assert started_manager.store.is_consistent

    def test_unserializable_warning_payload_rolls_back(self, manager):
        params = {**VALID_START, "people_on_site": 25, "source": object()}

        with pytest.raises(AuditWriteError):
            manager.start(params)

        assert manager.current().status == CountStatus.READY
        assert manager.store.is_consistent

    def test_unexpected_audit_error_restores_snapshot(self, started_manager, audit_trail, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(audit_trail, "log_item_add", broken)

        with pytest.raises(RuntimeError):
            started_manager.add_item(make_item())

        assert started_manager.current().items == ()

    def test_inconsistent_store_refuses_mutations(self, manager, store):
        store.mark_inconsistent("operator test")

        with pytest.raises(StoreInconsistentError):
            manager.start(VALID_START)

        store.mark_consistent()
        assert manager.start(VALID_START).success

    def test_reads_work_on_inconsistent_store(self, started_manager, store):
        store.mark_inconsistent("operator test")
        assert started_manager.current().status == CountStatus.IN_PROGRESS


class TestLogging:
    """Structured log events for lifecycle operations."""

    def test_lifecycle_events_logged(self, started_manager, captured_logs, actor):
        started_manager.add_item(make_item(), actor)

        records = captured_logs()
        added = [r for r in records if r["message"] == "item_added"]
        written = [r for r in records if r["message"] == "audit_entry_written"]
        assert added
        assert added[0]["item_code"] == "10010421"
        assert written[-1]["actor_id"] == "counter-1"
        assert written[-1]["count_id"] == "COUNT-002"

    def test_rejection_logged(self, started_manager, captured_logs):
        started_manager.add_item(make_item(quantity=-5))
        assert any(r["message"] == "lifecycle_rejected" for r in captured_logs())
