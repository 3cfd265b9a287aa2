"""
JSON file store tests.

Verifies:
- Both documents round-trip through disk in their camelCase shape
- Missing and corrupt files
- Atomic replace, and recovery when the second replace fails
"""

import json
import os
from dataclasses import replace

import pytest

from count_kernel.domain.values import CountHistory, Location
from count_kernel.exceptions import DocumentLoadError, DocumentSchemaError, PersistenceError
from count_kernel.services.count_lifecycle import CountLifecycleManager
from count_kernel.store.json_file import JsonFileCountStore
from tests.conftest import VALID_START, make_item


@pytest.fixture
def json_store(tmp_path):
    return JsonFileCountStore(
        tmp_path / "data" / "facility_config.json",
        tmp_path / "data" / "count_history.json",
        facility_id="test-facility",
    )


@pytest.fixture
def seeded_json_store(json_store, seeded_snapshot):
    json_store.save(seeded_snapshot)
    return json_store


class TestLoadSave:
    """Reading and writing the two documents."""

    def test_round_trip(self, seeded_json_store, seeded_snapshot):
        loaded = seeded_json_store.load()
        assert loaded.facility == seeded_snapshot.facility
        assert loaded.history == seeded_snapshot.history

    def test_document_shape(self, seeded_json_store):
        facility = json.loads(seeded_json_store.config_path.read_text(encoding="utf-8"))
        history = json.loads(seeded_json_store.history_path.read_text(encoding="utf-8"))

        assert facility["counts"]["secondCount"]["countId"] == "COUNT-002"
        assert facility["counts"]["secondCount"]["status"] == "READY"
        assert facility["counts"]["firstCount"]["itemsCounted"] == 20
        assert [loc["id"] for loc in facility["locations"]] == ["FREEZER-A", "COOLER-B", "DRY-C"]
        assert history["meta"]["totalCountsPerformed"] == 1
        assert history["nextCount"]["countId"] == "COUNT-002"

    def test_exists(self, json_store, seeded_snapshot):
        assert not json_store.exists()
        json_store.save(seeded_snapshot)
        assert json_store.exists()

    def test_missing_facility_file(self, json_store):
        with pytest.raises(DocumentLoadError):
            json_store.load()

    def test_missing_history_loads_empty(self, seeded_json_store):
        seeded_json_store.history_path.unlink()
        assert seeded_json_store.load().history == CountHistory()

    def test_corrupt_json(self, seeded_json_store):
        seeded_json_store.config_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(DocumentLoadError):
            seeded_json_store.load()

    def test_wrong_shape(self, seeded_json_store):
        seeded_json_store.config_path.write_text('{"facilityId": "x"}', encoding="utf-8")
        with pytest.raises(DocumentSchemaError) as exc_info:
            seeded_json_store.load()
        assert exc_info.value.field == "$.counts"

    def test_unknown_keys_preserved(self, seeded_json_store):
        doc = json.loads(seeded_json_store.config_path.read_text(encoding="utf-8"))
        doc["settings"] = {"theme": "dark"}
        seeded_json_store.config_path.write_text(json.dumps(doc), encoding="utf-8")

        seeded_json_store.save(seeded_json_store.load())

        doc = json.loads(seeded_json_store.config_path.read_text(encoding="utf-8"))
        assert doc["settings"] == {"theme": "dark"}

    def test_no_temp_files_left(self, seeded_json_store):
        seeded_json_store.save(seeded_json_store.load())
        leftovers = [p for p in seeded_json_store.config_path.parent.iterdir() if p.name.startswith(".")]
        assert leftovers == []

    def test_unencodable_document_raises_persistence_error(self, seeded_json_store):
        before = seeded_json_store.config_path.read_bytes()
        snapshot = seeded_json_store.load()
        facility = replace(snapshot.facility, locations=(Location(id="X\udcff"),))

        with pytest.raises(PersistenceError):
            seeded_json_store.save(replace(snapshot, facility=facility))

        leftovers = [p for p in seeded_json_store.config_path.parent.iterdir() if p.name.startswith(".")]
        assert leftovers == []
        assert seeded_json_store.config_path.read_bytes() == before


class TestAtomicity:
    """Recovery when a replace fails."""

    def test_first_replace_failure_changes_nothing(self, seeded_json_store, monkeypatch):
        before = seeded_json_store.config_path.read_bytes()

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)
        with pytest.raises(PersistenceError):
            seeded_json_store.save(seeded_json_store.load())
        monkeypatch.undo()

        assert seeded_json_store.config_path.read_bytes() == before
        assert seeded_json_store.is_consistent

    def test_second_replace_failure_restores_facility(self, seeded_json_store, monkeypatch, clock):
        before = seeded_json_store.config_path.read_bytes()
        snapshot = seeded_json_store.load()
        real_replace = os.replace

        def replace_facility_only(src, dst):
            if str(dst) == str(seeded_json_store.history_path):
                raise OSError("disk full")
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace_facility_only)
        with pytest.raises(PersistenceError) as exc_info:
            seeded_json_store.save(snapshot)
        monkeypatch.undo()

        assert exc_info.value.document == "history"
        assert seeded_json_store.config_path.read_bytes() == before
        assert seeded_json_store.is_consistent

    def test_failed_restore_marks_inconsistent(self, seeded_json_store, monkeypatch):
        snapshot = seeded_json_store.load()
        real_replace = os.replace
        calls = []

        def replace_once(src, dst):
            calls.append(dst)
            if len(calls) > 1:
                raise OSError("disk full")
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace_once)
        with pytest.raises(PersistenceError):
            seeded_json_store.save(snapshot)
        monkeypatch.undo()

        assert not seeded_json_store.is_consistent


class TestLifecycleOnDisk:
    """The lifecycle manager over the file backend."""

    def test_full_cycle(self, seeded_json_store, audit_trail, clock):
        manager = CountLifecycleManager(seeded_json_store, audit_trail, clock=clock)
        manager.start(VALID_START)
        for i in range(10):
            manager.add_item(make_item(item_code=str(100 + i)))
        result = manager.complete()

        assert result.success
        reopened = JsonFileCountStore(
            seeded_json_store.config_path,
            seeded_json_store.history_path,
            facility_id="test-facility",
        )
        snapshot = reopened.load()
        assert snapshot.facility.current_count.count_id == "COUNT-003"
        assert snapshot.history.latest.items_counted == 10
        assert len(snapshot.history.latest.items) == 10
