"""
Concurrency tests for the lifecycle manager and the audit trail.

Verifies:
- Concurrent adds are serialized: no item is lost
- Concurrent starts: exactly one succeeds, the rest see COUNT_IN_PROGRESS
- Concurrent audit appends never interleave lines
"""

import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from count_kernel.exceptions import CountInProgressError
from tests.conftest import VALID_START, make_item

pytestmark = pytest.mark.slow

WORKERS = 8


class TestConcurrentLifecycle:
    """Single-writer guarantees under threads."""

    def test_concurrent_adds_are_all_kept(self, started_manager):
        def add(i):
            return started_manager.add_item(make_item(item_code=str(1000 + i)))

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            results = list(pool.map(add, range(40)))

        assert all(r.success for r in results)
        current = started_manager.current()
        assert current.items_counted == 40
        assert {i.item_code for i in current.items} == {str(1000 + i) for i in range(40)}

    def test_only_one_start_wins(self, manager):
        def start(_):
            try:
                return manager.start(VALID_START).success
            except CountInProgressError:
                return False

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            outcomes = list(pool.map(start, range(WORKERS)))

        assert outcomes.count(True) == 1
        assert len(manager.audit_trail.query_logs(operation="COUNT_START")) == 1
        failures = manager.audit_trail.query_logs(operation="VALIDATION_FAILURE")
        assert len(failures) == WORKERS - 1


class TestConcurrentAudit:
    """Per-segment append locking."""

    def test_lines_never_interleave(self, audit_trail, clock):
        def write(i):
            return audit_trail.log_operation("ITEM_ADD", {"userId": f"u{i}", "pad": "x" * 2000})

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            ids = list(pool.map(write, range(200)))

        path = audit_trail.segment_path(clock.today_utc())
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 200
        assert {json.loads(line)["id"] for line in lines} == set(ids)
        assert audit_trail.run_integrity_sweep().passed
