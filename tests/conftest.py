"""
Pytest fixtures for the count kernel test suite.

Every test runs against an in-memory store seeded with a small facility
and an AuditTrail writing under ``tmp_path``; time comes from a
DeterministicClock so dates and audit segments are reproducible.
"""

import json
import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO

import pytest

from count_kernel.domain.clock import DeterministicClock
from count_kernel.domain.rule_validator import RuleValidator
from count_kernel.domain.values import ActorContext, CountBaseline, Location
from count_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from count_kernel.services.audit_trail import AuditTrail
from count_kernel.services.count_lifecycle import CountLifecycleManager
from count_kernel.store.memory import InMemoryCountStore
from count_kernel.store.seed import seed_facility

TEST_NOW = datetime(2025, 1, 2, 12, 0, 0, tzinfo=UTC)

TEST_LOCATIONS = (
    Location("FREEZER-A", "Freezer A", "FROZEN"),
    Location("COOLER-B", "Cooler B", "REFRIGERATED"),
    Location("DRY-C", "Dry Storage C", "DRY"),
)

TEST_BASELINE = CountBaseline(
    count_id="COUNT-001",
    count_date=date(2024, 6, 30),
    items_counted=20,
    total_value=Decimal("5000.00"),
    people_on_site=3,
    last_order_date=date(2024, 6, 30),
    notes="Baseline count",
)

VALID_START = {
    "start_date": "2025-01-01",
    "end_date": "2025-01-01",
    "last_order_date": "2025-01-01",
    "people_on_site": 3,
}


def make_item(**overrides):
    item = {
        "location": "FREEZER-A",
        "item_code": "10010421",
        "item_name": "Chicken Breast 40lb",
        "quantity": 4,
        "unit": "CS",
        "unit_price": "85.50",
    }
    item.update(overrides)
    return item


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture count_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, manager):
            manager.start(VALID_START)
            logs = captured_logs()
            assert any(r["message"] == "count_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("count_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Kernel fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def seeded_snapshot(clock):
    return seed_facility(
        facility_id="test-facility",
        locations=TEST_LOCATIONS,
        baseline=TEST_BASELINE,
        clock=clock,
    )


@pytest.fixture
def store(seeded_snapshot):
    return InMemoryCountStore(seeded_snapshot, facility_id="test-facility")


@pytest.fixture
def audit_dir(tmp_path):
    return tmp_path / "audit"


@pytest.fixture
def audit_trail(audit_dir, clock):
    return AuditTrail(audit_dir, clock=clock)


@pytest.fixture
def validator(clock):
    return RuleValidator(clock=clock)


@pytest.fixture
def manager(store, audit_trail, validator, clock):
    return CountLifecycleManager(store, audit_trail, validator=validator, clock=clock)


@pytest.fixture
def actor():
    return ActorContext(
        user_id="counter-1",
        session_id="sess-42",
        ip_address="10.0.0.7",
        user_agent="pytest",
    )


@pytest.fixture
def started_manager(manager):
    """Manager with an IN_PROGRESS count."""
    result = manager.start(VALID_START)
    assert result.success
    return manager
