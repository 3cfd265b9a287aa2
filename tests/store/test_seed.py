"""Seeding a new facility."""

from decimal import Decimal

from count_kernel.domain.workflow import CountStatus
from count_kernel.store.seed import DEFAULT_BASELINE, seed_facility


class TestSeedFacility:
    """Initial documents."""

    def test_defaults(self, clock):
        snapshot = seed_facility(clock=clock)

        facility = snapshot.facility
        assert facility.current_count.count_id == "COUNT-002"
        assert facility.current_count.status == CountStatus.READY
        assert len(facility.locations) == 10
        assert not any(loc.counted for loc in facility.locations)
        assert facility.first_count == DEFAULT_BASELINE
        assert facility.created_at == clock.now_utc()

    def test_baseline_is_first_history_record(self, clock):
        history = seed_facility(clock=clock).history

        assert history.total_counts_performed == 1
        assert history.latest.count_id == "COUNT-001"
        assert history.latest.items_counted == 640
        assert history.latest.total_value == Decimal("208435.97")
        assert history.next_count.count_id == "COUNT-002"

    def test_without_baseline(self, clock):
        snapshot = seed_facility(baseline=None, clock=clock)
        assert snapshot.facility.current_count.count_id == "COUNT-001"
        assert snapshot.history.records == ()
