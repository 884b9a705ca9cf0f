"""Tests for the calculation orchestrator.

Covers:
- Worked examples (totals, hot spots, exclusions, empty projects)
- Idempotency and persistence
- Incremental recalculation equivalence
- Per-project concurrency (in-flight reuse, rejection, isolation)
- Structural errors
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from carbonledger.emissions_engine.models import (
    CalculationOptions,
    EmissionFactor,
    FallbackLevel,
    ProjectMeta,
    Scope3Category,
)
from carbonledger.emissions_engine.orchestrator import CalculationOrchestrator
from carbonledger.emissions_engine.store import InMemoryCalculationStore
from carbonledger.exceptions import (
    ActivityNotFoundError,
    CalculationFailedError,
    InvalidOptionsError,
    ProjectNotFoundError,
    RecalculationInProgressError,
)

from conftest import PROJECT_ID


class FlakyStore(InMemoryCalculationStore):
    """Store whose reads or writes can be made to fail."""

    def __init__(self, factors):
        super().__init__(factors)
        self.fail_save = None
        self.fail_load = None

    def load_activities(self, project_id):
        if self.fail_load is not None:
            raise self.fail_load
        return super().load_activities(project_id)

    def save_calculation_result(self, project_id, result):
        if self.fail_save is not None:
            raise self.fail_save
        super().save_calculation_result(project_id, result)


class BlockingStore(InMemoryCalculationStore):
    """Store that holds activity loads of one project until released."""

    def __init__(self, factors, blocked_project):
        super().__init__(factors)
        self.blocked_project = blocked_project
        self.entered = threading.Event()
        self.release = threading.Event()
        self.blocked_loads = 0
        self.fail_with = None

    def load_activities(self, project_id):
        if project_id == self.blocked_project:
            self.blocked_loads += 1
            self.entered.set()
            self.release.wait(timeout=10)
            if self.fail_with is not None:
                raise self.fail_with
        return super().load_activities(project_id)


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def _seed(store, project, activities):
    store.add_project(project)
    for activity in activities:
        store.upsert_activity(activity)


# ==============================================================================
# Worked examples
# ==============================================================================

class TestRecalculateAll:

    def test_worked_example(self, store, orchestrator, worked_example, frozen_clock):
        _seed(store, store.load_project(PROJECT_ID), worked_example)

        result = orchestrator.recalculate_all(PROJECT_ID)

        assert result.project_id == PROJECT_ID
        assert result.total_emissions_tco2e == Decimal("20")
        assert result.scope1_tco2e == Decimal("10")
        assert result.scope2_tco2e == Decimal("5")
        assert result.scope3_tco2e == Decimal("5")
        assert result.scope3_by_category == {Scope3Category.UPSTREAM_TRANSPORT: Decimal("5")}
        assert result.scope3_upstream_tco2e == Decimal("5")
        assert result.by_year == {2024: Decimal("20")}
        assert result.activity_count == 3
        assert result.excluded_count == 0
        assert result.warnings == []
        assert result.calculated_at == frozen_clock

        top = result.hot_spots[0]
        assert top.contributor_id == "a-scope1"
        assert top.percentage_of_total == Decimal("50")

    def test_business_travel_breakdown(self, store, orchestrator, worked_example, make_activity):
        _seed(store, store.load_project(PROJECT_ID), worked_example[:2] + [
            make_activity(
                "a-travel", scope="scope3", scope3_category="business_travel",
                activity_type="flights", quantity="5", unit="unit",
                emission_factor="1", emission_factor_unit="t CO2e per unit",
            ),
        ])

        result = orchestrator.recalculate_all(PROJECT_ID)

        assert result.total_emissions_tco2e == Decimal("20")
        assert result.scope3_by_category == {Scope3Category.BUSINESS_TRAVEL: Decimal("5")}
        assert sum(s.percentage_of_total for s in result.hot_spots) <= 100

    def test_quality_score_weighted_by_emissions(self, store, orchestrator, worked_example):
        _seed(store, store.load_project(PROJECT_ID), worked_example)

        result = orchestrator.recalculate_all(PROJECT_ID)

        # (10 x 100 + 5 x 40 + 5 x 70) / 20
        assert str(result.data_quality_score) == "77.50"

    def test_unresolvable_factor_is_excluded(self, store, orchestrator, worked_example, make_activity):
        _seed(store, store.load_project(PROJECT_ID), worked_example + [
            make_activity("a-unknown", activity_type="unobtainium"),
        ])

        result = orchestrator.recalculate_all(PROJECT_ID)

        assert result.total_emissions_tco2e == Decimal("20")
        assert result.activity_count == 3
        assert result.excluded_count == 1
        assert result.warnings[0].activity_id == "a-unknown"
        assert result.warnings[0].error_type == "FactorNotFoundError"
        assert result.warnings[0].error_code == "CL_ACTIVITY_FACTOR_NOT_FOUND_ERROR"
        assert "a-unknown" not in [s.contributor_id for s in result.hot_spots]

    def test_invalid_and_unconvertible_activities_are_excluded(
        self, store, orchestrator, make_activity,
    ):
        _seed(store, store.load_project(PROJECT_ID), [
            make_activity("a-ok"),
            make_activity("b-no-category", scope="scope3"),
            make_activity("c-bad-unit", unit="hogshead"),
        ])

        result = orchestrator.recalculate_all(PROJECT_ID)

        assert [(w.activity_id, w.error_type) for w in result.warnings] == [
            ("b-no-category", "InvalidActivityError"),
            ("c-bad-unit", "UnitConversionError"),
        ]
        assert result.total_emissions_tco2e == Decimal("10")

    def test_zero_activities(self, orchestrator):
        result = orchestrator.recalculate_all(PROJECT_ID)

        assert result.total_emissions_tco2e == Decimal("0")
        assert result.scope1_tco2e == result.scope2_tco2e == result.scope3_tco2e == Decimal("0")
        assert result.data_quality_score == Decimal("0")
        assert result.hot_spots == []
        assert result.scope3_by_category == {}
        assert result.activity_count == 0

    def test_options_mapping(self, store, orchestrator, worked_example):
        _seed(store, store.load_project(PROJECT_ID), worked_example)

        result = orchestrator.recalculate_all(
            PROJECT_ID, {"hotspot_limit": 1, "hotspot_granularity": "category"},
        )

        assert len(result.hot_spots) == 1
        assert result.hot_spots[0].contributor_id == "scope1"

    def test_unknown_option_rejected(self, orchestrator):
        with pytest.raises(InvalidOptionsError) as exc_info:
            orchestrator.recalculate_all(PROJECT_ID, {"include_offsets": True})
        assert exc_info.value.context["invalid_keys"] == ["include_offsets"]

    def test_region_override(self, store, orchestrator, make_activity):
        _seed(store, store.load_project(PROJECT_ID), [
            make_activity(
                "grid", scope="scope2", activity_type="grid_electricity",
                quantity="10000", unit="kwh",
            ),
        ])

        default = orchestrator.recalculate_all(PROJECT_ID)
        overridden = orchestrator.recalculate_all(
            PROJECT_ID, CalculationOptions(region_override="GB"),
        )

        assert default.total_emissions_tco2e == Decimal("5")
        assert overridden.total_emissions_tco2e == Decimal("2")

    def test_project_region_used_for_lookup(self, factors, make_activity):
        store = InMemoryCalculationStore(factors)
        _seed(store, ProjectMeta(
            project_id=PROJECT_ID, baseline_year=2020, reporting_year=2024, region="GB",
        ), [
            make_activity(
                "grid", scope="scope2", activity_type="grid_electricity",
                quantity="10000", unit="kwh",
            ),
        ])

        result = CalculationOrchestrator(store).recalculate_all(PROJECT_ID)

        assert result.total_emissions_tco2e == Decimal("2")

    def test_factor_override_on_activity(self, store, orchestrator, make_activity):
        _seed(store, store.load_project(PROJECT_ID), [
            make_activity(emission_factor="1", emission_factor_unit="t CO2e per liter", quantity="3"),
        ])

        assert orchestrator.recalculate_all(PROJECT_ID).total_emissions_tco2e == Decimal("3")

    def test_project_not_found(self, orchestrator):
        with pytest.raises(ProjectNotFoundError) as exc_info:
            orchestrator.recalculate_all("missing")
        assert exc_info.value.project_id == "missing"
        assert orchestrator.get_latest_result("missing") is None


# ==============================================================================
# Persistence and idempotency
# ==============================================================================

class TestPersistence:

    def test_latest_result_none_before_first_run(self, orchestrator):
        assert orchestrator.get_latest_result(PROJECT_ID) is None

    def test_result_saved_and_retrievable(self, store, orchestrator, worked_example):
        _seed(store, store.load_project(PROJECT_ID), worked_example)

        result = orchestrator.recalculate_all(PROJECT_ID)

        assert orchestrator.get_latest_result(PROJECT_ID) is result
        assert store.get_saved_result(PROJECT_ID) is result
        assert store.save_count == 1

    def test_unchanged_data_returns_stored_result(self, store, orchestrator, worked_example):
        _seed(store, store.load_project(PROJECT_ID), worked_example)

        first = orchestrator.recalculate_all(PROJECT_ID)
        second = orchestrator.recalculate_all(PROJECT_ID)

        assert second is first
        assert store.save_count == 1

    def test_changed_data_produces_new_result(self, store, orchestrator, worked_example, make_activity):
        _seed(store, store.load_project(PROJECT_ID), worked_example)
        first = orchestrator.recalculate_all(PROJECT_ID)

        store.upsert_activity(make_activity("a-scope1", quantity="8000", tier="tier3"))
        second = orchestrator.recalculate_all(PROJECT_ID)

        assert second is not first
        assert second.total_emissions_tco2e == Decimal("30")
        assert second.provenance_hash != first.provenance_hash
        assert store.save_count == 2

    def test_result_is_pure_function_of_inputs(self, factors, project, worked_example, frozen_clock):
        results = []
        for activities in (worked_example, list(reversed(worked_example))):
            store = InMemoryCalculationStore(factors)
            _seed(store, project, activities)
            results.append(CalculationOrchestrator(store).recalculate_all(PROJECT_ID))

        assert results[0] == results[1]
        assert results[0].provenance_hash == results[1].provenance_hash
        assert results[0].input_hash == results[1].input_hash

    def test_save_failure_keeps_previous_result(self, factors, project, worked_example, make_activity):
        store = FlakyStore(factors)
        _seed(store, project, worked_example)
        orchestrator = CalculationOrchestrator(store)
        first = orchestrator.recalculate_all(PROJECT_ID)

        store.upsert_activity(make_activity("a-new"))
        store.fail_save = IOError("disk full")
        with pytest.raises(CalculationFailedError) as exc_info:
            orchestrator.recalculate_all(PROJECT_ID)

        assert isinstance(exc_info.value.cause, IOError)
        assert exc_info.value.context["cause_type"] == "OSError"
        assert orchestrator.get_latest_result(PROJECT_ID) is first
        assert store.get_saved_result(PROJECT_ID) is first

    def test_store_read_failure_is_wrapped(self, factors, project):
        store = FlakyStore(factors)
        store.add_project(project)
        store.fail_load = ConnectionError("database unavailable")

        with pytest.raises(CalculationFailedError) as exc_info:
            CalculationOrchestrator(store).recalculate_all(PROJECT_ID)

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert exc_info.value.project_id == PROJECT_ID


# ==============================================================================
# Incremental recalculation
# ==============================================================================

class TestRecalculateActivity:

    def _full(self, store):
        return CalculationOrchestrator(store).recalculate_all(PROJECT_ID)

    def test_equivalent_to_full_recalculation(self, store, orchestrator, worked_example, make_activity):
        _seed(store, store.load_project(PROJECT_ID), worked_example)
        orchestrator.recalculate_all(PROJECT_ID)

        store.upsert_activity(make_activity(
            "a-scope2", scope="scope2", activity_type="grid_electricity",
            quantity="12345.678", unit="kwh", tier="tier2",
        ))
        incremental = orchestrator.recalculate_activity(PROJECT_ID, "a-scope2")
        full = self._full(store)

        assert incremental.content_dict() == full.content_dict()
        assert incremental.provenance_hash == full.provenance_hash

    def test_tracks_other_changes_since_last_run(self, store, orchestrator, worked_example, make_activity):
        _seed(store, store.load_project(PROJECT_ID), worked_example)
        orchestrator.recalculate_all(PROJECT_ID)

        store.remove_activity(PROJECT_ID, "a-scope3")
        store.upsert_activity(make_activity("a-added", quantity="400", facility="plant-a"))
        store.upsert_activity(make_activity("a-bad", unit="hogshead"))
        incremental = orchestrator.recalculate_activity(PROJECT_ID, "a-added")
        full = self._full(store)

        assert incremental.content_dict() == full.content_dict()
        assert incremental.total_emissions_tco2e == Decimal("16")
        assert incremental.scope3_by_category == {}
        assert incremental.excluded_count == 1

    def test_activity_becoming_invalid(self, store, orchestrator, worked_example, make_activity):
        _seed(store, store.load_project(PROJECT_ID), worked_example)
        orchestrator.recalculate_all(PROJECT_ID)

        store.upsert_activity(make_activity("a-scope1", year=2019))
        result = orchestrator.recalculate_activity(PROJECT_ID, "a-scope1")

        assert result.total_emissions_tco2e == Decimal("10")
        assert result.warnings[0].activity_id == "a-scope1"
        assert result.content_dict() == self._full(store).content_dict()

    def test_without_cache_runs_full(self, store, orchestrator, worked_example):
        _seed(store, store.load_project(PROJECT_ID), worked_example)

        result = orchestrator.recalculate_activity(PROJECT_ID, "a-scope1")

        assert result.total_emissions_tco2e == Decimal("20")
        assert orchestrator.get_slot_stats(PROJECT_ID)["cached_activities"] == 3

    def test_cache_not_reused_across_region_override(self, store, orchestrator, make_activity):
        _seed(store, store.load_project(PROJECT_ID), [
            make_activity(
                "grid", scope="scope2", activity_type="grid_electricity",
                quantity="10000", unit="kwh",
            ),
            make_activity("fuel"),
        ])
        orchestrator.recalculate_all(PROJECT_ID)

        result = orchestrator.recalculate_activity(
            PROJECT_ID, "fuel", {"region_override": "GB"},
        )

        assert result.total_emissions_tco2e == Decimal("12")

    def test_unchanged_activity_returns_stored_result(self, store, orchestrator, worked_example):
        _seed(store, store.load_project(PROJECT_ID), worked_example)
        first = orchestrator.recalculate_all(PROJECT_ID)

        assert orchestrator.recalculate_activity(PROJECT_ID, "a-scope1") is first
        assert store.save_count == 1

    def test_fallback_level_recorded(self, store, orchestrator, make_activity):
        _seed(store, store.load_project(PROJECT_ID), [
            make_activity("steel", activity_type="steel", quantity="1", unit="tonne"),
        ])
        orchestrator.recalculate_all(PROJECT_ID)

        slot_ledger = orchestrator._slots[PROJECT_ID].ledger
        assert slot_ledger.get("steel").fallback_level == FallbackLevel.LATEST_PRIOR_YEAR

    def test_factor_added_between_runs(self, store, orchestrator, make_activity):
        _seed(store, store.load_project(PROJECT_ID), [
            make_activity("a1"),
            make_activity("s1", activity_type="steel", quantity="10", unit="tonne"),
        ])
        first = orchestrator.recalculate_all(PROJECT_ID)
        assert first.total_emissions_tco2e == Decimal("30")

        store.add_emission_factors([
            EmissionFactor(activity_type="steel", year=2024, value="3", unit="t CO2e per tonne"),
        ])
        store.upsert_activity(make_activity("a1", quantity="8000"))
        incremental = orchestrator.recalculate_activity(PROJECT_ID, "a1")
        full = self._full(store)

        assert incremental.total_emissions_tco2e == Decimal("50")
        assert incremental.content_dict() == full.content_dict()
        assert incremental.provenance_hash == full.provenance_hash
        slot_ledger = orchestrator._slots[PROJECT_ID].ledger
        assert slot_ledger.get("s1").fallback_level == FallbackLevel.TYPE_YEAR

    def test_factor_added_for_excluded_activity(self, store, orchestrator, make_activity):
        _seed(store, store.load_project(PROJECT_ID), [
            make_activity("a1"),
            make_activity("b1", activity_type="biochar", quantity="500", unit="kg"),
        ])
        first = orchestrator.recalculate_all(PROJECT_ID)
        assert first.excluded_count == 1

        store.add_emission_factors([
            EmissionFactor(activity_type="biochar", year=2024, value="2", unit="kg CO2e per kg"),
        ])
        result = orchestrator.recalculate_activity(PROJECT_ID, "a1")

        assert result.excluded_count == 0
        assert result.total_emissions_tco2e == Decimal("11")
        assert result.content_dict() == self._full(store).content_dict()

    def test_activity_not_found(self, store, orchestrator, worked_example):
        _seed(store, store.load_project(PROJECT_ID), worked_example)

        with pytest.raises(ActivityNotFoundError) as exc_info:
            orchestrator.recalculate_activity(PROJECT_ID, "missing")
        assert exc_info.value.activity_id == "missing"

    def test_project_not_found(self, orchestrator):
        with pytest.raises(ProjectNotFoundError):
            orchestrator.recalculate_activity("missing", "a1")


# ==============================================================================
# Concurrency
# ==============================================================================

class TestConcurrency:

    @pytest.fixture
    def blocking_store(self, factors, project, worked_example):
        store = BlockingStore(factors, PROJECT_ID)
        _seed(store, project, worked_example)
        return store

    def test_concurrent_recalculate_all_shares_one_computation(self, blocking_store):
        orchestrator = CalculationOrchestrator(blocking_store)

        with ThreadPoolExecutor(max_workers=2) as executor:
            first = executor.submit(orchestrator.recalculate_all, PROJECT_ID)
            assert blocking_store.entered.wait(5)
            second = executor.submit(orchestrator.recalculate_all, PROJECT_ID)
            assert _wait_until(lambda: orchestrator.get_slot_stats(PROJECT_ID)["waiters"] == 1)
            blocking_store.release.set()

            result_a = first.result(timeout=10)
            result_b = second.result(timeout=10)

        assert result_a is result_b
        assert blocking_store.blocked_loads == 1
        assert blocking_store.save_count == 1

    def test_waiters_receive_in_flight_error(self, blocking_store):
        orchestrator = CalculationOrchestrator(blocking_store)
        blocking_store.fail_with = ConnectionError("connection reset")

        with ThreadPoolExecutor(max_workers=2) as executor:
            first = executor.submit(orchestrator.recalculate_all, PROJECT_ID)
            assert blocking_store.entered.wait(5)
            second = executor.submit(orchestrator.recalculate_all, PROJECT_ID)
            assert _wait_until(lambda: orchestrator.get_slot_stats(PROJECT_ID)["waiters"] == 1)
            blocking_store.release.set()

            error_a = first.exception(timeout=10)
            error_b = second.exception(timeout=10)

        assert isinstance(error_a, CalculationFailedError)
        assert error_b is error_a
        assert blocking_store.blocked_loads == 1

    def test_recalculate_activity_rejected_while_running(self, blocking_store):
        orchestrator = CalculationOrchestrator(blocking_store)

        with ThreadPoolExecutor(max_workers=1) as executor:
            running = executor.submit(orchestrator.recalculate_all, PROJECT_ID)
            assert blocking_store.entered.wait(5)

            with pytest.raises(RecalculationInProgressError) as exc_info:
                orchestrator.recalculate_activity(PROJECT_ID, "a-scope1")
            assert exc_info.value.context["running_operation"] == "recalculate_all"

            blocking_store.release.set()
            result = running.result(timeout=10)

        assert result.total_emissions_tco2e == Decimal("20")
        assert orchestrator.get_slot_stats(PROJECT_ID)["in_flight"] is None
        assert orchestrator.recalculate_activity(PROJECT_ID, "a-scope1") is result

    def test_recalculate_all_with_other_options_waits_then_runs(self, blocking_store):
        orchestrator = CalculationOrchestrator(blocking_store)

        with ThreadPoolExecutor(max_workers=2) as executor:
            first = executor.submit(orchestrator.recalculate_all, PROJECT_ID)
            assert blocking_store.entered.wait(5)
            second = executor.submit(orchestrator.recalculate_all, PROJECT_ID, {"hotspot_limit": 1})
            assert _wait_until(lambda: orchestrator.get_slot_stats(PROJECT_ID)["waiters"] == 1)
            blocking_store.release.set()

            result_a = first.result(timeout=10)
            result_b = second.result(timeout=10)

        assert len(result_a.hot_spots) == 3
        assert len(result_b.hot_spots) == 1
        assert blocking_store.blocked_loads == 2

    def test_other_projects_are_not_blocked(self, blocking_store, make_activity):
        other = ProjectMeta(project_id="proj-2", baseline_year=2020, reporting_year=2024)
        blocking_store.add_project(other)
        blocking_store.upsert_activity(make_activity("b1", project_id="proj-2"))
        orchestrator = CalculationOrchestrator(blocking_store)

        with ThreadPoolExecutor(max_workers=1) as executor:
            running = executor.submit(orchestrator.recalculate_all, PROJECT_ID)
            assert blocking_store.entered.wait(5)

            other_result = orchestrator.recalculate_all("proj-2")
            assert other_result.total_emissions_tco2e == Decimal("10")
            assert orchestrator.get_latest_result(PROJECT_ID) is None

            blocking_store.release.set()
            running.result(timeout=10)

        assert orchestrator.get_latest_result(PROJECT_ID) is not None
