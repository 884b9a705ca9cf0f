# -*- coding: utf-8 -*-
"""
Calculation Orchestrator

Public entry point of the emissions engine.

Operations:
    - recalculate_all: full recalculation of a project
    - recalculate_activity: incremental recalculation after one activity
      changed, equivalent to a full recalculation over the current data
    - get_latest_result: last persisted result, or None
    - calculate_product_footprint / calculate_organization_footprint

Concurrency:
    Each project owns a ProjectSlot holding its latest result, the cached
    ledger and an in-flight marker. A ``recalculate_all`` that finds an
    identical ``recalculate_all`` running waits for it and returns the same
    result object (or raises the same error). A ``recalculate_activity``
    that finds any recalculation running is rejected with
    RecalculationInProgressError. Different projects only share the short
    registry lock that creates slots.

Example:
    >>> store = InMemoryCalculationStore(load_default_emission_factors())
    >>> orchestrator = CalculationOrchestrator(store)
    >>> result = orchestrator.recalculate_all("proj-1")
    >>> print(result.total_emissions_tco2e, result.hot_spots[0].contributor_id)
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from carbonledger.emissions_engine import metrics
from carbonledger.emissions_engine.aggregation_engine import EmissionLedger
from carbonledger.emissions_engine.config import EmissionsEngineConfig, get_config
from carbonledger.emissions_engine.footprint_calculator import FootprintCalculator
from carbonledger.emissions_engine.models import (
    CalculationOptions,
    CalculationResult,
    OrganizationFootprint,
    OrganizationFootprintRequest,
    ProductFootprint,
    ProductFootprintRequest,
    ProjectMeta,
)
from carbonledger.emissions_engine.pipeline import ActivityEvaluation, CalculationPipeline
from carbonledger.emissions_engine.provenance import project_hash
from carbonledger.emissions_engine.store import CalculationStore
from carbonledger.emissions_engine.unit_converter import UnitConverter
from carbonledger.exceptions import (
    ActivityNotFoundError,
    CalculationFailedError,
    CarbonLedgerException,
    InvalidOptionsError,
    ProjectNotFoundError,
    RecalculationInProgressError,
)

logger = logging.getLogger(__name__)

OptionsLike = Union[CalculationOptions, Mapping[str, Any], None]
RequestT = TypeVar("RequestT", bound=BaseModel)

RECALCULATE_ALL = "recalculate_all"
RECALCULATE_ACTIVITY = "recalculate_activity"


class _InFlight:
    """Marker for a running recalculation that other callers can wait on."""

    def __init__(self, operation: str, options: CalculationOptions):
        self.operation = operation
        self.options = options
        self.waiters = 0
        self.result: Optional[CalculationResult] = None
        self.error: Optional[BaseException] = None
        self._done = threading.Event()

    def finish(self) -> None:
        self._done.set()

    def join(self) -> None:
        self._done.wait()

    def wait(self) -> CalculationResult:
        """Block until finished; return its result or raise its error."""
        self._done.wait()
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise CalculationFailedError("In-flight recalculation was aborted")
        return self.result


class ProjectSlot:
    """Per-project state: latest result, cached ledger, in-flight marker."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        self.lock = threading.Lock()
        self.in_flight: Optional[_InFlight] = None
        self.latest: Optional[CalculationResult] = None
        self.ledger: Optional[EmissionLedger] = None
        self.evaluations: Dict[str, ActivityEvaluation] = {}
        self.cache_key: Optional[Tuple[str, Optional[str]]] = None


def _coerce_options(options: OptionsLike) -> CalculationOptions:
    if isinstance(options, CalculationOptions):
        return options
    return CalculationOptions.from_mapping(options)


def _coerce_request(
    model: Type[RequestT],
    request: Union[RequestT, Mapping[str, Any], None],
) -> RequestT:
    if request is None:
        return model()
    if isinstance(request, model):
        return request
    try:
        return model(**request)
    except ValidationError as e:
        raise InvalidOptionsError(
            f"Invalid {model.__name__}: {e.error_count()} error(s)",
            context={"errors": [err["msg"] for err in e.errors()]},
        ) from e


class CalculationOrchestrator:
    """
    Coordinates loading, calculation, caching and persistence.

    Args:
        store: Data store the engine reads from and writes results to
        config: Engine configuration (singleton from env if None)
        unit_converter: Unit converter (auto-creates if None)
    """

    def __init__(
        self,
        store: CalculationStore,
        config: Optional[EmissionsEngineConfig] = None,
        unit_converter: Optional[UnitConverter] = None,
    ):
        self.store = store
        self.config = config or get_config()
        self.pipeline = CalculationPipeline(store, self.config, unit_converter)
        self.footprints = FootprintCalculator(self.pipeline)
        self._slots: Dict[str, ProjectSlot] = {}
        self._registry_lock = threading.Lock()
        logger.info("CalculationOrchestrator initialized")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def recalculate_all(
        self,
        project_id: str,
        options: OptionsLike = None,
    ) -> CalculationResult:
        """
        Recalculate every activity of a project.

        Args:
            project_id: Project to recalculate
            options: CalculationOptions or a mapping of option values

        Returns:
            The project's latest CalculationResult. When nothing changed
            since the previous run, the stored result object itself.

        Raises:
            InvalidOptionsError: If options contain unknown keys
            ProjectNotFoundError: If the project does not exist
            CalculationFailedError: On store errors or internal faults
        """
        options = _coerce_options(options)
        slot = self._get_slot(project_id)

        while True:
            with slot.lock:
                current = slot.in_flight
                if current is None:
                    in_flight = slot.in_flight = _InFlight(RECALCULATE_ALL, options)
                    break
                reuse = current.operation == RECALCULATE_ALL and current.options == options
                current.waiters += 1
            if reuse:
                logger.info(
                    "Recalculation of project %s already running; waiting for its result",
                    project_id,
                )
                metrics.record_inflight_reuse()
                return current.wait()
            current.join()

        return self._execute(
            slot, in_flight,
            lambda: self._run_full(project_id, options, slot),
        )

    def recalculate_activity(
        self,
        project_id: str,
        activity_id: str,
        options: OptionsLike = None,
    ) -> CalculationResult:
        """
        Recalculate a project after one of its activities changed.

        Cached contributions are reused for activities that are unchanged and
        still resolve to the same emission factor. Everything else is
        re-evaluated and the cached ledger is updated by exact remove/add, so
        the result equals what ``recalculate_all`` would return over the
        same data, including factors added since the last run.

        Raises:
            InvalidOptionsError: If options contain unknown keys
            RecalculationInProgressError: If a recalculation is running
            ProjectNotFoundError: If the project does not exist
            ActivityNotFoundError: If the activity is not in the project
            CalculationFailedError: On store errors or internal faults
        """
        options = _coerce_options(options)
        slot = self._get_slot(project_id)

        with slot.lock:
            if slot.in_flight is not None:
                metrics.record_rejected(RECALCULATE_ACTIVITY)
                raise RecalculationInProgressError(
                    f"A recalculation of project {project_id} is already in progress",
                    project_id=project_id,
                    context={"running_operation": slot.in_flight.operation},
                )
            in_flight = slot.in_flight = _InFlight(RECALCULATE_ACTIVITY, options)

        return self._execute(
            slot, in_flight,
            lambda: self._run_incremental(project_id, activity_id, options, slot),
        )

    def get_latest_result(self, project_id: str) -> Optional[CalculationResult]:
        """Latest result of a project, or None if none was computed yet."""
        with self._registry_lock:
            slot = self._slots.get(project_id)
        if slot is None:
            return None
        with slot.lock:
            return slot.latest

    def calculate_product_footprint(
        self,
        project_id: str,
        request: Union[ProductFootprintRequest, Mapping[str, Any], None] = None,
    ) -> ProductFootprint:
        """Carbon footprint of a product (CFP). See FootprintCalculator."""
        request = _coerce_request(ProductFootprintRequest, request)
        return self._run_footprint(
            "product_footprint", project_id,
            lambda: self.footprints.calculate_product_footprint(project_id, request),
        )

    def calculate_organization_footprint(
        self,
        project_id: str,
        request: Union[OrganizationFootprintRequest, Mapping[str, Any], None] = None,
    ) -> OrganizationFootprint:
        """Carbon footprint of the organization (CFO). See FootprintCalculator."""
        request = _coerce_request(OrganizationFootprintRequest, request)
        return self._run_footprint(
            "organization_footprint", project_id,
            lambda: self.footprints.calculate_organization_footprint(project_id, request),
        )

    def get_slot_stats(self, project_id: str) -> Dict[str, Any]:
        """Snapshot of a project's slot for monitoring."""
        with self._registry_lock:
            slot = self._slots.get(project_id)
        if slot is None:
            return {"in_flight": None, "waiters": 0, "cached_activities": 0, "has_result": False}
        with slot.lock:
            return {
                "in_flight": slot.in_flight.operation if slot.in_flight else None,
                "waiters": slot.in_flight.waiters if slot.in_flight else 0,
                "cached_activities": len(slot.evaluations),
                "has_result": slot.latest is not None,
            }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _get_slot(self, project_id: str) -> ProjectSlot:
        with self._registry_lock:
            slot = self._slots.get(project_id)
            if slot is None:
                slot = self._slots[project_id] = ProjectSlot(project_id)
            return slot

    def _execute(
        self,
        slot: ProjectSlot,
        in_flight: _InFlight,
        run: Callable[[], Tuple[CalculationResult, str]],
    ) -> CalculationResult:
        start = time.perf_counter()
        outcome = "failure"
        try:
            result, outcome = run()
            in_flight.result = result
            return result
        except CarbonLedgerException as e:
            in_flight.error = e
            logger.error(
                "%s of project %s failed: %s", in_flight.operation, slot.project_id, e,
            )
            raise
        except Exception as e:
            failure = CalculationFailedError(
                f"{in_flight.operation} of project {slot.project_id} failed: {e}",
                project_id=slot.project_id,
                cause=e,
            )
            in_flight.error = failure
            logger.error(
                "%s of project %s failed unexpectedly", in_flight.operation,
                slot.project_id, exc_info=True,
            )
            raise failure from e
        finally:
            with slot.lock:
                slot.in_flight = None
            in_flight.finish()
            metrics.record_recalculation(
                in_flight.operation, outcome, time.perf_counter() - start,
            )

    def _run_footprint(self, operation: str, project_id: str, run: Callable[[], Any]) -> Any:
        start = time.perf_counter()
        outcome = "failure"
        try:
            footprint = run()
            outcome = "success"
            return footprint
        except CarbonLedgerException:
            raise
        except Exception as e:
            logger.error("%s of project %s failed unexpectedly", operation, project_id, exc_info=True)
            raise CalculationFailedError(
                f"{operation} of project {project_id} failed: {e}",
                project_id=project_id,
                cause=e,
            ) from e
        finally:
            metrics.record_recalculation(operation, outcome, time.perf_counter() - start)

    def _load_project(self, project_id: str) -> ProjectMeta:
        project = self.store.load_project(project_id)
        if project is None:
            raise ProjectNotFoundError(
                f"Project not found: {project_id}", project_id=project_id,
            )
        return project

    def _run_full(
        self,
        project_id: str,
        options: CalculationOptions,
        slot: ProjectSlot,
    ) -> Tuple[CalculationResult, str]:
        project = self._load_project(project_id)
        activities = self.store.load_activities(project_id)
        evaluations = self.pipeline.evaluate_all(activities, project, options)
        ledger = self.pipeline.build_ledger(evaluations)
        return self._commit(slot, project, options, ledger, evaluations)

    def _run_incremental(
        self,
        project_id: str,
        activity_id: str,
        options: CalculationOptions,
        slot: ProjectSlot,
    ) -> Tuple[CalculationResult, str]:
        project = self._load_project(project_id)
        activities = self.store.load_activities(project_id)
        if not any(a.activity_id == activity_id for a in activities):
            raise ActivityNotFoundError(
                f"Activity {activity_id} not found in project {project_id}",
                project_id=project_id,
                activity_id=activity_id,
            )

        with slot.lock:
            cached_ledger = slot.ledger
            cached = slot.evaluations
            cache_key = slot.cache_key

        if cached_ledger is None or cache_key != (project_hash(project), options.region_override):
            logger.info(
                "No reusable cache for project %s; evaluating all activities", project_id,
            )
            evaluations = self.pipeline.evaluate_all(activities, project, options)
            ledger = self.pipeline.build_ledger(evaluations)
            return self._commit(slot, project, options, ledger, evaluations)

        current = {a.activity_id: a for a in activities}
        ledger = cached_ledger.copy()
        for stale_id in sorted(set(cached) - set(current)):
            if stale_id in ledger:
                ledger.remove(stale_id)

        resolver = self.pipeline.new_resolver()
        evaluations: Dict[str, ActivityEvaluation] = {}
        recomputed = 0
        for aid, activity in current.items():
            previous = cached.get(aid)
            if previous is not None and self.pipeline.is_current(
                previous, activity, project, options, resolver,
            ):
                evaluations[aid] = previous
                continue
            evaluation = self.pipeline.evaluate(activity, project, options, resolver)
            if aid in ledger:
                ledger.remove(aid)
            if evaluation.contribution is not None:
                ledger.add(evaluation.contribution)
            evaluations[aid] = evaluation
            recomputed += 1

        logger.debug(
            "Incremental recalculation of project %s: %d recomputed, %d reused",
            project_id, recomputed, len(evaluations) - recomputed,
        )
        return self._commit(slot, project, options, ledger, evaluations)

    def _commit(
        self,
        slot: ProjectSlot,
        project: ProjectMeta,
        options: CalculationOptions,
        ledger: EmissionLedger,
        evaluations: Dict[str, ActivityEvaluation],
    ) -> Tuple[CalculationResult, str]:
        result = self.pipeline.build_result(project.project_id, ledger, evaluations, options)

        with slot.lock:
            previous = slot.latest

        if previous is not None and previous.provenance_hash == result.provenance_hash:
            result = previous
            outcome = "unchanged"
        else:
            try:
                self.store.save_calculation_result(project.project_id, result)
            except Exception as e:
                raise CalculationFailedError(
                    f"Failed to persist calculation result for project {project.project_id}",
                    project_id=project.project_id,
                    cause=e,
                ) from e
            outcome = "success"

        with slot.lock:
            slot.latest = result
            slot.ledger = ledger
            slot.evaluations = evaluations
            slot.cache_key = (project_hash(project), options.region_override)

        metrics.observe_total_emissions(float(result.total_emissions_tco2e))
        logger.info(
            "Project %s: %s tCO2e from %d activities (%d excluded), quality %s [%s]",
            project.project_id,
            result.total_emissions_tco2e,
            result.activity_count,
            result.excluded_count,
            result.data_quality_score,
            outcome,
        )
        return result, outcome


__all__ = ["CalculationOrchestrator", "ProjectSlot"]
