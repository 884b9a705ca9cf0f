# -*- coding: utf-8 -*-
"""
Calculation Store Interfaces

The engine reads projects, activities and emission factors from an external
store and writes the latest CalculationResult back. ``CalculationStore`` is
the contract; ``InMemoryCalculationStore`` implements it for tests, the CLI
and embedded use.

Example:
    >>> store = InMemoryCalculationStore(load_default_emission_factors())
    >>> store.add_project(ProjectMeta(project_id="p1", baseline_year=2020, reporting_year=2024))
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml

from carbonledger.emissions_engine.models import (
    Activity,
    CalculationResult,
    EmissionFactor,
    ProjectMeta,
)

logger = logging.getLogger(__name__)

DEFAULT_FACTORS_PATH = Path(__file__).parent.parent / "data" / "default_emission_factors.yaml"


class CalculationStore(ABC):
    """Persistence collaborator consumed by the emissions engine."""

    @abstractmethod
    def load_project(self, project_id: str) -> Optional[ProjectMeta]:
        """Return project metadata, or None if the project does not exist."""

    @abstractmethod
    def load_activities(self, project_id: str) -> List[Activity]:
        """Return every activity recorded for the project."""

    @abstractmethod
    def load_emission_factors(
        self,
        activity_type: str,
        year: int,
        region: Optional[str] = None,
    ) -> List[EmissionFactor]:
        """Return candidate factors for an activity type.

        The candidate set covers every region and every year not after
        ``year``; the resolver applies the fallback ordering.
        """

    @abstractmethod
    def save_calculation_result(self, project_id: str, result: CalculationResult) -> None:
        """Persist the latest result of a project.

        Raises:
            Exception: Any store error; the engine reports it as a failed run.
        """


def load_default_emission_factors(path: Optional[Union[str, Path]] = None) -> List[EmissionFactor]:
    """
    Load emission factors from a YAML factor table.

    Args:
        path: YAML file with a top-level ``factors`` list (defaults to the
            packaged table)

    Returns:
        List of EmissionFactor entries

    Raises:
        FileNotFoundError: If the file does not exist
        yaml.YAMLError: If the file is not valid YAML
    """
    factor_path = Path(path) if path else DEFAULT_FACTORS_PATH
    with open(factor_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    factors = [EmissionFactor(**entry) for entry in data.get('factors', [])]
    logger.info("Loaded %d emission factors from %s", len(factors), factor_path)
    return factors


def _type_key(activity_type: str) -> str:
    return activity_type.strip().lower()


class InMemoryCalculationStore(CalculationStore):
    """
    Thread-safe in-memory store.

    Keeps projects, activities (in insertion order), emission factors and
    saved results in dictionaries guarded by a single lock.
    """

    def __init__(self, emission_factors: Optional[Iterable[EmissionFactor]] = None):
        self._lock = threading.Lock()
        self._projects: Dict[str, ProjectMeta] = {}
        self._activities: Dict[str, Dict[str, Activity]] = {}
        self._factors: Dict[str, List[EmissionFactor]] = {}
        self._results: Dict[str, CalculationResult] = {}
        self.save_count = 0
        if emission_factors:
            self.add_emission_factors(emission_factors)

    # ------------------------------------------------------------------
    # Mutation helpers used by callers and tests
    # ------------------------------------------------------------------

    def add_project(self, project: ProjectMeta) -> None:
        with self._lock:
            self._projects[project.project_id] = project
            self._activities.setdefault(project.project_id, {})

    def upsert_activity(self, activity: Activity) -> None:
        """Insert or replace an activity of an existing project."""
        with self._lock:
            if activity.project_id not in self._projects:
                raise KeyError(f"Unknown project: {activity.project_id}")
            self._activities[activity.project_id][activity.activity_id] = activity

    def remove_activity(self, project_id: str, activity_id: str) -> None:
        with self._lock:
            self._activities.get(project_id, {}).pop(activity_id, None)

    def add_emission_factors(self, factors: Iterable[EmissionFactor]) -> None:
        with self._lock:
            for factor in factors:
                self._factors.setdefault(_type_key(factor.activity_type), []).append(factor)

    def list_emission_factors(self) -> List[EmissionFactor]:
        with self._lock:
            return [f for key in sorted(self._factors) for f in self._factors[key]]

    def get_saved_result(self, project_id: str) -> Optional[CalculationResult]:
        with self._lock:
            return self._results.get(project_id)

    # ------------------------------------------------------------------
    # CalculationStore
    # ------------------------------------------------------------------

    def load_project(self, project_id: str) -> Optional[ProjectMeta]:
        with self._lock:
            return self._projects.get(project_id)

    def load_activities(self, project_id: str) -> List[Activity]:
        with self._lock:
            return list(self._activities.get(project_id, {}).values())

    def load_emission_factors(
        self,
        activity_type: str,
        year: int,
        region: Optional[str] = None,
    ) -> List[EmissionFactor]:
        with self._lock:
            candidates = self._factors.get(_type_key(activity_type), [])
            return [f for f in candidates if f.year <= year]

    def save_calculation_result(self, project_id: str, result: CalculationResult) -> None:
        with self._lock:
            self._results[project_id] = result
            self.save_count += 1
