# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from carbonledger.determinism import DeterministicClock
from carbonledger.emissions_engine.config import (
    EmissionsEngineConfig,
    reset_config,
    set_config,
)
from carbonledger.emissions_engine.models import Activity, EmissionFactor, ProjectMeta
from carbonledger.emissions_engine.orchestrator import CalculationOrchestrator
from carbonledger.emissions_engine.store import InMemoryCalculationStore

PROJECT_ID = "proj-1"
FROZEN_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def engine_config():
    """Fresh default configuration for every test."""
    config = EmissionsEngineConfig()
    set_config(config)
    yield config
    reset_config()


@pytest.fixture
def frozen_clock():
    """Freeze the deterministic clock at 2025-01-01T00:00:00Z."""
    with DeterministicClock.frozen(FROZEN_TIME):
        yield FROZEN_TIME


@pytest.fixture
def project():
    return ProjectMeta(
        project_id=PROJECT_ID,
        name="Test Project",
        baseline_year=2020,
        reporting_year=2024,
    )


@pytest.fixture
def factors():
    """Small factor table with round numbers."""
    return [
        EmissionFactor(activity_type="diesel", year=2024, value="2.5", unit="kg CO2e per liter"),
        EmissionFactor(activity_type="grid_electricity", year=2022, value="0.4", unit="kg CO2e per kwh"),
        EmissionFactor(activity_type="grid_electricity", year=2024, value="0.5", unit="kg CO2e per kwh"),
        EmissionFactor(
            activity_type="grid_electricity", year=2024, region="GB",
            value="0.2", unit="kg CO2e per kwh", source="DEFRA",
        ),
        EmissionFactor(activity_type="road_freight", year=2023, value="0.1", unit="kg CO2e per tonne_km"),
        EmissionFactor(activity_type="steel", year=2020, value="2", unit="t CO2e per tonne"),
    ]


@pytest.fixture
def make_activity():
    """Factory for activities with sensible defaults (a 10 t diesel burn)."""

    def _make(activity_id="a1", **overrides):
        fields = {
            "activity_id": activity_id,
            "project_id": PROJECT_ID,
            "scope": "scope1",
            "activity_type": "diesel",
            "quantity": Decimal("4000"),
            "unit": "liter",
            "year": 2024,
        }
        fields.update(overrides)
        return Activity(**fields)

    return _make


@pytest.fixture
def worked_example(make_activity):
    """Scope 1 = 10 t, scope 2 = 5 t, scope 3 upstream transport = 5 t."""
    return [
        make_activity("a-scope1", tier="tier3"),
        make_activity(
            "a-scope2", scope="scope2", activity_type="grid_electricity",
            quantity="10000", unit="kwh", tier="tier1",
        ),
        make_activity(
            "a-scope3", scope="scope3", scope3_category="upstream_transport",
            activity_type="road_freight", quantity="50000", unit="tonne_km", tier="tier2",
        ),
    ]


@pytest.fixture
def store(factors, project):
    store = InMemoryCalculationStore(factors)
    store.add_project(project)
    return store


@pytest.fixture
def orchestrator(store, engine_config):
    return CalculationOrchestrator(store, config=engine_config)
