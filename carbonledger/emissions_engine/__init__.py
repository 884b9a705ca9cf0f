"""
CarbonLedger Emissions Calculation and Aggregation Engine

Deterministic, reproducible greenhouse gas calculations for a project's
recorded activities across Scopes 1, 2 and 3.

Key Guarantees:
- DETERMINISTIC: Same activity set -> identical result and provenance hash
- ORDER-INDEPENDENT: Exact Decimal aggregation, any contribution order
- ISOLATED FAILURES: A bad activity is excluded with a warning, never
  aborting the run
- FULL PROVENANCE: SHA-256 hashes of inputs and results

Components:
- UnitConverter: Deterministic unit conversions to base units
- ActivityNormalizer: Activity validation and base-unit normalization
- EmissionFactorResolver: Factor lookup with year/region fallback
- EmissionLedger: Incremental aggregation and hot-spot ranking
- DataQualityScorer: Emissions-weighted data quality score
- FootprintCalculator: Product (CFP) and organization (CFO) footprints
- CalculationOrchestrator: Public entry point with per-project slots
"""

from carbonledger.emissions_engine.activity_normalizer import ActivityNormalizer
from carbonledger.emissions_engine.aggregation_engine import EmissionLedger
from carbonledger.emissions_engine.config import (
    EmissionsEngineConfig,
    get_config,
    reset_config,
    set_config,
)
from carbonledger.emissions_engine.factor_resolver import EmissionFactorResolver
from carbonledger.emissions_engine.footprint_calculator import (
    LIFECYCLE_STAGES,
    FootprintCalculator,
)
from carbonledger.emissions_engine.models import (
    Activity,
    CalculationOptions,
    CalculationResult,
    CalculationTier,
    CalculationWarning,
    Contribution,
    EmissionFactor,
    FactorResolution,
    FallbackLevel,
    HotSpot,
    HotSpotGranularity,
    OrganizationFootprint,
    OrganizationFootprintRequest,
    ProductFootprint,
    ProductFootprintRequest,
    ProjectMeta,
    Scope,
    Scope3Category,
)
from carbonledger.emissions_engine.orchestrator import CalculationOrchestrator
from carbonledger.emissions_engine.pipeline import CalculationPipeline
from carbonledger.emissions_engine.quality_scorer import DataQualityScorer
from carbonledger.emissions_engine.store import (
    CalculationStore,
    InMemoryCalculationStore,
    load_default_emission_factors,
)
from carbonledger.emissions_engine.unit_converter import UnitConverter

__all__ = [
    # Orchestration
    "CalculationOrchestrator",
    "CalculationPipeline",
    "FootprintCalculator",
    "LIFECYCLE_STAGES",
    # Components
    "ActivityNormalizer",
    "EmissionFactorResolver",
    "EmissionLedger",
    "DataQualityScorer",
    "UnitConverter",
    # Store
    "CalculationStore",
    "InMemoryCalculationStore",
    "load_default_emission_factors",
    # Config
    "EmissionsEngineConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Models
    "Activity",
    "CalculationOptions",
    "CalculationResult",
    "CalculationTier",
    "CalculationWarning",
    "Contribution",
    "EmissionFactor",
    "FactorResolution",
    "FallbackLevel",
    "HotSpot",
    "HotSpotGranularity",
    "OrganizationFootprint",
    "OrganizationFootprintRequest",
    "ProductFootprint",
    "ProductFootprintRequest",
    "ProjectMeta",
    "Scope",
    "Scope3Category",
]
