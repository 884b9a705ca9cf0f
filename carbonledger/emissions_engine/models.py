# -*- coding: utf-8 -*-
"""
Emissions Engine Data Models

Pydantic v2 data models for the CarbonLedger emissions engine.

Enumerations (6):
    - Scope, Scope3Category, CalculationTier, FallbackLevel,
      HotSpotGranularity, ContributorType

Reference / input models (3):
    - ProjectMeta, Activity, EmissionFactor

Pipeline models (3):
    - NormalizedActivity, FactorResolution, Contribution

Result models (4):
    - HotSpot, CalculationWarning, CalculationResult,
      ProductFootprint / OrganizationFootprint

Request models (3):
    - CalculationOptions, ProductFootprintRequest,
      OrganizationFootprintRequest

All emission quantities are ``Decimal`` tonnes CO2e.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from carbonledger.determinism import to_decimal, utcnow
from carbonledger.exceptions import InvalidOptionsError


# =============================================================================
# Enumerations
# =============================================================================


class Scope(str, Enum):
    """GHG Protocol accounting scope.

    SCOPE1: Direct emissions from owned or controlled sources.
    SCOPE2: Indirect emissions from purchased energy.
    SCOPE3: Other indirect (value-chain) emissions.
    """

    SCOPE1 = "scope1"
    SCOPE2 = "scope2"
    SCOPE3 = "scope3"


class Scope3Category(str, Enum):
    """The fifteen GHG Protocol Scope 3 categories."""

    PURCHASED_GOODS = "purchased_goods"                     # Cat 1
    CAPITAL_GOODS = "capital_goods"                         # Cat 2
    FUEL_ENERGY = "fuel_energy"                             # Cat 3
    UPSTREAM_TRANSPORT = "upstream_transport"               # Cat 4
    WASTE = "waste"                                         # Cat 5
    BUSINESS_TRAVEL = "business_travel"                     # Cat 6
    EMPLOYEE_COMMUTING = "employee_commuting"               # Cat 7
    UPSTREAM_LEASED_ASSETS = "upstream_leased_assets"       # Cat 8
    DOWNSTREAM_TRANSPORT = "downstream_transport"           # Cat 9
    PROCESSING = "processing"                               # Cat 10
    USE_OF_PRODUCTS = "use_of_products"                     # Cat 11
    END_OF_LIFE = "end_of_life"                             # Cat 12
    DOWNSTREAM_LEASED_ASSETS = "downstream_leased_assets"   # Cat 13
    FRANCHISES = "franchises"                               # Cat 14
    INVESTMENTS = "investments"                             # Cat 15


#: Categories 1-8 sit upstream of the reporting company, 9-15 downstream.
UPSTREAM_CATEGORIES: FrozenSet[Scope3Category] = frozenset({
    Scope3Category.PURCHASED_GOODS,
    Scope3Category.CAPITAL_GOODS,
    Scope3Category.FUEL_ENERGY,
    Scope3Category.UPSTREAM_TRANSPORT,
    Scope3Category.WASTE,
    Scope3Category.BUSINESS_TRAVEL,
    Scope3Category.EMPLOYEE_COMMUTING,
    Scope3Category.UPSTREAM_LEASED_ASSETS,
})


class CalculationTier(str, Enum):
    """Confidence level of the calculation method.

    TIER1: Estimated (spend-based or default factors).
    TIER2: Activity data with published factors.
    TIER3: Directly measured.
    """

    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"


class FallbackLevel(str, Enum):
    """How an emission factor was resolved, most to least specific."""

    OVERRIDE = "override"                    # Explicit factor on the activity
    EXACT = "exact"                          # (type, year, region)
    TYPE_YEAR = "type_year"                  # (type, year), global entry
    LATEST_PRIOR_YEAR = "latest_prior_year"  # Most recent year <= requested


class HotSpotGranularity(str, Enum):
    """What a hot-spot contributor is."""

    ACTIVITY = "activity"
    CATEGORY = "category"


class ContributorType(str, Enum):
    """Type of a ranked hot-spot contributor."""

    ACTIVITY = "activity"
    CATEGORY = "category"


# =============================================================================
# Helpers
# =============================================================================


def _decimal_or_none(value: Any) -> Any:
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)) and not isinstance(value, bool):
        return to_decimal(value)
    return value


# =============================================================================
# Reference / Input Models
# =============================================================================


class ProjectMeta(BaseModel):
    """Project metadata read from the external store.

    Attributes:
        project_id: Unique project identifier.
        name: Human-readable project name.
        baseline_year: First calendar year of the reporting span.
        reporting_year: Last calendar year of the reporting span.
        region: Default region used for factor lookup.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(..., description="Unique project identifier")
    name: str = Field(default="", description="Human-readable project name")
    baseline_year: int = Field(..., ge=1000, le=9999)
    reporting_year: int = Field(..., ge=1000, le=9999)
    region: Optional[str] = Field(
        default=None, description="Default region for emission factor lookup",
    )

    @model_validator(mode="after")
    def check_year_span(self) -> "ProjectMeta":
        """Baseline year must not be after the reporting year."""
        if self.baseline_year > self.reporting_year:
            raise ValueError(
                f"baseline_year {self.baseline_year} is after "
                f"reporting_year {self.reporting_year}"
            )
        return self


class Activity(BaseModel):
    """An emitting event recorded by a user.

    The model parses types only. Domain invariants (non-negative quantity,
    scope 3 category, year span, sub-score range) are enforced by the
    ActivityNormalizer so a bad record is excluded with a warning instead
    of failing the whole load.
    """

    model_config = ConfigDict(frozen=True)

    activity_id: str
    project_id: str
    scope: Scope
    scope3_category: Optional[Scope3Category] = None
    activity_type: str
    quantity: Decimal
    unit: str
    emission_factor: Optional[Decimal] = None
    emission_factor_unit: Optional[str] = None
    tier: CalculationTier = CalculationTier.TIER1
    year: int
    facility: Optional[str] = None
    region: Optional[str] = None
    data_quality_score: Optional[Decimal] = None
    name: Optional[str] = None

    @field_validator("quantity", "emission_factor", "data_quality_score", mode="before")
    @classmethod
    def parse_decimal(cls, v: Any) -> Any:
        """Convert numbers through ``str`` to avoid float artefacts."""
        return _decimal_or_none(v)

    @field_validator("tier", mode="before")
    @classmethod
    def parse_tier(cls, v: Any) -> Any:
        """Accept ``1``/``2``/``3`` as shorthand for ``tier1``..``tier3``."""
        if isinstance(v, int) and not isinstance(v, bool):
            return f"tier{v}"
        if isinstance(v, str) and v.strip().isdigit():
            return f"tier{v.strip()}"
        return v


class EmissionFactor(BaseModel):
    """Reference emission factor entry.

    Attributes:
        activity_type: Activity type the factor applies to.
        year: Vintage year of the factor.
        region: Region of the factor; ``None`` for a global entry.
        value: Factor value in ``unit``.
        unit: Factor unit, e.g. ``kg CO2e per kwh`` or ``t CO2e per tonne``.
        source: Publisher of the factor.
    """

    model_config = ConfigDict(frozen=True)

    activity_type: str
    year: int
    region: Optional[str] = None
    value: Decimal = Field(..., ge=0)
    unit: str
    source: str = "default"

    @field_validator("value", mode="before")
    @classmethod
    def parse_value(cls, v: Any) -> Any:
        """Convert numbers through ``str`` to avoid float artefacts."""
        return _decimal_or_none(v)


# =============================================================================
# Pipeline Models
# =============================================================================


class NormalizedActivity(BaseModel):
    """Activity quantity expressed in the engine's base unit."""

    model_config = ConfigDict(frozen=True)

    activity_id: str
    scope: Scope
    scope3_category: Optional[Scope3Category] = None
    quantity: Decimal
    base_unit: str
    dimension: str


class FactorResolution(BaseModel):
    """Resolved emission factor with provenance.

    Attributes:
        value: Factor value as published, in ``unit``.
        unit: Published factor unit.
        kg_co2e_per_base_unit: Factor rescaled to kg CO2e per base unit.
        base_unit: Base unit of the factor's dimension.
        fallback_level: Which resolution rule matched.
        year: Vintage year of the matched factor (None for overrides).
        region: Region of the matched factor.
        source: Publisher of the factor.
    """

    model_config = ConfigDict(frozen=True)

    activity_type: str
    value: Decimal
    unit: str
    kg_co2e_per_base_unit: Decimal
    base_unit: str
    fallback_level: FallbackLevel
    year: Optional[int] = None
    region: Optional[str] = None
    source: str = "default"


class Contribution(BaseModel):
    """One activity's share of a project's emissions."""

    model_config = ConfigDict(frozen=True)

    activity_id: str
    scope: Scope
    scope3_category: Optional[Scope3Category] = None
    year: int
    emissions_tco2e: Decimal
    quality_weight: Decimal
    activity_type: str
    facility: Optional[str] = None
    fallback_level: Optional[FallbackLevel] = None

    @property
    def bucket(self) -> str:
        """Scope/category bucket key, e.g. ``scope1`` or ``scope3:waste``."""
        if self.scope3_category is not None:
            return f"{self.scope.value}:{self.scope3_category.value}"
        return self.scope.value


# =============================================================================
# Result Models
# =============================================================================


class HotSpot(BaseModel):
    """A ranked emission contributor."""

    model_config = ConfigDict(frozen=True)

    contributor_id: str
    contributor_type: ContributorType
    scope: Scope
    scope3_category: Optional[Scope3Category] = None
    activity_type: Optional[str] = None
    emissions_tco2e: Decimal
    percentage_of_total: Decimal


class CalculationWarning(BaseModel):
    """A non-fatal, per-activity issue that excluded the activity."""

    model_config = ConfigDict(frozen=True)

    activity_id: str
    error_type: str
    error_code: str
    message: str


class CalculationResult(BaseModel):
    """Authoritative emissions result for one project.

    Attributes:
        project_id: Project the result belongs to.
        total_emissions_tco2e: Sum over all contributing activities.
        scope1_tco2e: Scope 1 subtotal.
        scope2_tco2e: Scope 2 subtotal.
        scope3_tco2e: Scope 3 subtotal.
        scope3_upstream_tco2e: Scope 3 categories 1-8.
        scope3_downstream_tco2e: Scope 3 categories 9-15.
        scope3_by_category: Category -> tonnes, only contributing categories.
        by_year: Reporting year -> tonnes.
        by_facility: Facility tag -> tonnes (untagged activities omitted).
        by_activity_type: Activity type -> tonnes.
        hot_spots: Top contributors, descending by emissions.
        data_quality_score: Tonnes-weighted quality score (0-100).
        activity_count: Number of contributing activities.
        excluded_count: Number of activities excluded with a warning.
        warnings: Excluded activities, sorted by activity id.
        input_hash: SHA-256 of the activity set, factors and options.
        provenance_hash: SHA-256 of the result content (timestamp excluded).
        calculated_at: When the result was computed.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    total_emissions_tco2e: Decimal = Field(default=Decimal("0"), ge=0)
    scope1_tco2e: Decimal = Decimal("0")
    scope2_tco2e: Decimal = Decimal("0")
    scope3_tco2e: Decimal = Decimal("0")
    scope3_upstream_tco2e: Decimal = Decimal("0")
    scope3_downstream_tco2e: Decimal = Decimal("0")
    scope3_by_category: Dict[Scope3Category, Decimal] = Field(default_factory=dict)
    by_year: Dict[int, Decimal] = Field(default_factory=dict)
    by_facility: Dict[str, Decimal] = Field(default_factory=dict)
    by_activity_type: Dict[str, Decimal] = Field(default_factory=dict)
    hot_spots: List[HotSpot] = Field(default_factory=list)
    data_quality_score: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    activity_count: int = 0
    excluded_count: int = 0
    warnings: List[CalculationWarning] = Field(default_factory=list)
    input_hash: str = ""
    provenance_hash: str = ""
    calculated_at: datetime = Field(default_factory=utcnow)

    def content_dict(self) -> Dict[str, Any]:
        """JSON-ready content without the timestamp and provenance hash."""
        return self.model_dump(mode="json", exclude={"calculated_at", "provenance_hash"})


class ProductFootprint(BaseModel):
    """Carbon Footprint of Product (CFP) by lifecycle stage."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    product_name: str
    functional_unit: str
    production_volume: Decimal
    lifecycle_stages: Dict[str, Decimal]
    total_tco2e: Decimal
    per_unit_tco2e: Decimal
    data_quality_score: Decimal
    activity_count: int
    warnings: List[CalculationWarning] = Field(default_factory=list)
    calculated_at: datetime = Field(default_factory=utcnow)


class OrganizationFootprint(BaseModel):
    """Carbon Footprint of Organization (CFO) by scope."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    organization_name: str
    reporting_year: int
    consolidation_method: str
    scope1_tco2e: Decimal
    scope2_tco2e: Decimal
    scope3_tco2e: Decimal
    scope3_upstream_tco2e: Decimal
    scope3_downstream_tco2e: Decimal
    scope3_by_category: Dict[Scope3Category, Decimal]
    total_tco2e: Decimal
    data_quality_score: Decimal
    activity_count: int
    warnings: List[CalculationWarning] = Field(default_factory=list)
    calculated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Request Models
# =============================================================================


class CalculationOptions(BaseModel):
    """Recognized options of a calculation call.

    Attributes:
        region_override: Region used for factor lookup instead of the
            activity's or project's region.
        hotspot_limit: Maximum number of hot spots; ``None`` uses the
            configured default.
        hotspot_granularity: Rank individual activities or scope/category
            buckets.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    region_override: Optional[str] = None
    hotspot_limit: Optional[int] = Field(default=None, ge=0)
    hotspot_granularity: HotSpotGranularity = HotSpotGranularity.ACTIVITY

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]]) -> "CalculationOptions":
        """Build options from a plain mapping, rejecting unknown keys.

        Raises:
            InvalidOptionsError: If a key is unrecognized or a value invalid.
        """
        if options is None:
            return cls()
        unknown = sorted(set(options) - set(cls.model_fields))
        if unknown:
            raise InvalidOptionsError(
                f"Unrecognized calculation options: {', '.join(unknown)}",
                invalid_keys=unknown,
            )
        try:
            return cls(**options)
        except ValidationError as e:
            raise InvalidOptionsError(
                f"Invalid calculation options: {e.error_count()} error(s)",
                context={"errors": [err["msg"] for err in e.errors()]},
            ) from e


class ProductFootprintRequest(BaseModel):
    """Parameters of a CFP calculation."""

    model_config = ConfigDict(extra="forbid")

    product_name: str = "Product"
    functional_unit: str = "unit"
    production_volume: Decimal = Field(default=Decimal("1"), ge=0)
    facilities: Optional[List[str]] = None
    options: CalculationOptions = Field(default_factory=CalculationOptions)


class OrganizationFootprintRequest(BaseModel):
    """Parameters of a CFO calculation."""

    model_config = ConfigDict(extra="forbid")

    organization_name: str = "Organization"
    reporting_year: Optional[int] = None
    consolidation_method: str = "operational_control"
    facilities: Optional[List[str]] = None
    options: CalculationOptions = Field(default_factory=CalculationOptions)


__all__ = [
    "Scope",
    "Scope3Category",
    "UPSTREAM_CATEGORIES",
    "CalculationTier",
    "FallbackLevel",
    "HotSpotGranularity",
    "ContributorType",
    "ProjectMeta",
    "Activity",
    "EmissionFactor",
    "NormalizedActivity",
    "FactorResolution",
    "Contribution",
    "HotSpot",
    "CalculationWarning",
    "CalculationResult",
    "ProductFootprint",
    "OrganizationFootprint",
    "CalculationOptions",
    "ProductFootprintRequest",
    "OrganizationFootprintRequest",
]
