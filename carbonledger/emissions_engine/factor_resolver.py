# -*- coding: utf-8 -*-
"""
Emission Factor Resolver

Maps an activity's type, year, region and unit dimension to a single
emission factor, expressed in kg CO2e per base unit of the dimension.

Fallback hierarchy:
1. Override: the activity carries its own factor
2. Exact: (activity_type, year, region)
3. Type + year: (activity_type, year) global entry
4. Latest prior year: most recent year before the requested one, region
   match preferred over global within that year

Entries of a different region are never used. Only candidates whose unit
shares the activity's dimension are considered.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from carbonledger.determinism import engine_decimal_context
from carbonledger.emissions_engine.models import (
    Activity,
    EmissionFactor,
    FactorResolution,
    FallbackLevel,
)
from carbonledger.emissions_engine.store import CalculationStore
from carbonledger.emissions_engine.unit_converter import UnitConverter
from carbonledger.exceptions import FactorNotFoundError, UnitConversionError

logger = logging.getLogger(__name__)


def _region_key(region: Optional[str]) -> Optional[str]:
    if region is None:
        return None
    region = region.strip().upper()
    return region or None


def _candidate_sort_key(factor: EmissionFactor) -> Tuple[str, str, str]:
    return (factor.unit, str(factor.value), factor.source)


class EmissionFactorResolver:
    """
    Emission factor resolution with fallback logic.

    Store lookups are memoized per (activity_type, year, region), so one
    resolver instance should live for a single calculation run.
    """

    def __init__(
        self,
        store: CalculationStore,
        unit_converter: Optional[UnitConverter] = None,
    ):
        self.store = store
        self.unit_converter = unit_converter or UnitConverter()
        self._candidate_cache: Dict[Tuple[str, int, Optional[str]], List[EmissionFactor]] = {}

    def resolve(
        self,
        activity: Activity,
        year: int,
        region: Optional[str],
        dimension: str,
    ) -> FactorResolution:
        """
        Resolve the emission factor for an activity.

        Args:
            activity: Activity being calculated
            year: Reporting year to look up
            region: Region to look up (None for global only)
            dimension: Dimension of the activity's normalized quantity

        Returns:
            FactorResolution with the factor in kg CO2e per base unit

        Raises:
            FactorNotFoundError: If no factor exists at any fallback level
            UnitConversionError: If factors exist but none has a unit of
                the activity's dimension
        """
        if activity.emission_factor is not None:
            return self._resolve_override(activity, dimension)

        region = _region_key(region)
        candidates = [
            f for f in self._load_candidates(activity.activity_type, year, region)
            if f.year <= year and _region_key(f.region) in (None, region)
        ]
        if not candidates:
            raise FactorNotFoundError(
                f"No emission factor for '{activity.activity_type}' "
                f"in {year} (region={region or 'global'})",
                activity_id=activity.activity_id,
                context={
                    "activity_type": activity.activity_type,
                    "year": year,
                    "region": region,
                },
            )

        compatible = [
            f for f in candidates
            if self.unit_converter.factor_dimension(f.unit) == dimension
        ]
        if not compatible:
            raise UnitConversionError(
                f"No emission factor for '{activity.activity_type}' is "
                f"expressed per {dimension} (activity unit '{activity.unit}')",
                activity_id=activity.activity_id,
                context={
                    "activity_type": activity.activity_type,
                    "available_units": sorted({f.unit for f in candidates}),
                },
                from_unit=activity.unit,
            )

        factor, level = self._select(compatible, year, region)
        logger.debug(
            "Resolved factor for %s (%s, %d, %s): %s %s [%s]",
            activity.activity_id, activity.activity_type, year, region,
            factor.value, factor.unit, level.value,
        )
        return self._build_resolution(
            activity_type=activity.activity_type,
            value=factor.value,
            unit=factor.unit,
            fallback_level=level,
            year=factor.year,
            region=factor.region,
            source=factor.source,
        )

    def _resolve_override(self, activity: Activity, dimension: str) -> FactorResolution:
        unit = activity.emission_factor_unit or f"kg CO2e per {activity.unit}"
        try:
            factor_dimension = self.unit_converter.parse_factor_unit(unit)[2]
        except UnitConversionError as e:
            raise UnitConversionError(
                e.message,
                activity_id=activity.activity_id,
                context=dict(e.context),
            ) from e

        if factor_dimension != dimension:
            raise UnitConversionError(
                f"Emission factor unit '{unit}' is per {factor_dimension}, "
                f"activity unit '{activity.unit}' is {dimension}",
                activity_id=activity.activity_id,
                from_unit=activity.unit,
                to_unit=unit,
            )

        return self._build_resolution(
            activity_type=activity.activity_type,
            value=activity.emission_factor,
            unit=unit,
            fallback_level=FallbackLevel.OVERRIDE,
            source="activity_override",
        )

    def _load_candidates(
        self,
        activity_type: str,
        year: int,
        region: Optional[str],
    ) -> List[EmissionFactor]:
        key = (activity_type.strip().lower(), year, region)
        if key not in self._candidate_cache:
            self._candidate_cache[key] = list(
                self.store.load_emission_factors(activity_type, year, region)
            )
        return self._candidate_cache[key]

    @staticmethod
    def _select(
        candidates: List[EmissionFactor],
        year: int,
        region: Optional[str],
    ) -> Tuple[EmissionFactor, FallbackLevel]:
        def pick(year_: int, region_: Optional[str]) -> Optional[EmissionFactor]:
            matches = [
                f for f in candidates
                if f.year == year_ and _region_key(f.region) == region_
            ]
            return min(matches, key=_candidate_sort_key) if matches else None

        if region is not None:
            exact = pick(year, region)
            if exact is not None:
                return exact, FallbackLevel.EXACT

        global_entry = pick(year, None)
        if global_entry is not None:
            return global_entry, FallbackLevel.TYPE_YEAR

        latest = max(f.year for f in candidates)
        if region is not None:
            regional = pick(latest, region)
            if regional is not None:
                return regional, FallbackLevel.LATEST_PRIOR_YEAR
        return pick(latest, None), FallbackLevel.LATEST_PRIOR_YEAR

    def _build_resolution(
        self,
        activity_type: str,
        value: Decimal,
        unit: str,
        fallback_level: FallbackLevel,
        year: Optional[int] = None,
        region: Optional[str] = None,
        source: str = "default",
    ) -> FactorResolution:
        mass_to_kg, per_unit, dimension = self.unit_converter.parse_factor_unit(unit)
        per_unit_in_base = self.unit_converter.conversion_tables[dimension][per_unit]
        with engine_decimal_context():
            kg_per_base = value * mass_to_kg / per_unit_in_base
        return FactorResolution(
            activity_type=activity_type,
            value=value,
            unit=unit,
            kg_co2e_per_base_unit=kg_per_base,
            base_unit=self.unit_converter.BASE_UNITS[dimension],
            fallback_level=fallback_level,
            year=year,
            region=region,
            source=source,
        )


__all__ = ["EmissionFactorResolver"]
