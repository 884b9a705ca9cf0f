# -*- coding: utf-8 -*-
"""
Unit Conversion Engine

All conversions are exact Decimal operations on fixed tables. Unknown units
fail loudly with UnitConversionError.

Supported dimensions (base unit in brackets):
- Energy [kwh]: kWh, MWh, GWh, MMBtu, therm, GJ, MJ, BTU
- Volume [liter]: liters, gallons, m3, ccf, mcf, scf
- Mass [kg]: kg, tonnes, short tons, lbs, grams
- Distance [km]: km, miles, meters, feet (also passenger-km)
- Area [m2]: m2, ft2, acres, hectares
- Time [hour]: hours, days, weeks, months, years
- Freight [tonne_km]: tonne-km, ton-mile
- Currency [usd]: usd
- Count [unit]: units, items, pieces, nights
"""

import re
from decimal import Decimal
from typing import Dict, Optional, Tuple

from carbonledger.exceptions import UnitConversionError


class UnitConverter:
    """
    Deterministic unit converter with validation.

    GUARANTEES:
    - All conversions are exact Decimal operations
    - Same input -> Same output
    - Unknown units -> UnitConversionError
    """

    # Energy conversions (to kWh as base unit)
    ENERGY_TO_KWH: Dict[str, Decimal] = {
        'kwh': Decimal('1'),
        'mwh': Decimal('1000'),
        'gwh': Decimal('1000000'),
        'mmbtu': Decimal('293.071'),  # 1 MMBtu = 293.071 kWh
        'therm': Decimal('29.3071'),
        'therms': Decimal('29.3071'),
        'gj': Decimal('277.778'),
        'mj': Decimal('0.277778'),
        'btu': Decimal('0.000293071'),
    }

    # Volume conversions (to liters as base unit)
    VOLUME_TO_LITERS: Dict[str, Decimal] = {
        'liter': Decimal('1'),
        'liters': Decimal('1'),
        'litre': Decimal('1'),
        'litres': Decimal('1'),
        'l': Decimal('1'),
        'gallon': Decimal('3.78541'),  # US gallon
        'gallons': Decimal('3.78541'),
        'gal': Decimal('3.78541'),
        'm3': Decimal('1000'),
        'cubic_meter': Decimal('1000'),
        'ccf': Decimal('2831.68'),  # 100 cubic feet
        'mcf': Decimal('28316.8'),  # 1000 cubic feet
        'scf': Decimal('28.3168'),
    }

    # Mass conversions (to kg as base unit)
    MASS_TO_KG: Dict[str, Decimal] = {
        'kg': Decimal('1'),
        'kilogram': Decimal('1'),
        'kilograms': Decimal('1'),
        't': Decimal('1000'),
        'tonne': Decimal('1000'),
        'tonnes': Decimal('1000'),
        'metric_ton': Decimal('1000'),
        'ton': Decimal('907.185'),  # US short ton
        'tons': Decimal('907.185'),
        'lb': Decimal('0.453592'),
        'lbs': Decimal('0.453592'),
        'pound': Decimal('0.453592'),
        'pounds': Decimal('0.453592'),
        'g': Decimal('0.001'),
        'gram': Decimal('0.001'),
        'grams': Decimal('0.001'),
    }

    # Distance conversions (to km as base unit)
    DISTANCE_TO_KM: Dict[str, Decimal] = {
        'km': Decimal('1'),
        'kilometer': Decimal('1'),
        'kilometers': Decimal('1'),
        'passenger_km': Decimal('1'),
        'pkm': Decimal('1'),
        'mile': Decimal('1.60934'),
        'miles': Decimal('1.60934'),
        'mi': Decimal('1.60934'),
        'm': Decimal('0.001'),
        'meter': Decimal('0.001'),
        'meters': Decimal('0.001'),
        'ft': Decimal('0.0003048'),
        'feet': Decimal('0.0003048'),
    }

    # Area conversions (to m2 as base unit)
    AREA_TO_M2: Dict[str, Decimal] = {
        'm2': Decimal('1'),
        'square_meter': Decimal('1'),
        'ft2': Decimal('0.092903'),
        'square_foot': Decimal('0.092903'),
        'acre': Decimal('4046.86'),
        'acres': Decimal('4046.86'),
        'hectare': Decimal('10000'),
        'hectares': Decimal('10000'),
        'ha': Decimal('10000'),
    }

    # Time conversions (to hours as base unit)
    TIME_TO_HOURS: Dict[str, Decimal] = {
        'hour': Decimal('1'),
        'hours': Decimal('1'),
        'hr': Decimal('1'),
        'h': Decimal('1'),
        'day': Decimal('24'),
        'days': Decimal('24'),
        'week': Decimal('168'),
        'weeks': Decimal('168'),
        'month': Decimal('730'),  # Average 30.42 days
        'months': Decimal('730'),
        'year': Decimal('8760'),
        'years': Decimal('8760'),
    }

    # Freight conversions (to tonne-km as base unit)
    FREIGHT_TO_TONNE_KM: Dict[str, Decimal] = {
        'tonne_km': Decimal('1'),
        'tkm': Decimal('1'),
        't_km': Decimal('1'),
        'ton_mile': Decimal('1.45997'),  # short ton x mile
    }

    # Currency (spend-based factors, USD only)
    CURRENCY_TO_USD: Dict[str, Decimal] = {
        'usd': Decimal('1'),
        'kusd': Decimal('1000'),
    }

    # Counted items
    COUNT_TO_UNIT: Dict[str, Decimal] = {
        'unit': Decimal('1'),
        'units': Decimal('1'),
        'item': Decimal('1'),
        'items': Decimal('1'),
        'piece': Decimal('1'),
        'pieces': Decimal('1'),
        'night': Decimal('1'),
        'nights': Decimal('1'),
        'hotel_night': Decimal('1'),
    }

    BASE_UNITS: Dict[str, str] = {
        'energy': 'kwh',
        'volume': 'liter',
        'mass': 'kg',
        'distance': 'km',
        'area': 'm2',
        'time': 'hour',
        'freight': 'tonne_km',
        'currency': 'usd',
        'count': 'unit',
    }

    # Numerators accepted in factor units, scaled to kg CO2e
    CO2E_MASS_TO_KG: Dict[str, Decimal] = {
        'g': Decimal('0.001'),
        'kg': Decimal('1'),
        't': Decimal('1000'),
        'tonne': Decimal('1000'),
        'tonnes': Decimal('1000'),
    }

    _FACTOR_UNIT_PATTERN = re.compile(
        r'^\s*(?P<mass>[a-z]+)[\s_]*co2e?[\s_]*(?:/|per)[\s_]*(?P<per>.+?)\s*$',
        re.IGNORECASE,
    )

    def __init__(self):
        """Initialize unit converter"""
        self.conversion_tables = {
            'energy': self.ENERGY_TO_KWH,
            'volume': self.VOLUME_TO_LITERS,
            'mass': self.MASS_TO_KG,
            'distance': self.DISTANCE_TO_KM,
            'area': self.AREA_TO_M2,
            'time': self.TIME_TO_HOURS,
            'freight': self.FREIGHT_TO_TONNE_KM,
            'currency': self.CURRENCY_TO_USD,
            'count': self.COUNT_TO_UNIT,
        }

    @staticmethod
    def normalize_unit(unit: str) -> str:
        """Canonical spelling: lowercase, spaces and dashes become underscores."""
        return re.sub(r'[\s\-\.]+', '_', unit.strip().lower())

    def to_base(self, value: Decimal, unit: str) -> Tuple[Decimal, str, str]:
        """
        Convert a value into the base unit of its dimension.

        Returns:
            Tuple of (converted value, base unit, dimension)

        Raises:
            UnitConversionError: If unit unknown
        """
        unit = self.normalize_unit(unit)
        category = self.get_unit_category(unit)
        return value * self.conversion_tables[category][unit], self.BASE_UNITS[category], category

    def parse_factor_unit(self, factor_unit: str) -> Tuple[Decimal, str, str]:
        """
        Parse an emission factor unit such as ``kg CO2e per kwh``.

        Returns:
            Tuple of (kg CO2e per numerator unit, denominator unit, dimension)

        Raises:
            UnitConversionError: If the unit is not of the form
                ``<mass> CO2e per <unit>`` with known units
        """
        match = self._FACTOR_UNIT_PATTERN.match(factor_unit or '')
        if match is None:
            raise UnitConversionError(
                f"Unrecognized emission factor unit: {factor_unit!r}",
                from_unit=factor_unit,
            )
        mass = match.group('mass').lower()
        if mass not in self.CO2E_MASS_TO_KG:
            raise UnitConversionError(
                f"Unknown CO2e mass unit in factor unit: {factor_unit!r}",
                from_unit=factor_unit,
            )
        per_unit = self.normalize_unit(match.group('per'))
        return self.CO2E_MASS_TO_KG[mass], per_unit, self.get_unit_category(per_unit)

    def factor_dimension(self, factor_unit: str) -> Optional[str]:
        """Dimension of a factor unit's denominator, or None if unparseable."""
        try:
            return self.parse_factor_unit(factor_unit)[2]
        except UnitConversionError:
            return None

    def _get_unit_category(self, unit: str) -> Optional[str]:
        for category, conversion_table in self.conversion_tables.items():
            if unit in conversion_table:
                return category
        return None

    def get_unit_category(self, unit: str) -> str:
        """
        Get category for a unit.

        Raises:
            UnitConversionError: If unit unknown
        """
        category = self._get_unit_category(self.normalize_unit(unit))
        if category is None:
            raise UnitConversionError(f"Unknown unit: {unit}", from_unit=unit)
        return category
