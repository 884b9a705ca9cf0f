"""Tests for activity validation and base-unit normalization."""

from decimal import Decimal

import pytest

from carbonledger.emissions_engine.activity_normalizer import ActivityNormalizer
from carbonledger.emissions_engine.models import CalculationTier, Scope, Scope3Category
from carbonledger.exceptions import InvalidActivityError, UnitConversionError


@pytest.fixture
def normalizer():
    return ActivityNormalizer()


class TestNormalize:
    """Successful normalization."""

    def test_volume_activity(self, normalizer, make_activity, project):
        normalized = normalizer.normalize(make_activity(), project)

        assert normalized.activity_id == "a1"
        assert normalized.scope == Scope.SCOPE1
        assert normalized.scope3_category is None
        assert normalized.quantity == Decimal("4000")
        assert normalized.base_unit == "liter"
        assert normalized.dimension == "volume"

    def test_energy_converted_to_kwh(self, normalizer, make_activity, project):
        activity = make_activity(
            scope="scope2", activity_type="grid_electricity", quantity="2", unit="MWh",
        )
        normalized = normalizer.normalize(activity, project)

        assert normalized.quantity == Decimal("2000")
        assert normalized.base_unit == "kwh"

    def test_scope3_category_carried(self, normalizer, make_activity, project):
        activity = make_activity(
            scope="scope3", scope3_category="waste", activity_type="landfill_waste",
            quantity="1.5", unit="tonnes",
        )
        normalized = normalizer.normalize(activity, project)

        assert normalized.scope3_category == Scope3Category.WASTE
        assert normalized.quantity == Decimal("1500")

    def test_zero_quantity_is_valid(self, normalizer, make_activity, project):
        assert normalizer.normalize(make_activity(quantity=0), project).quantity == 0

    def test_years_at_span_edges_are_valid(self, normalizer, make_activity, project):
        normalizer.validate(make_activity(year=2020), project)
        normalizer.validate(make_activity(year=2024), project)


class TestValidation:
    """Invariant violations raise InvalidActivityError."""

    def _invalid_fields(self, normalizer, activity, project):
        with pytest.raises(InvalidActivityError) as exc_info:
            normalizer.normalize(activity, project)
        assert exc_info.value.activity_id == activity.activity_id
        return exc_info.value.context["invalid_fields"]

    def test_scope3_without_category(self, normalizer, make_activity, project):
        fields = self._invalid_fields(normalizer, make_activity(scope="scope3"), project)
        assert "scope3_category" in fields

    def test_category_on_scope1(self, normalizer, make_activity, project):
        activity = make_activity(scope3_category="waste")
        fields = self._invalid_fields(normalizer, activity, project)
        assert "scope3_category" in fields

    def test_negative_quantity(self, normalizer, make_activity, project):
        fields = self._invalid_fields(normalizer, make_activity(quantity="-1"), project)
        assert "quantity" in fields

    def test_year_before_baseline(self, normalizer, make_activity, project):
        fields = self._invalid_fields(normalizer, make_activity(year=2019), project)
        assert "year" in fields

    def test_year_after_reporting_year(self, normalizer, make_activity, project):
        fields = self._invalid_fields(normalizer, make_activity(year=2025), project)
        assert "year" in fields

    def test_sub_score_out_of_range(self, normalizer, make_activity, project):
        activity = make_activity(data_quality_score=150)
        fields = self._invalid_fields(normalizer, activity, project)
        assert "data_quality_score" in fields

    def test_negative_factor_override(self, normalizer, make_activity, project):
        activity = make_activity(emission_factor="-2", emission_factor_unit="kg CO2e per liter")
        fields = self._invalid_fields(normalizer, activity, project)
        assert "emission_factor" in fields

    def test_all_violations_reported_together(self, normalizer, make_activity, project):
        activity = make_activity(scope="scope3", quantity="-5", year=2030)
        fields = self._invalid_fields(normalizer, activity, project)
        assert set(fields) == {"scope3_category", "quantity", "year"}

    def test_unknown_unit(self, normalizer, make_activity, project):
        with pytest.raises(UnitConversionError) as exc_info:
            normalizer.normalize(make_activity(unit="hogshead"), project)
        assert exc_info.value.activity_id == "a1"
        assert exc_info.value.context["from_unit"] == "hogshead"


class TestActivityModel:
    """Parsing done by the Activity model itself."""

    def test_tier_shorthand(self, make_activity):
        assert make_activity(tier=2).tier == CalculationTier.TIER2
        assert make_activity(tier="3").tier == CalculationTier.TIER3

    def test_float_quantity_has_no_artefacts(self, make_activity):
        assert make_activity(quantity=0.1).quantity == Decimal("0.1")
