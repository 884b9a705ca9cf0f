# -*- coding: utf-8 -*-
"""
Activity Normalizer

Validates an activity against its project and converts the raw quantity
into the base unit of its physical dimension.
"""

import logging
from typing import Dict, Optional

from carbonledger.emissions_engine.models import (
    Activity,
    NormalizedActivity,
    ProjectMeta,
    Scope,
)
from carbonledger.emissions_engine.unit_converter import UnitConverter
from carbonledger.exceptions import InvalidActivityError, UnitConversionError

logger = logging.getLogger(__name__)


class ActivityNormalizer:
    """
    Turns raw activities into NormalizedActivity records.

    Invalid activities raise InvalidActivityError listing every offending
    field, so one warning describes the whole problem.
    """

    def __init__(self, unit_converter: Optional[UnitConverter] = None):
        self.unit_converter = unit_converter or UnitConverter()

    def validate(self, activity: Activity, project: ProjectMeta) -> None:
        """
        Check the activity invariants.

        Raises:
            InvalidActivityError: If any invariant is violated
        """
        invalid: Dict[str, str] = {}

        if activity.scope == Scope.SCOPE3 and activity.scope3_category is None:
            invalid["scope3_category"] = "required for scope3 activities"
        elif activity.scope != Scope.SCOPE3 and activity.scope3_category is not None:
            invalid["scope3_category"] = f"not allowed for {activity.scope.value} activities"

        if not activity.quantity.is_finite() or activity.quantity < 0:
            invalid["quantity"] = f"must be >= 0, got {activity.quantity}"

        if not project.baseline_year <= activity.year <= project.reporting_year:
            invalid["year"] = (
                f"{activity.year} outside project span "
                f"{project.baseline_year}-{project.reporting_year}"
            )

        score = activity.data_quality_score
        if score is not None and (not score.is_finite() or not 0 <= score <= 100):
            invalid["data_quality_score"] = f"must be between 0 and 100, got {score}"

        if activity.emission_factor is not None and (
            not activity.emission_factor.is_finite() or activity.emission_factor < 0
        ):
            invalid["emission_factor"] = f"must be >= 0, got {activity.emission_factor}"

        if invalid:
            raise InvalidActivityError(
                f"Activity {activity.activity_id} is invalid: "
                + "; ".join(f"{k} {v}" for k, v in sorted(invalid.items())),
                activity_id=activity.activity_id,
                invalid_fields=invalid,
            )

    def normalize(self, activity: Activity, project: ProjectMeta) -> NormalizedActivity:
        """
        Validate and normalize an activity.

        Args:
            activity: Raw activity
            project: Owning project (provides the valid year span)

        Returns:
            NormalizedActivity with the quantity in its base unit

        Raises:
            InvalidActivityError: If the activity violates an invariant
            UnitConversionError: If the unit has no conversion to a base unit
        """
        self.validate(activity, project)

        try:
            quantity, base_unit, dimension = self.unit_converter.to_base(
                activity.quantity, activity.unit,
            )
        except UnitConversionError as e:
            raise UnitConversionError(
                f"Activity {activity.activity_id}: {e.message}",
                activity_id=activity.activity_id,
                context=dict(e.context),
            ) from e

        return NormalizedActivity(
            activity_id=activity.activity_id,
            scope=activity.scope,
            scope3_category=activity.scope3_category,
            quantity=quantity,
            base_unit=base_unit,
            dimension=dimension,
        )


__all__ = ["ActivityNormalizer"]
