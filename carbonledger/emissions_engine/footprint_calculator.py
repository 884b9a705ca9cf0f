# -*- coding: utf-8 -*-
"""
Footprint Calculator

Product (CFP) and organization (CFO) footprints computed with the same
pipeline as the project result. Neither variant touches the project's
latest CalculationResult.

CFP lifecycle stages:
    raw_materials  <- purchased_goods, capital_goods, fuel_energy
    production     <- scope 1, scope 2 and any other scope 3 category
    distribution   <- upstream_transport, downstream_transport
    use            <- use_of_products, processing
    end_of_life    <- waste, end_of_life
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from carbonledger.determinism import engine_decimal_context, quantize
from carbonledger.emissions_engine.models import (
    Activity,
    Contribution,
    OrganizationFootprint,
    OrganizationFootprintRequest,
    ProductFootprint,
    ProductFootprintRequest,
    ProjectMeta,
    Scope,
    Scope3Category,
)
from carbonledger.emissions_engine.pipeline import CalculationPipeline
from carbonledger.exceptions import ProjectNotFoundError

logger = logging.getLogger(__name__)

LIFECYCLE_STAGES = ("raw_materials", "production", "distribution", "use", "end_of_life")

_STAGE_BY_CATEGORY: Dict[Scope3Category, str] = {
    Scope3Category.PURCHASED_GOODS: "raw_materials",
    Scope3Category.CAPITAL_GOODS: "raw_materials",
    Scope3Category.FUEL_ENERGY: "raw_materials",
    Scope3Category.UPSTREAM_TRANSPORT: "distribution",
    Scope3Category.DOWNSTREAM_TRANSPORT: "distribution",
    Scope3Category.USE_OF_PRODUCTS: "use",
    Scope3Category.PROCESSING: "use",
    Scope3Category.WASTE: "end_of_life",
    Scope3Category.END_OF_LIFE: "end_of_life",
}


def lifecycle_stage(contribution: Contribution) -> str:
    """Lifecycle stage a contribution is reported under."""
    if contribution.scope != Scope.SCOPE3 or contribution.scope3_category is None:
        return "production"
    return _STAGE_BY_CATEGORY.get(contribution.scope3_category, "production")


def _filter_facilities(
    activities: List[Activity],
    facilities: Optional[List[str]],
) -> List[Activity]:
    if facilities is None:
        return activities
    wanted = set(facilities)
    return [a for a in activities if a.facility in wanted]


class FootprintCalculator:
    """Computes CFP and CFO variants for a project."""

    def __init__(self, pipeline: CalculationPipeline):
        self.pipeline = pipeline
        self.store = pipeline.store

    def _load_project(self, project_id: str) -> ProjectMeta:
        project = self.store.load_project(project_id)
        if project is None:
            raise ProjectNotFoundError(
                f"Project not found: {project_id}", project_id=project_id,
            )
        return project

    def calculate_product_footprint(
        self,
        project_id: str,
        request: Optional[ProductFootprintRequest] = None,
    ) -> ProductFootprint:
        """
        Carbon footprint of a product, split by lifecycle stage.

        Args:
            project_id: Project whose activities make up the product
            request: Product name, functional unit, production volume and
                an optional facility filter

        Returns:
            ProductFootprint with stage totals and the per-unit footprint

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        request = request or ProductFootprintRequest()
        project = self._load_project(project_id)
        activities = _filter_facilities(
            self.store.load_activities(project_id), request.facilities,
        )

        evaluations = self.pipeline.evaluate_all(activities, project, request.options)
        ledger = self.pipeline.build_ledger(evaluations)
        precision = self.pipeline.config.emission_precision

        stages = {stage: Decimal("0") for stage in LIFECYCLE_STAGES}
        with engine_decimal_context():
            for contribution in ledger.contributions:
                stages[lifecycle_stage(contribution)] += contribution.emissions_tco2e
            stages = {stage: quantize(t, precision) for stage, t in stages.items()}
            total = quantize(ledger.total, precision)
            if request.production_volume > 0:
                per_unit = quantize(total / request.production_volume, precision)
            else:
                per_unit = total

        warnings = sorted(
            (e.warning for e in evaluations.values() if e.warning is not None),
            key=lambda w: w.activity_id,
        )
        logger.info(
            "Product footprint for %s (%s): %s tCO2e, %s tCO2e per %s",
            project_id, request.product_name, total, per_unit, request.functional_unit,
        )
        return ProductFootprint(
            project_id=project_id,
            product_name=request.product_name,
            functional_unit=request.functional_unit,
            production_volume=request.production_volume,
            lifecycle_stages=stages,
            total_tco2e=total,
            per_unit_tco2e=per_unit,
            data_quality_score=self.pipeline.scorer.aggregate(
                ledger.weighted_quality_sum, ledger.total,
            ),
            activity_count=len(ledger),
            warnings=warnings,
        )

    def calculate_organization_footprint(
        self,
        project_id: str,
        request: Optional[OrganizationFootprintRequest] = None,
    ) -> OrganizationFootprint:
        """
        Carbon footprint of the organization for one reporting year.

        Only activities of the reporting year (default: the project's
        reporting year) are included, optionally restricted to a set of
        facilities.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        request = request or OrganizationFootprintRequest()
        project = self._load_project(project_id)
        reporting_year = request.reporting_year or project.reporting_year
        activities = [
            a for a in _filter_facilities(
                self.store.load_activities(project_id), request.facilities,
            )
            if a.year == reporting_year
        ]

        evaluations = self.pipeline.evaluate_all(activities, project, request.options)
        ledger = self.pipeline.build_ledger(evaluations)
        totals = ledger.build_totals()

        warnings = sorted(
            (e.warning for e in evaluations.values() if e.warning is not None),
            key=lambda w: w.activity_id,
        )
        logger.info(
            "Organization footprint for %s (%s, %d): %s tCO2e",
            project_id, request.organization_name, reporting_year,
            totals["total_emissions_tco2e"],
        )
        return OrganizationFootprint(
            project_id=project_id,
            organization_name=request.organization_name,
            reporting_year=reporting_year,
            consolidation_method=request.consolidation_method,
            scope1_tco2e=totals["scope1_tco2e"],
            scope2_tco2e=totals["scope2_tco2e"],
            scope3_tco2e=totals["scope3_tco2e"],
            scope3_upstream_tco2e=totals["scope3_upstream_tco2e"],
            scope3_downstream_tco2e=totals["scope3_downstream_tco2e"],
            scope3_by_category=totals["scope3_by_category"],
            total_tco2e=totals["total_emissions_tco2e"],
            data_quality_score=self.pipeline.scorer.aggregate(
                ledger.weighted_quality_sum, ledger.total,
            ),
            activity_count=totals["activity_count"],
            warnings=warnings,
        )


__all__ = ["FootprintCalculator", "LIFECYCLE_STAGES", "lifecycle_stage"]
