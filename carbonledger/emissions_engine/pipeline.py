# -*- coding: utf-8 -*-
"""
Calculation Pipeline

Shared per-activity evaluation used by the orchestrator and the footprint
calculator:

1. Normalize the activity (validation + base-unit conversion)
2. Resolve the emission factor (with fallback logic)
3. Calculate tonnes CO2e (quantity x factor / 1000, quantized)
4. Attach the quality weight

Per-activity domain errors are isolated: the activity is excluded and a
CalculationWarning is recorded, the rest of the run continues.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from carbonledger.determinism import engine_decimal_context, quantize
from carbonledger.emissions_engine import metrics
from carbonledger.emissions_engine.activity_normalizer import ActivityNormalizer
from carbonledger.emissions_engine.aggregation_engine import EmissionLedger
from carbonledger.emissions_engine.config import EmissionsEngineConfig, get_config
from carbonledger.emissions_engine.factor_resolver import EmissionFactorResolver
from carbonledger.emissions_engine.models import (
    Activity,
    CalculationOptions,
    CalculationResult,
    CalculationWarning,
    Contribution,
    FactorResolution,
    NormalizedActivity,
    ProjectMeta,
)
from carbonledger.emissions_engine.provenance import activity_hash, input_hash, result_hash
from carbonledger.emissions_engine.quality_scorer import DataQualityScorer
from carbonledger.emissions_engine.store import CalculationStore
from carbonledger.emissions_engine.unit_converter import UnitConverter
from carbonledger.exceptions import ActivityException

logger = logging.getLogger(__name__)

KG_PER_TONNE = Decimal("1000")


@dataclass(frozen=True)
class ActivityEvaluation:
    """
    Outcome of evaluating one activity.

    Exactly one of ``contribution`` and ``warning`` is set.
    """
    activity_id: str
    activity_hash: str
    contribution: Optional[Contribution] = None
    resolution: Optional[FactorResolution] = None
    warning: Optional[CalculationWarning] = None


class CalculationPipeline:
    """Turns activities into contributions and contributions into results."""

    def __init__(
        self,
        store: CalculationStore,
        config: Optional[EmissionsEngineConfig] = None,
        unit_converter: Optional[UnitConverter] = None,
    ):
        self.store = store
        self.config = config or get_config()
        self.unit_converter = unit_converter or UnitConverter()
        self.normalizer = ActivityNormalizer(self.unit_converter)
        self.scorer = DataQualityScorer(self.config)

    def new_resolver(self) -> EmissionFactorResolver:
        """Factor resolver with a fresh lookup cache, one per run."""
        return EmissionFactorResolver(self.store, self.unit_converter)

    def _resolve(
        self,
        activity: Activity,
        project: ProjectMeta,
        options: CalculationOptions,
        resolver: EmissionFactorResolver,
    ) -> Tuple[NormalizedActivity, FactorResolution]:
        normalized = self.normalizer.normalize(activity, project)
        region = options.region_override or activity.region or project.region
        resolution = resolver.resolve(
            activity, activity.year, region, normalized.dimension,
        )
        return normalized, resolution

    def evaluate(
        self,
        activity: Activity,
        project: ProjectMeta,
        options: CalculationOptions,
        resolver: EmissionFactorResolver,
    ) -> ActivityEvaluation:
        """
        Evaluate a single activity.

        Returns:
            ActivityEvaluation carrying either a contribution or a warning
        """
        a_hash = activity_hash(activity)
        try:
            normalized, resolution = self._resolve(activity, project, options, resolver)
            with engine_decimal_context():
                tonnes = quantize(
                    normalized.quantity * resolution.kg_co2e_per_base_unit / KG_PER_TONNE,
                    self.config.emission_precision,
                )
        except ActivityException as e:
            logger.warning(
                "Excluding activity %s of project %s: %s",
                activity.activity_id, project.project_id, e,
            )
            metrics.record_excluded_activity(type(e).__name__)
            return ActivityEvaluation(
                activity_id=activity.activity_id,
                activity_hash=a_hash,
                warning=CalculationWarning(
                    activity_id=activity.activity_id,
                    error_type=type(e).__name__,
                    error_code=e.error_code,
                    message=e.message,
                ),
            )

        contribution = Contribution(
            activity_id=activity.activity_id,
            scope=activity.scope,
            scope3_category=activity.scope3_category,
            year=activity.year,
            emissions_tco2e=tonnes,
            quality_weight=self.scorer.weight(activity),
            activity_type=activity.activity_type,
            facility=activity.facility,
            fallback_level=resolution.fallback_level,
        )
        return ActivityEvaluation(
            activity_id=activity.activity_id,
            activity_hash=a_hash,
            contribution=contribution,
            resolution=resolution,
        )

    def is_current(
        self,
        evaluation: ActivityEvaluation,
        activity: Activity,
        project: ProjectMeta,
        options: CalculationOptions,
        resolver: EmissionFactorResolver,
    ) -> bool:
        """
        Whether a cached evaluation still stands for ``activity``.

        It does only when the activity is unchanged and still resolves to the
        factor it was calculated with. Excluded activities never stand, since
        a factor added since may now cover them.
        """
        if evaluation.resolution is None:
            return False
        if evaluation.activity_hash != activity_hash(activity):
            return False
        try:
            _, resolution = self._resolve(activity, project, options, resolver)
        except ActivityException:
            return False
        return resolution == evaluation.resolution

    def evaluate_all(
        self,
        activities: Iterable[Activity],
        project: ProjectMeta,
        options: CalculationOptions,
    ) -> Dict[str, ActivityEvaluation]:
        """Evaluate every activity; keyed by activity id."""
        resolver = self.new_resolver()
        evaluations: Dict[str, ActivityEvaluation] = {}
        for activity in activities:
            if activity.activity_id in evaluations:
                logger.warning(
                    "Duplicate activity id %s in project %s; keeping the last record",
                    activity.activity_id, project.project_id,
                )
            evaluations[activity.activity_id] = self.evaluate(
                activity, project, options, resolver,
            )
        return evaluations

    def build_ledger(self, evaluations: Dict[str, ActivityEvaluation]) -> EmissionLedger:
        return EmissionLedger.from_contributions(
            (e.contribution for e in evaluations.values() if e.contribution is not None),
            self.config,
        )

    def build_result(
        self,
        project_id: str,
        ledger: EmissionLedger,
        evaluations: Dict[str, ActivityEvaluation],
        options: CalculationOptions,
    ) -> CalculationResult:
        """
        Assemble a CalculationResult from a ledger and its evaluations.

        The provenance hash covers the whole content except ``calculated_at``.
        """
        warnings = sorted(
            (e.warning for e in evaluations.values() if e.warning is not None),
            key=lambda w: w.activity_id,
        )
        result = CalculationResult(
            project_id=project_id,
            hot_spots=ledger.hot_spots(options.hotspot_limit, options.hotspot_granularity),
            data_quality_score=self.scorer.aggregate(
                ledger.weighted_quality_sum, ledger.total,
            ),
            excluded_count=len(warnings),
            warnings=warnings,
            input_hash=input_hash(
                {k: e.activity_hash for k, e in evaluations.items()},
                {k: e.resolution for k, e in evaluations.items()},
                options,
            ),
            **ledger.build_totals(),
        )
        return result.model_copy(update={"provenance_hash": result_hash(result)})


__all__ = ["ActivityEvaluation", "CalculationPipeline", "KG_PER_TONNE"]
