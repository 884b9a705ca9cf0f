# -*- coding: utf-8 -*-
"""
Data Quality Scorer

Per-activity quality weights and the emissions-weighted aggregate score.

Weighting:
    - Explicit ``data_quality_score`` on the activity wins
    - Otherwise the tier weight: tier1 -> 40, tier2 -> 70, tier3 -> 100

Aggregate:
    score = sum(tonnes x weight) / sum(tonnes), clamped to [0, 100],
    and 0 when total emissions are zero.
"""

from decimal import Decimal
from typing import Dict, Optional

from carbonledger.determinism import engine_decimal_context, quantize
from carbonledger.emissions_engine.config import EmissionsEngineConfig, get_config
from carbonledger.emissions_engine.models import Activity, CalculationTier

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class DataQualityScorer:
    """Computes quality weights and aggregate scores."""

    def __init__(self, config: Optional[EmissionsEngineConfig] = None):
        self.config = config or get_config()
        self.tier_weights: Dict[CalculationTier, Decimal] = {
            CalculationTier.TIER1: Decimal(self.config.tier1_quality_weight),
            CalculationTier.TIER2: Decimal(self.config.tier2_quality_weight),
            CalculationTier.TIER3: Decimal(self.config.tier3_quality_weight),
        }

    def weight(self, activity: Activity) -> Decimal:
        """Quality weight (0-100) of a single activity."""
        if activity.data_quality_score is not None:
            return quantize(activity.data_quality_score, self.config.quality_precision)
        return self.tier_weights[activity.tier]

    def aggregate(self, weighted_sum: Decimal, total_tco2e: Decimal) -> Decimal:
        """
        Emissions-weighted mean of the activity weights.

        Args:
            weighted_sum: Sum of tonnes x weight over contributing activities
            total_tco2e: Sum of tonnes over the same activities

        Returns:
            Score in [0, 100], quantized to the configured precision
        """
        places = self.config.quality_precision
        if total_tco2e <= 0:
            return quantize(_ZERO, places)
        with engine_decimal_context():
            score = weighted_sum / total_tco2e
        score = min(max(score, _ZERO), _HUNDRED)
        return quantize(score, places)


__all__ = ["DataQualityScorer"]
