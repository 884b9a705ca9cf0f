# -*- coding: utf-8 -*-
"""
Aggregation Engine

Reduces per-activity contributions into project totals and ranks hot spots.

Per-activity tonnes are quantized before they reach the ledger, so every
running sum is an exact Decimal addition. Exact addition is commutative and
associative, which makes totals independent of contribution order and makes
``remove`` the exact inverse of ``add``. Incremental recalculation relies
on both properties.

Example:
    >>> ledger = EmissionLedger()
    >>> ledger.add(contribution)
    >>> totals = ledger.build_totals()
    >>> spots = ledger.hot_spots(limit=5)
"""

import copy
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from carbonledger.determinism import engine_decimal_context, quantize
from carbonledger.emissions_engine.config import EmissionsEngineConfig, get_config
from carbonledger.emissions_engine.models import (
    UPSTREAM_CATEGORIES,
    Contribution,
    ContributorType,
    HotSpot,
    HotSpotGranularity,
    Scope,
    Scope3Category,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


class _Bucket:
    """Running sum plus the number of contributors behind it."""

    __slots__ = ("tonnes", "count")

    def __init__(self):
        self.tonnes = _ZERO
        self.count = 0


class _BucketMap:
    """Keyed running sums; keys disappear when their last contributor leaves."""

    def __init__(self):
        self._buckets: Dict[Any, _Bucket] = {}

    def add(self, key: Any, tonnes: Decimal) -> None:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket()
        bucket.tonnes += tonnes
        bucket.count += 1

    def remove(self, key: Any, tonnes: Decimal) -> None:
        bucket = self._buckets[key]
        bucket.tonnes -= tonnes
        bucket.count -= 1
        if bucket.count == 0:
            del self._buckets[key]

    def get(self, key: Any) -> Decimal:
        bucket = self._buckets.get(key)
        return bucket.tonnes if bucket is not None else _ZERO

    def items(self) -> Iterable[Tuple[Any, Decimal]]:
        return ((key, bucket.tonnes) for key, bucket in self._buckets.items())


class EmissionLedger:
    """
    Incrementally maintained emission totals for one project.

    The ledger holds one contribution per activity id. ``add`` and
    ``remove`` update every running sum; ``build_totals`` and
    ``hot_spots`` read them.
    """

    def __init__(self, config: Optional[EmissionsEngineConfig] = None):
        self.config = config or get_config()
        self._contributions: Dict[str, Contribution] = {}
        self._total = _ZERO
        self._weighted = _ZERO
        self._by_scope = _BucketMap()
        self._by_category = _BucketMap()
        self._by_bucket = _BucketMap()
        self._by_year = _BucketMap()
        self._by_facility = _BucketMap()
        self._by_activity_type = _BucketMap()

    @classmethod
    def from_contributions(
        cls,
        contributions: Iterable[Contribution],
        config: Optional[EmissionsEngineConfig] = None,
    ) -> "EmissionLedger":
        ledger = cls(config)
        for contribution in contributions:
            ledger.add(contribution)
        return ledger

    def __len__(self) -> int:
        return len(self._contributions)

    def __contains__(self, activity_id: str) -> bool:
        return activity_id in self._contributions

    def get(self, activity_id: str) -> Optional[Contribution]:
        return self._contributions.get(activity_id)

    @property
    def contributions(self) -> List[Contribution]:
        """Contributions ordered by activity id."""
        return [self._contributions[k] for k in sorted(self._contributions)]

    @property
    def total(self) -> Decimal:
        return self._total

    @property
    def weighted_quality_sum(self) -> Decimal:
        """Sum of tonnes x quality weight."""
        return self._weighted

    def copy(self) -> "EmissionLedger":
        """Independent copy; contributions are immutable and shared."""
        clone = copy.copy(self)
        clone._contributions = dict(self._contributions)
        for name in (
            "_by_scope", "_by_category", "_by_bucket",
            "_by_year", "_by_facility", "_by_activity_type",
        ):
            original: _BucketMap = getattr(self, name)
            duplicate = _BucketMap()
            for key, bucket in original._buckets.items():
                entry = _Bucket()
                entry.tonnes = bucket.tonnes
                entry.count = bucket.count
                duplicate._buckets[key] = entry
            setattr(clone, name, duplicate)
        return clone

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, contribution: Contribution) -> None:
        """
        Add one activity's contribution.

        Raises:
            ValueError: If the activity is already in the ledger
        """
        if contribution.activity_id in self._contributions:
            raise ValueError(f"Activity already in ledger: {contribution.activity_id}")
        self._contributions[contribution.activity_id] = contribution
        self._apply(contribution, sign=1)

    def remove(self, activity_id: str) -> Contribution:
        """
        Remove an activity's contribution.

        Raises:
            KeyError: If the activity is not in the ledger
        """
        contribution = self._contributions.pop(activity_id)
        self._apply(contribution, sign=-1)
        return contribution

    def _apply(self, c: Contribution, sign: int) -> None:
        tonnes = c.emissions_tco2e
        with engine_decimal_context():
            weighted = tonnes * c.quality_weight
            if sign > 0:
                self._total += tonnes
                self._weighted += weighted
            else:
                self._total -= tonnes
                self._weighted -= weighted

            update = "add" if sign > 0 else "remove"
            getattr(self._by_scope, update)(c.scope, tonnes)
            getattr(self._by_bucket, update)(c.bucket, tonnes)
            getattr(self._by_year, update)(c.year, tonnes)
            getattr(self._by_activity_type, update)(c.activity_type, tonnes)
            if c.scope3_category is not None:
                getattr(self._by_category, update)(c.scope3_category, tonnes)
            if c.facility:
                getattr(self._by_facility, update)(c.facility, tonnes)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def _q(self, value: Decimal) -> Decimal:
        return quantize(value, self.config.emission_precision)

    def build_totals(self) -> Dict[str, Any]:
        """
        Subtotals in CalculationResult field names.

        Every amount is quantized to the emission precision, so identical
        contribution sets give identical values regardless of history.
        """
        with engine_decimal_context():
            upstream = _ZERO
            downstream = _ZERO
            by_category: Dict[Scope3Category, Decimal] = {}
            for category, tonnes in self._by_category.items():
                by_category[category] = self._q(tonnes)
                if category in UPSTREAM_CATEGORIES:
                    upstream += tonnes
                else:
                    downstream += tonnes

            return {
                "total_emissions_tco2e": self._q(self._total),
                "scope1_tco2e": self._q(self._by_scope.get(Scope.SCOPE1)),
                "scope2_tco2e": self._q(self._by_scope.get(Scope.SCOPE2)),
                "scope3_tco2e": self._q(self._by_scope.get(Scope.SCOPE3)),
                "scope3_upstream_tco2e": self._q(upstream),
                "scope3_downstream_tco2e": self._q(downstream),
                "scope3_by_category": dict(
                    sorted(by_category.items(), key=lambda kv: kv[0].value)
                ),
                "by_year": {
                    year: self._q(t) for year, t in sorted(self._by_year.items())
                },
                "by_facility": {
                    f: self._q(t) for f, t in sorted(self._by_facility.items())
                },
                "by_activity_type": {
                    a: self._q(t) for a, t in sorted(self._by_activity_type.items())
                },
                "activity_count": len(self._contributions),
            }

    def hot_spots(
        self,
        limit: Optional[int] = None,
        granularity: HotSpotGranularity = HotSpotGranularity.ACTIVITY,
    ) -> List[HotSpot]:
        """
        Rank contributors by emissions.

        Percentages are truncated to the configured precision, so the
        listed entries never add up to more than 100.

        Args:
            limit: Maximum number of entries (configured default if None)
            granularity: Rank activities or scope/category buckets

        Returns:
            HotSpots descending by tonnes, ties by ascending identifier
        """
        if limit is None:
            limit = self.config.default_hotspot_limit
        if limit <= 0:
            return []

        if granularity == HotSpotGranularity.CATEGORY:
            ranked = self._rank_buckets()
        else:
            ranked = self._rank_activities()

        total = self._total
        places = self.config.percentage_precision
        hot_spots = []
        with engine_decimal_context():
            for entry in ranked[:limit]:
                tonnes = entry["emissions_tco2e"]
                if total > 0:
                    percentage = quantize(tonnes / total * 100, places, ROUND_DOWN)
                else:
                    percentage = quantize(_ZERO, places)
                hot_spots.append(HotSpot(
                    emissions_tco2e=self._q(tonnes),
                    percentage_of_total=percentage,
                    **{k: v for k, v in entry.items() if k != "emissions_tco2e"},
                ))
        return hot_spots

    def _rank_activities(self) -> List[Dict[str, Any]]:
        entries = sorted(
            self._contributions.values(),
            key=lambda c: (-c.emissions_tco2e, c.activity_id),
        )
        return [
            {
                "contributor_id": c.activity_id,
                "contributor_type": ContributorType.ACTIVITY,
                "scope": c.scope,
                "scope3_category": c.scope3_category,
                "activity_type": c.activity_type,
                "emissions_tco2e": c.emissions_tco2e,
            }
            for c in entries
        ]

    def _rank_buckets(self) -> List[Dict[str, Any]]:
        entries = sorted(self._by_bucket.items(), key=lambda kv: (-kv[1], kv[0]))
        ranked = []
        for bucket, tonnes in entries:
            scope_value, _, category_value = bucket.partition(":")
            ranked.append({
                "contributor_id": bucket,
                "contributor_type": ContributorType.CATEGORY,
                "scope": Scope(scope_value),
                "scope3_category": Scope3Category(category_value) if category_value else None,
                "activity_type": None,
                "emissions_tco2e": tonnes,
            })
        return ranked


__all__ = ["EmissionLedger"]
