# -*- coding: utf-8 -*-
"""
Provenance Hashing for the Emissions Engine

SHA-256 hashes that make every result auditable:

- ``activity_hash``: content of one activity, used to detect changes
  between incremental recalculations
- ``input_hash``: the activity set, the factors resolved for it and the
  calculation options
- ``result_hash``: the result content, excluding its timestamp

All hashes are computed over canonical JSON (sorted keys, Decimal values
as strings), so they are stable across processes and platforms.

Example:
    >>> from carbonledger.emissions_engine.provenance import result_hash
    >>> result = result.model_copy(update={"provenance_hash": result_hash(result)})
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from carbonledger.determinism import content_hash
from carbonledger.emissions_engine.models import (
    Activity,
    CalculationOptions,
    CalculationResult,
    FactorResolution,
    ProjectMeta,
)

logger = logging.getLogger(__name__)


def activity_hash(activity: Activity) -> str:
    """Hash of one activity's full content."""
    return content_hash(activity.model_dump(mode="json"))


def project_hash(project: ProjectMeta) -> str:
    """Hash of the project metadata that affects validation and lookup."""
    return content_hash(project.model_dump(mode="json"))


def input_hash(
    activity_hashes: Dict[str, str],
    resolutions: Dict[str, Optional[FactorResolution]],
    options: CalculationOptions,
) -> str:
    """Hash of everything a result is computed from.

    Args:
        activity_hashes: Activity id -> activity_hash
        resolutions: Activity id -> resolved factor (None if excluded)
        options: Calculation options

    Returns:
        Hex SHA-256 digest
    """
    payload: Dict[str, Any] = {
        "activities": [
            {
                "activity_id": activity_id,
                "hash": activity_hashes[activity_id],
                "factor": (
                    resolutions[activity_id].model_dump(mode="json")
                    if resolutions.get(activity_id) is not None
                    else None
                ),
            }
            for activity_id in sorted(activity_hashes)
        ],
        "options": options.model_dump(mode="json"),
    }
    return content_hash(payload)


def result_hash(result: CalculationResult) -> str:
    """Hash of a result's content, excluding timestamp and the hash itself."""
    return content_hash(result.content_dict())


__all__ = [
    "activity_hash",
    "project_hash",
    "input_hash",
    "result_hash",
]
