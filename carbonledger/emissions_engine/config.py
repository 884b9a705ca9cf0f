# -*- coding: utf-8 -*-
"""
Emissions Engine Configuration

Centralized configuration for the emissions calculation engine covering:
- Numeric precision (per-activity tonnes, hot-spot percentages, quality score)
- Hot-spot ranking defaults
- Tier-derived data-quality weights
- Emission factor reference table location
- Logging

All settings can be overridden via environment variables with the
``CL_ENGINE_`` prefix (e.g. ``CL_ENGINE_DEFAULT_HOTSPOT_LIMIT``).

Example:
    >>> from carbonledger.emissions_engine.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.default_hotspot_limit, cfg.tier1_quality_weight)
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

from carbonledger.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "CL_ENGINE_"


# ---------------------------------------------------------------------------
# EmissionsEngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EmissionsEngineConfig:
    """Complete configuration for the CarbonLedger emissions engine.

    Attributes:
        default_hotspot_limit: Number of hot spots kept when the caller does
            not pass ``hotspot_limit``.
        emission_precision: Decimal places of per-activity tonnes CO2e.
            Sums of quantized values are exact, which keeps aggregation
            order-independent.
        percentage_precision: Decimal places of hot-spot percentages.
        quality_precision: Decimal places of the aggregate quality score.
        tier1_quality_weight: Quality weight of a tier 1 (estimated) activity.
        tier2_quality_weight: Quality weight of a tier 2 activity.
        tier3_quality_weight: Quality weight of a tier 3 (measured) activity.
        emission_factors_path: Optional YAML file replacing the packaged
            default emission factor table.
        log_level: Logging level for the engine.
    """

    # -- Hot spots -----------------------------------------------------------
    default_hotspot_limit: int = 10

    # -- Precision -----------------------------------------------------------
    emission_precision: int = 6
    percentage_precision: int = 4
    quality_precision: int = 2

    # -- Data quality --------------------------------------------------------
    tier1_quality_weight: int = 40
    tier2_quality_weight: int = 70
    tier3_quality_weight: int = 100

    # -- Reference data ------------------------------------------------------
    emission_factors_path: str = ""

    # -- Logging -------------------------------------------------------------
    log_level: str = "INFO"

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigurationError: If a setting is out of range.
        """
        if self.default_hotspot_limit < 0:
            raise ConfigurationError(
                "default_hotspot_limit must be >= 0",
                context={"default_hotspot_limit": self.default_hotspot_limit},
            )
        for name in ("emission_precision", "percentage_precision", "quality_precision"):
            value = getattr(self, name)
            if not 0 <= value <= 12:
                raise ConfigurationError(
                    f"{name} must be between 0 and 12",
                    context={name: value},
                )
        for name in ("tier1_quality_weight", "tier2_quality_weight", "tier3_quality_weight"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ConfigurationError(
                    f"{name} must be between 0 and 100",
                    context={name: value},
                )

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> EmissionsEngineConfig:
        """Build an EmissionsEngineConfig from environment variables.

        Every field can be overridden via ``CL_ENGINE_<FIELD_UPPER>``.
        Integer values are parsed via ``int()``; invalid values fall back
        to the default with a warning.

        Returns:
            Populated EmissionsEngineConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        config = cls(
            default_hotspot_limit=_int(
                "DEFAULT_HOTSPOT_LIMIT", cls.default_hotspot_limit,
            ),
            emission_precision=_int(
                "EMISSION_PRECISION", cls.emission_precision,
            ),
            percentage_precision=_int(
                "PERCENTAGE_PRECISION", cls.percentage_precision,
            ),
            quality_precision=_int(
                "QUALITY_PRECISION", cls.quality_precision,
            ),
            tier1_quality_weight=_int(
                "TIER1_QUALITY_WEIGHT", cls.tier1_quality_weight,
            ),
            tier2_quality_weight=_int(
                "TIER2_QUALITY_WEIGHT", cls.tier2_quality_weight,
            ),
            tier3_quality_weight=_int(
                "TIER3_QUALITY_WEIGHT", cls.tier3_quality_weight,
            ),
            emission_factors_path=_str(
                "EMISSION_FACTORS_PATH", cls.emission_factors_path,
            ),
            log_level=_str("LOG_LEVEL", cls.log_level),
        )
        config.validate()

        logger.info(
            "EmissionsEngineConfig loaded: hotspots=%d, precision=[E=%d P=%d Q=%d], "
            "tier_weights=[%d %d %d], factors=%s",
            config.default_hotspot_limit,
            config.emission_precision,
            config.percentage_precision,
            config.quality_precision,
            config.tier1_quality_weight,
            config.tier2_quality_weight,
            config.tier3_quality_weight,
            config.emission_factors_path or "<packaged>",
        )
        return config


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[EmissionsEngineConfig] = None
_config_lock = threading.Lock()


def get_config() -> EmissionsEngineConfig:
    """Return the singleton EmissionsEngineConfig, creating from env if needed.

    Uses double-checked locking for thread safety with minimal
    contention on the hot path.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = EmissionsEngineConfig.from_env()
    return _config_instance


def set_config(config: EmissionsEngineConfig) -> None:
    """Replace the singleton EmissionsEngineConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    config.validate()
    with _config_lock:
        _config_instance = config
    logger.info("EmissionsEngineConfig replaced programmatically")


def reset_config() -> None:
    """Reset the singleton (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "EmissionsEngineConfig",
    "get_config",
    "set_config",
    "reset_config",
]
