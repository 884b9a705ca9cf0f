"""CarbonLedger Exception Hierarchy.

Every error raised by the emissions engine carries rich context for
debugging, monitoring and API responses.

Exception Hierarchy:
    CarbonLedgerException (base)
    ├── ActivityException              (per-activity, recovered as warnings)
    │   ├── InvalidActivityError
    │   ├── UnitConversionError
    │   └── FactorNotFoundError
    ├── CalculationException           (structural, fatal for the call)
    │   ├── ProjectNotFoundError
    │   ├── ActivityNotFoundError
    │   ├── RecalculationInProgressError
    │   └── CalculationFailedError
    └── ConfigurationError
        └── InvalidOptionsError

All exceptions include:
- error_code: Unique error identifier (e.g. "CL_ACTIVITY_FACTOR_NOT_FOUND_ERROR")
- context: Dictionary with error-specific details
- timestamp: When the error occurred

Example:
    >>> from carbonledger.exceptions import FactorNotFoundError
    >>> raise FactorNotFoundError(
    ...     message="No emission factor for 'diesel' in 2023",
    ...     activity_id="act-001",
    ...     context={"activity_type": "diesel", "year": 2023},
    ... )
"""

import json
import re
from datetime import datetime
from typing import Any, Dict, Optional


# ==============================================================================
# Base Exception
# ==============================================================================

class CarbonLedgerException(Exception):
    """Base exception for all CarbonLedger errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier
        context: Dictionary with error-specific details
        timestamp: When the error occurred
    """

    ERROR_PREFIX = "CL"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.context = context or {}
        self.timestamp = datetime.now()

    def _generate_error_code(self) -> str:
        """Generate error code from the class name.

        Returns:
            Error code like "CL_ACTIVITY_INVALID_ACTIVITY_ERROR"
        """
        error_type = re.sub(r'(?<!^)(?=[A-Z])', '_', self.__class__.__name__).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        return f"[{self.error_code}] - {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}')"
        )


# ==============================================================================
# Activity Exceptions
# ==============================================================================

class ActivityException(CarbonLedgerException):
    """Base exception for errors confined to a single activity.

    The orchestrator never lets these abort a run: the offending activity is
    excluded from totals and reported in the result's warnings.
    """
    ERROR_PREFIX = "CL_ACTIVITY"

    def __init__(
        self,
        message: str,
        activity_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if activity_id:
            context["activity_id"] = activity_id
        super().__init__(message, context=context)
        self.activity_id = activity_id


class InvalidActivityError(ActivityException):
    """Activity violates a data-model invariant.

    Example:
        >>> raise InvalidActivityError(
        ...     message="Scope 3 activity has no category",
        ...     activity_id="act-007",
        ...     invalid_fields={"scope3_category": "required for scope3"},
        ... )
    """

    def __init__(
        self,
        message: str,
        activity_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        invalid_fields: Optional[Dict[str, str]] = None,
    ):
        if invalid_fields:
            context = context or {}
            context["invalid_fields"] = invalid_fields
        super().__init__(message, activity_id=activity_id, context=context)


class UnitConversionError(ActivityException):
    """Unit is unknown or has no conversion path to the required unit."""

    def __init__(
        self,
        message: str,
        activity_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        from_unit: Optional[str] = None,
        to_unit: Optional[str] = None,
    ):
        context = context or {}
        if from_unit:
            context["from_unit"] = from_unit
        if to_unit:
            context["to_unit"] = to_unit
        super().__init__(message, activity_id=activity_id, context=context)


class FactorNotFoundError(ActivityException):
    """No emission factor candidate exists at any fallback level."""
    pass


# ==============================================================================
# Calculation Exceptions
# ==============================================================================

class CalculationException(CarbonLedgerException):
    """Base exception for structural errors that abort a whole operation."""
    ERROR_PREFIX = "CL_CALCULATION"

    def __init__(
        self,
        message: str,
        project_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if project_id:
            context["project_id"] = project_id
        super().__init__(message, context=context)
        self.project_id = project_id


class ProjectNotFoundError(CalculationException):
    """Project does not exist in the store."""
    pass


class ActivityNotFoundError(CalculationException):
    """Activity does not exist or does not belong to the project."""

    def __init__(
        self,
        message: str,
        project_id: Optional[str] = None,
        activity_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if activity_id:
            context["activity_id"] = activity_id
        super().__init__(message, project_id=project_id, context=context)
        self.activity_id = activity_id


class RecalculationInProgressError(CalculationException):
    """A recalculation for the same project is already running.

    Callers may retry once the in-flight recalculation completes.
    """
    pass


class CalculationFailedError(CalculationException):
    """Unexpected internal fault during a recalculation.

    No partial result is persisted; the previous result stays authoritative.

    Example:
        >>> raise CalculationFailedError(
        ...     message="Failed to persist calculation result",
        ...     project_id="proj-1",
        ...     cause=IOError("disk full"),
        ... )
    """

    def __init__(
        self,
        message: str,
        project_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        context = context or {}
        if cause is not None:
            context["cause"] = str(cause)
            context["cause_type"] = type(cause).__name__
        super().__init__(message, project_id=project_id, context=context)
        self.cause = cause


# ==============================================================================
# Configuration Exceptions
# ==============================================================================

class ConfigurationError(CarbonLedgerException):
    """Engine configuration is invalid."""
    ERROR_PREFIX = "CL_CONFIG"


class InvalidOptionsError(ConfigurationError):
    """Calculation options contain unrecognized keys or invalid values."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        invalid_keys: Optional[list] = None,
    ):
        context = context or {}
        if invalid_keys:
            context["invalid_keys"] = invalid_keys
        super().__init__(message, context=context)


__all__ = [
    "CarbonLedgerException",
    "ActivityException",
    "InvalidActivityError",
    "UnitConversionError",
    "FactorNotFoundError",
    "CalculationException",
    "ProjectNotFoundError",
    "ActivityNotFoundError",
    "RecalculationInProgressError",
    "CalculationFailedError",
    "ConfigurationError",
    "InvalidOptionsError",
]
