"""
CarbonLedger Determinism Module - Utilities for Deterministic Operations

Keeps emission calculations reproducible and auditable:

- Controlled timestamp generation with a freezable clock
- Content-based SHA-256 hashing with canonical JSON serialization
- A fixed Decimal context for all engine arithmetic
"""

import hashlib
import json
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Context, Decimal, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Any, Iterator, Optional, Union


# Decimal contexts are thread-local, so engine code enters this context
# explicitly instead of relying on the global one.
ENGINE_CONTEXT = Context(prec=28, rounding=ROUND_HALF_UP)


@contextmanager
def engine_decimal_context() -> Iterator[Context]:
    """Run the enclosed arithmetic under the engine's Decimal context."""
    with localcontext(ENGINE_CONTEXT) as ctx:
        yield ctx


def quantize(value: Decimal, places: int, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round ``value`` to ``places`` decimal places (half-up unless told otherwise)."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric value to Decimal without float artefacts.

    Floats are converted through ``str`` so that 0.1 stays 0.1.

    Raises:
        TypeError: If value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Cannot convert bool to Decimal")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        return Decimal(value.replace(',', '').strip())
    raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")


class DeterministicClock:
    """
    A deterministic clock that can be frozen for testing and auditing.

    All engine timestamps come from this clock so that tests can freeze
    time and compare complete results.
    """

    _instance = None
    _lock = threading.Lock()
    _frozen_time: Optional[datetime] = None

    def __new__(cls):
        """Singleton pattern to ensure single clock instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
            return cls._instance

    @classmethod
    def now(cls, tz=None) -> datetime:
        """
        Get current time, either real or frozen.

        Args:
            tz: Timezone info (defaults to UTC)

        Returns:
            Current datetime with microseconds removed
        """
        instance = cls()
        if instance._frozen_time is not None:
            if tz is not None:
                return instance._frozen_time.replace(tzinfo=tz)
            return instance._frozen_time
        return datetime.now(tz or timezone.utc).replace(microsecond=0)

    @classmethod
    def utcnow(cls) -> datetime:
        """Get current UTC time."""
        return cls.now(timezone.utc)

    @classmethod
    def freeze(cls, frozen_time: Optional[datetime] = None):
        """
        Freeze clock at specific time.

        Args:
            frozen_time: Time to freeze at (defaults to current time)
        """
        instance = cls()
        if frozen_time is None:
            frozen_time = datetime.now(timezone.utc).replace(microsecond=0)
        instance._frozen_time = frozen_time

    @classmethod
    def unfreeze(cls):
        """Unfreeze the clock."""
        instance = cls()
        instance._frozen_time = None

    @classmethod
    @contextmanager
    def frozen(cls, frozen_time: Optional[datetime] = None):
        """
        Context manager for temporarily freezing time.

        Usage:
            with DeterministicClock.frozen(datetime(2025, 1, 1, tzinfo=timezone.utc)):
                # All timestamps will be 2025-01-01
                pass
        """
        cls.freeze(frozen_time)
        try:
            yield
        finally:
            cls.unfreeze()


def _json_default(obj: Any) -> Any:
    """Serialize the non-JSON types used in engine payloads."""
    if isinstance(obj, Decimal):
        # String form keeps exact precision
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonical_json(content: Any) -> str:
    """Serialize content with sorted keys and compact separators."""
    return json.dumps(
        content,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=True,
        default=_json_default,
    )


def content_hash(content: Union[str, bytes, dict, list]) -> str:
    """
    Generate SHA-256 hash of content for provenance tracking.

    Args:
        content: Content to hash

    Returns:
        Full SHA-256 hash hex string
    """
    if isinstance(content, (dict, list)):
        content = canonical_json(content)

    if isinstance(content, str):
        content = content.encode('utf-8')

    return hashlib.sha256(content).hexdigest()


def utcnow() -> datetime:
    """Get current UTC time from the deterministic clock."""
    return DeterministicClock.utcnow()
