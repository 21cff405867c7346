"""
Input validation and sanitization for tracked events.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Mapping
from typing import Any

from .logging_config import get_logger

logger = get_logger()

MAX_EVENT_NAME_LENGTH = 256
SERIALIZATION_PLACEHOLDER = "[Object]"

ParamValue = str | int | float | bool | None


def validate_event_name(name: Any) -> str:
    """
    Validate an event name.

    Returns:
        The stripped name, truncated to ``MAX_EVENT_NAME_LENGTH`` characters

    Raises:
        TypeError: If ``name`` is not a string
        ValueError: If ``name`` is empty or whitespace
    """
    if not isinstance(name, str):
        raise TypeError(f"event name must be a string, got {type(name).__name__}")
    stripped = name.strip()
    if not stripped:
        raise ValueError("event name must not be empty")
    return stripped[:MAX_EVENT_NAME_LENGTH]


def sanitize_params(
    params: Mapping[Any, Any] | None,
    *,
    on_downgrade: Callable[[str], None] | None = None,
) -> dict[str, ParamValue]:
    """
    Reduce ``params`` to JSON-safe scalar values, keeping insertion order.

    Scalars (str, int, float, bool, None) pass through. Callables are dropped.
    Everything else is stored as its compact JSON text, or as
    ``SERIALIZATION_PLACEHOLDER`` when it cannot be serialized, in which case
    ``on_downgrade`` is called with the offending key.
    """
    if not params:
        return {}

    result: dict[str, ParamValue] = {}
    for raw_key, value in params.items():
        key = raw_key if isinstance(raw_key, str) else str(raw_key)
        if isinstance(value, float) and not math.isfinite(value):
            # NaN and infinities have no JSON representation
            result[key] = None
        elif value is None or isinstance(value, str | bool | int | float):
            result[key] = value
        elif callable(value):
            continue
        else:
            try:
                result[key] = json.dumps(value, separators=(",", ":"), allow_nan=False)
            except (TypeError, ValueError, RecursionError) as e:
                logger.debug(f"Param {key!r} is not serializable, using placeholder: {type(e).__name__}")
                result[key] = SERIALIZATION_PLACEHOLDER
                if on_downgrade is not None:
                    on_downgrade(key)
    return result
