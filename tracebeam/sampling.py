"""
Deterministic trace sampling.

The hash below reproduces the JavaScript SDK arithmetic (uint32/int32
coercions and double precision multiplication), so every client keeps or
drops the same trace ids.
"""
import logging
import math
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_PRIME = 31
_MIX = 0x45D9F3B
_INT32_MAX = 0x7FFFFFFF
_TWO_32 = 2 ** 32
_TWO_31 = 2 ** 31


def _to_uint32(value) -> int:
    return int(value) % _TWO_32


def _to_int32(value) -> int:
    value = _to_uint32(value)
    return value - _TWO_32 if value >= _TWO_31 else value


def simple_hash(key: str) -> float:
    """
    Hash a string to a float in [0, 1].

    Args:
        key (str): The string to hash.

    Returns:
        float: The normalized hash value.
    """
    h = 0
    data = key.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_uint32(h * _PRIME + unit)

    for _ in range(2):
        h = float((_to_uint32(h) >> 16) ^ _to_int32(h)) * _MIX
    h = (_to_uint32(h) >> 16) ^ _to_int32(h)

    return abs(h) / _INT32_MAX


def is_in_sample(key: str, rate: Optional[float]) -> bool:
    """
    Decide whether the trace identified by ``key`` is kept.

    Args:
        key (str): The trace id.
        rate (Optional[float]): Fraction of traces to keep, ``None`` keeps all.

    Returns:
        bool: True if the trace is in the sample.
    """
    if rate is None:
        return True

    if rate == 0:
        return False

    if not isinstance(rate, (int, float)) or math.isnan(rate) or rate < 0 or rate > 1:
        logger.warning("Sample rate must be between 0 and 1, got %r; sampling is disabled", rate)
        return True

    return simple_hash(key) < rate


def get_sampling_key(event_type: str, body: Dict[str, Any]) -> Optional[str]:
    """
    Return the trace id that groups an ingestion event for sampling.
    """
    if event_type == "trace-create":
        key = body.get("id")
    else:
        key = body.get("traceId")
    return str(key) if key is not None else None
