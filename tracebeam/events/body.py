"""
Helpers shaping event bodies for the ingestion API.
"""
import dataclasses
import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel

from tracebeam.constants import TRUNCATABLE_FIELDS, TRUNCATED_PLACEHOLDER

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_camel_case(key: str) -> str:
    """
    Convert a snake_case key to camelCase, leaving camelCase keys untouched.
    """
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camelize_keys(body: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of ``body`` with top-level keys in camelCase. Nested values
    such as input, output and metadata are user data and stay as they are.
    """
    return {to_camel_case(key): value for key, value in body.items()}


def to_jsonable(value: Any) -> Any:
    """
    Convert ``value`` into plain JSON types.

    Datetimes become ISO-8601 strings, pydantic models and dataclasses become
    dicts, and any other unknown object falls back to its ``str()``.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, Enum):
        return to_jsonable(value.value)

    if isinstance(value, (UUID, PurePath)):
        return str(value)

    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))

    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}

    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]

    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")

    return str(value)


def get_byte_size(value: Any) -> int:
    """
    Size in bytes of the compact UTF-8 JSON encoding of ``value``.

    Args:
        value (Any): A JSON-compatible value.

    Returns:
        int: The encoded size.
    """
    return len(json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def truncate_event_body(body: Any, limit: int) -> Any:
    """
    Replace the largest of the ``input``, ``output`` and ``metadata`` fields
    with a placeholder until the body fits in ``limit`` bytes.

    Bodies that are not dicts or that have no such fields are returned as they
    are, even when they still exceed the limit.

    Args:
        body (Any): The JSON-compatible event body.
        limit (int): The maximum encoded size in bytes.

    Returns:
        Any: The original body if it fits, otherwise a truncated copy.
    """
    if not isinstance(body, dict):
        return body

    size = get_byte_size(body)
    if size <= limit:
        return body

    truncated = dict(body)
    field_sizes = sorted(
        ((get_byte_size(truncated[name]), name) for name in TRUNCATABLE_FIELDS if name in truncated),
        key=lambda item: item[0],
        reverse=True,
    )

    for field_size, name in field_sizes:
        if size <= limit:
            break
        truncated[name] = TRUNCATED_PLACEHOLDER
        size = get_byte_size(truncated)
        logger.debug("Truncated %s field of %s bytes", name, field_size)

    return truncated


def prepare_body(body: Mapping[str, Any], limit: Optional[int] = None) -> Dict[str, Any]:
    """
    Turn producer keyword arguments into an ingestion body: drop ``None``
    values, convert keys to camelCase, make values JSON-compatible and
    truncate oversized fields.
    """
    cleaned = {key: value for key, value in camelize_keys(body).items() if value is not None}
    jsonable = to_jsonable(cleaned)
    if limit is not None:
        jsonable = truncate_event_body(jsonable, limit)
    return jsonable
