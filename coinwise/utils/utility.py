import datetime
import uuid
from dataclasses import asdict, is_dataclass
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Mapping, Union

from pydantic import ValidationError

# --- JSON-safe conversion ---

_AS_STRING = (Decimal, uuid.UUID, PurePath)


def make_serializable(obj: Any) -> Any:
    """
    Turn domain values into JSON primitives for telemetry and CLI output.
    Decimals keep their exact text; dataclasses become dicts; containers
    are converted element-wise. Anything unknown falls back to str().
    """
    if isinstance(obj, Enum):
        return obj.value
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, Mapping):
        return {str(k): make_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [make_serializable(item) for item in obj]
    if isinstance(obj, _AS_STRING):
        return str(obj)
    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()
    if is_dataclass(obj) and not isinstance(obj, type):
        return make_serializable(asdict(obj))
    return str(obj)


# --- Config layering ---


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Mapping[str, Any]:
    """New mapping with `override` laid over `base`; nested dicts merge, leaves replace."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def insert_path(tree: Dict[str, Any], dotted_path: str, value: Any) -> None:
    """Populate ``tree`` with ``value`` located at ``dotted_path``."""

    segments = [segment.strip() for segment in dotted_path.split(".") if segment.strip()]
    if not segments:
        raise ValueError("Override keys must contain at least one non-empty segment")

    cursor: Dict[str, Any] = tree
    for segment in segments[:-1]:
        existing = cursor.get(segment)
        if existing is None:
            next_node: Dict[str, Any] = {}
            cursor[segment] = next_node
            cursor = next_node
        elif isinstance(existing, dict):
            cursor = existing
        else:
            raise ValueError(
                f"Cannot override nested path '{dotted_path}': "
                f"segment '{segment}' is already a value"
            )

    leaf = segments[-1]
    if isinstance(cursor.get(leaf), dict):
        raise ValueError(
            f"Cannot assign value to '{dotted_path}': existing node at '{leaf}' is a mapping"
        )
    cursor[leaf] = value


def validation_error_parser(error: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "component": "config.schema",
            "path": ".".join(map(str, err["loc"])),
            "message": err["msg"],
            "error_type": err["type"],
        }
        for err in error.errors()
    ]


# --- Decimals ---


def dec(x: Union[str, int, float, Decimal]) -> Decimal:
    """
    Exact Decimal for money math. Floats go through repr so 0.1 stays 0.1
    (wire documents carry floats); pass strings where exactness matters.
    """
    if isinstance(x, bool):
        raise TypeError("dec(): bool is not a number")
    if isinstance(x, Decimal):
        return x
    if isinstance(x, float):
        return Decimal(repr(x))
    return Decimal(x)


def new_id() -> str:
    """Random 128-bit identifier (uuid4 hex)."""
    return uuid.uuid4().hex
