from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Tuple

from bson import Decimal128, Int64, ObjectId


class FlattenPolicy(str, Enum):
    """
    How nested objects become columns.

    SHALLOW: only the immediate children of a top-level object are pulled up
             ({"a": {"b": {"c": 1}}} -> {"a.b": {"c": 1}}).
    DEEP:    every nested object is expanded into dotted paths
             ({"a": {"b": {"c": 1}}} -> {"a.b.c": 1}).

    The two give different field sets and types for the same input, so a
    dataset is always built with exactly one of them.
    """

    SHALLOW = "shallow"
    DEEP = "deep"


# --------- Scalar normalization ----------

def _iso_utc(value: datetime) -> str:
    # BSON dates decode as naive UTC datetimes
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z"


# Every driver-specific kind we know how to convert. Checked in order; the
# first isinstance match wins. Anything not listed passes through unchanged.
#
# Decimal128 -> float is lossy (34 significant digits down to ~17).
# Int64 -> int is lossless: Python ints are arbitrary precision.
_WRAPPER_CONVERTERS: Tuple[Tuple[type, Callable[[Any], Any]], ...] = (
    (ObjectId, str),
    (datetime, _iso_utc),
    (Decimal128, lambda v: float(str(v))),
    (Int64, int),
)

_PLAIN_SCALARS = (str, int, float, bool, type(None))


def normalize_scalar(value: Any) -> Any:
    """
    Map one value to a JSON-safe equivalent.

    - str / int / float / bool / None -> unchanged
    - ObjectId                        -> 24-char hex string
    - datetime                        -> "YYYY-MM-DDTHH:MM:SS.mmmZ"
    - Decimal128                      -> float
    - Int64                           -> int
    - list / tuple                    -> list, each element normalized
    - anything else (dicts included)  -> unchanged

    Never raises.
    """
    if type(value) in _PLAIN_SCALARS:
        return value

    for wrapper, convert in _WRAPPER_CONVERTERS:
        if isinstance(value, wrapper):
            return convert(value)

    if isinstance(value, (list, tuple)):
        return [normalize_scalar(v) for v in value]

    return value


def normalize_nested(value: Any) -> Any:
    """
    Like normalize_scalar, but also walks into dicts so that no driver
    types survive anywhere inside the value. Structure is kept as-is.
    """
    if isinstance(value, dict):
        return {k: normalize_nested(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_nested(v) for v in value]
    return normalize_scalar(value)


def normalize_document_shallow(doc: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize the top-level values of a document. Nested objects are kept
    (not flattened) but their contents are normalized.
    """
    out: Dict[str, Any] = {}
    for key, value in doc.items():
        if isinstance(value, dict):
            out[key] = {k: normalize_nested(v) for k, v in value.items()}
        else:
            out[key] = normalize_nested(value)
    return out


# --------- Flattening ----------

def flatten_one_level(obj: Dict[str, Any], sep: str = ".") -> Dict[str, Any]:
    """
    Pull the immediate children of nested objects up to the top level.

    Example:
    {"user": {"name": "A", "geo": {"lat": 1}}, "tags": ["x"]}
    --> {"user.name": "A", "user.geo": {"lat": 1}, "tags": ["x"]}

    An empty nested object keeps its key. On key collisions the last write
    in iteration order wins.
    """
    out: Dict[str, Any] = {}
    for key, value in obj.items():
        if isinstance(value, dict) and value:
            for child_key, child_value in value.items():
                out[f"{key}{sep}{child_key}"] = normalize_nested(child_value)
        else:
            out[key] = value
    return out


def flatten_dict(
    data: Dict[str, Any],
    parent_key: str = "",
    sep: str = "."
) -> Dict[str, Any]:
    """
    Recursively flattens a nested dictionary.

    Example:
    {"user": {"name": "A", "age": 12}, "city": "Delhi"}
    --> {"user.name": "A", "user.age": 12, "city": "Delhi"}

    Lists are never expanded into indexed keys. Empty nested objects keep
    their key, same as flatten_one_level.
    """
    items: List[Tuple[str, Any]] = []
    for key, value in data.items():
        new_key = f"{parent_key}{sep}{key}" if parent_key else key
        if isinstance(value, dict) and value:
            items.extend(flatten_dict(value, new_key, sep=sep).items())
        else:
            items.append((new_key, normalize_nested(value)))
    return dict(items)


def normalize_document(
    doc: Dict[str, Any],
    policy: FlattenPolicy = FlattenPolicy.SHALLOW,
) -> Dict[str, Any]:
    """
    Raw document -> flat row of JSON-safe values.
    """
    if FlattenPolicy(policy) is FlattenPolicy.DEEP:
        return flatten_dict(doc)
    return flatten_one_level(normalize_document_shallow(doc))
