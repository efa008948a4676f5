from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from etl import FlattenPolicy, normalize_document

logger = logging.getLogger(__name__)


# ---------- Policy constants ----------

# string fields with this many distinct values or more are not used as
# categorical chart axes
CATEGORICAL_CARDINALITY_THRESHOLD = 50

MIN_SAMPLE_ROWS = 5
MAX_SAMPLE_ROWS = 10

_ISO_DATETIME_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T")


# ---------- Type helpers ----------

def infer_value_type(v: Any) -> str:
    """Classify a single non-null value."""
    if isinstance(v, str):
        if _ISO_DATETIME_PREFIX.match(v):
            return "date"
        return "string"
    if isinstance(v, bool):
        return "boolean"
    if isinstance(v, (int, float)):
        return "number"
    if isinstance(v, list):
        return "array"
    if isinstance(v, dict):
        return "object"
    return "mixed"


def infer_field_type(values: Iterable[Any]) -> str:
    """
    One type tag for a whole column.

    Nulls are ignored; an all-null column is "null". Any disagreement
    between the remaining values gives "mixed".
    """
    types = {infer_value_type(v) for v in values if v is not None}
    if not types:
        return "null"
    if len(types) == 1:
        return types.pop()
    return "mixed"


def sample_size(row_count: int) -> int:
    return min(MAX_SAMPLE_ROWS, max(MIN_SAMPLE_ROWS, row_count))


def empty_dataset() -> Dict[str, Any]:
    return {"schema": {"fields": []}, "rows": [], "sampleRows": []}


# ---------- Assembly ----------

def infer_schema(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Union of field names across all rows (first-seen order), each typed
    over every row that carries it.
    """
    columns: Dict[str, List[Any]] = {}
    for row in rows:
        for name, value in row.items():
            columns.setdefault(name, []).append(value)

    fields = [
        {"name": name, "type": infer_field_type(values)}
        for name, values in columns.items()
    ]
    return {"fields": fields}


def dataset_from_rows(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Build a dataset from rows that are already flat and normalized.
    Rows are not flattened again.
    """
    if not rows:
        return empty_dataset()

    rows = list(rows)
    return {
        "schema": infer_schema(rows),
        "rows": rows,
        "sampleRows": rows[:sample_size(len(rows))],
    }


def documents_to_dataset(
    docs: Optional[List[Dict[str, Any]]],
    policy: FlattenPolicy = FlattenPolicy.SHALLOW,
) -> Dict[str, Any]:
    """
    Raw documents -> {"schema": {"fields": [...]}, "rows": [...], "sampleRows": [...]}

    Empty input gives an empty dataset rather than an error; callers check
    `rows` before sending anything to an LLM.
    """
    if not docs:
        return empty_dataset()

    rows = [normalize_document(doc, policy) for doc in docs]
    dataset = dataset_from_rows(rows)
    logger.debug(
        "Assembled dataset: %d rows, %d fields (%s flatten)",
        len(rows), len(dataset["schema"]["fields"]), FlattenPolicy(policy).value,
    )
    return dataset


# ---------- Chart field selection ----------

def distinct_count(rows: Iterable[Dict[str, Any]], field: str) -> int:
    seen = set()
    for row in rows:
        value = row.get(field)
        if value is not None:
            seen.add(value if isinstance(value, (str, int, float, bool)) else repr(value))
    return len(seen)


def is_categorical(
    field: Dict[str, Any],
    rows: List[Dict[str, Any]],
    threshold: int = CATEGORICAL_CARDINALITY_THRESHOLD,
) -> bool:
    if field["type"] != "string":
        return False
    return distinct_count(rows, field["name"]) < threshold


def select_chart_fields(
    dataset: Dict[str, Any],
    threshold: int = CATEGORICAL_CARDINALITY_THRESHOLD,
) -> Dict[str, List[str]]:
    """
    Split a dataset's fields into chart-axis candidates.

    High-cardinality string fields keep their "string" type in the schema
    but are left out of "categorical".
    """
    rows = dataset.get("rows") or []
    result: Dict[str, List[str]] = {"categorical": [], "numeric": [], "temporal": []}

    for field in dataset.get("schema", {}).get("fields", []):
        if field["type"] == "number":
            result["numeric"].append(field["name"])
        elif field["type"] == "date":
            result["temporal"].append(field["name"])
        elif is_categorical(field, rows, threshold):
            result["categorical"].append(field["name"])

    return result
