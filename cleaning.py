import json
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel

from schema_inspector import dataset_from_rows

logger = logging.getLogger(__name__)


class CleaningOptions(BaseModel):
    remove_empty_rows: bool = True
    remove_duplicates: bool = False
    trim_whitespace: bool = False
    handle_missing_values: Literal["keep", "remove", "fill"] = "keep"
    fill_value: Optional[Any] = None


def is_empty_row(row: Dict[str, Any]) -> bool:
    return all(v is None for v in row.values())


def filter_empty_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [r for r in rows if not is_empty_row(r)]


def _row_key(row: Dict[str, Any]) -> str:
    return json.dumps(row, sort_keys=True, default=str)


def drop_duplicates(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    out: List[Dict[str, Any]] = []
    for row in rows:
        key = _row_key(row)
        if key in seen:
            continue
        seen.add(key)
        out.append(row)
    return out


def trim_strings(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {k: v.strip() if isinstance(v, str) else v for k, v in row.items()}
        for row in rows
    ]


def apply_cleaning_options(dataset: Dict[str, Any], options: CleaningOptions) -> Dict[str, Any]:
    """
    Returns a new dataset with the requested cleaning applied and the schema
    re-inferred. The input dataset is left untouched.

    Missing-value handling only looks at keys a row actually has; a field
    absent from a row is not treated as missing.
    """
    rows = [dict(r) for r in dataset.get("rows") or []]
    before = len(rows)

    if options.remove_empty_rows:
        rows = filter_empty_rows(rows)

    if options.remove_duplicates:
        rows = drop_duplicates(rows)

    if options.trim_whitespace:
        rows = trim_strings(rows)

    if options.handle_missing_values == "remove":
        rows = [r for r in rows if all(v is not None for v in r.values())]
    elif options.handle_missing_values == "fill" and options.fill_value is not None:
        rows = [
            {k: options.fill_value if v is None else v for k, v in row.items()}
            for row in rows
        ]

    logger.info("Cleaning kept %d of %d rows", len(rows), before)
    return dataset_from_rows(rows)
