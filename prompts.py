"""
Prompt text for LLM requests built from a dataset, plus validation of the
MongoDB queries an LLM sends back.

Nothing here talks to an LLM; callers send the strings themselves.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from models import MongoQuery

DANGEROUS_OPERATIONS = ("updateMany", "deleteMany")


class QueryValidationError(Exception):
    """LLM output is not a well-formed MongoDB query."""


class UnsafeOperationError(Exception):
    """Query is well-formed but must not be run."""


# ---------- Dataset prompts ----------

def build_dataset_context(dataset: Dict[str, Any]) -> str:
    """
    Schema + row count + sample rows as one text block. Only sampleRows go
    into the prompt, which keeps token usage bounded.
    """
    fields = dataset.get("schema", {}).get("fields", [])
    schema_summary = "\n".join(f"- {f['name']} ({f['type']})" for f in fields)
    sample = json.dumps(dataset.get("sampleRows") or [], indent=2, default=str)

    return (
        "The dataset may contain nested fields flattened as \"parent.child\".\n\n"
        f"Dataset Schema:\n{schema_summary}\n\n"
        f"Total Records: {len(dataset.get('rows') or [])}\n\n"
        f"Sample Data:\n{sample}"
    )


def build_analysis_prompt(dataset: Dict[str, Any], question: str) -> str:
    if not dataset.get("schema", {}).get("fields"):
        raise ValueError("Dataset has no fields")
    if not question or not question.strip():
        raise ValueError("Question is required")

    return (
        "You are a data analyst. Answer the question using ONLY fields that "
        "appear in the schema or sample data.\n\n"
        f"{build_dataset_context(dataset)}\n\n"
        f"Question:\n{question.strip()}"
    )


# ---------- MongoDB query generation ----------

MONGO_PROMPT_TEMPLATE = """
Convert natural language to MongoDB queries.

DATABASE SCHEMA:
{{schema}}

USER REQUEST:
"{{input}}"

OUTPUT (JSON only, no markdown/text):
{
  "operation": "find|aggregate|countDocuments",
  "collection": "string",
  "query": {}
}

RULES:
1. All fields must exist in schema
2. Limit unbounded queries to 100
3. Use {{CURRENT_DATE}} for "today", {{USER_TZ}} for timezone
4. Nested fields: use dot notation ("address.city")
5. Arrays: match values directly or use $elemMatch for objects
6. Always validate collection names against schema

ERRORS (return these if applicable):
{"error": "Field 'xyz' not in schema"}
{"error": "Ambiguous: specify collection"}
{"error": "Collection 'xyz' not in schema"}

PATTERNS:

find:
{ "operation": "find", "collection": "users", "query": {
  "filter": {"age": {"$gt": 25}},
  "projection": {"name": 1},
  "options": {"sort": {"name": 1}, "limit": 10, "skip": 0}
}}

aggregate (grouping/joins/calculations):
{ "operation": "aggregate", "collection": "orders", "query": [
  {"$match": {"status": "completed"}},
  {"$group": {"_id": "$userId", "total": {"$sum": "$amount"}}},
  {"$sort": {"total": -1}},
  {"$limit": 5}
]}

countDocuments:
{ "operation": "countDocuments", "collection": "users", "query": {
  "filter": {"age": {"$gte": 18}}
}}

Generate query. Return JSON only.
"""


def build_mongo_prompt(
    schema: str,
    user_input: str,
    current_date: Optional[str] = None,
    timezone_name: str = "UTC",
) -> str:
    if not schema or not schema.strip():
        raise ValueError("Schema is required and must be a non-empty string")
    if not user_input or not user_input.strip():
        raise ValueError("User input is required and must be a non-empty string")

    current_date = current_date or datetime.now(timezone.utc).isoformat()
    return (
        MONGO_PROMPT_TEMPLATE
        .replace("{{schema}}", schema.strip())
        .replace("{{input}}", user_input.strip())
        .replace("{{CURRENT_DATE}}", current_date)
        .replace("{{USER_TZ}}", timezone_name)
    )


_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def strip_code_fences(text: str) -> str:
    match = _FENCED.search(text)
    return (match.group(1) if match else text).strip()


def parse_generated_query(text: str) -> MongoQuery:
    """
    LLM reply -> validated MongoQuery.

    Raises QueryValidationError for bad JSON, an {"error": ...} reply or a
    bad shape, and UnsafeOperationError for bulk writes without a filter.
    """
    try:
        parsed = json.loads(strip_code_fences(text or ""))
    except json.JSONDecodeError as e:
        raise QueryValidationError(f"LLM returned invalid JSON: {e}") from e

    if isinstance(parsed, dict) and "error" in parsed and "operation" not in parsed:
        raise QueryValidationError(str(parsed["error"]))

    try:
        query = MongoQuery.model_validate(parsed)
    except ValidationError as e:
        raise QueryValidationError(f"Invalid query structure: {e}") from e

    if query.operation in DANGEROUS_OPERATIONS:
        flt = query.query.get("filter") if isinstance(query.query, dict) else None
        if not isinstance(flt, dict) or not flt:
            raise UnsafeOperationError(
                f"{query.operation} requires a non-empty filter to prevent mass modifications"
            )

    return query
