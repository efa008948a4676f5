import json
import logging
from typing import Any, Dict, List, Optional

from bson import json_util
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import config
from cache import DatasetCache, fingerprint
from cleaning import CleaningOptions, apply_cleaning_options
from database import MongoSourceError, fetch_documents, run_read_query
from etl import FlattenPolicy
from log_config import setup_logging
from models import ChartFields, Dataset, MongoQuery
from parsers import UnsupportedContentType, parse_documents
from prompts import (
    QueryValidationError,
    UnsafeOperationError,
    build_analysis_prompt,
    parse_generated_query,
)
from schema_inspector import documents_to_dataset, select_chart_fields

logger = logging.getLogger(__name__)


# ---------- FastAPI app ----------

app = FastAPI(title="Dynamic Dataset API")

# CORS (so frontend JS can call API even if opened from browser)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# owned by the app, not the module: tests and workers each get their own
app.state.dataset_cache = DatasetCache(config.DATASET_CACHE_SIZE)


@app.on_event("startup")
def on_startup():
    setup_logging(config.LOG_LEVEL)


def get_cache(request: Request) -> DatasetCache:
    return request.app.state.dataset_cache


# ---------- Request / Response Models ----------

class DocumentsPayload(BaseModel):
    documents: List[Dict[str, Any]] = Field(
        ...,
        description="Raw documents. MongoDB Extended JSON ({\"$oid\": ...}, {\"$date\": ...}) is accepted."
    )
    flatten: FlattenPolicy = Field(
        default=FlattenPolicy.SHALLOW,
        description='"shallow" pulls up one level of nesting, "deep" expands every level.'
    )


class DatasetPayload(BaseModel):
    dataset: Dataset


class CleanPayload(BaseModel):
    dataset: Dataset
    options: CleaningOptions = Field(default_factory=CleaningOptions)


class PromptPayload(BaseModel):
    dataset: Dataset
    question: str


class PromptResponse(BaseModel):
    prompt: str


class MongoDatasetPayload(BaseModel):
    database: str = Field(default=config.MONGO_DB_NAME)
    collection: str = Field(..., pattern=r"^[a-zA-Z0-9_.-]+$")
    filter: Dict[str, Any] = Field(
        default_factory=dict,
        description="Query filter in Extended JSON."
    )
    limit: int = Field(default=100, ge=1)
    flatten: FlattenPolicy = FlattenPolicy.SHALLOW


class MongoQueryPayload(BaseModel):
    database: str = Field(default=config.MONGO_DB_NAME)
    generated_query: str = Field(
        ...,
        description="Raw LLM reply holding the query JSON (markdown fences allowed)."
    )


class MongoQueryResponse(BaseModel):
    query: MongoQuery
    dataset: Optional[Dataset] = None
    count: Optional[int] = None


# ---------- Helpers ----------

def _from_extended_json(value: Any) -> Any:
    # request bodies arrive as plain JSON; decode $oid / $date / $numberLong ...
    return json_util.loads(json.dumps(value))


def _build_cached(cache: DatasetCache, docs: List[Dict[str, Any]], policy: FlattenPolicy) -> Dict[str, Any]:
    key = fingerprint({"policy": policy.value, "documents": docs})
    return cache.get_or_build(key, lambda: documents_to_dataset(docs, policy))


# ---------- API Routes ----------

@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/datasets/documents", response_model=Dataset)
def dataset_from_documents(payload: DocumentsPayload, request: Request):
    """
    Raw documents -> dataset (normalized rows + inferred schema + sample rows).
    """
    docs = _from_extended_json(payload.documents)
    return _build_cached(get_cache(request), docs, payload.flatten)


@app.post("/api/datasets/upload", response_model=Dataset)
async def dataset_from_upload(
    request: Request,
    file: UploadFile = File(...),
    content_type: Optional[str] = Form(None),
    flatten: FlattenPolicy = Form(FlattenPolicy.SHALLOW),
):
    """
    Upload a json/csv/xml/html/txt/pdf file -> dataset.
    Nothing is stored; the file is parsed and analyzed in memory.
    """
    file_bytes = await file.read()
    cache = get_cache(request)
    # the parser is picked from the extension when content_type is omitted
    key = fingerprint({
        "file": file_bytes,
        "name": file.filename or "",
        "type": content_type,
        "policy": flatten.value,
    })

    cached = cache.get(key)
    if cached is not None:
        return cached

    try:
        docs = parse_documents(file.filename or "", file_bytes, content_type)
    except UnsupportedContentType as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        raise HTTPException(status_code=400, detail=f"Could not parse {file.filename}: {e}")
    except Exception as e:
        logger.exception("Failed to parse upload %s", file.filename)
        raise HTTPException(status_code=400, detail=str(e))

    dataset = documents_to_dataset(docs, flatten)
    cache.put(key, dataset)
    return dataset


@app.post("/api/datasets/clean", response_model=Dataset)
def clean_dataset(payload: CleanPayload):
    return apply_cleaning_options(payload.dataset.to_dict(), payload.options)


@app.post("/api/datasets/chart-fields", response_model=ChartFields)
def chart_fields(payload: DatasetPayload):
    return select_chart_fields(payload.dataset.to_dict())


@app.post("/api/datasets/prompt", response_model=PromptResponse)
def analysis_prompt(payload: PromptPayload):
    """
    Prompt text for an analysis request; the caller sends it to the LLM.
    """
    try:
        prompt = build_analysis_prompt(payload.dataset.to_dict(), payload.question)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PromptResponse(prompt=prompt)


@app.post("/api/mongodb/dataset", response_model=Dataset)
def mongo_dataset(payload: MongoDatasetPayload, request: Request):
    """
    Read a collection (optionally filtered) -> dataset.
    """
    try:
        docs = fetch_documents(
            payload.database,
            payload.collection,
            filter=_from_extended_json(payload.filter),
            limit=payload.limit,
        )
    except MongoSourceError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _build_cached(get_cache(request), docs, payload.flatten)


@app.post("/api/mongodb/query", response_model=MongoQueryResponse)
def mongo_query(payload: MongoQueryPayload, request: Request):
    """
    Validate an LLM-generated query, run it read-only, return the result
    as a dataset (find / aggregate) or a count (countDocuments).
    """
    try:
        query = parse_generated_query(payload.generated_query)
        decoded = query.model_copy(update={"query": _from_extended_json(query.query)})
        result = run_read_query(decoded, payload.database)
    except QueryValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except UnsafeOperationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MongoSourceError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    if isinstance(result, list):
        dataset = _build_cached(get_cache(request), result, FlattenPolicy.SHALLOW)
        return MongoQueryResponse(query=query, dataset=Dataset.model_validate(dataset))
    return MongoQueryResponse(query=query, count=result)


@app.delete("/api/cache")
def clear_cache(request: Request):
    """
    Drops every cached dataset.
    """
    get_cache(request).clear()
    return {"status": "ok", "message": "Dataset cache cleared"}
