from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

FieldType = Literal["string", "number", "boolean", "date", "null", "array", "object", "mixed"]

MongoOperation = Literal[
    "find",
    "aggregate",
    "insertOne",
    "insertMany",
    "updateOne",
    "updateMany",
    "deleteOne",
    "deleteMany",
    "countDocuments",
]


class FieldDescriptor(BaseModel):
    name: str
    type: FieldType


class DatasetSchema(BaseModel):
    fields: List[FieldDescriptor] = Field(default_factory=list)


class Dataset(BaseModel):
    """
    Wire shape of a dataset. `schema` clashes with a BaseModel attribute,
    hence the alias.
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_: DatasetSchema = Field(default_factory=DatasetSchema, alias="schema")
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    sample_rows: List[Dict[str, Any]] = Field(default_factory=list, alias="sampleRows")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ChartFields(BaseModel):
    categorical: List[str]
    numeric: List[str]
    temporal: List[str]


class MongoQuery(BaseModel):
    operation: MongoOperation
    collection: str = Field(..., pattern=r"^[a-zA-Z0-9_.-]+$")
    query: Any = None
    options: Dict[str, Any] | None = None
