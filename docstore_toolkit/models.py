from datetime import datetime
from typing import List, Dict, Optional, Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import MAX_BATCH_OPERATIONS
from .utils import normalize_value

WhereOperator = Literal["==", "!=", "<", "<=", ">", ">=", "array-contains", "array-contains-any", "in", "not-in"]
SortDirection = Literal["asc", "desc"]
BatchKind = Literal["create", "update", "delete"]

# === Tool inputs ===

class WhereCondition(BaseModel):
    field: str = Field(..., description="Field path to filter on (dotted for nested fields).")
    operator: WhereOperator = Field(..., description="Comparison operator.")
    value: Any = Field(..., description="Value to compare against. Must be a list for 'in', 'not-in' and 'array-contains-any'.")

class OrderBy(BaseModel):
    field: str = Field(..., description="Field path to sort by.")
    direction: SortDirection = Field("asc", description="Sort direction: 'asc' or 'desc'.")

class QueryOptions(BaseModel):
    where: Optional[List[WhereCondition]] = Field(None, description="Optional: filter conditions, applied in the order given.")
    order_by: Optional[List[OrderBy]] = Field(None, description="Optional: sort criteria, applied in the order given.")
    offset: int = Field(0, ge=0, description="Optional: number of documents to skip.")
    limit: int = Field(0, ge=0, description="Optional: maximum number of documents to return (0 for no limit).")

class BatchItem(BaseModel):
    """One create/update/delete item. Missing ids or data are reported per item, not rejected here."""
    id: Optional[str] = Field(None, description="Document ID. Optional for create (auto-generated if omitted), required for update and delete.")
    data: Optional[Dict[str, Any]] = Field(None, description="Document data. Required for create and update.")

class IndexField(BaseModel):
    field: str = Field(..., description="Field path to index.")
    direction: SortDirection = Field("asc", description="Index direction: 'asc' or 'desc'.")

class CollectionPathInput(BaseModel):
    collection_path: str = Field(..., description='The path to the collection (e.g., "users" or "users/123/orders").')

class ListCollectionsInput(BaseModel):
    parent_path: Optional[str] = Field(None, description="Optional: parent document path to list sub-collections of.")

class CreateDocumentInput(CollectionPathInput):
    data: Dict[str, Any] = Field(..., description="The document data to create.")
    document_id: Optional[str] = Field(None, description="Optional document ID. Auto-generated if not provided.")
    merge: bool = Field(False, description="Merge into an existing document instead of replacing it.")
    merge_fields: Optional[List[str]] = Field(None, description="Optional: only write these field paths from data.")

class GetDocumentInput(CollectionPathInput):
    document_id: str = Field(..., description="The ID of the document.")

class GetDocumentsInput(CollectionPathInput):
    query_options: QueryOptions = Field(default_factory=QueryOptions, description="Filtering, ordering and pagination.")

class UpdateDocumentInput(GetDocumentInput):
    data: Dict[str, Any] = Field(..., description="The fields to update (partial update supported).")
    merge: bool = Field(False, description="Merge with existing data instead of a field update.")
    merge_fields: Optional[List[str]] = Field(None, description="Optional: only write these field paths from data.")
    create_if_missing: bool = Field(False, description="Create the document when it does not exist.")

class BatchCreateInput(CollectionPathInput):
    documents: List[Any] = Field(..., description="Documents to create, each an object with optional 'id' and 'data'. Malformed items are reported per item.")

class BatchUpdateInput(CollectionPathInput):
    updates: List[Any] = Field(..., description="Updates to apply, each an object with 'id' and 'data'. Malformed items are reported per item.")

class BatchDeleteInput(CollectionPathInput):
    document_ids: List[Any] = Field(..., description="IDs of the documents to delete. Invalid IDs are reported per item.")

class SchemaInput(CollectionPathInput):
    sample_size: int = Field(100, ge=0, description="Number of documents to sample for schema analysis.")

class StatsInput(CollectionPathInput):
    sample_size: int = Field(1000, ge=0, description="Number of documents to sample for size and field statistics.")

class DeleteCollectionInput(CollectionPathInput):
    recursive: bool = Field(False, description="Delete all documents. Without it, only an empty collection can be deleted.")
    batch_size: int = Field(MAX_BATCH_OPERATIONS, ge=1, le=MAX_BATCH_OPERATIONS, description="Number of documents to delete per batch.")

class CreateIndexInput(CollectionPathInput):
    fields: List[IndexField] = Field(..., min_length=1, description="Fields of the index, in order.")

# === Results ===

class ResultModel(BaseModel):
    """Results are serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class CollectionInfo(ResultModel):
    id: str
    path: str

class DocumentInfo(ResultModel):
    id: str
    path: str
    data: Dict[str, Any]
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    read_time: Optional[datetime] = None

class ExecutionStats(ResultModel):
    documents_scanned: int
    documents_returned: int
    execution_time_ms: float

class QueryResult(ResultModel):
    documents: List[DocumentInfo]
    total_count: int
    has_more: bool = Field(..., description="True when the page filled a nonzero limit. An approximation, not a cursor check.")
    execution_stats: ExecutionStats

class DocumentDeleteResult(ResultModel):
    deleted: bool
    document_id: str

class CollectionDeleteResult(ResultModel):
    deleted: bool
    documents_deleted: int

class BatchOperationResult(ResultModel):
    success: bool
    processed_count: int
    errors: List[str] = Field(default_factory=list)
    results: List[Dict[str, Any]] = Field(default_factory=list)

class FieldObservation(ResultModel):
    path: str
    type: str
    frequency: int = 0
    null_count: int = 0
    examples: List[Any] = Field(default_factory=list)
    is_array: bool = False
    is_nested: bool = False
    unique_values: Optional[int] = None

class NestedStructureObservation(ResultModel):
    path: str
    kind: Literal["object", "array"]
    frequency: int = 0

class IndexSuggestion(ResultModel):
    fields: List[str]
    kind: Literal["single", "composite"]
    reason: str

class SchemaAnalysisResult(ResultModel):
    collection_path: str
    sample_size: int
    common_fields: List[FieldObservation] = Field(default_factory=list)
    data_types: Dict[str, int] = Field(default_factory=dict)
    nested_structures: List[NestedStructureObservation] = Field(default_factory=list)
    index_suggestions: List[IndexSuggestion] = Field(default_factory=list)

class CollectionStatsResult(ResultModel):
    document_count: int = Field(..., description="Exact count from the server.")
    total_size_bytes: float = Field(..., description="Estimate: average sampled document size times document_count.")
    average_document_size: float
    sample_size: int
    field_statistics: List[FieldObservation] = Field(default_factory=list)

class IndexInfo(ResultModel):
    name: str
    fields: List[IndexField]
    unique: bool = False

# === Envelope ===

T = TypeVar("T")

class ToolResult(BaseModel, Generic[T]):
    """Envelope returned by every tool: {success: true, data} or {success: false, error}."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {"success": True, "data": normalize_value(_dump(self.data))}


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return value
