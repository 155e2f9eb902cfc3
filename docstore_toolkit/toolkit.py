import logging
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Type

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .batch import delete_collection, run_batch
from .config import MAX_BATCH_OPERATIONS, StoreSettings
from .exceptions import NotFoundError, RemoteWriteError, ToolkitError, ValidationError
from .models import (
    BatchCreateInput, BatchDeleteInput, BatchUpdateInput, CollectionInfo, CollectionPathInput,
    CreateDocumentInput, CreateIndexInput, DeleteCollectionInput, DocumentDeleteResult, GetDocumentInput,
    GetDocumentsInput, IndexField, IndexInfo, ListCollectionsInput, QueryOptions, SchemaInput, StatsInput,
    ToolResult, UpdateDocumentInput,
)
from .query import execute_query, to_document_info
from .schema import DEFAULT_SCHEMA_SAMPLE_SIZE, analyze_schema
from .stats import DEFAULT_STATS_SAMPLE_SIZE, get_stats
from .store import DocumentStore, MongoDocumentStore
from .utils import validate_collection_path

logger = logging.getLogger(__name__)


class DocStoreToolkit:
    """
    Tool operations over a hierarchical document store, for use by an agent.

    Every operation returns a ToolResult envelope instead of raising: either
    {success: True, data} or {success: False, error}. Use get_tools() to
    retrieve the operations as LangChain tools.

    The store is injected so any DocumentStore implementation (or a test
    double) can be used; from_settings() builds the MongoDB-backed one.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    @classmethod
    def from_settings(cls, settings: Optional[StoreSettings] = None) -> "DocStoreToolkit":
        """Toolkit on a MongoDB store. Settings default to StoreSettings.from_env()."""
        return cls(MongoDocumentStore(settings or StoreSettings.from_env()))

    def close(self):
        self.store.close()

    def _fail(self, action: str, error: Exception) -> ToolResult:
        message = f"Failed to {action}: {error}"
        if isinstance(error, RemoteWriteError) and error.committed_count:
            message += f" ({error.committed_count} documents were already committed and are not rolled back)"
        logger.error(message)
        return ToolResult.fail(message)

    # === Documents ===

    def create_document(
        self,
        collection_path: str,
        data: Dict[str, Any],
        document_id: Optional[str] = None,
        merge: bool = False,
        merge_fields: Optional[List[str]] = None,
    ) -> ToolResult:
        """Creates (or overwrites) a document and returns it as stored."""
        try:
            if data is None:
                raise ValidationError("Collection path and data are required")
            if document_id is None and not (merge or merge_fields):
                reference = self.store.add(collection_path, data)
            else:
                reference = self.store.document(collection_path, document_id)
                self.store.set(reference, data, merge=merge, merge_fields=merge_fields)
            snapshot = self.store.get(reference)
            if snapshot is None:
                return ToolResult.fail("Document was not created successfully")
            logger.info(f"Created document '{reference.path}'")
            return ToolResult.ok(to_document_info(snapshot))
        except ToolkitError as e:
            return self._fail("create document", e)

    def get_document(self, collection_path: str, document_id: str) -> ToolResult:
        """Reads one document. A missing document is a success with data None."""
        try:
            if not document_id:
                raise ValidationError("Collection path and document ID are required")
            snapshot = self.store.fetch_one(collection_path, document_id)
            if snapshot is None:
                return ToolResult.ok(None)
            return ToolResult.ok(to_document_info(snapshot))
        except ToolkitError as e:
            return self._fail("get document", e)

    def get_documents(self, collection_path: str, query_options: Any = None) -> ToolResult:
        """Runs a query built from where/order_by/offset/limit options."""
        try:
            try:
                options = QueryOptions.model_validate(query_options or {})
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid query options: {e}") from e
            return ToolResult.ok(execute_query(self.store.collection(collection_path), options))
        except ToolkitError as e:
            return self._fail("get documents", e)

    def update_document(
        self,
        collection_path: str,
        document_id: str,
        data: Dict[str, Any],
        merge: bool = False,
        merge_fields: Optional[List[str]] = None,
        create_if_missing: bool = False,
    ) -> ToolResult:
        """Updates a document and returns it as stored.

        Without merge the listed fields are overwritten in place. A missing
        document is an error unless create_if_missing is set.
        """
        try:
            if not document_id or data is None:
                raise ValidationError("Collection path, document ID, and data are required")
            reference = self.store.document(collection_path, document_id)
            exists = self.store.get(reference) is not None
            if not exists and not create_if_missing:
                raise NotFoundError(f"Document '{reference.path}' does not exist")

            if merge or merge_fields:
                self.store.set(reference, data, merge=True, merge_fields=merge_fields)
            elif exists:
                self.store.update(reference, data)
            else:
                self.store.set(reference, data)

            snapshot = self.store.get(reference)
            if snapshot is None:
                return ToolResult.fail("Document update failed")
            logger.info(f"Updated document '{reference.path}'")
            return ToolResult.ok(to_document_info(snapshot))
        except ToolkitError as e:
            return self._fail("update document", e)

    def delete_document(self, collection_path: str, document_id: str) -> ToolResult:
        try:
            if not document_id:
                raise ValidationError("Collection path and document ID are required")
            reference = self.store.document(collection_path, document_id)
            if self.store.get(reference) is None:
                raise NotFoundError(f"Document '{reference.path}' does not exist")
            self.store.delete(reference)
            logger.info(f"Deleted document '{reference.path}'")
            return ToolResult.ok(DocumentDeleteResult(deleted=True, document_id=reference.id))
        except ToolkitError as e:
            return self._fail("delete document", e)

    # === Batches ===

    def _run_batch(self, kind: str, action: str, collection_path: str, items: Optional[List[Any]]) -> ToolResult:
        try:
            if not items:
                raise ValidationError("Collection path and a non-empty item list are required")
            result = run_batch(self.store, kind, collection_path, items)
            return ToolResult.ok(result)
        except ToolkitError as e:
            return self._fail(action, e)

    def batch_create_documents(self, collection_path: str, documents: List[Any]) -> ToolResult:
        """Creates documents ({id?, data}) in atomic chunks of up to MAX_BATCH_OPERATIONS."""
        return self._run_batch("create", "batch create documents", collection_path, documents)

    def batch_update_documents(self, collection_path: str, updates: List[Any]) -> ToolResult:
        """Updates documents ({id, data}) in atomic chunks of up to MAX_BATCH_OPERATIONS."""
        return self._run_batch("update", "batch update documents", collection_path, updates)

    def batch_delete_documents(self, collection_path: str, document_ids: List[str]) -> ToolResult:
        """Deletes documents by id in atomic chunks of up to MAX_BATCH_OPERATIONS."""
        items = [{"id": doc_id} for doc_id in document_ids] if document_ids else []
        return self._run_batch("delete", "batch delete documents", collection_path, items)

    # === Collections ===

    def list_collections(self, parent_path: Optional[str] = None) -> ToolResult:
        try:
            paths = self.store.list_collections(parent_path)
            return ToolResult.ok([CollectionInfo(id=path.rsplit("/", 1)[-1], path=path) for path in paths])
        except ToolkitError as e:
            return self._fail("list collections", e)

    def get_collection_stats(self, collection_path: str,
                             sample_size: int = DEFAULT_STATS_SAMPLE_SIZE) -> ToolResult:
        try:
            validate_collection_path(collection_path)
            return ToolResult.ok(get_stats(self.store, collection_path, sample_size))
        except ToolkitError as e:
            return self._fail("get collection stats", e)

    def analyze_collection_schema(self, collection_path: str,
                                  sample_size: int = DEFAULT_SCHEMA_SAMPLE_SIZE) -> ToolResult:
        try:
            validate_collection_path(collection_path)
            return ToolResult.ok(analyze_schema(self.store, collection_path, sample_size))
        except ToolkitError as e:
            return self._fail("analyze schema", e)

    def delete_collection(self, collection_path: str, recursive: bool = False,
                          batch_size: int = MAX_BATCH_OPERATIONS) -> ToolResult:
        try:
            result = delete_collection(self.store, collection_path, recursive=recursive, batch_size=batch_size)
            logger.info(f"Deleted collection '{collection_path}' ({result.documents_deleted} documents)")
            return ToolResult.ok(result)
        except ToolkitError as e:
            return self._fail("delete collection", e)

    # === Indexes ===

    def list_indexes(self, collection_path: str) -> ToolResult:
        try:
            indexes = self.store.list_indexes(collection_path)
            return ToolResult.ok([
                IndexInfo(
                    name=index["name"],
                    fields=[IndexField(field=name, direction=direction) for name, direction in index["fields"]],
                    unique=index["unique"],
                )
                for index in indexes
            ])
        except ToolkitError as e:
            return self._fail("list indexes", e)

    def create_index(self, collection_path: str, fields: List[Any]) -> ToolResult:
        """Creates an index, e.g. one taken from an IndexSuggestion."""
        try:
            try:
                index_fields = [IndexField.model_validate(f) for f in fields or []]
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid index fields: {e}") from e
            name = self.store.create_index(collection_path, [(f.field, f.direction) for f in index_fields])
            logger.info(f"Created index '{name}' on '{collection_path}'")
            return ToolResult.ok({"name": name, "collectionPath": collection_path})
        except ToolkitError as e:
            return self._fail("create index", e)

    # === LangChain tools ===

    def _tool_func(self, input_model: Type[BaseModel], method: Callable[..., ToolResult]) -> Callable[..., Dict[str, Any]]:
        """Validates tool arguments with input_model and returns the envelope as a dict."""
        def run(**kwargs):
            try:
                validated_args = input_model(**kwargs)
            except PydanticValidationError as e:
                return ToolResult.fail(f"Invalid input arguments for {method.__name__}: {e}").to_dict()
            return method(**dict(validated_args)).to_dict()
        return run

    @lru_cache(maxsize=1)
    def get_tools(self) -> List[BaseTool]:
        """
        Returns a list of configured LangChain tools bound to this toolkit instance.
        """
        logger.info("Generating LangChain tools for DocStoreToolkit...")
        definitions = [
            ("create_doc", "Create a new document in a collection. Auto-generates an ID when document_id is omitted. "
                           "Returns the stored document.",
             CreateDocumentInput, self.create_document),
            ("get_doc", "Get a specific document by ID. Returns data null when the document does not exist.",
             GetDocumentInput, self.get_document),
            ("get_docs", "Get documents from a collection with optional where conditions "
                         "(==, !=, <, <=, >, >=, array-contains, array-contains-any, in, not-in), ordering, "
                         "offset and limit. Use array-contains to match array elements; != and not-in skip documents "
                         "missing the field. hasMore is true when the page filled the limit.",
             GetDocumentsInput, self.get_documents),
            ("update_doc", "Update an existing document (partial update supported). Fails if it does not exist "
                           "unless create_if_missing is true.",
             UpdateDocumentInput, self.update_document),
            ("delete_doc", "Delete a document by ID.",
             GetDocumentInput, self.delete_document),
            ("batch_create", f"Create multiple documents. Committed atomically in chunks of {MAX_BATCH_OPERATIONS}; "
                             "invalid items are reported in 'errors' without stopping the others.",
             BatchCreateInput, self.batch_create_documents),
            ("batch_update", f"Update multiple documents. Committed atomically in chunks of {MAX_BATCH_OPERATIONS}.",
             BatchUpdateInput, self.batch_update_documents),
            ("batch_delete", f"Delete multiple documents by ID. Committed atomically in chunks of {MAX_BATCH_OPERATIONS}.",
             BatchDeleteInput, self.batch_delete_documents),
            ("list_collections", "List collections, or the sub-collections of a document when parent_path is given.",
             ListCollectionsInput, self.list_collections),
            ("collection_stats", "Get statistics about a collection. documentCount is exact; totalSizeBytes is an "
                                 "estimate extrapolated from the sampled average document size.",
             StatsInput, self.get_collection_stats),
            ("analyze_schema", "Analyze the schema of a collection from a sample of documents: field types and "
                               "frequencies, nested structures and index suggestions.",
             SchemaInput, self.analyze_collection_schema),
            ("delete_collection", "Delete a collection. Without recursive it must be empty; with recursive all "
                                  "documents are deleted in batches (use with caution).",
             DeleteCollectionInput, self.delete_collection),
            ("list_indexes", "List the indexes of a collection.",
             CollectionPathInput, self.list_indexes),
            ("create_index", "Create an index on one or more fields of a collection.",
             CreateIndexInput, self.create_index),
        ]
        return [
            StructuredTool.from_function(
                name=name,
                description=description,
                func=self._tool_func(input_model, method),
                args_schema=input_model,
            )
            for name, description, input_model, method in definitions
        ]
