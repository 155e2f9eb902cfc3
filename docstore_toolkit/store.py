import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidDocument
from pymongo import MongoClient, ASCENDING, DESCENDING, DeleteOne, ReplaceOne, UpdateOne
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.errors import ConfigurationError as MongoConfigurationError

from .config import MAX_BATCH_OPERATIONS, MAX_DISJUNCTION_VALUES, StoreSettings
from .exceptions import ConfigurationError, RemoteFetchError, RemoteWriteError, ValidationError
from .utils import to_mongo_id, validate_collection_path, validate_document_id, validate_document_path

logger = logging.getLogger(__name__)

WHERE_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "array-contains", "array-contains-any", "in", "not-in")
LIST_OPERATORS = ("array-contains-any", "in", "not-in")
SORT_DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class DocumentReference:
    collection_path: str
    id: str

    @property
    def path(self) -> str:
        return f"{self.collection_path}/{self.id}"


@dataclass
class DocumentSnapshot:
    reference: DocumentReference
    data: Dict[str, Any]
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    read_time: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.reference.id

    @property
    def path(self) -> str:
        return self.reference.path


class FilterClause(NamedTuple):
    field: str
    operator: str
    value: Any


@dataclass
class WriteOperation:
    kind: str  # "set", "update" or "delete"
    reference: DocumentReference
    data: Optional[Dict[str, Any]] = None
    merge: bool = False
    merge_fields: Optional[List[str]] = None


class Query(ABC):
    """An immutable query against one collection.

    where/order_by/offset/limit return a new query with the clause appended, so
    clauses reach the store in exactly the order they were applied.
    """

    def __init__(self, collection_path: str):
        self.collection_path = validate_collection_path(collection_path)
        self.filters: Tuple[FilterClause, ...] = ()
        self.orders: Tuple[Tuple[str, str], ...] = ()
        self.offset_count = 0
        self.limit_count = 0

    def _with(self, **changes) -> "Query":
        clone = copy.copy(self)
        for name, value in changes.items():
            setattr(clone, name, value)
        return clone

    def where(self, field: str, operator: str, value: Any) -> "Query":
        if not field:
            raise ValidationError("Where condition requires a field")
        if operator not in WHERE_OPERATORS:
            raise ValidationError(f"Unknown operator '{operator}'. Expected one of: {', '.join(WHERE_OPERATORS)}")
        if operator in LIST_OPERATORS:
            if not isinstance(value, (list, tuple)) or not value:
                raise ValidationError(f"Operator '{operator}' on '{field}' requires a non-empty list value")
            if len(value) > MAX_DISJUNCTION_VALUES:
                raise ValidationError(f"Operator '{operator}' on '{field}' accepts at most {MAX_DISJUNCTION_VALUES} values")
            value = list(value)
        return self._with(filters=self.filters + (FilterClause(field, operator, value),))

    def order_by(self, field: str, direction: str = "asc") -> "Query":
        if not field:
            raise ValidationError("Order by requires a field")
        if direction not in SORT_DIRECTIONS:
            raise ValidationError(f"Invalid sort direction '{direction}'")
        return self._with(orders=self.orders + ((field, direction),))

    def offset(self, count: int) -> "Query":
        if count < 0:
            raise ValidationError("offset cannot be negative.")
        return self._with(offset_count=count)

    def limit(self, count: int) -> "Query":
        if count < 0:
            raise ValidationError("limit cannot be negative.")
        return self._with(limit_count=count)

    @abstractmethod
    def get(self) -> List[DocumentSnapshot]:
        """Executes the query."""


class WriteBatch(ABC):
    """A set of writes the store commits as one atomic unit."""

    def __init__(self, max_operations: int = MAX_BATCH_OPERATIONS):
        self.max_operations = max_operations
        self.operations: List[WriteOperation] = []

    def __len__(self) -> int:
        return len(self.operations)

    def _add(self, operation: WriteOperation) -> "WriteBatch":
        if len(self.operations) >= self.max_operations:
            raise ValidationError(f"A batch cannot hold more than {self.max_operations} operations")
        self.check(operation)
        self.operations.append(operation)
        return self

    def check(self, operation: WriteOperation) -> None:
        """Hook for store-specific validation of a queued operation."""

    def set(self, reference: DocumentReference, data: Dict[str, Any], merge: bool = False,
            merge_fields: Optional[List[str]] = None) -> "WriteBatch":
        if data is None:
            raise ValidationError("Document data is required")
        return self._add(WriteOperation("set", reference, data, merge=merge, merge_fields=merge_fields))

    def update(self, reference: DocumentReference, data: Dict[str, Any]) -> "WriteBatch":
        if not data:
            raise ValidationError("Update data cannot be empty")
        return self._add(WriteOperation("update", reference, data))

    def delete(self, reference: DocumentReference) -> "WriteBatch":
        return self._add(WriteOperation("delete", reference))

    @abstractmethod
    def commit(self) -> None:
        """Commits every queued operation or none. Raises RemoteWriteError."""


class DocumentStore(ABC):
    """The document store capability the toolkit operates on."""

    @abstractmethod
    def list_collections(self, parent_path: Optional[str] = None) -> List[str]:
        """Collection paths at the top level, or directly beneath a document."""

    @abstractmethod
    def collection(self, collection_path: str) -> Query:
        """An unfiltered query over a collection."""

    @abstractmethod
    def count(self, collection_path: str) -> int:
        """Exact number of documents in a collection."""

    @abstractmethod
    def get(self, reference: DocumentReference) -> Optional[DocumentSnapshot]:
        """The document at reference, or None when absent."""

    @abstractmethod
    def batch(self) -> WriteBatch:
        """A new, empty atomic unit."""

    @abstractmethod
    def new_document_id(self) -> str:
        """A fresh id for an auto-id document."""

    @abstractmethod
    def list_indexes(self, collection_path: str) -> List[Dict[str, Any]]:
        """Indexes as {"name", "fields": [(field, direction)], "unique"}."""

    @abstractmethod
    def create_index(self, collection_path: str, fields: List[Tuple[str, str]]) -> str:
        """Creates an index over (field, direction) pairs and returns its name."""

    def close(self) -> None:
        pass

    def document(self, collection_path: str, document_id: Optional[str] = None) -> DocumentReference:
        """A reference to document_id, or to a new auto-id document when it is None."""
        collection_path = validate_collection_path(collection_path)
        if document_id is None:
            return DocumentReference(collection_path, self.new_document_id())
        return DocumentReference(collection_path, validate_document_id(document_id))

    def fetch(self, collection_path: str, limit: int = 0) -> List[DocumentSnapshot]:
        """Up to limit documents in store order (all of them when limit is 0)."""
        query = self.collection(collection_path)
        if limit > 0:
            query = query.limit(limit)
        return query.get()

    def fetch_one(self, collection_path: str, document_id: str) -> Optional[DocumentSnapshot]:
        return self.get(self.document(collection_path, document_id))

    def set(self, reference: DocumentReference, data: Dict[str, Any], merge: bool = False,
            merge_fields: Optional[List[str]] = None) -> None:
        self.batch().set(reference, data, merge=merge, merge_fields=merge_fields).commit()

    def update(self, reference: DocumentReference, data: Dict[str, Any]) -> None:
        self.batch().update(reference, data).commit()

    def delete(self, reference: DocumentReference) -> None:
        self.batch().delete(reference).commit()

    def add(self, collection_path: str, data: Dict[str, Any]) -> DocumentReference:
        reference = self.document(collection_path)
        self.set(reference, data)
        return reference


# === MongoDB implementation ===

_COMPARISON_OPERATORS = {
    "==": "$eq",
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
    "in": "$in",
    "not-in": "$nin",
}


def _comparison(clause: FilterClause) -> Dict[str, Any]:
    condition: Dict[str, Any] = {_COMPARISON_OPERATORS[clause.operator]: clause.value}
    if clause.operator in ("!=", "not-in") or (clause.operator == "==" and clause.value is None):
        # $ne, $nin and null equality would also match a missing field
        condition["$exists"] = True
        return condition
    candidates = clause.value if clause.operator == "in" else [clause.value]
    if not any(isinstance(candidate, list) for candidate in candidates):
        # a scalar would otherwise match any element of an array field
        condition["$not"] = {"$type": "array"}
    return condition


def to_mongo_filter(clauses: Tuple[FilterClause, ...]) -> Dict[str, Any]:
    """Translates where clauses into a filter document, keeping their order under $and.

    Comparison operators only match array fields through array-contains and
    array-contains-any. "!=" and "not-in" never match a missing field.
    """
    translated = []
    for clause in clauses:
        if clause.operator == "array-contains":
            translated.append({clause.field: {"$elemMatch": {"$eq": clause.value}}})
        elif clause.operator == "array-contains-any":
            translated.append({clause.field: {"$elemMatch": {"$in": clause.value}}})
        else:
            translated.append({clause.field: _comparison(clause)})
    if not translated:
        return {}
    if len(translated) == 1:
        return translated[0]
    return {"$and": translated}


def flatten_fields(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """{"a": {"b": 1}} -> {"a.b": 1}; used to merge nested maps with $set."""
    flat = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            flat.update(flatten_fields(value, path))
        else:
            flat[path] = value
    return flat


def _field_value(data: Dict[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            raise ValidationError(f"Merge field '{path}' is not present in the document data")
        current = current[part]
    return current


class MongoQuery(Query):

    def __init__(self, store: "MongoDocumentStore", collection_path: str):
        super().__init__(collection_path)
        self._store = store

    def get(self) -> List[DocumentSnapshot]:
        collection = self._store.raw_collection(self.collection_path)
        query_filter = to_mongo_filter(self.filters)
        logger.debug(f"find on '{self.collection_path}' filter={query_filter} sort={self.orders} "
                     f"skip={self.offset_count} limit={self.limit_count}")
        try:
            cursor = collection.find(query_filter)
            if self.orders:
                cursor = cursor.sort([(name, ASCENDING if direction == "asc" else DESCENDING)
                                      for name, direction in self.orders])
            if self.offset_count > 0:
                cursor = cursor.skip(self.offset_count)
            if self.limit_count > 0:
                cursor = cursor.limit(self.limit_count)
            documents = list(cursor)
        except PyMongoError as e:
            logger.error(f"Query on '{self.collection_path}' failed: {e}")
            raise RemoteFetchError(f"Query on '{self.collection_path}' failed: {e}") from e
        return [self._store.snapshot(self.collection_path, doc) for doc in documents]


class MongoWriteBatch(WriteBatch):
    """Atomic unit committed inside a MongoDB transaction.

    Consecutive operations of the same kind on the same collection are sent as
    one ordered bulk_write. An update that matches no document aborts the unit.
    """

    def __init__(self, store: "MongoDocumentStore"):
        super().__init__()
        self._store = store

    def check(self, operation: WriteOperation) -> None:
        if operation.data and "_id" in operation.data:
            raise ValidationError("'_id' is reserved for the document ID")
        operators = [key for key in operation.data or {} if str(key).startswith("$")]
        if operators:
            raise ValidationError(f"Field names cannot start with '$': {', '.join(map(str, operators))}")
        if operation.kind == "set" and operation.merge_fields:
            for path in operation.merge_fields:
                _field_value(operation.data, path)
        elif operation.kind == "set" and operation.merge and not flatten_fields(operation.data):
            raise ValidationError("Merge requires at least one field")

    def _request(self, operation: WriteOperation):
        id_filter = {"_id": to_mongo_id(operation.reference.id)}
        if operation.kind == "delete":
            return DeleteOne(id_filter)
        if operation.kind == "update":
            return UpdateOne(id_filter, {"$set": operation.data})
        if operation.merge_fields:
            fields = {path: _field_value(operation.data, path) for path in operation.merge_fields}
            return UpdateOne(id_filter, {"$set": fields}, upsert=True)
        if operation.merge:
            return UpdateOne(id_filter, {"$set": flatten_fields(operation.data)}, upsert=True)
        return ReplaceOne(id_filter, operation.data, upsert=True)

    def _runs(self):
        runs: List[Tuple[str, str, list]] = []
        for operation in self.operations:
            key = (operation.reference.collection_path, operation.kind)
            if runs and runs[-1][:2] == key:
                runs[-1][2].append(self._request(operation))
            else:
                runs.append((key[0], key[1], [self._request(operation)]))
        return runs

    def _apply(self, session=None) -> None:
        for collection_path, kind, requests in self._runs():
            result = self._store.raw_collection(collection_path).bulk_write(requests, ordered=True, session=session)
            if kind == "update" and result.matched_count < len(requests):
                missing = len(requests) - result.matched_count
                raise RemoteWriteError(f"{missing} of {len(requests)} documents to update in "
                                       f"'{collection_path}' do not exist")

    def commit(self) -> None:
        if not self.operations:
            return
        try:
            if self._store.settings.use_transactions:
                # One attempt only; transient transaction errors are not retried
                with self._store.client.start_session() as session:
                    with session.start_transaction():
                        self._apply(session)
            else:
                self._apply()
        except (PyMongoError, InvalidDocument, ValueError) as e:
            logger.error(f"Batch commit of {len(self.operations)} operations failed: {e}")
            raise RemoteWriteError(f"Batch commit failed: {e}") from e
        logger.debug(f"Committed batch of {len(self.operations)} operations")


class MongoDocumentStore(DocumentStore):
    """Document store on a MongoDB database.

    A collection path maps to the collection of the same name
    ("users/u1/orders"), and a document id maps to _id. The connection is
    established on first use and shared by every call until close().
    """

    def __init__(self, settings: StoreSettings, client: Optional[MongoClient] = None):
        self.settings = settings
        self._client: Optional[MongoClient] = client
        self._db: Optional[Database] = client[settings.db_name] if client is not None else None
        logger.info(f"Document store configured for database '{settings.db_name}'. "
                    "Connection will be established on first use.")

    def connect(self) -> "MongoDocumentStore":
        if self._db is not None:
            return self
        logger.info(f"Establishing new MongoDB connection to database '{self.settings.db_name}'...")
        try:
            self._client = MongoClient(
                self.settings.mongo_uri,
                serverSelectionTimeoutMS=self.settings.server_selection_timeout_ms,
                tz_aware=True,
            )
            # 'ping' is lightweight and verifies the server is reachable
            self._client.admin.command("ping")
            self._db = self._client[self.settings.db_name]
            logger.info("MongoDB connection successful.")
        except MongoConfigurationError as e:
            self._reset()
            logger.error(f"Invalid MongoDB URI configuration: {e}")
            raise ConfigurationError(f"Invalid MongoDB URI configuration: {e}") from e
        except PyMongoError as e:
            self._reset()
            logger.error(f"Could not connect to MongoDB: {e}")
            raise ConfigurationError(f"Could not connect to MongoDB: {e}") from e
        return self

    def _reset(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._db = None

    def close(self) -> None:
        """Closes the MongoDB client connection, if open."""
        if self._client is not None:
            logger.info("Closing MongoDB connection.")
        self._reset()

    def __enter__(self) -> "MongoDocumentStore":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def client(self) -> MongoClient:
        self.connect()
        return self._client

    @property
    def db(self) -> Database:
        self.connect()
        return self._db

    def raw_collection(self, collection_path: str) -> Collection:
        return self.db[validate_collection_path(collection_path)]

    def snapshot(self, collection_path: str, raw: Dict[str, Any]) -> DocumentSnapshot:
        data = dict(raw)
        raw_id = data.pop("_id", None)
        return DocumentSnapshot(
            reference=DocumentReference(collection_path, str(raw_id)),
            data=data,
            create_time=raw_id.generation_time if isinstance(raw_id, ObjectId) else None,
            read_time=datetime.now(timezone.utc),
        )

    def list_collections(self, parent_path: Optional[str] = None) -> List[str]:
        try:
            names = self.db.list_collection_names()
        except PyMongoError as e:
            raise RemoteFetchError(f"Failed to list collections: {e}") from e
        names = [name for name in names if not name.startswith("system.")]
        if parent_path is None:
            return sorted(name for name in names if "/" not in name)
        prefix = validate_document_path(parent_path) + "/"
        return sorted(name for name in names
                      if name.startswith(prefix) and "/" not in name[len(prefix):])

    def collection(self, collection_path: str) -> MongoQuery:
        return MongoQuery(self, collection_path)

    def count(self, collection_path: str) -> int:
        try:
            return self.raw_collection(collection_path).count_documents({})
        except PyMongoError as e:
            raise RemoteFetchError(f"Failed to count documents in '{collection_path}': {e}") from e

    def get(self, reference: DocumentReference) -> Optional[DocumentSnapshot]:
        try:
            raw = self.raw_collection(reference.collection_path).find_one({"_id": to_mongo_id(reference.id)})
        except PyMongoError as e:
            raise RemoteFetchError(f"Failed to read '{reference.path}': {e}") from e
        if raw is None:
            return None
        return self.snapshot(reference.collection_path, raw)

    def batch(self) -> MongoWriteBatch:
        return MongoWriteBatch(self)

    def new_document_id(self) -> str:
        return str(ObjectId())

    def list_indexes(self, collection_path: str) -> List[Dict[str, Any]]:
        try:
            indexes = list(self.raw_collection(collection_path).list_indexes())
        except PyMongoError as e:
            raise RemoteFetchError(f"Failed to list indexes of '{collection_path}': {e}") from e
        return [
            {
                "name": index["name"],
                "fields": [(name, "desc" if direction == DESCENDING else "asc")
                           for name, direction in index["key"].items()],
                "unique": bool(index.get("unique", False)),
            }
            for index in indexes
        ]

    def create_index(self, collection_path: str, fields: List[Tuple[str, str]]) -> str:
        if not fields:
            raise ValidationError("An index needs at least one field")
        keys = [(name, DESCENDING if direction == "desc" else ASCENDING) for name, direction in fields]
        try:
            return self.raw_collection(collection_path).create_index(keys)
        except PyMongoError as e:
            raise RemoteWriteError(f"Failed to create index on '{collection_path}': {e}") from e
