from .toolkit import DocStoreToolkit
from .config import StoreSettings, MAX_BATCH_OPERATIONS
from .store import DocumentStore, MongoDocumentStore
from .exceptions import (
    ToolkitError, ConfigurationError, ValidationError, NotFoundError,
    RemoteFetchError, RemoteWriteError, NonEmptyCollectionError,
)
from .schema import analyze_schema
from .stats import get_stats
from .batch import run_batch, delete_collection

__version__ = "0.1.0"

__all__ = [
    "DocStoreToolkit",
    "StoreSettings",
    "MAX_BATCH_OPERATIONS",
    "DocumentStore",
    "MongoDocumentStore",
    "ToolkitError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "RemoteFetchError",
    "RemoteWriteError",
    "NonEmptyCollectionError",
    "analyze_schema",
    "get_stats",
    "run_batch",
    "delete_collection",
]
