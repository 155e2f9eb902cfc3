"""Chunked batch writes and collection erasure.

Every chunk is one atomic unit. Chunks commit one after another, and a failed
commit stops the call without undoing chunks that already committed.
"""
import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError as PydanticValidationError

from .config import MAX_BATCH_OPERATIONS
from .exceptions import NonEmptyCollectionError, RemoteWriteError, ValidationError
from .models import BatchItem, BatchOperationResult, CollectionDeleteResult
from .store import DocumentStore, WriteBatch
from .utils import validate_collection_path

logger = logging.getLogger(__name__)

BATCH_KINDS = ("create", "update", "delete")


def _check_chunk_size(size: int, name: str) -> None:
    if not 1 <= size <= MAX_BATCH_OPERATIONS:
        raise ValidationError(f"{name} must be between 1 and {MAX_BATCH_OPERATIONS}, got {size}")


def _stage(store: DocumentStore, batch: WriteBatch, kind: str, collection_path: str,
           item: BatchItem) -> Dict[str, Any]:
    """Queues one item on batch and returns its outcome descriptor."""
    if kind == "create":
        if item.data is None:
            raise ValidationError("data is required")
        reference = store.document(collection_path, item.id)
        batch.set(reference, item.data)
        return {"id": reference.id, "path": reference.path}

    if item.id is None:
        raise ValidationError("document id is required")
    reference = store.document(collection_path, item.id)
    if kind == "update":
        if item.data is None:
            raise ValidationError("data is required")
        batch.update(reference, item.data)
        return {"id": reference.id, "path": reference.path}
    batch.delete(reference)
    return {"id": reference.id, "deleted": True}


def _item_label(item: Any, index: int) -> Any:
    """The item's id when it has a usable one, else its position in the input."""
    item_id = item.id if isinstance(item, BatchItem) else item.get("id") if isinstance(item, Mapping) else None
    return item_id if isinstance(item_id, str) and item_id else index


def _describe(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


def run_batch(store: DocumentStore, kind: str, collection_path: str, items: Sequence[Any],
              chunk_size: int = MAX_BATCH_OPERATIONS) -> BatchOperationResult:
    """Creates, updates or deletes documents in chunks of at most chunk_size.

    Items may be BatchItems or plain mappings. Items that cannot be queued
    (malformed item, bad id, missing data, reserved field name) are reported in
    errors as "Document <id or index>: <message>" and skipped; the rest of
    their chunk still commits. A failed commit raises RemoteWriteError with
    committed_count set to the documents committed by earlier chunks.
    """
    if kind not in BATCH_KINDS:
        raise ValidationError(f"Unknown batch kind '{kind}'")
    _check_chunk_size(chunk_size, "chunk_size")
    collection_path = validate_collection_path(collection_path)

    results: List[Dict[str, Any]] = []
    errors: List[str] = []
    for chunk_number, start in enumerate(range(0, len(items), chunk_size), start=1):
        batch = store.batch()
        staged = []
        for index, item in enumerate(items[start:start + chunk_size], start=start):
            label = _item_label(item, index)
            try:
                staged.append(_stage(store, batch, kind, collection_path, BatchItem.model_validate(item)))
            except PydanticValidationError as e:
                message = _describe(e)
            except ValidationError as e:
                message = str(e)
            else:
                continue
            errors.append(f"Document {label}: {message}")
            logger.warning(f"Skipping batch {kind} item {label} in '{collection_path}': {message}")

        try:
            batch.commit()
        except RemoteWriteError as e:
            raise RemoteWriteError(
                f"Chunk {chunk_number} failed after {len(results)} documents were committed: {e}",
                committed_count=len(results),
            ) from e
        results.extend(staged)
        logger.info(f"Batch {kind} on '{collection_path}': chunk {chunk_number} committed {len(staged)} documents")

    return BatchOperationResult(
        success=not errors,
        processed_count=len(results),
        errors=errors,
        results=results,
    )


def delete_collection(store: DocumentStore, collection_path: str, recursive: bool = False,
                      batch_size: int = MAX_BATCH_OPERATIONS) -> CollectionDeleteResult:
    """Deletes a collection.

    Without recursive, only an empty collection can be deleted and
    NonEmptyCollectionError is raised otherwise. With recursive, pages of
    batch_size documents are deleted one atomic unit at a time until a short
    page comes back. Documents written concurrently may survive.
    """
    _check_chunk_size(batch_size, "batch_size")
    base = store.collection(collection_path)

    if not recursive:
        if base.limit(1).get():
            raise NonEmptyCollectionError(
                f"Collection '{collection_path}' is not empty. Use recursive option to delete all documents."
            )
        return CollectionDeleteResult(deleted=True, documents_deleted=0)

    documents_deleted = 0
    while True:
        page = base.limit(batch_size).get()
        if not page:
            break
        batch = store.batch()
        for snapshot in page:
            batch.delete(snapshot.reference)
        try:
            batch.commit()
        except RemoteWriteError as e:
            raise RemoteWriteError(
                f"Deleting '{collection_path}' failed after {documents_deleted} documents: {e}",
                committed_count=documents_deleted,
            ) from e
        documents_deleted += len(page)
        logger.info(f"Deleted {documents_deleted} documents from '{collection_path}' so far")
        if len(page) < batch_size:
            break

    return CollectionDeleteResult(deleted=True, documents_deleted=documents_deleted)
