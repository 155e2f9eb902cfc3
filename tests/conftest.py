"""Shared fixtures: an in-memory document store that records every commit."""

import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest

from docstore_toolkit.exceptions import RemoteFetchError, RemoteWriteError
from docstore_toolkit.store import DocumentReference, DocumentSnapshot, DocumentStore, Query, WriteBatch


class FakeQuery(Query):
    """Supports equality filters and limit; other clauses are recorded only."""

    def __init__(self, store: "FakeDocumentStore", collection_path: str):
        super().__init__(collection_path)
        self._store = store

    def get(self) -> List[DocumentSnapshot]:
        if self._store.fail_reads:
            raise RemoteFetchError("simulated read failure")
        self._store.queries.append(self)
        docs = self._store.collections.get(self.collection_path, {})
        snapshots = []
        for doc_id, data in docs.items():
            if all(clause.operator != "==" or data.get(clause.field) == clause.value for clause in self.filters):
                snapshots.append(DocumentSnapshot(DocumentReference(self.collection_path, doc_id), dict(data)))
        snapshots = snapshots[self.offset_count:]
        if self.limit_count:
            snapshots = snapshots[:self.limit_count]
        return snapshots


class FakeWriteBatch(WriteBatch):

    def __init__(self, store: "FakeDocumentStore"):
        super().__init__()
        self._store = store

    def commit(self) -> None:
        store = self._store
        if store.fail_commit_at is not None and len(store.commits) + 1 == store.fail_commit_at:
            raise RemoteWriteError("simulated commit failure")
        for op in self.operations:
            docs = store.collections.setdefault(op.reference.collection_path, {})
            if op.kind == "update" and op.reference.id not in docs:
                raise RemoteWriteError(f"No document to update: {op.reference.path}")
        for op in self.operations:
            docs = store.collections.setdefault(op.reference.collection_path, {})
            if op.kind == "delete":
                docs.pop(op.reference.id, None)
            elif op.kind == "update" or op.merge or op.merge_fields:
                docs.setdefault(op.reference.id, {}).update(op.data)
            else:
                docs[op.reference.id] = dict(op.data)
        store.commits.append([(op.kind, op.reference.path) for op in self.operations])


class FakeDocumentStore(DocumentStore):

    def __init__(self, collections: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self.collections = collections or {}
        self.commits: List[List[Tuple[str, str]]] = []
        self.queries: List[FakeQuery] = []
        self.indexes: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_reads = False
        self.fail_commit_at: Optional[int] = None
        self.closed = False
        self._ids = itertools.count(1)

    def list_collections(self, parent_path=None):
        paths = [path for path, docs in self.collections.items() if docs]
        if parent_path is None:
            return sorted(path for path in paths if "/" not in path)
        prefix = parent_path + "/"
        return sorted(path for path in paths if path.startswith(prefix) and "/" not in path[len(prefix):])

    def collection(self, collection_path):
        return FakeQuery(self, collection_path)

    def count(self, collection_path):
        if self.fail_reads:
            raise RemoteFetchError("simulated count failure")
        return len(self.collections.get(collection_path, {}))

    def get(self, reference):
        data = self.collections.get(reference.collection_path, {}).get(reference.id)
        if data is None:
            return None
        return DocumentSnapshot(reference, dict(data))

    def batch(self):
        return FakeWriteBatch(self)

    def new_document_id(self):
        return f"auto{next(self._ids)}"

    def list_indexes(self, collection_path):
        return self.indexes.get(collection_path, [])

    def create_index(self, collection_path, fields):
        name = "_".join(f"{field}_{1 if direction == 'asc' else -1}" for field, direction in fields)
        self.indexes.setdefault(collection_path, []).append({"name": name, "fields": list(fields), "unique": False})
        return name

    def close(self):
        self.closed = True


def make_docs(*documents: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {f"d{i}": doc for i, doc in enumerate(documents)}


@pytest.fixture
def store():
    return FakeDocumentStore()
