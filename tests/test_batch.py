"""Tests for chunked batch writes and collection erasure."""

import math

import pytest

from docstore_toolkit.batch import delete_collection, run_batch
from docstore_toolkit.exceptions import NonEmptyCollectionError, RemoteWriteError, ValidationError
from docstore_toolkit.models import BatchItem

from conftest import FakeDocumentStore, make_docs


def _creates(n):
    return [BatchItem(id=f"doc{i}", data={"n": i}) for i in range(n)]


class TestRunBatch:
    """Test the batch orchestrator."""

    @pytest.mark.parametrize("n, chunk", [(1, 500), (500, 500), (501, 500), (1200, 500), (7, 3)])
    def test_one_commit_per_chunk(self, store, n, chunk):
        result = run_batch(store, "create", "items", _creates(n), chunk_size=chunk)
        assert len(store.commits) == math.ceil(n / chunk)
        assert all(len(ops) <= chunk for ops in store.commits)
        assert result.processed_count == n
        assert result.success

    def test_invalid_id_is_reported_per_item(self, store):
        items = [
            BatchItem(id="a", data={"v": 1}),
            BatchItem(id="bad/id", data={"v": 2}),
            BatchItem(data={"v": 3}),
        ]
        result = run_batch(store, "create", "items", items)

        assert result.processed_count == 2
        assert not result.success
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Document bad/id: ")
        assert [r["id"] for r in result.results] == ["a", "auto1"]
        assert store.collections["items"] == {"a": {"v": 1}, "auto1": {"v": 3}}

    def test_processed_plus_failed_equals_input(self, store):
        items = [BatchItem(id=f"d{i}" if i % 3 else "..", data={"i": i}) for i in range(10)]
        result = run_batch(store, "create", "items", items, chunk_size=4)
        assert result.processed_count + len(result.errors) == len(items)
        assert len(store.commits) == 3

    def test_missing_data_uses_index_label(self, store):
        result = run_batch(store, "create", "items", [BatchItem(id="a", data={}), BatchItem()])
        assert result.errors == ["Document 1: data is required"]
        assert result.processed_count == 1

    def test_malformed_item_does_not_abort_the_batch(self, store):
        """Test a raw item with a non-string id is reported and its siblings still commit."""
        items = [
            {"id": "a", "data": {"v": 1}},
            {"id": 123, "data": {"v": 2}},
            {"id": "c", "data": {"v": 3}},
        ]
        result = run_batch(store, "create", "items", items)

        assert result.processed_count == 2
        assert result.errors == ["Document 1: id: Input should be a valid string"]
        assert not result.success
        assert store.collections["items"] == {"a": {"v": 1}, "c": {"v": 3}}

    def test_non_mapping_data_is_reported_per_item(self, store):
        result = run_batch(store, "create", "items", [{"id": "a", "data": "oops"}, "not-an-item"])
        assert result.processed_count == 0
        assert len(result.errors) == 2
        assert result.errors[0].startswith("Document a: data: ")
        assert result.errors[1].startswith("Document 1: ")
        assert store.commits == [[]]

    def test_update_and_delete(self):
        store = FakeDocumentStore({"items": {"a": {"v": 1}, "b": {"v": 2}}})
        updated = run_batch(store, "update", "items", [BatchItem(id="a", data={"v": 10}), BatchItem(data={"v": 0})])
        assert updated.processed_count == 1
        assert updated.errors == ["Document 1: document id is required"]
        assert updated.results == [{"id": "a", "path": "items/a"}]
        assert store.collections["items"]["a"] == {"v": 10}

        deleted = run_batch(store, "delete", "items", [BatchItem(id="a"), BatchItem(id="b")])
        assert deleted.results == [{"id": "a", "deleted": True}, {"id": "b", "deleted": True}]
        assert store.collections["items"] == {}

    def test_commit_failure_is_terminal(self, store):
        store.fail_commit_at = 2
        with pytest.raises(RemoteWriteError) as excinfo:
            run_batch(store, "create", "items", _creates(5), chunk_size=2)

        assert excinfo.value.committed_count == 2
        # the first chunk stays committed
        assert set(store.collections["items"]) == {"doc0", "doc1"}
        assert len(store.commits) == 1

    def test_update_of_missing_document_fails_the_chunk(self, store):
        with pytest.raises(RemoteWriteError):
            run_batch(store, "update", "items", [BatchItem(id="ghost", data={"v": 1})])

    def test_empty_items(self, store):
        result = run_batch(store, "delete", "items", [])
        assert result.success
        assert result.processed_count == 0
        assert store.commits == []

    @pytest.mark.parametrize("kwargs", [
        {"kind": "upsert"},
        {"chunk_size": 0},
        {"chunk_size": 501},
        {"collection_path": "items/a"},
    ])
    def test_invalid_call(self, store, kwargs):
        args = {"kind": "create", "collection_path": "items", "chunk_size": 500, **kwargs}
        with pytest.raises(ValidationError):
            run_batch(store, args["kind"], args["collection_path"], _creates(1), chunk_size=args["chunk_size"])


class TestDeleteCollection:
    """Test the recursive collection eraser."""

    def test_non_recursive_empty(self, store):
        result = delete_collection(store, "empty_col", recursive=False)
        assert result.deleted
        assert result.documents_deleted == 0

    def test_non_recursive_populated(self):
        store = FakeDocumentStore({"col": make_docs({"a": 1})})
        with pytest.raises(NonEmptyCollectionError):
            delete_collection(store, "col", recursive=False)
        assert store.collections["col"]

    def test_recursive_pages_until_short_page(self):
        store = FakeDocumentStore({"col": make_docs(*({"i": i} for i in range(25)))})
        result = delete_collection(store, "col", recursive=True, batch_size=10)

        assert result.documents_deleted == 25
        assert store.collections["col"] == {}
        assert [len(ops) for ops in store.commits] == [10, 10, 5]

    def test_recursive_exact_multiple_needs_an_empty_page(self):
        store = FakeDocumentStore({"col": make_docs(*({"i": i} for i in range(20)))})
        result = delete_collection(store, "col", recursive=True, batch_size=10)
        assert result.documents_deleted == 20
        assert len(store.commits) == 2
        assert len(store.queries) == 3

    def test_recursive_commit_failure(self):
        store = FakeDocumentStore({"col": make_docs(*({"i": i} for i in range(5)))})
        store.fail_commit_at = 2
        with pytest.raises(RemoteWriteError) as excinfo:
            delete_collection(store, "col", recursive=True, batch_size=2)
        assert excinfo.value.committed_count == 2

    def test_batch_size_bounds(self, store):
        with pytest.raises(ValidationError):
            delete_collection(store, "col", recursive=True, batch_size=0)
