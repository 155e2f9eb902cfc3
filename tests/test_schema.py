"""Tests for schema inference and index suggestions."""

import pytest

from docstore_toolkit.exceptions import RemoteFetchError, ValidationError
from docstore_toolkit.models import FieldObservation
from docstore_toolkit.schema import analyze_schema, suggest_indexes

from conftest import FakeDocumentStore, make_docs


def _store_with(*documents):
    return FakeDocumentStore({"orders": make_docs(*documents)})


class TestAnalyzeSchema:
    """Test analyze_schema against an in-memory store."""

    def test_empty_collection(self, store):
        result = analyze_schema(store, "orders")
        assert result.sample_size == 0
        assert result.common_fields == []
        assert result.data_types == {}
        assert result.nested_structures == []
        assert result.index_suggestions == []

    def test_sample_size_is_documents_fetched(self):
        store = _store_with(*({"n": i} for i in range(7)))
        assert analyze_schema(store, "orders", sample_size=5).sample_size == 5
        assert analyze_schema(store, "orders", sample_size=100).sample_size == 7

    def test_root_frequencies_never_exceed_sample(self):
        store = _store_with({"a": 1, "b": {"c": 2}}, {"a": 2}, {"b": {"c": 3}})
        result = analyze_schema(store, "orders")
        for field in result.common_fields:
            assert field.frequency <= result.sample_size

    def test_fields_types_and_nesting(self):
        store = _store_with(
            {"status": "open", "customer": {"name": "A", "tier": 1}, "items": [1, 2]},
            {"status": "closed", "customer": {"name": "B"}, "items": []},
            {"status": None},
        )
        result = analyze_schema(store, "orders")

        assert [f.path for f in result.common_fields][:1] == ["status"]
        status = result.common_fields[0]
        assert status.frequency == 3
        assert status.null_count == 1
        assert status.examples == ["open", "closed"]
        assert status.type == "string"

        assert result.data_types == {"string": 4, "object": 2, "number": 1, "array": 2, "null": 1}
        nested = [(n.path, n.kind, n.frequency) for n in result.nested_structures]
        assert nested == [("customer", "object", 2), ("items", "array", 2)]

    def test_examples_capped_at_three(self):
        store = _store_with(*({"n": i} for i in range(6)))
        assert analyze_schema(store, "orders").common_fields[0].examples == [0, 1, 2]

    def test_repeated_runs_match(self):
        store = _store_with({"a": 1, "b": "x"}, {"a": 2})
        first = analyze_schema(store, "orders")
        second = analyze_schema(store, "orders")
        assert first.data_types == second.data_types
        assert first.common_fields == second.common_fields

    def test_index_suggestions_from_sample(self):
        """Test 'status' at 80% and 'region' at 60% yield singles and a composite."""
        documents = []
        for i in range(10):
            doc = {"id": i}
            if i < 8:
                doc["status"] = "open"
            if i < 6:
                doc["region"] = "eu"
            if i < 3:
                doc["meta"] = {"x": 1}
            documents.append(doc)
        result = analyze_schema(_store_with(*documents), "orders")

        singles = [s.fields for s in result.index_suggestions if s.kind == "single"]
        assert singles == [["id"], ["status"], ["region"]]
        composite = [s for s in result.index_suggestions if s.kind == "composite"]
        assert len(composite) == 1
        assert composite[0].fields == ["id", "status", "region"]

    def test_read_failure_propagates(self, store):
        store.fail_reads = True
        with pytest.raises(RemoteFetchError):
            analyze_schema(store, "orders")

    def test_negative_sample_size(self, store):
        with pytest.raises(ValidationError):
            analyze_schema(store, "orders", sample_size=-1)


class TestSuggestIndexes:
    """Test suggestion rules on prepared observations."""

    def _field(self, path, frequency, type_="string"):
        return FieldObservation(path=path, type=type_, frequency=frequency)

    def test_threshold_is_strictly_above_half(self):
        fields = [self._field("a", 5), self._field("b", 6)]
        suggestions = suggest_indexes(sorted(fields, key=lambda f: -f.frequency), 10)
        assert [s.fields for s in suggestions] == [["b"]]

    def test_objects_and_arrays_are_excluded(self):
        fields = [self._field("m", 10, "object"), self._field("t", 10, "array"), self._field("s", 9)]
        suggestions = suggest_indexes(fields, 10)
        assert [s.fields for s in suggestions] == [["s"]]

    def test_single_suggestions_are_capped(self):
        fields = [self._field(f"f{i}", 10) for i in range(8)]
        suggestions = suggest_indexes(fields, 10)
        assert len([s for s in suggestions if s.kind == "single"]) == 5
        assert suggestions[-1].fields == ["f0", "f1", "f2"]

    def test_reason_mentions_ratio(self):
        suggestions = suggest_indexes([self._field("status", 8)], 10)
        assert suggestions[0].reason == "High frequency field (80.0%) suitable for queries"

    def test_empty_sample(self):
        assert suggest_indexes([], 0) == []
