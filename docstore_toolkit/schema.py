"""Schema inference over a sample of documents.

The sample is taken in store order with no explicit sort, so repeated runs
against a collection that is being written to can see different documents.
"""
import logging
from typing import List

from .exceptions import ValidationError
from .fields import FieldAccumulator
from .models import FieldObservation, IndexSuggestion, SchemaAnalysisResult
from .store import DocumentStore
from .utils import STRUCTURED_TYPES

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_SAMPLE_SIZE = 100
EXAMPLES_PER_FIELD = 3
# A field qualifies for an index suggestion when it appears in more than
# this share of the sampled documents
INDEX_FREQUENCY_THRESHOLD = 0.5
MAX_SINGLE_FIELD_SUGGESTIONS = 5
MAX_COMPOSITE_FIELDS = 3


def suggest_indexes(fields: List[FieldObservation], sample_size: int) -> List[IndexSuggestion]:
    """Derives index suggestions from fields sorted by descending frequency."""
    if sample_size <= 0:
        return []
    frequent = [
        f for f in fields
        if f.type not in STRUCTURED_TYPES and f.frequency / sample_size > INDEX_FREQUENCY_THRESHOLD
    ]

    suggestions = [
        IndexSuggestion(
            fields=[f.path],
            kind="single",
            reason=f"High frequency field ({f.frequency / sample_size * 100:.1f}%) suitable for queries",
        )
        for f in frequent[:MAX_SINGLE_FIELD_SUGGESTIONS]
    ]
    if len(frequent) >= 2:
        suggestions.append(IndexSuggestion(
            fields=[f.path for f in frequent[:MAX_COMPOSITE_FIELDS]],
            kind="composite",
            reason="Composite index for common field combinations",
        ))
    return suggestions


def analyze_schema(store: DocumentStore, collection_path: str,
                   sample_size: int = DEFAULT_SCHEMA_SAMPLE_SIZE) -> SchemaAnalysisResult:
    """Infers field types, nesting and index candidates from up to sample_size documents.

    An empty collection yields a result with sample_size 0 and empty lists.
    Raises RemoteFetchError when the sample cannot be read.
    """
    if sample_size < 0:
        raise ValidationError("sample_size cannot be negative.")
    logger.info(f"Sampling up to {sample_size} documents from '{collection_path}' for schema analysis")
    snapshots = store.fetch(collection_path, limit=sample_size) if sample_size > 0 else []

    accumulator = FieldAccumulator(max_examples=EXAMPLES_PER_FIELD)
    for snapshot in snapshots:
        accumulator.add_document(snapshot.data)

    common_fields = accumulator.field_observations()
    logger.info(f"Analyzed {len(snapshots)} documents, found {len(common_fields)} field paths")
    return SchemaAnalysisResult(
        collection_path=collection_path,
        sample_size=len(snapshots),
        common_fields=common_fields,
        data_types=accumulator.data_types,
        nested_structures=accumulator.nested_structures(),
        index_suggestions=suggest_indexes(common_fields, len(snapshots)),
    )
