import logging

from .exceptions import ValidationError
from .fields import FieldAccumulator
from .models import CollectionStatsResult
from .store import DocumentStore
from .utils import document_size_bytes

logger = logging.getLogger(__name__)

DEFAULT_STATS_SAMPLE_SIZE = 1000
EXAMPLES_PER_FIELD = 5


def get_stats(store: DocumentStore, collection_path: str,
              sample_size: int = DEFAULT_STATS_SAMPLE_SIZE) -> CollectionStatsResult:
    """Collection size and per-field statistics.

    document_count comes from an exact server-side count. Sizes are measured on
    a sample (UTF-8 length of each document's canonical JSON), so
    total_size_bytes is the sampled average times document_count: an estimate.
    """
    if sample_size < 0:
        raise ValidationError("sample_size cannot be negative.")
    document_count = store.count(collection_path)
    snapshots = store.fetch(collection_path, limit=sample_size) if sample_size > 0 else []

    accumulator = FieldAccumulator(max_examples=EXAMPLES_PER_FIELD, track_unique=True)
    sample_bytes = 0
    for snapshot in snapshots:
        sample_bytes += document_size_bytes(snapshot.data)
        accumulator.add_document(snapshot.data)

    average_size = sample_bytes / len(snapshots) if snapshots else 0.0
    logger.info(f"'{collection_path}': {document_count} documents, "
                f"{len(snapshots)} sampled, average {average_size:.1f} bytes")
    return CollectionStatsResult(
        document_count=document_count,
        total_size_bytes=average_size * document_count,
        average_document_size=average_size,
        sample_size=len(snapshots),
        field_statistics=accumulator.field_observations(),
    )
