import time
import logging

from .models import DocumentInfo, ExecutionStats, QueryOptions, QueryResult
from .store import DocumentSnapshot, Query
from .utils import normalize_value

logger = logging.getLogger(__name__)


def to_document_info(snapshot: DocumentSnapshot) -> DocumentInfo:
    return DocumentInfo(
        id=snapshot.id,
        path=snapshot.path,
        data=normalize_value(snapshot.data),
        create_time=snapshot.create_time,
        update_time=snapshot.update_time,
        read_time=snapshot.read_time,
    )


def build_query(base: Query, options: QueryOptions) -> Query:
    """Applies where conditions, then order_by clauses, then offset, then limit.

    Clauses are applied exactly in the order supplied; the store may derive
    index requirements from that order, so nothing is rearranged here.
    """
    query = base
    for condition in options.where or []:
        query = query.where(condition.field, condition.operator, condition.value)
    for order in options.order_by or []:
        query = query.order_by(order.field, order.direction)
    if options.offset:
        query = query.offset(options.offset)
    if options.limit:
        query = query.limit(options.limit)
    return query


def execute_query(base: Query, options: QueryOptions) -> QueryResult:
    """Builds and runs a query.

    has_more is True when the page is exactly as large as a nonzero limit. It
    is an approximation: a collection holding exactly `limit` matches reports
    has_more even though no further page exists.
    """
    query = build_query(base, options)

    start = time.perf_counter()
    snapshots = query.get()
    elapsed_ms = (time.perf_counter() - start) * 1000

    documents = [to_document_info(snapshot) for snapshot in snapshots]
    logger.info(f"Query on '{base.collection_path}' returned {len(documents)} documents in {elapsed_ms:.1f} ms")
    return QueryResult(
        documents=documents,
        total_count=len(documents),
        has_more=bool(options.limit) and len(snapshots) == options.limit,
        execution_stats=ExecutionStats(
            documents_scanned=len(snapshots),
            documents_returned=len(documents),
            execution_time_ms=elapsed_ms,
        ),
    )
