import re
import decimal
from datetime import date, datetime, timezone
# Use Mapping, Sequence from collections.abc for broader compatibility
from collections.abc import Mapping, Sequence
from typing import Any

from bson import ObjectId, Timestamp, Int64, Decimal128, json_util

from .exceptions import ValidationError

# Semantic type tags, in classification order
TYPE_TAGS = ("null", "boolean", "number", "string", "array", "timestamp", "date", "object", "unknown")
STRUCTURED_TYPES = ("object", "array")

MAX_DOCUMENT_ID_BYTES = 1500
_RESERVED_ID = re.compile(r"^__.*__$")
_OBJECT_ID = re.compile(r"^[0-9a-f]{24}$")

# === Value Classifier ===

def classify_value(value: Any) -> str:
    """Maps a field value to one of the semantic type tags in TYPE_TAGS."""
    if value is None: return "null"
    # bool is a subclass of int, so it must be checked before numbers
    if isinstance(value, bool): return "boolean"
    if isinstance(value, (int, float, Int64, Decimal128, decimal.Decimal)): return "number"
    if isinstance(value, str): return "string"
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)): return "array"
    if isinstance(value, Timestamp): return "timestamp"
    if isinstance(value, (datetime, date)): return "date"
    if isinstance(value, Mapping): return "object"
    return "unknown"

# === Timestamp Normalizer ===

def normalize_value(value: Any) -> Any:
    """Recursively converts store-native values into portable ones.

    Server timestamps and datetimes become ISO-8601 strings (naive datetimes are
    taken as UTC, which is how the server stores them) and ObjectIds become
    their hex string. Mappings and sequences are walked; everything else is
    returned unchanged.
    """
    if isinstance(value, Timestamp):
        return value.as_datetime().isoformat()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Mapping):
        return {key: normalize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]
    return value

# === Canonical serialization ===

def canonical_json(value: Any) -> str:
    """Serializes a value to compact, key-sorted Extended JSON."""
    return json_util.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

def document_size_bytes(data: Mapping) -> int:
    """UTF-8 length of the canonical JSON form of a document."""
    return len(canonical_json(data).encode("utf-8"))

# === Path and id validation ===

def _segments(path: str, what: str):
    if not isinstance(path, str) or not path.strip("/"):
        raise ValidationError(f"{what} is required")
    segments = path.strip("/").split("/")
    if any(not segment for segment in segments):
        raise ValidationError(f"{what} '{path}' contains an empty segment")
    return segments

def validate_collection_path(path: str) -> str:
    """Returns the normalized collection path or raises ValidationError.

    A collection path alternates collection and document ids, so it always has
    an odd number of segments: "users", "users/u1/orders".
    """
    segments = _segments(path, "Collection path")
    if len(segments) % 2 == 0:
        raise ValidationError(f"Collection path '{path}' points to a document, not a collection")
    for doc_id in segments[1::2]:
        validate_document_id(doc_id)
    return "/".join(segments)

def validate_document_path(path: str) -> str:
    """Returns the normalized document path ("users/u1") or raises ValidationError."""
    segments = _segments(path, "Document path")
    if len(segments) % 2 == 1:
        raise ValidationError(f"Document path '{path}' points to a collection, not a document")
    for doc_id in segments[1::2]:
        validate_document_id(doc_id)
    return "/".join(segments)

def validate_document_id(doc_id: Any) -> str:
    if not isinstance(doc_id, str) or not doc_id:
        raise ValidationError("Document ID must be a non-empty string")
    if "/" in doc_id:
        raise ValidationError(f"Document ID '{doc_id}' cannot contain '/'")
    if doc_id in (".", ".."):
        raise ValidationError(f"Document ID '{doc_id}' is not allowed")
    if _RESERVED_ID.match(doc_id):
        raise ValidationError(f"Document ID '{doc_id}' uses the reserved __name__ form")
    if len(doc_id.encode("utf-8")) > MAX_DOCUMENT_ID_BYTES:
        raise ValidationError(f"Document ID exceeds {MAX_DOCUMENT_ID_BYTES} bytes")
    return doc_id

def to_mongo_id(doc_id: str) -> Any:
    """24-hex ids are stored as ObjectId, everything else as a plain string."""
    if _OBJECT_ID.match(doc_id):
        return ObjectId(doc_id)
    return doc_id
