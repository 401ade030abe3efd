"""Content collection schema extraction and validation."""

from .models import CollectionSchema, FieldSpec, FieldType
from .extractor import default_schema, extract_schemas, load_schemas
from .validation import (
    ValidationResult,
    detect_collection_from_path,
    restore_dates,
    select_schema,
    validate_metadata,
)

__all__ = [
    "CollectionSchema",
    "FieldSpec",
    "FieldType",
    "ValidationResult",
    "default_schema",
    "detect_collection_from_path",
    "extract_schemas",
    "load_schemas",
    "restore_dates",
    "select_schema",
    "validate_metadata",
]
