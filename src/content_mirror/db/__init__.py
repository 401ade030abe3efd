"""Database module initialization."""

from .connection import DocumentStore
from .mapper import DocumentMapper, to_json_safe
from .models import (
    ContentDocument,
    ProjectDocument,
    SchemaDocument,
    SharedProjectReference,
    SyncStatus,
)
from .schema import create_schema

__all__ = [
    "ContentDocument",
    "DocumentMapper",
    "DocumentStore",
    "ProjectDocument",
    "SchemaDocument",
    "SharedProjectReference",
    "SyncStatus",
    "create_schema",
    "to_json_safe",
]
