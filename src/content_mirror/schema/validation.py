"""Front-matter validation against collection schemas."""

import datetime
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .models import CollectionSchema, FieldType


@dataclass
class ValidationResult:
    """Validated metadata plus the problems found while validating it."""
    data: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_metadata(metadata: Dict[str, Any], schema: CollectionSchema) -> ValidationResult:
    """
    Validate front-matter metadata against a collection schema.

    Fields that fail are reported and left out of ``data``; fields the schema
    does not declare are passed through untouched.

    Args:
        metadata: Raw front-matter mapping
        schema: Collection schema to check against

    Returns:
        ValidationResult with the accepted fields and error messages
    """
    result = ValidationResult()

    for name, spec in schema.fields.items():
        value = metadata.get(name)

        if value is None:
            if not spec.optional:
                result.errors.append(f"missing required field: {name}")
            continue

        if not _matches_type(value, spec.type):
            result.errors.append(f"field {name} must be of type {spec.type.value}")
            continue

        result.data[name] = value

    for name, value in metadata.items():
        if name not in schema.fields:
            result.data[name] = value

    return result


def _matches_type(value: Any, field_type: FieldType) -> bool:
    if field_type is FieldType.STRING:
        return isinstance(value, str)
    if field_type is FieldType.NUMBER:
        # bool is an int subclass but never a number here
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_type is FieldType.BOOLEAN:
        return isinstance(value, bool)
    if field_type is FieldType.DATE:
        return isinstance(value, (datetime.date, str))
    if field_type is FieldType.ARRAY:
        return isinstance(value, (list, tuple))
    if field_type is FieldType.OBJECT:
        return isinstance(value, dict)
    return True


def detect_collection_from_path(
    file_path: str,
    content_root: str = "src/content",
    fallback: str = "blog",
) -> str:
    """
    Derive the collection name from a file path.

    ``src/content/blog/post.md`` belongs to ``blog``; a file directly under
    the content root, or outside it, belongs to the fallback collection.
    """
    root = re.escape(content_root.strip("/"))
    match = re.search(rf"(?:^|/){root}/([^/]+)/", file_path)
    return match.group(1) if match else fallback


def select_schema(
    collection_name: str, schemas: Sequence[CollectionSchema]
) -> Optional[CollectionSchema]:
    """Schema named after the collection, else the first schema."""
    for schema in schemas:
        if schema.name == collection_name:
            return schema
    return schemas[0] if schemas else None


def restore_dates(metadata: Dict[str, Any], schema: CollectionSchema) -> Dict[str, Any]:
    """
    Turn ISO strings back into dates for the fields a schema declares as date.

    The store keeps dates as ISO strings. Writing them out as strings would
    quote them in the front matter, so they are converted back first. Strings
    that are not ISO dates are left alone.
    """
    restored = dict(metadata)
    for name, spec in schema.fields.items():
        value = restored.get(name)
        if spec.type is FieldType.DATE and isinstance(value, str):
            restored[name] = _parse_iso_date(value)
    return restored


def _parse_iso_date(value: str) -> Any:
    try:
        if len(value) == 10:
            return datetime.date.fromisoformat(value)
        return datetime.datetime.fromisoformat(value)
    except ValueError:
        return value
