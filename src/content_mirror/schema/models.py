"""Data classes describing content collection schemas."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any


class FieldType(str, Enum):
    """Closed set of field types a collection schema can declare."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True)
class FieldSpec:
    """Declared type of one front-matter field."""
    type: FieldType = FieldType.STRING
    optional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "optional": self.optional}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldSpec":
        try:
            field_type = FieldType(data.get("type", "string"))
        except ValueError:
            field_type = FieldType.STRING
        return cls(type=field_type, optional=bool(data.get("optional", False)))


@dataclass(frozen=True)
class CollectionSchema:
    """Named collection with its field declarations."""
    name: str
    fields: Dict[str, FieldSpec] = field(default_factory=dict)

    def fields_to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: spec.to_dict() for name, spec in self.fields.items()}
