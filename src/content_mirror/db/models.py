"""Document kinds persisted in the store."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SyncStatus(str, Enum):
    """Relationship between a cached post and its source file."""
    DRAFT = "draft"
    MODIFIED = "modified"
    SYNCED = "synced"


@dataclass
class ContentDocument:
    """One content file mirrored from the source repository.

    ``(kind, owner_id, repo_id, file_path)`` is the natural key.
    """
    owner_id: str
    repo_id: str
    file_path: str
    collection_name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    body_text: str = ""
    source_revision: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.DRAFT
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    last_source_sync_at: Optional[float] = None
    id: Optional[int] = None
    kind: str = field(default="post", init=False)


@dataclass
class SchemaDocument:
    """Last extracted field declarations of one collection."""
    owner_id: str
    repo_id: str
    collection_name: str
    fields: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    kind: str = field(default="schema", init=False)


@dataclass
class ProjectDocument:
    """Aggregate state of one mirrored repository."""
    owner_id: str
    repo_id: str
    name: str
    description: str = ""
    posts_count: int = 0
    last_sync: Optional[float] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    kind: str = field(default="project", init=False)


@dataclass
class SharedProjectReference:
    """Pointer held by a collaborator to a project in the owner's partition."""
    holder_id: str
    repo_id: str
    owner_id: str
    shared_at: float = field(default_factory=time.time)
    kind: str = field(default="shared_project_reference", init=False)
