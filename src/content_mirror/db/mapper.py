"""Addressing and upsert logic for the document store.

No business rules live here. Every upsert matches on a natural key, writes
identity fields and ``created_at`` only when the row is inserted, and
overwrites the mutable fields on every call.
"""

import datetime
import json
import logging
import sqlite3
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..errors import DuplicatePostError, OwnerNotFoundError
from .connection import DocumentStore
from .models import (
    ContentDocument,
    ProjectDocument,
    SchemaDocument,
    SharedProjectReference,
    SyncStatus,
)


logger = logging.getLogger(__name__)


_JSON_SCALARS = (str, int, float, bool)


def to_json_safe(value: Any) -> Any:
    """
    Convert parsed front matter to values JSON can hold.

    Dates become ISO strings, in values and in mapping keys alike. Sets and
    tuples become lists.

    Raises:
        TypeError: For values with no JSON form, such as ``!!binary`` bytes
    """
    if value is None or isinstance(value, _JSON_SCALARS):
        return value
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, dict):
        return {_json_key(key): to_json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((to_json_safe(item) for item in value), key=str)
    raise TypeError(f"{type(value).__name__} values are not supported")


def _json_key(key: Any) -> Any:
    if key is None or isinstance(key, _JSON_SCALARS):
        return key
    if isinstance(key, datetime.date):
        return key.isoformat()
    raise TypeError(f"{type(key).__name__} keys are not supported")


def _dumps(value: Any) -> str:
    return json.dumps(to_json_safe(value), ensure_ascii=False)


_UPSERT_POST = """
    INSERT INTO posts (
        owner_id, repo_id, file_path, collection_name, source_revision,
        metadata, body_text, sync_status, created_at, updated_at,
        last_source_sync_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(owner_id, repo_id, file_path) DO UPDATE SET
        collection_name = excluded.collection_name,
        source_revision = excluded.source_revision,
        metadata = excluded.metadata,
        body_text = excluded.body_text,
        sync_status = excluded.sync_status,
        updated_at = excluded.updated_at,
        last_source_sync_at = COALESCE(excluded.last_source_sync_at, posts.last_source_sync_at)
"""

_UPSERT_SCHEMA = """
    INSERT INTO schemas (owner_id, repo_id, collection_name, fields, created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(owner_id, repo_id, collection_name) DO UPDATE SET
        fields = excluded.fields,
        updated_at = excluded.updated_at
"""

_UPSERT_PROJECT = """
    INSERT INTO projects (
        owner_id, repo_id, name, description, posts_count, last_sync,
        created_at, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(owner_id, repo_id) DO UPDATE SET
        name = excluded.name,
        description = excluded.description,
        posts_count = excluded.posts_count,
        last_sync = excluded.last_sync,
        updated_at = excluded.updated_at
"""


class DocumentMapper:
    """Reads and writes the four document kinds of each owner's partition."""

    def __init__(self, store: DocumentStore):
        self.store = store

    # Posts

    @staticmethod
    def _post_params(doc: ContentDocument) -> tuple:
        return (
            doc.owner_id,
            doc.repo_id,
            doc.file_path,
            doc.collection_name,
            doc.source_revision,
            _dumps(doc.metadata),
            doc.body_text,
            SyncStatus(doc.sync_status).value,
            doc.created_at,
            doc.updated_at,
            doc.last_source_sync_at,
        )

    @staticmethod
    def _row_to_post(row: sqlite3.Row) -> ContentDocument:
        return ContentDocument(
            id=row["id"],
            owner_id=row["owner_id"],
            repo_id=row["repo_id"],
            file_path=row["file_path"],
            collection_name=row["collection_name"],
            source_revision=row["source_revision"],
            metadata=json.loads(row["metadata"]),
            body_text=row["body_text"],
            sync_status=SyncStatus(row["sync_status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_source_sync_at=row["last_source_sync_at"],
        )

    def upsert_posts(self, docs: Sequence[ContentDocument]) -> int:
        """Upsert many posts in a single write. Returns the number written."""
        if not docs:
            return 0
        with self.store.transaction() as conn:
            conn.executemany(_UPSERT_POST, [self._post_params(doc) for doc in docs])
        return len(docs)

    def upsert_post(self, doc: ContentDocument) -> ContentDocument:
        """Upsert one post and return it as stored."""
        self.upsert_posts([doc])
        return self.get_post(doc.owner_id, doc.repo_id, doc.file_path)

    def insert_post(self, doc: ContentDocument) -> ContentDocument:
        """Insert a new post; fails if its natural key is already taken."""
        try:
            with self.store.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO posts (
                        owner_id, repo_id, file_path, collection_name, source_revision,
                        metadata, body_text, sync_status, created_at, updated_at,
                        last_source_sync_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._post_params(doc),
                )
        except sqlite3.IntegrityError:
            raise DuplicatePostError(doc.repo_id, doc.file_path)
        return self.get_post(doc.owner_id, doc.repo_id, doc.file_path)

    def get_post(
        self, owner_id: str, repo_id: str, file_path: str
    ) -> Optional[ContentDocument]:
        row = self.store.connection.execute(
            "SELECT * FROM posts WHERE owner_id = ? AND repo_id = ? AND file_path = ?",
            (owner_id, repo_id, file_path),
        ).fetchone()
        return self._row_to_post(row) if row else None

    def get_post_by_id(self, owner_id: str, post_id: int) -> Optional[ContentDocument]:
        row = self.store.connection.execute(
            "SELECT * FROM posts WHERE owner_id = ? AND id = ?",
            (owner_id, post_id),
        ).fetchone()
        return self._row_to_post(row) if row else None

    def list_posts(
        self, owner_id: str, repo_id: Optional[str] = None
    ) -> List[ContentDocument]:
        """Posts of an owner, most recently updated first."""
        query = "SELECT * FROM posts WHERE owner_id = ?"
        params: List[Any] = [owner_id]
        if repo_id:
            query += " AND repo_id = ?"
            params.append(repo_id)
        query += " ORDER BY updated_at DESC"
        rows = self.store.connection.execute(query, params).fetchall()
        return [self._row_to_post(row) for row in rows]

    def count_posts(self, owner_id: str, repo_id: str) -> int:
        return self.store.connection.execute(
            "SELECT COUNT(*) FROM posts WHERE owner_id = ? AND repo_id = ?",
            (owner_id, repo_id),
        ).fetchone()[0]

    def delete_posts(self, owner_id: str, repo_id: str, file_paths: Iterable[str]) -> int:
        """Delete posts by natural key. Returns the number of rows removed."""
        paths = list(file_paths)
        if not paths:
            return 0
        with self.store.transaction() as conn:
            cursor = conn.executemany(
                "DELETE FROM posts WHERE owner_id = ? AND repo_id = ? AND file_path = ?",
                [(owner_id, repo_id, path) for path in paths],
            )
        return cursor.rowcount

    # Schemas

    def upsert_schemas(self, docs: Sequence[SchemaDocument]) -> None:
        """Replace the stored fields of each collection wholesale."""
        if not docs:
            return
        with self.store.transaction() as conn:
            conn.executemany(
                _UPSERT_SCHEMA,
                [
                    (
                        doc.owner_id,
                        doc.repo_id,
                        doc.collection_name,
                        _dumps(doc.fields),
                        doc.created_at,
                        doc.updated_at,
                    )
                    for doc in docs
                ],
            )

    def upsert_schema(self, doc: SchemaDocument) -> None:
        self.upsert_schemas([doc])

    def list_schemas(self, owner_id: str, repo_id: str) -> List[SchemaDocument]:
        rows = self.store.connection.execute(
            "SELECT * FROM schemas WHERE owner_id = ? AND repo_id = ? ORDER BY collection_name",
            (owner_id, repo_id),
        ).fetchall()
        return [
            SchemaDocument(
                owner_id=row["owner_id"],
                repo_id=row["repo_id"],
                collection_name=row["collection_name"],
                fields=json.loads(row["fields"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    # Projects

    def upsert_project(self, doc: ProjectDocument) -> None:
        with self.store.transaction() as conn:
            conn.execute(
                _UPSERT_PROJECT,
                (
                    doc.owner_id,
                    doc.repo_id,
                    doc.name,
                    doc.description,
                    doc.posts_count,
                    doc.last_sync,
                    doc.created_at,
                    doc.updated_at,
                ),
            )

    def get_project(self, owner_id: str, repo_id: str) -> Optional[ProjectDocument]:
        row = self.store.connection.execute(
            "SELECT * FROM projects WHERE owner_id = ? AND repo_id = ?",
            (owner_id, repo_id),
        ).fetchone()
        if not row:
            return None
        return ProjectDocument(
            owner_id=row["owner_id"],
            repo_id=row["repo_id"],
            name=row["name"],
            description=row["description"],
            posts_count=row["posts_count"],
            last_sync=row["last_sync"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def record_project_sync(self, owner_id: str, repo_id: str) -> bool:
        """Recount posts and stamp last_sync on an existing project."""
        now = time.time()
        with self.store.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE projects
                SET posts_count = (
                        SELECT COUNT(*) FROM posts
                        WHERE posts.owner_id = projects.owner_id
                          AND posts.repo_id = projects.repo_id
                    ),
                    last_sync = ?, updated_at = ?
                WHERE owner_id = ? AND repo_id = ?
                """,
                (now, now, owner_id, repo_id),
            )
        return cursor.rowcount > 0

    def delete_project(self, caller_id: str, repo_id: str) -> None:
        """
        Remove a project from the caller's view.

        A collaborator only drops their shared reference. An owner removes the
        project together with its posts, schemas, collaborators and every
        reference other identities hold to it.
        """
        conn = self.store.connection
        ref = conn.execute(
            "SELECT owner_id FROM shared_project_refs WHERE holder_id = ? AND repo_id = ?",
            (caller_id, repo_id),
        ).fetchone()

        if self.get_project(caller_id, repo_id) is None:
            if ref is None:
                raise OwnerNotFoundError(caller_id, repo_id)
            with self.store.transaction() as tx:
                tx.execute(
                    "DELETE FROM shared_project_refs WHERE holder_id = ? AND repo_id = ?",
                    (caller_id, repo_id),
                )
            return

        with self.store.transaction() as tx:
            tx.execute(
                "DELETE FROM posts WHERE owner_id = ? AND repo_id = ?", (caller_id, repo_id)
            )
            tx.execute(
                "DELETE FROM schemas WHERE owner_id = ? AND repo_id = ?", (caller_id, repo_id)
            )
            tx.execute(
                "DELETE FROM shared_project_refs WHERE owner_id = ? AND repo_id = ?",
                (caller_id, repo_id),
            )
            tx.execute(
                "DELETE FROM projects WHERE owner_id = ? AND repo_id = ?", (caller_id, repo_id)
            )
        logger.info(f"Deleted project {repo_id} for {caller_id}")

    # Sharing

    def resolve_owner_partition(self, caller_id: str, repo_id: str) -> str:
        """
        Find the partition holding a repository's documents for a caller.

        Returns:
            The caller's own id if they own the project, else the owner id
            their shared reference points at

        Raises:
            OwnerNotFoundError: If the caller neither owns nor shares the project
        """
        if self.get_project(caller_id, repo_id) is not None:
            return caller_id

        row = self.store.connection.execute(
            "SELECT owner_id FROM shared_project_refs WHERE holder_id = ? AND repo_id = ? "
            "ORDER BY shared_at DESC LIMIT 1",
            (caller_id, repo_id),
        ).fetchone()
        if row:
            return row["owner_id"]

        raise OwnerNotFoundError(caller_id, repo_id)

    def share_project(
        self, owner_id: str, repo_id: str, collaborator_id: str
    ) -> SharedProjectReference:
        """Give a collaborator a reference to the owner's project."""
        if collaborator_id == owner_id:
            raise ValueError("A project cannot be shared with its owner")
        if self.get_project(owner_id, repo_id) is None:
            raise OwnerNotFoundError(owner_id, repo_id)

        ref = SharedProjectReference(holder_id=collaborator_id, repo_id=repo_id, owner_id=owner_id)
        with self.store.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO project_collaborators "
                "(owner_id, repo_id, collaborator_id, added_at) VALUES (?, ?, ?, ?)",
                (owner_id, repo_id, collaborator_id, ref.shared_at),
            )
            conn.execute(
                "INSERT OR REPLACE INTO shared_project_refs "
                "(holder_id, repo_id, owner_id, shared_at) VALUES (?, ?, ?, ?)",
                (collaborator_id, repo_id, owner_id, ref.shared_at),
            )
        return ref

    def unshare_project(self, owner_id: str, repo_id: str, collaborator_id: str) -> None:
        """Remove a collaborator and the reference they hold."""
        if self.get_project(owner_id, repo_id) is None:
            raise OwnerNotFoundError(owner_id, repo_id)
        with self.store.transaction() as conn:
            conn.execute(
                "DELETE FROM project_collaborators "
                "WHERE owner_id = ? AND repo_id = ? AND collaborator_id = ?",
                (owner_id, repo_id, collaborator_id),
            )
            conn.execute(
                "DELETE FROM shared_project_refs "
                "WHERE holder_id = ? AND repo_id = ? AND owner_id = ?",
                (collaborator_id, repo_id, owner_id),
            )

    def list_collaborators(self, owner_id: str, repo_id: str) -> List[str]:
        rows = self.store.connection.execute(
            "SELECT collaborator_id FROM project_collaborators "
            "WHERE owner_id = ? AND repo_id = ? ORDER BY added_at",
            (owner_id, repo_id),
        ).fetchall()
        return [row["collaborator_id"] for row in rows]

    # Installations

    def record_installation(
        self, installation_id: str, account_login: Optional[str], status: str
    ) -> None:
        with self.store.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO installations "
                "(installation_id, account_login, status, updated_at) VALUES (?, ?, ?, ?)",
                (installation_id, account_login, status, time.time()),
            )

    def get_installation(self, installation_id: str) -> Optional[Dict[str, Any]]:
        row = self.store.connection.execute(
            "SELECT * FROM installations WHERE installation_id = ?", (installation_id,)
        ).fetchone()
        return dict(row) if row else None
