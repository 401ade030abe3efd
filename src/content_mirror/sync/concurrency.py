"""Revision-checked writes from the cache back to the source repository.

Every post remembers the revision it was last read at. A save forwards that
revision to the host's conditional write; a stale revision comes back as
``ConflictError`` and the stored post is left untouched. The caller has to
re-fetch before retrying, nothing here merges or retries.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from ..db.mapper import DocumentMapper
from ..db.models import ContentDocument, SyncStatus
from ..errors import DuplicatePostError, SourceFileNotFoundError
from ..markdown import serialize_markdown
from ..schema.models import CollectionSchema, FieldSpec
from ..schema.validation import restore_dates, select_schema
from ..upstream.base import RepoRef, SourceRepositoryClient


logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """Revision and commit produced by a successful save."""
    new_revision: str
    commit_id: str
    document: ContentDocument


@dataclass
class SyncCheck:
    """Whether a stored post still matches the source file."""
    synced: bool
    remote_revision: Optional[str] = None
    reason: Optional[str] = None


class ConcurrencyController:
    """Persists edited posts locally and back to the source repository."""

    def __init__(self, mapper: DocumentMapper):
        self.mapper = mapper

    async def save(
        self,
        client: SourceRepositoryClient,
        doc: ContentDocument,
        expected_revision: Optional[str],
        metadata: Dict[str, Any],
        body: str,
        message: Optional[str] = None,
    ) -> SaveResult:
        """
        Write new content for a post, guarded by the revision last read.

        Args:
            client: Client authenticated for the post's repository
            doc: Stored post being edited
            expected_revision: Revision the edit was based on (None creates the file)
            metadata: New front-matter metadata
            body: New body text
            message: Commit message

        Returns:
            SaveResult with the host-assigned revision and the stored post

        Raises:
            ConflictError: If the source file changed since expected_revision
            PermissionDeniedError: If the credential may not write
        """
        repo = RepoRef.parse(doc.repo_id)
        content = self._render(doc.owner_id, doc.repo_id, doc.collection_name, metadata, body)
        result = await client.put_file(
            repo,
            doc.file_path,
            content,
            message or f"Update {doc.file_path}",
            expected_revision=expected_revision,
        )

        now = time.time()
        stored = self.mapper.upsert_post(
            replace(
                doc,
                metadata=dict(metadata),
                body_text=body,
                source_revision=result.revision,
                sync_status=SyncStatus.SYNCED,
                updated_at=now,
                last_source_sync_at=now,
            )
        )
        logger.info(f"Saved {doc.file_path} in {doc.repo_id} at revision {result.revision}")
        return SaveResult(new_revision=result.revision, commit_id=result.commit_id, document=stored)

    def save_draft(
        self, doc: ContentDocument, metadata: Dict[str, Any], body: str
    ) -> ContentDocument:
        """Store a local edit without touching the source repository."""
        status = SyncStatus.DRAFT if doc.sync_status == SyncStatus.DRAFT else SyncStatus.MODIFIED
        return self.mapper.upsert_post(
            replace(
                doc,
                metadata=dict(metadata),
                body_text=body,
                sync_status=status,
                updated_at=time.time(),
            )
        )

    async def create_post(
        self,
        owner_id: str,
        repo: RepoRef,
        file_path: str,
        collection_name: str,
        metadata: Dict[str, Any],
        body: str,
        client: Optional[SourceRepositoryClient] = None,
        commit: bool = False,
        message: Optional[str] = None,
    ) -> ContentDocument:
        """
        Create a new post, either as a local draft or committed right away.

        Raises:
            DuplicatePostError: If the post's file path is already tracked
            ConflictError: If committing and the file already exists upstream
        """
        if self.mapper.get_post(owner_id, repo.full_name, file_path) is not None:
            raise DuplicatePostError(repo.full_name, file_path)

        now = time.time()
        doc = ContentDocument(
            owner_id=owner_id,
            repo_id=repo.full_name,
            file_path=file_path,
            collection_name=collection_name,
            metadata=dict(metadata),
            body_text=body,
            sync_status=SyncStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        if not commit:
            return self.mapper.insert_post(doc)

        if client is None:
            raise ValueError("A client is required to commit a new post")
        result = await client.put_file(
            repo,
            file_path,
            self._render(owner_id, repo.full_name, collection_name, metadata, body),
            message or f"Create {file_path}",
            expected_revision=None,
        )
        doc.source_revision = result.revision
        doc.sync_status = SyncStatus.SYNCED
        doc.last_source_sync_at = time.time()
        return self.mapper.insert_post(doc)

    async def delete_post(
        self,
        doc: ContentDocument,
        cascade_to_source: bool = False,
        client: Optional[SourceRepositoryClient] = None,
        message: Optional[str] = None,
    ) -> None:
        """
        Delete a post from the store, and optionally from the source repository first.

        A failed source delete leaves the stored post in place.
        """
        if cascade_to_source and doc.source_revision:
            if client is None:
                raise ValueError("A client is required to delete from the source repository")
            try:
                await client.delete_file(
                    RepoRef.parse(doc.repo_id),
                    doc.file_path,
                    doc.source_revision,
                    message or f"Delete {doc.file_path}",
                )
            except SourceFileNotFoundError:
                logger.info(f"{doc.file_path} already gone from {doc.repo_id}")

        self.mapper.delete_posts(doc.owner_id, doc.repo_id, [doc.file_path])

    async def check_sync(
        self, client: SourceRepositoryClient, doc: ContentDocument
    ) -> SyncCheck:
        """Compare the stored revision with the source file's current one."""
        try:
            remote = await client.get_file(RepoRef.parse(doc.repo_id), doc.file_path)
        except SourceFileNotFoundError:
            return SyncCheck(synced=False, reason="remote_missing")

        if doc.source_revision is None:
            return SyncCheck(synced=False, remote_revision=remote.revision, reason="never_synced")
        if remote.revision != doc.source_revision:
            return SyncCheck(synced=False, remote_revision=remote.revision, reason="remote_changed")
        if doc.sync_status == SyncStatus.MODIFIED:
            return SyncCheck(synced=False, remote_revision=remote.revision, reason="local_changes")
        return SyncCheck(synced=True, remote_revision=remote.revision)

    def _render(
        self,
        owner_id: str,
        repo_id: str,
        collection_name: str,
        metadata: Dict[str, Any],
        body: str,
    ) -> str:
        """Serialize a post, writing declared date fields as YAML dates."""
        schemas = [
            CollectionSchema(
                name=stored.collection_name,
                fields={name: FieldSpec.from_dict(spec) for name, spec in stored.fields.items()},
            )
            for stored in self.mapper.list_schemas(owner_id, repo_id)
        ]
        schema = select_schema(collection_name, schemas)
        if schema is not None:
            metadata = restore_dates(metadata, schema)
        return serialize_markdown(metadata, body)
