"""Import pipeline: mirrors content files from a source repository into the store.

A run extracts the collection schemas, lists the content files, then fetches,
splits and validates every file concurrently (at most ``fetch_concurrency``
fetches in flight). A file that fails is reported in the summary and never
stops the others. Once every file has resolved, or the run deadline passes,
the successful documents are written in one batch, followed by the schemas
and the project summary.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Sequence, Tuple

from ..db.mapper import DocumentMapper, to_json_safe
from ..db.models import ContentDocument, ProjectDocument, SchemaDocument, SyncStatus
from ..errors import EnumerationError, SourceFileNotFoundError
from ..markdown import parse_markdown
from ..schema.extractor import default_schema, load_schemas
from ..schema.models import CollectionSchema
from ..schema.validation import detect_collection_from_path, select_schema, validate_metadata
from ..upstream.base import RepoRef, SourceRepositoryClient
from .enumerator import DEFAULT_EXTENSIONS, is_content_file, list_content_files


logger = logging.getLogger(__name__)


class ProgressStep(str, Enum):
    """Ordered steps reported by a streaming import."""
    CONFIG_PARSED = "config-parsed"
    FILES_LISTED = "files-listed"
    FILE_PROCESSED = "file-processed"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ProgressEvent:
    """One progress notification of an import run."""
    step: ProgressStep
    completed: Optional[int] = None
    total: Optional[int] = None
    schemas_count: Optional[int] = None
    files_count: Optional[int] = None
    imported: Optional[int] = None
    errors: Optional[List[str]] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        data = {key: value for key, value in asdict(self).items() if value is not None}
        data["step"] = self.step.value
        return data


ProgressSink = Callable[[ProgressEvent], None]


@dataclass
class ImportSummary:
    """How many files were imported out of how many were attempted."""
    repo_id: str
    imported_count: int
    total_count: int
    errors: List[str] = field(default_factory=list)
    timed_out: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _FileOutcome:
    path: str
    document: Optional[ContentDocument] = None
    error: Optional[str] = None


class ImportPipeline:
    """Bulk import and file-level re-sync of a repository's content."""

    def __init__(
        self,
        mapper: DocumentMapper,
        content_root: str = "src/content",
        config_path: str = "src/content/config.ts",
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        fallback_collection: str = "blog",
        fetch_concurrency: int = 8,
        timeout: float = 300.0,
    ):
        """
        Args:
            mapper: Document store mapper
            content_root: Directory holding the collections
            config_path: Content collection config file
            extensions: Accepted content file extensions
            fallback_collection: Collection for files outside a collection directory
            fetch_concurrency: Maximum simultaneous file fetches
            timeout: Default overall deadline in seconds
        """
        if fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be at least 1")
        self.mapper = mapper
        self.content_root = content_root.strip("/")
        self.config_path = config_path
        self.extensions = tuple(extensions)
        self.fallback_collection = fallback_collection
        self.fetch_concurrency = fetch_concurrency
        self.timeout = timeout

    async def extract_schemas(
        self, client: SourceRepositoryClient, repo: RepoRef
    ) -> List[CollectionSchema]:
        """Read the repository's collection schemas (never fails)."""
        return await load_schemas(client, repo, self.config_path)

    async def import_all(
        self,
        owner_id: str,
        repo: RepoRef,
        client: SourceRepositoryClient,
        name: Optional[str] = None,
        description: str = "",
        progress: Optional[ProgressSink] = None,
        timeout: Optional[float] = None,
    ) -> ImportSummary:
        """
        Import every content file of a repository into the owner's partition.

        Args:
            owner_id: Owning identity
            repo: Repository to import
            client: Client authenticated for the repository
            name: Project display name (defaults to the repository name)
            description: Project description
            progress: Optional callable receiving ProgressEvent objects
            timeout: Overall deadline, defaults to the pipeline's

        Returns:
            ImportSummary with counts and per-file errors

        Raises:
            EnumerationError: If the content root cannot be listed
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout if timeout is not None else self.timeout)

        schemas = await self._load_schemas(client, repo, deadline)
        _emit(progress, ProgressEvent(ProgressStep.CONFIG_PARSED, schemas_count=len(schemas)))

        try:
            files = await asyncio.wait_for(
                list_content_files(client, repo, self.content_root, self.extensions),
                timeout=_remaining(deadline),
            )
        except asyncio.TimeoutError:
            raise EnumerationError(repo.full_name, self.content_root, "timed out")
        _emit(progress, ProgressEvent(ProgressStep.FILES_LISTED, files_count=len(files)))

        if not files:
            logger.info(f"No content files found in {repo}")
            summary = ImportSummary(repo_id=repo.full_name, imported_count=0, total_count=0)
            _emit(progress, ProgressEvent(ProgressStep.COMPLETE, imported=0, total=0))
            return summary

        outcomes, timed_out = await self._process_files(
            owner_id, repo, client, files, schemas, deadline, progress
        )
        documents = [outcome.document for outcome in outcomes if outcome.document]
        errors = [outcome.error for outcome in outcomes if outcome.error]

        _emit(progress, ProgressEvent(ProgressStep.SAVING))
        now = time.time()
        self.mapper.upsert_posts(documents)
        self._save_schemas(owner_id, repo, schemas, now)
        self.mapper.upsert_project(
            ProjectDocument(
                owner_id=owner_id,
                repo_id=repo.full_name,
                name=name or repo.name,
                description=description or "",
                posts_count=len(documents),
                last_sync=now,
                created_at=now,
                updated_at=now,
            )
        )

        summary = ImportSummary(
            repo_id=repo.full_name,
            imported_count=len(documents),
            total_count=len(files),
            errors=errors,
            timed_out=timed_out,
        )
        _emit(
            progress,
            ProgressEvent(
                ProgressStep.COMPLETE,
                imported=summary.imported_count,
                total=summary.total_count,
                errors=errors or None,
            ),
        )
        logger.info(
            f"Imported {repo} for {owner_id}: {summary.imported_count}/{summary.total_count} "
            f"files, errors={len(errors)}{' (timed out)' if timed_out else ''}"
        )
        return summary

    async def stream_import(
        self,
        owner_id: str,
        repo: RepoRef,
        client: SourceRepositoryClient,
        name: Optional[str] = None,
        description: str = "",
    ) -> AsyncIterator[ProgressEvent]:
        """
        Run import_all and yield its progress events as they happen.

        A fatal failure is reported as a final ``error`` event.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def run() -> None:
            try:
                await self.import_all(
                    owner_id, repo, client, name=name, description=description,
                    progress=queue.put_nowait,
                )
            except EnumerationError as e:
                logger.error(f"Import of {repo} aborted: {e}")
                queue.put_nowait(ProgressEvent(ProgressStep.ERROR, message=str(e)))
            except Exception:
                logger.exception(f"Import of {repo} failed")
                queue.put_nowait(
                    ProgressEvent(ProgressStep.ERROR, message="Failed to import content")
                )
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(run())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                task.cancel()

    async def sync_files(
        self,
        owner_id: str,
        repo: RepoRef,
        client: SourceRepositoryClient,
        files: Sequence[str],
        timeout: Optional[float] = None,
    ) -> ImportSummary:
        """
        Re-import exactly the given files (fetch, split, validate, upsert).

        Paths that are not content files are ignored. The project's post
        count is recounted from the store afterwards.
        """
        paths = list(dict.fromkeys(
            path for path in files
            if is_content_file(path, self.extensions, self.content_root)
        ))
        if not paths:
            return ImportSummary(repo_id=repo.full_name, imported_count=0, total_count=0)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout if timeout is not None else self.timeout)

        schemas = await self._load_schemas(client, repo, deadline)
        outcomes, timed_out = await self._process_files(
            owner_id, repo, client, paths, schemas, deadline, None
        )
        documents = [outcome.document for outcome in outcomes if outcome.document]
        errors = [outcome.error for outcome in outcomes if outcome.error]

        self.mapper.upsert_posts(documents)
        self._save_schemas(owner_id, repo, schemas, time.time())
        self.mapper.record_project_sync(owner_id, repo.full_name)

        logger.info(
            f"Synced {len(documents)}/{len(paths)} files of {repo} for {owner_id}, "
            f"errors={len(errors)}"
        )
        return ImportSummary(
            repo_id=repo.full_name,
            imported_count=len(documents),
            total_count=len(paths),
            errors=errors,
            timed_out=timed_out,
        )

    async def _load_schemas(
        self, client: SourceRepositoryClient, repo: RepoRef, deadline: float
    ) -> List[CollectionSchema]:
        try:
            return await asyncio.wait_for(
                self.extract_schemas(client, repo), timeout=_remaining(deadline)
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out reading {self.config_path} in {repo}, using default schema")
            return [default_schema()]

    async def _process_files(
        self,
        owner_id: str,
        repo: RepoRef,
        client: SourceRepositoryClient,
        files: Sequence[str],
        schemas: Sequence[CollectionSchema],
        deadline: float,
        progress: Optional[ProgressSink],
    ) -> Tuple[List[_FileOutcome], bool]:
        """Process files concurrently until all resolve or the deadline passes."""
        semaphore = asyncio.Semaphore(self.fetch_concurrency)
        total = len(files)
        completed = 0

        async def run(path: str) -> _FileOutcome:
            nonlocal completed
            outcome = await self._process_file(owner_id, repo, client, path, schemas, semaphore)
            if outcome.error:
                logger.warning(outcome.error)
            completed += 1
            _emit(
                progress,
                ProgressEvent(ProgressStep.FILE_PROCESSED, completed=completed, total=total),
            )
            return outcome

        tasks = [asyncio.create_task(run(path)) for path in files]
        done, pending = await asyncio.wait(tasks, timeout=_remaining(deadline))

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Deadline reached for {repo}: {len(pending)} file(s) not processed")

        outcomes = []
        for path, task in zip(files, tasks):
            if task in done:
                outcomes.append(task.result())
            else:
                outcomes.append(_FileOutcome(path=path, error=f"Timed out processing {path}"))
        return outcomes, bool(pending)

    async def _process_file(
        self,
        owner_id: str,
        repo: RepoRef,
        client: SourceRepositoryClient,
        path: str,
        schemas: Sequence[CollectionSchema],
        semaphore: asyncio.Semaphore,
    ) -> _FileOutcome:
        try:
            async with semaphore:
                source_file = await client.get_file(repo, path)
        except SourceFileNotFoundError:
            return _FileOutcome(path=path, error=f"Could not fetch {path}: not found")
        except Exception as e:
            return _FileOutcome(path=path, error=f"Could not fetch {path}: {e}")

        try:
            metadata, body = parse_markdown(source_file.content)
        except Exception as e:
            return _FileOutcome(path=path, error=f"Could not parse {path}: {e}")

        collection_name = detect_collection_from_path(
            path, self.content_root, self.fallback_collection
        )
        schema = select_schema(collection_name, schemas) or default_schema()
        validation = validate_metadata(metadata, schema)
        if not validation.valid:
            return _FileOutcome(
                path=path,
                error=f"Invalid metadata in {path}: {', '.join(validation.errors)}",
            )
        try:
            metadata = to_json_safe(validation.data)
        except TypeError as e:
            return _FileOutcome(path=path, error=f"Invalid metadata in {path}: {e}")

        now = time.time()
        return _FileOutcome(
            path=path,
            document=ContentDocument(
                owner_id=owner_id,
                repo_id=repo.full_name,
                file_path=path,
                collection_name=collection_name,
                metadata=metadata,
                body_text=body,
                source_revision=source_file.revision,
                sync_status=SyncStatus.SYNCED,
                created_at=now,
                updated_at=now,
                last_source_sync_at=now,
            ),
        )

    def _save_schemas(
        self,
        owner_id: str,
        repo: RepoRef,
        schemas: Sequence[CollectionSchema],
        now: float,
    ) -> None:
        self.mapper.upsert_schemas([
            SchemaDocument(
                owner_id=owner_id,
                repo_id=repo.full_name,
                collection_name=schema.name,
                fields=schema.fields_to_dict(),
                created_at=now,
                updated_at=now,
            )
            for schema in schemas
        ])


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - asyncio.get_running_loop().time())


def _emit(progress: Optional[ProgressSink], event: ProgressEvent) -> None:
    if progress is not None:
        progress(event)
