"""Typed exception hierarchy for content-mirror.

Per-file import failures are never raised; they are collected as strings in
the run summary. The exceptions below cover the failures that terminate a
single operation and that callers are expected to tell apart.
"""

from typing import Optional


class MirrorError(Exception):
    """Base exception for all content-mirror errors."""
    pass


class SourceRepositoryError(MirrorError):
    """Raised when the source repository host answers with an error."""

    def __init__(self, status_code: int, message: str, path: Optional[str] = None):
        if path:
            text = f"{message} (status {status_code}, path {path})"
        else:
            text = f"{message} (status {status_code})"
        super().__init__(text)
        self.status_code = status_code
        self.path = path


class SourceFileNotFoundError(SourceRepositoryError):
    """Raised when a file or directory does not exist in the source repository."""

    def __init__(self, path: str):
        super().__init__(404, "Not found", path)


class PermissionDeniedError(SourceRepositoryError):
    """Raised when the credential is rejected or lacks write access."""

    def __init__(self, status_code: int, path: Optional[str] = None):
        super().__init__(status_code, "Permission denied", path)


class ConflictError(SourceRepositoryError):
    """Raised when a conditional write is rejected because the file changed.

    Callers must re-fetch the file before trying again.
    """

    def __init__(
        self,
        path: str,
        expected_revision: Optional[str] = None,
        status_code: int = 409,
    ):
        super().__init__(
            status_code,
            f"File has been modified externally (expected revision {expected_revision})",
            path,
        )
        self.expected_revision = expected_revision


class EnumerationError(MirrorError):
    """Raised when the content root cannot be listed; fatal to an import run."""

    def __init__(self, repo_id: str, root: str, reason: str):
        super().__init__(f"Could not list {root} in {repo_id}: {reason}")
        self.repo_id = repo_id
        self.root = root


class OwnerNotFoundError(MirrorError):
    """Raised when a caller neither owns nor shares a project."""

    def __init__(self, caller_id: str, repo_id: str):
        super().__init__(f"Project {repo_id} not found for {caller_id}")
        self.caller_id = caller_id
        self.repo_id = repo_id


class DuplicatePostError(MirrorError):
    """Raised when creating a post whose file path is already tracked."""

    def __init__(self, repo_id: str, file_path: str):
        super().__init__(f"A post for {file_path} already exists in {repo_id}")
        self.repo_id = repo_id
        self.file_path = file_path
