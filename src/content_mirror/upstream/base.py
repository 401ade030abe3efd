"""Base protocol and data classes for source repository clients."""

from dataclasses import dataclass
from typing import Optional, List, Protocol


@dataclass(frozen=True)
class RepoRef:
    """Owner/name pair identifying a source repository."""
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, repo_id: str) -> "RepoRef":
        """Build a RepoRef from an "owner/name" string."""
        owner, sep, name = repo_id.partition("/")
        if not sep or not owner or not name:
            raise ValueError(f"Invalid repository id: {repo_id!r}")
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return self.full_name


@dataclass
class DirectoryEntry:
    """One entry of a directory listing."""
    name: str
    path: str
    type: str  # "file", "dir", "symlink" or "submodule"
    revision: Optional[str] = None


@dataclass
class SourceFile:
    """Decoded file content together with its content-addressed revision."""
    path: str
    content: str
    revision: str


@dataclass
class WriteResult:
    """Outcome of a successful write to the source repository."""
    revision: str
    commit_id: str


class SourceRepositoryClient(Protocol):
    """Protocol for source repository host clients."""

    async def list_directory(self, repo: RepoRef, path: str) -> List[DirectoryEntry]:
        """List a directory. Raises SourceFileNotFoundError if it does not exist."""
        ...

    async def get_file(
        self, repo: RepoRef, path: str, ref: Optional[str] = None
    ) -> SourceFile:
        """Fetch a file. Raises SourceFileNotFoundError if it does not exist."""
        ...

    async def put_file(
        self,
        repo: RepoRef,
        path: str,
        content: str,
        message: str,
        expected_revision: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> WriteResult:
        """Create or conditionally update a file. Raises ConflictError when stale."""
        ...

    async def delete_file(
        self, repo: RepoRef, path: str, revision: str, message: str
    ) -> None:
        """Delete a file at a known revision. Raises ConflictError when stale."""
        ...

    async def close(self) -> None:
        """Close client resources."""
        ...
