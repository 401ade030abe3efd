"""Source repository integration module initialization."""

from .base import (
    DirectoryEntry,
    RepoRef,
    SourceFile,
    SourceRepositoryClient,
    WriteResult,
)
from .github import GitHubClient
from .registry import SourceClientPool

__all__ = [
    "DirectoryEntry",
    "GitHubClient",
    "RepoRef",
    "SourceClientPool",
    "SourceFile",
    "SourceRepositoryClient",
    "WriteResult",
]
