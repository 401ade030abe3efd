"""Recursive listing of content files in a source repository."""

import asyncio
import logging
from typing import List, Sequence

from ..errors import EnumerationError
from ..upstream.base import RepoRef, SourceRepositoryClient


logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".md", ".mdx")


def is_content_file(
    path: str,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    content_root: str = "",
) -> bool:
    """Check whether a path is a content file, optionally under a root directory."""
    if "node_modules/" in path:
        return False
    if content_root and not path.startswith(content_root.strip("/") + "/"):
        return False
    return path.lower().endswith(tuple(ext.lower() for ext in extensions))


async def list_content_files(
    client: SourceRepositoryClient,
    repo: RepoRef,
    root: str,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
) -> List[str]:
    """
    List every content file below a root directory.

    Subdirectories are listed concurrently and flattened depth-first.

    Args:
        client: Source repository client
        repo: Repository reference
        root: Directory to start from
        extensions: Accepted file extensions

    Returns:
        Paths of content files

    Raises:
        EnumerationError: If the root itself cannot be listed
    """
    try:
        entries = await client.list_directory(repo, root)
    except Exception as e:
        raise EnumerationError(repo.full_name, root, str(e)) from e

    return await _collect(client, repo, entries, extensions)


async def _list_subtree(
    client: SourceRepositoryClient,
    repo: RepoRef,
    path: str,
    extensions: Sequence[str],
) -> List[str]:
    """List a subdirectory; a failure counts as an empty subtree."""
    try:
        entries = await client.list_directory(repo, path)
    except Exception as e:
        logger.warning(f"Skipping {path} in {repo}: {e}")
        return []

    return await _collect(client, repo, entries, extensions)


async def _collect(client, repo, entries, extensions) -> List[str]:
    files = [
        entry.path
        for entry in entries
        if entry.type == "file" and is_content_file(entry.path, extensions)
    ]

    directories = [entry.path for entry in entries if entry.type == "dir"]
    if directories:
        subtrees = await asyncio.gather(
            *(_list_subtree(client, repo, path, extensions) for path in directories)
        )
        for subtree in subtrees:
            files.extend(subtree)

    return files
