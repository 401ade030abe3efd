"""Shared fixtures: an in-memory source repository and a temporary store."""

import asyncio
import hashlib
import hmac
import json
from typing import Dict, Iterable, List, Optional

import pytest

from content_mirror.db import DocumentMapper, DocumentStore
from content_mirror.errors import (
    ConflictError,
    SourceFileNotFoundError,
    SourceRepositoryError,
)
from content_mirror.upstream import DirectoryEntry, RepoRef, SourceFile, WriteResult


BLOG_CONFIG = """\
import { defineCollection, z } from "astro:content";

const blog = defineCollection({
  type: "content",
  schema: z.object({
    title: z.string(),
    tags: z.array(z.string()).optional(),
  }),
});

export const collections = { blog };
"""

SECRET = "It's a Secret to Everybody"


def make_post(body: str = "Hello world.", **metadata) -> str:
    """Build a markdown file with simple front matter."""
    lines = ["---"]
    for key, value in metadata.items():
        if isinstance(value, list):
            lines.append(f"{key}:")
            lines.extend(f"  - {item}" for item in value)
        else:
            lines.append(f"{key}: {value}")
    lines.append("---")
    lines.append("")
    lines.append(body)
    return "\n".join(lines) + "\n"


def revision_of(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


def sign(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def delivery(payload, event="push", secret=SECRET, signature=None):
    """Body and headers of a signed webhook delivery."""
    body = json.dumps(payload).encode()
    headers = {
        "X-Hub-Signature-256": signature or sign(body, secret),
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
    }
    return body, headers


def push_payload(ref="refs/heads/main", commits=None, owner_id=1001):
    return {
        "ref": ref,
        "repository": {
            "full_name": "octo/site",
            "default_branch": "main",
            "owner": {"id": owner_id, "login": "octo"},
        },
        "installation": {"id": 77},
        "commits": commits or [],
    }


class FakeSourceRepository:
    """In-memory stand-in for the GitHub contents API.

    Directories are implied by file paths. Revisions are content hashes, so a
    file that changes gets a new revision.
    """

    def __init__(
        self,
        files: Optional[Dict[str, str]] = None,
        fail_paths: Iterable[str] = (),
        fail_dirs: Iterable[str] = (),
        hang_paths: Iterable[str] = (),
        fetch_delay: float = 0.0,
    ):
        self.files: Dict[str, str] = {}
        self.revisions: Dict[str, str] = {}
        for path, content in (files or {}).items():
            self.set_file(path, content)
        self.fail_paths = set(fail_paths)
        self.fail_dirs = set(fail_dirs)
        self.hang_paths = set(hang_paths)
        self.fetch_delay = fetch_delay
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.commit_count = 0
        self.closed = False

    def set_file(self, path: str, content: str) -> None:
        self.files[path] = content
        self.revisions[path] = revision_of(content)

    def remove_file(self, path: str) -> None:
        self.files.pop(path, None)
        self.revisions.pop(path, None)

    async def list_directory(self, repo: RepoRef, path: str) -> List[DirectoryEntry]:
        path = path.strip("/")
        self.calls.append(("list", path))
        if path in self.fail_dirs:
            raise SourceRepositoryError(500, "Server error", path)

        prefix = path + "/"
        entries: Dict[str, DirectoryEntry] = {}
        for file_path in sorted(self.files):
            if not file_path.startswith(prefix):
                continue
            head, sep, _ = file_path[len(prefix):].partition("/")
            if sep:
                entries[prefix + head] = DirectoryEntry(head, prefix + head, "dir")
            else:
                entries[file_path] = DirectoryEntry(
                    head, file_path, "file", self.revisions[file_path]
                )

        if not entries:
            raise SourceFileNotFoundError(path)
        return list(entries.values())

    async def get_file(
        self, repo: RepoRef, path: str, ref: Optional[str] = None
    ) -> SourceFile:
        self.calls.append(("get", path))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if path in self.hang_paths:
                await asyncio.sleep(3600)
            if self.fetch_delay:
                await asyncio.sleep(self.fetch_delay)
            if path in self.fail_paths:
                raise SourceRepositoryError(500, "Server error", path)
            if path not in self.files:
                raise SourceFileNotFoundError(path)
            return SourceFile(path=path, content=self.files[path], revision=self.revisions[path])
        finally:
            self.in_flight -= 1

    async def put_file(
        self,
        repo: RepoRef,
        path: str,
        content: str,
        message: str,
        expected_revision: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> WriteResult:
        self.calls.append(("put", path))
        if self.revisions.get(path) != expected_revision:
            raise ConflictError(path, expected_revision)
        self.set_file(path, content)
        self.commit_count += 1
        return WriteResult(revision=self.revisions[path], commit_id=f"commit-{self.commit_count}")

    async def delete_file(
        self, repo: RepoRef, path: str, revision: str, message: str
    ) -> None:
        self.calls.append(("delete", path))
        if path not in self.files:
            raise SourceFileNotFoundError(path)
        if self.revisions[path] != revision:
            raise ConflictError(path, revision)
        self.remove_file(path)

    async def close(self) -> None:
        self.closed = True

    def fetched(self) -> List[str]:
        return [path for method, path in self.calls if method == "get"]


@pytest.fixture
def repo():
    return RepoRef("octo", "site")


@pytest.fixture
def store(tmp_path):
    store = DocumentStore(tmp_path / "mirror.db")
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def mapper(store):
    return DocumentMapper(store)


@pytest.fixture
def blog_repository():
    """Two valid posts and one without a title."""
    return FakeSourceRepository(
        files={
            "src/content/config.ts": BLOG_CONFIG,
            "src/content/blog/first.md": make_post(title="First", tags=["a", "b"]),
            "src/content/blog/second.md": make_post(title="Second"),
            "src/content/blog/untitled.md": make_post(tags=["c"]),
        }
    )
