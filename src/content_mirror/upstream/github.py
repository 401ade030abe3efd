"""GitHub contents API client for source repository access."""

import base64
from typing import Optional, Dict, Any, List
from urllib.parse import quote

import httpx

from ..errors import (
    ConflictError,
    PermissionDeniedError,
    SourceFileNotFoundError,
    SourceRepositoryError,
)
from .base import DirectoryEntry, RepoRef, SourceFile, WriteResult


class GitHubClient:
    """Client for the GitHub repository contents API."""

    def __init__(
        self,
        access_token: str,
        api_base: str = "https://api.github.com",
        api_version: str = "2022-11-28",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize GitHub client.

        Args:
            access_token: OAuth or installation token
            api_base: REST API base URL
            api_version: Value for the X-GitHub-Api-Version header
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_base = api_base.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token.strip()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": api_version,
            },
        )

    def _contents_url(self, repo: RepoRef, path: str) -> str:
        encoded = quote(path.strip("/"), safe="/")
        return f"{self.api_base}/repos/{repo.owner}/{repo.name}/contents/{encoded}"

    @staticmethod
    def _raise_for_status(
        response: httpx.Response,
        path: str,
        conditional: bool = False,
        expected_revision: Optional[str] = None,
    ) -> None:
        """Translate an error response into the matching exception."""
        status = response.status_code
        if status < 400:
            return
        if status == 404:
            raise SourceFileNotFoundError(path)
        if status in (401, 403):
            raise PermissionDeniedError(status, path)
        # 409 is a stale sha; 422 is a missing sha for a file that already exists
        if conditional and status in (409, 422):
            raise ConflictError(path, expected_revision, status_code=status)
        try:
            message = response.json().get("message", response.reason_phrase)
        except ValueError:
            message = response.reason_phrase
        raise SourceRepositoryError(status, message, path)

    async def list_directory(self, repo: RepoRef, path: str) -> List[DirectoryEntry]:
        """
        List the entries of a directory.

        Args:
            repo: Repository reference
            path: Directory path relative to the repository root

        Returns:
            Directory entries (empty if the path is a file)
        """
        response = await self.client.get(self._contents_url(repo, path))
        self._raise_for_status(response, path)

        data = response.json()
        if not isinstance(data, list):
            return []

        return [
            DirectoryEntry(
                name=item["name"],
                path=item["path"],
                type=item["type"],
                revision=item.get("sha"),
            )
            for item in data
        ]

    async def get_file(
        self, repo: RepoRef, path: str, ref: Optional[str] = None
    ) -> SourceFile:
        """
        Retrieve a single file.

        Args:
            repo: Repository reference
            path: File path relative to the repository root
            ref: Optional branch, tag or commit

        Returns:
            Decoded file content and its blob sha
        """
        params = {"ref": ref} if ref else None
        response = await self.client.get(self._contents_url(repo, path), params=params)
        self._raise_for_status(response, path)

        data = response.json()
        if isinstance(data, list) or data.get("type") != "file":
            raise SourceRepositoryError(400, "Path is not a file", path)

        content = base64.b64decode(data.get("content", "")).decode("utf-8")
        return SourceFile(path=data.get("path", path), content=content, revision=data["sha"])

    async def put_file(
        self,
        repo: RepoRef,
        path: str,
        content: str,
        message: str,
        expected_revision: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> WriteResult:
        """
        Create a file, or update it if expected_revision still matches.

        Args:
            repo: Repository reference
            path: File path
            content: New file content (text)
            message: Commit message
            expected_revision: Blob sha last read; None creates a new file
            branch: Optional target branch

        Returns:
            WriteResult with the new blob sha and commit sha
        """
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if expected_revision:
            payload["sha"] = expected_revision
        if branch:
            payload["branch"] = branch

        response = await self.client.put(self._contents_url(repo, path), json=payload)
        self._raise_for_status(
            response, path, conditional=True, expected_revision=expected_revision
        )

        data = response.json()
        return WriteResult(
            revision=data["content"]["sha"],
            commit_id=data["commit"]["sha"],
        )

    async def delete_file(
        self, repo: RepoRef, path: str, revision: str, message: str
    ) -> None:
        """
        Delete a file at a known revision.

        Args:
            repo: Repository reference
            path: File path
            revision: Blob sha the caller last read
            message: Commit message
        """
        response = await self.client.request(
            "DELETE",
            self._contents_url(repo, path),
            json={"message": message, "sha": revision},
        )
        self._raise_for_status(
            response, path, conditional=True, expected_revision=revision
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
