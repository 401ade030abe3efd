"""MCP server implementation with FastMCP."""

import json
import logging
from dataclasses import asdict
from typing import Any, AsyncIterator, Dict, List, Optional

from mcp.server.fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse

from .config import settings
from .db.models import ContentDocument
from .errors import ConflictError, EnumerationError, OwnerNotFoundError
from .services import Services
from .upstream import RepoRef


logger = logging.getLogger(__name__)

# Set by main.py during startup
services: Optional[Services] = None


# Create FastMCP server (lifespan will be managed by main.py)
mcp = FastMCP(
    "content-mirror",
    host=settings.http_host,
    port=settings.http_port,
)


def _require_services() -> Services:
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


def _not_ready() -> JSONResponse:
    return JSONResponse(
        content={"error": "Server not fully initialized. Please wait a moment and try again."},
        status_code=503,
    )


def _post_to_dict(doc: ContentDocument) -> Dict[str, Any]:
    data = asdict(doc)
    data["sync_status"] = doc.sync_status.value
    return data


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer "):].strip()
    return token or None


@mcp.custom_route("/api/health", methods=["GET"])
async def health_api(request: Request) -> JSONResponse:
    """Liveness probe."""
    return JSONResponse(
        content={
            "status": "ok" if services is not None else "starting",
            "webhook_configured": bool(services and services.reconciler.secret),
        }
    )


@mcp.custom_route("/api/webhook/github", methods=["POST"])
async def github_webhook(request: Request) -> JSONResponse:
    """Receive a GitHub webhook delivery."""
    if services is None:
        return _not_ready()

    raw_body = await request.body()
    response = await services.reconciler.handle(raw_body, request.headers)
    return JSONResponse(content=response.body, status_code=response.status_code)


@mcp.custom_route("/api/import", methods=["POST"])
async def import_api(request: Request):
    """
    Import a repository, streaming progress as newline-delimited JSON.

    The bearer token is used as the GitHub credential. Body:
    ``{"owner_id": ..., "repo": "owner/name", "name": ..., "description": ...}``
    """
    if services is None:
        return _not_ready()

    token = _bearer_token(request)
    if token is None:
        return JSONResponse(content={"error": "Missing bearer token"}, status_code=401)

    try:
        body = await request.json()
        owner_id = body["owner_id"]
        repo = RepoRef.parse(body["repo"])
    except (ValueError, KeyError, TypeError) as e:
        return JSONResponse(content={"error": f"Invalid request: {e}"}, status_code=400)

    pool = services.client_pool
    pipeline = services.pipeline

    async def ndjson() -> AsyncIterator[str]:
        async with pool.session(token) as client:
            events = pipeline.stream_import(
                owner_id,
                repo,
                client,
                name=body.get("name"),
                description=body.get("description") or "",
            )
            async for event in events:
                yield json.dumps(event.to_dict()) + "\n"

    return StreamingResponse(ndjson(), media_type="application/x-ndjson")


@mcp.tool()
async def extract_schemas(repo: str, access_token: str) -> List[Dict[str, Any]]:
    """
    Read the content collection schemas declared by a repository.

    Args:
        repo: Repository as "owner/name"
        access_token: GitHub token with read access

    Returns:
        List of collections with their field declarations
    """
    svc = _require_services()
    async with svc.client_pool.session(access_token) as client:
        schemas = await svc.pipeline.extract_schemas(client, RepoRef.parse(repo))
    return [{"name": schema.name, "fields": schema.fields_to_dict()} for schema in schemas]


@mcp.tool()
async def import_repository(
    owner_id: str,
    repo: str,
    access_token: str,
    name: Optional[str] = None,
    description: str = "",
) -> Dict[str, Any]:
    """
    Import every content file of a repository into the owner's cache.

    Args:
        owner_id: Owning identity
        repo: Repository as "owner/name"
        access_token: GitHub token with read access
        name: Optional project name (defaults to the repository name)
        description: Optional project description

    Returns:
        Dictionary with imported_count, total_count and per-file errors
    """
    svc = _require_services()
    try:
        async with svc.client_pool.session(access_token) as client:
            summary = await svc.pipeline.import_all(
                owner_id, RepoRef.parse(repo), client, name=name, description=description
            )
    except EnumerationError as e:
        raise RuntimeError(f"Import failed, no files imported: {e}")
    return summary.to_dict()


@mcp.tool()
async def list_posts(caller_id: str, repo: str) -> List[Dict[str, Any]]:
    """
    List the cached posts of a repository visible to a caller.

    Shared projects are read from the owner's partition.

    Args:
        caller_id: Identity asking
        repo: Repository as "owner/name"
    """
    svc = _require_services()
    try:
        owner_id = svc.mapper.resolve_owner_partition(caller_id, repo)
    except OwnerNotFoundError as e:
        raise ValueError(str(e))
    return [_post_to_dict(doc) for doc in svc.mapper.list_posts(owner_id, repo)]


@mcp.tool()
async def save_post(
    caller_id: str,
    repo: str,
    file_path: str,
    metadata: Dict[str, Any],
    body: str,
    expected_revision: Optional[str],
    access_token: str,
    message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Save an edited post back to GitHub, refusing if the file changed meanwhile.

    Args:
        caller_id: Identity editing
        repo: Repository as "owner/name"
        file_path: Path of the post in the repository
        metadata: Front-matter metadata to write
        body: Body text to write
        expected_revision: Revision the edit is based on
        access_token: GitHub token with write access
        message: Optional commit message

    Returns:
        ``{"status": "saved", "revision": ..., "commit": ...}`` or
        ``{"status": "conflict", ...}`` when the file must be re-fetched first
    """
    svc = _require_services()
    try:
        owner_id = svc.mapper.resolve_owner_partition(caller_id, repo)
    except OwnerNotFoundError as e:
        raise ValueError(str(e))

    doc = svc.mapper.get_post(owner_id, repo, file_path)
    if doc is None:
        raise ValueError(f"Post {file_path} not found in {repo}")

    try:
        async with svc.client_pool.session(access_token) as client:
            result = await svc.concurrency.save(
                client, doc, expected_revision, metadata, body, message=message
            )
    except ConflictError as e:
        return {"status": "conflict", "file_path": file_path, "message": str(e)}

    return {
        "status": "saved",
        "file_path": file_path,
        "revision": result.new_revision,
        "commit": result.commit_id,
    }
