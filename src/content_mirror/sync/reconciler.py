"""Webhook reconciler: keeps the store in step with pushes to a default branch.

Deliveries are verified with the shared HMAC secret, then dispatched by event
type. A verified delivery is always acknowledged with 200, even when the push
cannot be mapped to an owner or its handler fails, so the host does not keep
redelivering it.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from ..db.mapper import DocumentMapper
from ..identity import IdentityResolver
from ..upstream.base import RepoRef
from ..upstream.registry import SourceClientPool
from .pipeline import ImportPipeline


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"


@dataclass
class WebhookResponse:
    """Status code and JSON body to answer a delivery with."""
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def verify_signature(secret: str, raw_body: bytes, signature: str) -> bool:
    """Check a ``sha256=<hex>`` signature against the raw request body."""
    expected = "sha256=" + hmac.new(
        secret.encode("utf-8"), raw_body, hashlib.sha256
    ).hexdigest()
    # Header values may carry arbitrary latin-1 text; compare as bytes.
    return hmac.compare_digest(
        expected.encode("ascii"), signature.strip().encode("utf-8", "surrogateescape")
    )


def collect_changes(commits: Iterable[Mapping[str, Any]]) -> Tuple[List[str], List[str]]:
    """
    Fold the commits of a push into the files to re-sync and the files to drop.

    Commits are applied in order, so a file removed and then re-added ends up
    changed, and a file changed and then removed ends up removed.

    Returns:
        (changed_files, removed_files), each deduplicated in first-seen order
    """
    changed: Dict[str, None] = {}
    removed: Dict[str, None] = {}
    for commit in commits:
        for path in list(commit.get("added") or []) + list(commit.get("modified") or []):
            removed.pop(path, None)
            changed[path] = None
        for path in commit.get("removed") or []:
            changed.pop(path, None)
            removed[path] = None
    return list(changed), list(removed)


class WebhookReconciler:
    """Verifies and dispatches source repository webhook deliveries."""

    def __init__(
        self,
        secret: str,
        resolver: IdentityResolver,
        mapper: DocumentMapper,
        pipeline: ImportPipeline,
        client_pool: SourceClientPool,
        timeout: float = 60.0,
    ):
        """
        Args:
            secret: Shared webhook secret; empty disables the endpoint
            resolver: Maps repository owners to local owners and credentials
            mapper: Document store mapper
            pipeline: Pipeline used to re-sync changed files
            client_pool: Source clients keyed by credential
            timeout: Deadline for re-syncing the files of one push
        """
        self.secret = secret
        self.resolver = resolver
        self.mapper = mapper
        self.pipeline = pipeline
        self.client_pool = client_pool
        self.timeout = timeout

    async def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        """
        Verify and process one delivery.

        Args:
            raw_body: Request body exactly as received
            headers: Request headers (any key case)

        Returns:
            WebhookResponse: 400 missing headers or bad body, 401 bad signature,
            500 no secret configured, 200 otherwise
        """
        lowered = {key.lower(): value for key, value in headers.items()}
        signature = lowered.get(SIGNATURE_HEADER)
        event = lowered.get(EVENT_HEADER)
        delivery_id = lowered.get(DELIVERY_HEADER)

        if not signature or not event or not delivery_id:
            return WebhookResponse(400, {"error": "Missing webhook headers"})

        if not self.secret:
            logger.error("Webhook delivery received but no webhook secret is configured")
            return WebhookResponse(500, {"error": "Webhook secret not configured"})

        if not verify_signature(self.secret, raw_body, signature):
            logger.warning(f"Rejected delivery {delivery_id}: invalid signature")
            return WebhookResponse(401, {"error": "Invalid signature"})

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return WebhookResponse(400, {"error": "Invalid JSON body"})
        if not isinstance(payload, dict):
            return WebhookResponse(400, {"error": "Invalid JSON body"})

        try:
            result = await self._dispatch(event, payload)
        except Exception:
            logger.exception(f"Failed to handle {event} delivery {delivery_id}")
            result = {"status": "error"}

        return WebhookResponse(200, {"received": True, "event": event, **result})

    async def _dispatch(self, event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if event == "push":
            return await self._handle_push(payload)
        if event == "installation":
            return self._handle_installation(payload)
        if event == "ping":
            return {"status": "pong"}
        logger.debug(f"Ignoring unhandled event type {event}")
        return {"status": "ignored"}

    def _handle_installation(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        installation = payload.get("installation") or {}
        installation_id = installation.get("id")
        if installation_id is None:
            return {"status": "ignored"}
        account = installation.get("account") or {}
        action = payload.get("action") or "unknown"
        self.mapper.record_installation(str(installation_id), account.get("login"), action)
        logger.info(f"Installation {installation_id} {action} for {account.get('login')}")
        return {"status": "recorded"}

    async def _handle_push(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        repository = payload.get("repository") or {}
        repo_id = repository.get("full_name")
        default_branch = repository.get("default_branch")
        branch = _branch_name(payload.get("ref") or "")

        if not repo_id or not default_branch or branch != default_branch:
            logger.debug(f"Ignoring push to {branch} of {repo_id}")
            return {"status": "ignored", "reason": "not default branch"}

        external_owner_id = (repository.get("owner") or {}).get("id")
        link = None
        if external_owner_id is not None:
            link = self.resolver.resolve_owner_for_repo_owner(str(external_owner_id))
        if link is None:
            logger.warning(f"No owner linked for push to {repo_id}, dropping notification")
            return {"status": "ignored", "reason": "unmapped owner"}

        if self.mapper.get_project(link.owner_id, repo_id) is None:
            logger.warning(f"{repo_id} is not mirrored for {link.owner_id}, dropping notification")
            return {"status": "ignored", "reason": "unknown project"}

        changed, removed = collect_changes(payload.get("commits") or [])
        repo = RepoRef.parse(repo_id)

        synced = 0
        errors: List[str] = []
        if changed:
            client = self.client_pool.for_credential(link.access_credential)
            summary = await self.pipeline.sync_files(
                link.owner_id, repo, client, changed, timeout=self.timeout
            )
            synced = summary.imported_count
            errors = summary.errors

        deleted = 0
        if removed:
            deleted = self.mapper.delete_posts(link.owner_id, repo_id, removed)
            self.mapper.record_project_sync(link.owner_id, repo_id)

        logger.info(
            f"Reconciled push to {repo_id}: synced={synced}, deleted={deleted}, "
            f"errors={len(errors)}"
        )
        return {"status": "processed", "synced": synced, "deleted": deleted, "errors": errors}


def _branch_name(ref: str) -> str:
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref
