"""Explicit construction of the handles shared by the server surfaces."""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .db import DocumentMapper, DocumentStore
from .identity import StoreIdentityResolver
from .sync import ConcurrencyController, ImportPipeline, WebhookReconciler
from .upstream import GitHubClient, SourceClientPool
from .upstream.registry import ClientFactory


logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, built once at startup."""
    store: DocumentStore
    mapper: DocumentMapper
    identity: StoreIdentityResolver
    client_pool: SourceClientPool
    pipeline: ImportPipeline
    reconciler: WebhookReconciler
    concurrency: ConcurrencyController

    async def close(self) -> None:
        """Close pooled clients and the store connection."""
        await self.client_pool.close_all()
        self.store.close()


def build_services(
    config: Settings, client_factory: Optional[ClientFactory] = None
) -> Services:
    """
    Open the store and wire every component from the given settings.

    Args:
        config: Application settings
        client_factory: Builds a source client for a credential (GitHub by default)
    """
    store = DocumentStore(config.db_path)
    store.init_db()
    mapper = DocumentMapper(store)

    if client_factory is None:
        def client_factory(credential: str) -> GitHubClient:
            return GitHubClient(
                access_token=credential,
                api_base=config.github_api_base,
                api_version=config.github_api_version,
                timeout=config.http_timeout,
            )

    client_pool = SourceClientPool(client_factory)
    identity = StoreIdentityResolver(store)
    pipeline = ImportPipeline(
        mapper,
        content_root=config.content_root,
        config_path=config.config_path,
        extensions=config.content_extensions,
        fallback_collection=config.fallback_collection,
        fetch_concurrency=config.fetch_concurrency,
        timeout=config.import_timeout,
    )
    reconciler = WebhookReconciler(
        secret=config.webhook_secret,
        resolver=identity,
        mapper=mapper,
        pipeline=pipeline,
        client_pool=client_pool,
        timeout=config.webhook_timeout,
    )
    if not config.is_webhook_configured():
        logger.warning("No webhook secret configured, webhook deliveries will be refused")

    return Services(
        store=store,
        mapper=mapper,
        identity=identity,
        client_pool=client_pool,
        pipeline=pipeline,
        reconciler=reconciler,
        concurrency=ConcurrencyController(mapper),
    )
