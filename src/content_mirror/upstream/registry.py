"""Pool of source repository clients keyed by access credential."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional

from .base import SourceRepositoryClient


ClientFactory = Callable[[str], SourceRepositoryClient]


class SourceClientPool:
    """
    Hands out source repository clients for access credentials.

    Registered clients live for the lifetime of the server. Credentials that
    arrive with a request are short-lived and rotate, so ``session`` builds a
    client for the request and closes it afterwards.
    """

    def __init__(self, factory: ClientFactory):
        """
        Initialize empty pool.

        Args:
            factory: Callable building a client for a credential
        """
        self._factory = factory
        self._clients: Dict[str, SourceRepositoryClient] = {}

    def register(self, credential: str, client: SourceRepositoryClient) -> None:
        """
        Register an existing client for a credential.

        Args:
            credential: Access credential the client authenticates with
            client: SourceRepositoryClient instance
        """
        self._clients[credential] = client

    def get(self, credential: str) -> Optional[SourceRepositoryClient]:
        """Get the client for a credential without creating one."""
        return self._clients.get(credential)

    def for_credential(self, credential: str) -> SourceRepositoryClient:
        """
        Get the pooled client for a credential, creating it on first use.

        Args:
            credential: Long-lived access credential

        Returns:
            SourceRepositoryClient instance
        """
        client = self._clients.get(credential)
        if client is None:
            client = self._factory(credential)
            self._clients[credential] = client
        return client

    @asynccontextmanager
    async def session(self, credential: str) -> AsyncIterator[SourceRepositoryClient]:
        """
        Yield a client for one request's credential and close it on exit.

        A credential that already has a registered client reuses it, and that
        client stays open.
        """
        pooled = self._clients.get(credential)
        if pooled is not None:
            yield pooled
            return

        client = self._factory(credential)
        try:
            yield client
        finally:
            await client.close()

    async def close_all(self) -> None:
        """Close all pooled clients."""
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    def __len__(self) -> int:
        """Return number of pooled clients."""
        return len(self._clients)
