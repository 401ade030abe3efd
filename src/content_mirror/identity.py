"""Resolution of webhook repository owners to local owners and credentials."""

import time
from dataclasses import dataclass
from typing import Optional, Protocol

from .db.connection import DocumentStore


@dataclass
class OwnerLink:
    """Local owner and usable access credential for a host account."""
    owner_id: str
    access_credential: str


class IdentityResolver(Protocol):
    """Protocol for mapping a host account to the owner of its mirrored content."""

    def resolve_owner_for_repo_owner(self, external_owner_id: str) -> Optional[OwnerLink]:
        """Return the link for a host account id, or None if unmapped."""
        ...


class StoreIdentityResolver:
    """Lookup table keyed by the host's repository-owner id.

    A repository owner maps to exactly one local owner. Repositories shared
    across several local owners are only reconciled for the linked one.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def link_owner(
        self, external_owner_id: str, owner_id: str, access_credential: str
    ) -> None:
        """Create or replace the mapping for a host account."""
        with self.store.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO owner_links "
                "(external_owner_id, owner_id, access_credential, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (str(external_owner_id), owner_id, access_credential, time.time()),
            )

    def unlink_owner(self, external_owner_id: str) -> None:
        with self.store.transaction() as conn:
            conn.execute(
                "DELETE FROM owner_links WHERE external_owner_id = ?",
                (str(external_owner_id),),
            )

    def resolve_owner_for_repo_owner(self, external_owner_id: str) -> Optional[OwnerLink]:
        row = self.store.connection.execute(
            "SELECT owner_id, access_credential FROM owner_links WHERE external_owner_id = ?",
            (str(external_owner_id),),
        ).fetchone()
        if not row:
            return None
        return OwnerLink(owner_id=row["owner_id"], access_credential=row["access_credential"])
