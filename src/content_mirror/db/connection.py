"""SQLite document store handle with an explicit open/close lifecycle."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union


class DocumentStore:
    """Owns the SQLite connection shared by the mapper and resolvers."""

    def __init__(self, db_path: Union[str, Path]):
        """
        Args:
            db_path: Database file path, or ":memory:"
        """
        self.db_path = str(db_path)
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._connection is None:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row

            # Enable foreign keys
            self._connection.execute("PRAGMA foreign_keys = ON")

        return self._connection

    def init_db(self) -> None:
        """Initialize the database schema."""
        from .schema import create_schema

        conn = self.connection
        create_schema(conn)
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements as one atomic write."""
        conn = self.connection
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
