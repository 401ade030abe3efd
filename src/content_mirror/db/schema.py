"""Database schema definitions.

Every table is partitioned by ``owner_id``: the rows sharing an owner id form
that identity's partition. Unique constraints encode the natural keys the
mapper upserts on.
"""

import sqlite3


def create_schema(conn: sqlite3.Connection) -> None:
    """Create database tables and indexes."""

    # Mirrored content files
    conn.execute("""
        CREATE TABLE IF NOT EXISTS posts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            repo_id TEXT NOT NULL,
            file_path TEXT NOT NULL,
            collection_name TEXT NOT NULL,
            source_revision TEXT,
            metadata TEXT NOT NULL DEFAULT '{}',
            body_text TEXT NOT NULL DEFAULT '',
            sync_status TEXT NOT NULL DEFAULT 'draft',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            last_source_sync_at REAL,
            UNIQUE(owner_id, repo_id, file_path)
        )
    """)

    # Last extracted schema per collection
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schemas (
            owner_id TEXT NOT NULL,
            repo_id TEXT NOT NULL,
            collection_name TEXT NOT NULL,
            fields TEXT NOT NULL DEFAULT '{}',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            PRIMARY KEY(owner_id, repo_id, collection_name)
        )
    """)

    # Aggregate state per mirrored repository
    conn.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            owner_id TEXT NOT NULL,
            repo_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            posts_count INTEGER NOT NULL DEFAULT 0,
            last_sync REAL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            PRIMARY KEY(owner_id, repo_id)
        )
    """)

    # Collaborators listed on the owner's project
    conn.execute("""
        CREATE TABLE IF NOT EXISTS project_collaborators (
            owner_id TEXT NOT NULL,
            repo_id TEXT NOT NULL,
            collaborator_id TEXT NOT NULL,
            added_at REAL NOT NULL,
            PRIMARY KEY(owner_id, repo_id, collaborator_id),
            FOREIGN KEY(owner_id, repo_id) REFERENCES projects(owner_id, repo_id)
                ON DELETE CASCADE
        )
    """)

    # Reference documents in the collaborator's partition
    conn.execute("""
        CREATE TABLE IF NOT EXISTS shared_project_refs (
            holder_id TEXT NOT NULL,
            repo_id TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            shared_at REAL NOT NULL,
            PRIMARY KEY(holder_id, repo_id, owner_id)
        )
    """)

    # Repository owner on the host -> local owner and credential
    conn.execute("""
        CREATE TABLE IF NOT EXISTS owner_links (
            external_owner_id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            access_credential TEXT NOT NULL,
            updated_at REAL NOT NULL
        )
    """)

    # App installation bookkeeping
    conn.execute("""
        CREATE TABLE IF NOT EXISTS installations (
            installation_id TEXT PRIMARY KEY,
            account_login TEXT,
            status TEXT NOT NULL,
            updated_at REAL NOT NULL
        )
    """)

    # Indexes
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_posts_repo
        ON posts(owner_id, repo_id, updated_at DESC)
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_shared_refs_repo
        ON shared_project_refs(holder_id, repo_id)
    """)
