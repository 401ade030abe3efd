"""Content mirror: keeps a SQLite document cache in sync with a GitHub repository."""

__version__ = "0.1.0"
