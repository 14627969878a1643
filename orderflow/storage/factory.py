"""
Database factory - pick a backend from a URL.

    sqlite:///path/to/file.db   SQLiteDatabase
    sqlite:///:memory:          SQLiteDatabase (in memory)
    postgresql://...            PostgreSQLDatabase
"""

from orderflow.core.exceptions import MissingDependencyError
from orderflow.storage.database import Database


def create_database(url: str) -> Database:
    """
    Create a Database for a connection URL.

    Raises:
        ValueError: If the URL scheme is not supported
        MissingDependencyError: If the driver is not installed
    """
    if url.startswith("sqlite://"):
        from orderflow.storage.sqlite import SQLiteDatabase

        path = url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteDatabase(path or ":memory:")

    if url.startswith(("postgresql://", "postgres://")):
        try:
            from orderflow.storage.postgresql import PostgreSQLDatabase
        except ImportError as e:
            raise MissingDependencyError("asyncpg", "PostgreSQL storage") from e
        return PostgreSQLDatabase(url)

    msg = f"Unsupported database URL: {url}"
    raise ValueError(msg)
