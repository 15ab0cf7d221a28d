"""
PostgreSQL access for the marketplace database.
"""

from .client import (
    DatabaseConnectionError,
    MockPostgresConnection,
    PostgresConfig,
    create_postgres_connection,
    get_postgres_connection,
)

__all__ = [
    "DatabaseConnectionError",
    "MockPostgresConnection",
    "PostgresConfig",
    "create_postgres_connection",
    "get_postgres_connection",
]
