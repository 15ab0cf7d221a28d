"""
Repository for schema inspection and environment metadata.

Everything here reads the PostgreSQL catalogs (information_schema,
pg_type, pg_enum, pg_indexes, pg_constraint) rather than application
tables, so it works on any database the app has ever been deployed to,
including ones with a half-applied migration.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from src.core.migrations import FailedMigration, MigrationObjects, ObjectExistence
from src.infrastructure.postgres.client import PostgresConnection

logger = logging.getLogger(__name__)


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
METADATA_TABLE = "database_metadata"
METADATA_ROW_ID = "singleton"


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool
    default: Optional[str]


@dataclass(frozen=True)
class Fingerprint:
    environment: str
    fingerprint: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def quote_identifier(name: str) -> str:
    """Double-quote a table name after checking it is a plain identifier."""
    if not IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


class SchemaRepository:
    """
    Read-mostly access to the database structure.

    The only writes are the fingerprint upsert and execute_script, which
    the fixup commands use for idempotent DDL.
    """

    def __init__(self, connection: PostgresConnection) -> None:
        self._conn = connection

    def _fetchall(self, query: str, params: Optional[Sequence[Any]] = None) -> list:
        cursor = self._conn.cursor()
        try:
            cursor.execute(query, params)
            return cursor.fetchall()
        finally:
            cursor.close()

    def _exists(self, query: str, params: Sequence[Any]) -> bool:
        return bool(self._fetchall(query, params))

    def ping(self) -> bool:
        """Run SELECT 1. Raises on connection problems."""
        rows = self._fetchall("SELECT 1")
        return bool(rows)

    # ------------------------------------------------------------------
    # Tables and columns
    # ------------------------------------------------------------------

    def list_tables(self, schema: str = "public") -> list[str]:
        rows = self._fetchall(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            (schema,),
        )
        return [row[0] for row in rows]

    def existing_tables(self, names: Sequence[str], schema: str = "public") -> list[str]:
        """Subset of names that exist as tables."""
        rows = self._fetchall(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_name = ANY(%s)
            """,
            (schema, list(names)),
        )
        found = {row[0] for row in rows}
        return [name for name in names if name in found]

    def describe_table(self, table: str, schema: str = "public") -> list[ColumnInfo]:
        rows = self._fetchall(
            """
            SELECT column_name, data_type, is_nullable, column_default
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
            """,
            (schema, table),
        )
        return [
            ColumnInfo(name=row[0], data_type=row[1], nullable=row[2] == "YES", default=row[3])
            for row in rows
        ]

    def count_rows(self, table: str) -> int:
        rows = self._fetchall(f"SELECT COUNT(*) FROM {quote_identifier(table)}")
        return int(rows[0][0]) if rows else 0

    def sample_rows(self, table: str, limit: int = 5) -> tuple[list[str], list[tuple]]:
        """Return (column names, rows) for up to limit rows."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(f"SELECT * FROM {quote_identifier(table)} LIMIT %s", (limit,))
            rows = cursor.fetchall()
            columns = [d[0] for d in cursor.description] if cursor.description else []
            return columns, rows
        finally:
            cursor.close()

    # ------------------------------------------------------------------
    # Enums and other objects
    # ------------------------------------------------------------------

    def enum_values(self, type_name: str) -> list[str]:
        rows = self._fetchall(
            """
            SELECT enumlabel
            FROM pg_enum
            WHERE enumtypid = (SELECT oid FROM pg_type WHERE typname = %s)
            ORDER BY enumsortorder
            """,
            (type_name,),
        )
        return [row[0] for row in rows]

    def enum_exists(self, name: str) -> bool:
        return self._exists("SELECT typname FROM pg_type WHERE typname = %s", (name,))

    def table_exists(self, name: str, schema: str = "public") -> bool:
        return self._exists(
            "SELECT tablename FROM pg_tables WHERE schemaname = %s AND tablename = %s",
            (schema, name),
        )

    def index_exists(self, name: str, schema: str = "public") -> bool:
        return self._exists(
            "SELECT indexname FROM pg_indexes WHERE schemaname = %s AND indexname = %s",
            (schema, name),
        )

    def foreign_key_exists(self, name: str) -> bool:
        return self._exists("SELECT conname FROM pg_constraint WHERE conname = %s", (name,))

    def check_objects(self, objects: MigrationObjects) -> ObjectExistence:
        """Check every object a migration creates."""
        return ObjectExistence(
            enums={name: self.enum_exists(name) for name in objects.enums},
            tables={name: self.table_exists(name) for name in objects.tables},
            indexes={name: self.index_exists(name) for name in objects.indexes},
            foreign_keys={name: self.foreign_key_exists(name) for name in objects.foreign_keys},
        )

    # ------------------------------------------------------------------
    # Environment fingerprint
    # ------------------------------------------------------------------

    def fingerprint_table_exists(self) -> bool:
        return self.table_exists(METADATA_TABLE)

    def read_fingerprint(self) -> Optional[Fingerprint]:
        rows = self._fetchall(
            f"""
            SELECT environment, fingerprint, created_at, updated_at
            FROM {METADATA_TABLE}
            WHERE id = %s
            """,
            (METADATA_ROW_ID,),
        )
        if not rows:
            return None
        row = rows[0]
        return Fingerprint(environment=row[0], fingerprint=row[1], created_at=row[2], updated_at=row[3])

    def write_fingerprint(self, environment: str, fingerprint: str) -> None:
        """Create the metadata table if needed and upsert the singleton row."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {METADATA_TABLE} (
                    id TEXT PRIMARY KEY,
                    environment TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP NOT NULL DEFAULT NOW()
                )
                """
            )
            cursor.execute(
                f"""
                INSERT INTO {METADATA_TABLE} (id, environment, fingerprint, created_at, updated_at)
                VALUES (%s, %s, %s, NOW(), NOW())
                ON CONFLICT (id) DO UPDATE
                SET environment = EXCLUDED.environment,
                    fingerprint = EXCLUDED.fingerprint,
                    updated_at = NOW()
                """,
                (METADATA_ROW_ID, environment, fingerprint),
            )
            self._conn.commit()
            logger.info("Wrote environment fingerprint", extra={"environment": environment})
        except Exception as e:
            self._conn.rollback()
            logger.error("Failed to write fingerprint", extra={"error": str(e)})
            raise
        finally:
            cursor.close()

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def failed_migrations(self) -> list[FailedMigration]:
        rows = self._fetchall(
            """
            SELECT migration_name, started_at
            FROM _prisma_migrations
            WHERE finished_at IS NULL
            ORDER BY started_at DESC
            """
        )
        return [FailedMigration(name=row[0], started_at=row[1]) for row in rows]

    def execute_script(self, sql: str) -> None:
        """Run DDL in one transaction."""
        self.execute_scripts([sql])

    def execute_scripts(self, statements: Sequence[str]) -> None:
        """Run several DDL scripts on one cursor and commit once at the end."""
        cursor = self._conn.cursor()
        try:
            for sql in statements:
                cursor.execute(sql)
            self._conn.commit()
        except Exception as e:
            self._conn.rollback()
            logger.error("Script execution failed", extra={"error": str(e)})
            raise
        finally:
            cursor.close()
