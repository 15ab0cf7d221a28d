"""
Analysis of failed Prisma migrations.

When `prisma migrate deploy` dies halfway, the migration row is left with
finished_at NULL and every later deploy refuses to run. Often the DDL did
land (or landed partly). We parse the migration's SQL, compare the objects
it creates with what exists in the database, and decide how to resolve it.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Mapping, Optional


ENUM_PATTERN = re.compile(r'CREATE\s+TYPE\s+"?(\w+)"?\s+AS\s+ENUM', re.IGNORECASE)
TABLE_PATTERN = re.compile(r'CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?"?(\w+)"?', re.IGNORECASE)
INDEX_PATTERN = re.compile(
    r'CREATE\s+(?:UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?"?(\w+)"?',
    re.IGNORECASE,
)
FOREIGN_KEY_PATTERN = re.compile(r'ADD\s+CONSTRAINT\s+"?(\w+)"?\s+FOREIGN\s+KEY', re.IGNORECASE)
CREATE_INDEX_PATTERN = re.compile(r'CREATE\s+(UNIQUE\s+)?INDEX\s+(CONCURRENTLY\s+)?', re.IGNORECASE)
IF_NOT_EXISTS_PATTERN = re.compile(r'INDEX\s+(?:CONCURRENTLY\s+)?IF\s+NOT\s+EXISTS', re.IGNORECASE)

# Statements longer than this are not index definitions.
MAX_INDEX_STATEMENT_LINES = 20


@dataclass
class MigrationObjects:
    """Database objects a migration creates."""
    enums: list[str] = field(default_factory=list)
    tables: list[str] = field(default_factory=list)
    indexes: list[str] = field(default_factory=list)
    foreign_keys: list[str] = field(default_factory=list)

    @property
    def is_data_only(self) -> bool:
        """No enums or tables: the migration only moves or patches data."""
        return not self.enums and not self.tables


@dataclass
class ObjectExistence:
    """Which of a migration's objects exist in the database."""
    enums: dict[str, bool] = field(default_factory=dict)
    tables: dict[str, bool] = field(default_factory=dict)
    indexes: dict[str, bool] = field(default_factory=dict)
    foreign_keys: dict[str, bool] = field(default_factory=dict)

    @staticmethod
    def _missing(found: Mapping[str, bool]) -> list[str]:
        return [name for name, exists in found.items() if not exists]

    @property
    def missing_enums(self) -> list[str]:
        return self._missing(self.enums)

    @property
    def missing_tables(self) -> list[str]:
        return self._missing(self.tables)

    @property
    def missing_indexes(self) -> list[str]:
        return self._missing(self.indexes)

    @property
    def missing_foreign_keys(self) -> list[str]:
        return self._missing(self.foreign_keys)


class ResolutionAction(str, Enum):
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    RECREATE_INDEXES = "recreate_indexes"
    MANUAL_INTERVENTION = "manual_intervention"


@dataclass
class Resolution:
    action: ResolutionAction
    reason: str
    missing: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class FailedMigration:
    name: str
    started_at: Optional[datetime]


def parse_migration_sql(sql: str) -> MigrationObjects:
    """Extract the enums, tables, indexes and foreign keys a migration creates."""
    return MigrationObjects(
        enums=ENUM_PATTERN.findall(sql),
        tables=TABLE_PATTERN.findall(sql),
        indexes=INDEX_PATTERN.findall(sql),
        foreign_keys=FOREIGN_KEY_PATTERN.findall(sql),
    )


def extract_index_sql(sql: str, index_name: str) -> Optional[str]:
    """
    Return the full CREATE INDEX statement for index_name.

    Prisma writes each statement on one line, but hand-edited migrations
    wrap columns across lines, so we join lines until the terminating ';'.
    """
    lines = sql.splitlines()
    quoted = f'"{index_name}"'
    for i, raw in enumerate(lines):
        line = raw.strip()
        if "CREATE" not in line.upper() or "INDEX" not in line.upper():
            continue
        if quoted not in line and not re.search(rf"\b{re.escape(index_name)}\b", line):
            continue

        statement = line
        j = i + 1
        while not statement.endswith(";") and j < len(lines) and j - i <= MAX_INDEX_STATEMENT_LINES:
            next_line = lines[j].strip()
            if next_line:
                statement = f"{statement} {next_line}"
            j += 1
        return statement
    return None


def _idempotent_create(match: re.Match) -> str:
    unique = "UNIQUE " if match.group(1) else ""
    concurrently = "CONCURRENTLY " if match.group(2) else ""
    return f"CREATE {unique}INDEX {concurrently}IF NOT EXISTS "


def make_index_idempotent(statement: str) -> str:
    """Rewrite CREATE [UNIQUE] INDEX as CREATE [UNIQUE] INDEX IF NOT EXISTS."""
    if IF_NOT_EXISTS_PATTERN.search(statement):
        return statement
    return CREATE_INDEX_PATTERN.sub(_idempotent_create, statement, count=1)


def dedupe_failed_migrations(rows: Iterable[FailedMigration]) -> list[FailedMigration]:
    """
    Keep one entry per migration name, the most recently started.

    A migration retried several times leaves one row per attempt.
    """
    latest: dict[str, FailedMigration] = {}
    for row in rows:
        current = latest.get(row.name)
        if current is None:
            latest[row.name] = row
            continue
        if row.started_at and (current.started_at is None or row.started_at > current.started_at):
            latest[row.name] = row
    return sorted(
        latest.values(),
        key=lambda m: m.started_at or datetime.min,
        reverse=True,
    )


def decide_resolution(
    objects: Optional[MigrationObjects],
    existence: Optional[ObjectExistence] = None,
) -> Resolution:
    """
    Decide how to resolve a failed migration.

    objects is None when the migration.sql file could not be found.
    """
    if objects is None:
        return Resolution(ResolutionAction.ROLLED_BACK, "migration.sql not found")

    if objects.is_data_only:
        return Resolution(
            ResolutionAction.ROLLED_BACK,
            "data-only migration; it will be re-run by migrate deploy",
        )

    existence = existence or ObjectExistence()
    missing = {
        "enums": existence.missing_enums,
        "tables": existence.missing_tables,
        "indexes": existence.missing_indexes,
        "foreign_keys": existence.missing_foreign_keys,
    }
    missing = {kind: names for kind, names in missing.items() if names}

    if not missing:
        return Resolution(ResolutionAction.APPLIED, "all objects exist")

    if set(missing) == {"indexes"}:
        return Resolution(
            ResolutionAction.RECREATE_INDEXES,
            f"only indexes missing ({len(missing['indexes'])})",
            missing,
        )

    critical = [kind for kind in ("enums", "tables", "foreign_keys") if kind in missing]
    return Resolution(
        ResolutionAction.MANUAL_INTERVENTION,
        f"critical objects missing: {', '.join(critical)}",
        missing,
    )
