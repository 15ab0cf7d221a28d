"""
resolve-migrations: unblock `prisma migrate deploy` after a failed migration.

Only runs in CI with NODE_ENV=production. Each failed migration is checked
against the database and then marked applied, marked rolled back, repaired
by recreating its missing indexes, or left for a human.
"""

import argparse
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Optional

from src.commands.dependencies import CommandContext, open_database
from src.commands.output import banner, section
from src.core.migrations import (
    FailedMigration,
    Resolution,
    ResolutionAction,
    decide_resolution,
    dedupe_failed_migrations,
    extract_index_sql,
    make_index_idempotent,
    parse_migration_sql,
)
from src.core.safety import runtime_environment
from src.infrastructure.postgres.repositories.schema import SchemaRepository

logger = logging.getLogger(__name__)

PRISMA_TIMEOUT_SECONDS = 120


class MigrationGuardError(Exception):
    """Raised when migration resolution is attempted outside CI production."""
    pass


class MigrationResolutionError(Exception):
    """Raised when a failed migration cannot be resolved automatically."""

    def __init__(self, migration: str, resolution: Resolution) -> None:
        self.migration = migration
        self.resolution = resolution
        super().__init__(f"{migration}: {resolution.reason}")


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("resolve-migrations", help="Resolve failed Prisma migrations (CI only)")
    parser.set_defaults(handler=resolve_migrations)


def ensure_ci_production(env: Mapping[str, str]) -> None:
    if (env.get("CI") or "").lower() not in ("true", "1"):
        raise MigrationGuardError("resolve-migrations only runs in CI (CI=true)")
    if runtime_environment(env) != "production":
        raise MigrationGuardError("resolve-migrations only runs with NODE_ENV=production")


class MigrationResolver:
    """Resolves failed migrations one at a time, newest first."""

    def __init__(
        self,
        repository: SchemaRepository,
        migrations_dir: Path,
        prisma_cli: str,
        cwd: Path,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        echo: Callable[[str], None] = print,
    ) -> None:
        self._repository = repository
        self._migrations_dir = migrations_dir
        self._prisma = shlex.split(prisma_cli)
        self._cwd = cwd
        self._runner = runner
        self._echo = echo

    def _read_sql(self, name: str) -> Optional[str]:
        path = self._migrations_dir / name / "migration.sql"
        if not path.is_file():
            logger.warning("Migration file not found", extra={"migration": name, "path": str(path)})
            return None
        return path.read_text(encoding="utf-8")

    def _mark(self, name: str, flag: str) -> None:
        command = [*self._prisma, "migrate", "resolve", flag, name]
        self._echo(f"   $ {' '.join(command)}")
        result = self._runner(
            command,
            cwd=str(self._cwd),
            capture_output=True,
            text=True,
            timeout=PRISMA_TIMEOUT_SECONDS,
        )
        if result.returncode != 0:
            logger.error(
                "prisma migrate resolve failed",
                extra={"migration": name, "flag": flag, "stderr": result.stderr},
            )
            raise subprocess.CalledProcessError(result.returncode, command, result.stdout, result.stderr)

    def _recreate_indexes(self, name: str, sql: str, indexes: list[str]) -> None:
        for index in indexes:
            statement = extract_index_sql(sql, index)
            if statement is None:
                raise MigrationResolutionError(
                    name,
                    Resolution(ResolutionAction.MANUAL_INTERVENTION, f"CREATE INDEX for {index} not found"),
                )
            self._echo(f"   Recreating index {index}")
            self._repository.execute_script(make_index_idempotent(statement))

        still_missing = [index for index in indexes if not self._repository.index_exists(index)]
        if still_missing:
            raise MigrationResolutionError(
                name,
                Resolution(
                    ResolutionAction.MANUAL_INTERVENTION,
                    f"Indexes still missing after recreation: {', '.join(still_missing)}",
                    missing={"indexes": still_missing},
                ),
            )
        self._echo("   ✅ All missing indexes verified")

    def resolve(self, migration: FailedMigration) -> Resolution:
        sql = self._read_sql(migration.name)
        if sql is None:
            resolution = decide_resolution(None)
        else:
            objects = parse_migration_sql(sql)
            existence = None if objects.is_data_only else self._repository.check_objects(objects)
            resolution = decide_resolution(objects, existence)

        self._echo(f"   Verdict: {resolution.action.value} ({resolution.reason})")
        logger.info(
            "Resolving failed migration",
            extra={"migration": migration.name, "action": resolution.action.value},
        )

        if resolution.action == ResolutionAction.APPLIED:
            self._mark(migration.name, "--applied")
        elif resolution.action == ResolutionAction.ROLLED_BACK:
            self._mark(migration.name, "--rolled-back")
        elif resolution.action == ResolutionAction.RECREATE_INDEXES:
            self._recreate_indexes(migration.name, sql, resolution.missing["indexes"])
            self._mark(migration.name, "--applied")
        else:
            raise MigrationResolutionError(migration.name, resolution)
        return resolution

    def run(self) -> list[Resolution]:
        failed = dedupe_failed_migrations(self._repository.failed_migrations())
        if not failed:
            self._echo("✅ No failed migrations")
            return []

        self._echo(f"Found {len(failed)} failed migration(s)")
        resolutions = []
        for migration in failed:
            self._echo(f"\n🔧 {migration.name}")
            resolutions.append(self.resolve(migration))
        return resolutions


def resolve_migrations(ctx: CommandContext, args: argparse.Namespace) -> int:
    banner("🔧 FAILED MIGRATION RESOLUTION")
    try:
        ensure_ci_production(ctx.env)
    except MigrationGuardError as e:
        print(f"❌ {e}")
        return 1

    migrations_dir = Path(ctx.settings.migrations_dir)
    if not migrations_dir.is_absolute():
        migrations_dir = ctx.root / migrations_dir

    with open_database(ctx) as conn:
        resolver = MigrationResolver(
            SchemaRepository(conn),
            migrations_dir=migrations_dir,
            prisma_cli=ctx.settings.prisma_cli,
            cwd=ctx.root,
        )
        try:
            resolutions = resolver.run()
        except MigrationResolutionError as e:
            section("Manual intervention required")
            print(f"❌ {e}")
            for kind, names in e.resolution.missing.items():
                print(f"   Missing {kind}: {', '.join(names)}")
            return 1

    if resolutions:
        print(f"\n✅ Resolved {len(resolutions)} migration(s). Run `prisma migrate deploy` next.")
    return 0
