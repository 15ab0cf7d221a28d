"""
Schema inspection and repair commands.

    verify-schema-sync   Compare Prisma enums and escrow tables with the database
    describe-table       Columns, row count and sample rows of one table
    check-fingerprint    Confirm the database belongs to the expected environment
    init-fingerprint     Write the environment fingerprint
    fix-enums            Apply idempotent enum and table fixups
"""

import argparse
import logging
import secrets
import time
from pathlib import Path

from src.commands.dependencies import CommandContext, open_database
from src.commands.output import banner, section
from src.core.models import Environment
from src.core.safety import expected_environment, is_migration_safe
from src.core.schema import EXPECTED_TABLES, compare_enum_values, parse_prisma_enums
from src.infrastructure.postgres.fixups import apply_schema_fixes
from src.infrastructure.postgres.repositories.schema import SchemaRepository

logger = logging.getLogger(__name__)

MIN_FINGERPRINT_LENGTH = 10
DEFAULT_ENUMS = ("BookingStatus", "PaymentStatus", "PayoutStatus")
ENVIRONMENT_CHOICES = [e.value for e in Environment]


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("verify-schema-sync", help="Compare Prisma schema enums with the database")
    parser.add_argument("--schema", type=Path, help="Path to schema.prisma (default: PRISMA_SCHEMA_PATH)")
    parser.add_argument("--enum", dest="enums", action="append", help="Enum to compare (repeatable)")
    parser.set_defaults(handler=verify_schema_sync)

    parser = subparsers.add_parser("describe-table", help="Describe a table")
    parser.add_argument("table")
    parser.add_argument("--sample", type=int, default=5, help="Number of sample rows (default: 5)")
    parser.set_defaults(handler=describe_table)

    parser = subparsers.add_parser("check-fingerprint", help="Validate the database environment fingerprint")
    parser.add_argument("--expect", choices=ENVIRONMENT_CHOICES, help="Expected environment (default: from NODE_ENV)")
    parser.set_defaults(handler=check_fingerprint)

    parser = subparsers.add_parser("init-fingerprint", help="Write the database environment fingerprint")
    parser.add_argument("environment", choices=ENVIRONMENT_CHOICES)
    parser.add_argument("--fingerprint", help="Fingerprint value (default: generated)")
    parser.set_defaults(handler=init_fingerprint)

    parser = subparsers.add_parser("fix-enums", help="Create missing escrow enums, tables and constraints")
    parser.add_argument("--dry-run", action="store_true", help="Print the SQL without running it")
    parser.set_defaults(handler=fix_enums)


# ---------------------------------------------------------------------------
# verify-schema-sync
# ---------------------------------------------------------------------------

def verify_schema_sync(ctx: CommandContext, args: argparse.Namespace) -> int:
    banner("🔍 SCHEMA SYNC VERIFICATION")

    schema_path = args.schema or Path(ctx.settings.prisma_schema_path)
    if not schema_path.is_absolute():
        schema_path = ctx.root / schema_path
    if not schema_path.is_file():
        print(f"❌ Prisma schema not found: {schema_path}")
        return 1

    schema_enums = parse_prisma_enums(schema_path.read_text(encoding="utf-8"))
    names = args.enums or [name for name in DEFAULT_ENUMS if name in schema_enums]
    in_sync = True

    with open_database(ctx) as conn:
        repository = SchemaRepository(conn)

        section("Enums")
        for name in names:
            if name not in schema_enums:
                print(f"❌ {name}: not declared in {schema_path.name}")
                in_sync = False
                continue
            database_values = repository.enum_values(name)
            if not database_values:
                print(f"❌ {name}: enum does not exist in the database")
                in_sync = False
                continue

            diff = compare_enum_values(name, schema_enums[name], database_values)
            if diff.in_sync:
                print(f"✅ {name}: {len(diff.common)} values match")
                continue
            in_sync = False
            print(f"❌ {name}:")
            if diff.missing_in_database:
                print(f"   Missing in database: {', '.join(diff.missing_in_database)}")
            if diff.missing_in_schema:
                print(f"   Missing in schema: {', '.join(diff.missing_in_schema)}")

        section("Tables")
        present = repository.existing_tables(list(EXPECTED_TABLES))
        for table in EXPECTED_TABLES:
            if table in present:
                print(f"✅ {table}")
            else:
                print(f"❌ {table}: missing")
                in_sync = False

    if in_sync:
        print("\n✅ Schema and database are in sync")
        return 0
    print("\n❌ Schema and database are out of sync")
    print("💡 Run `marketplace-ops fix-enums` or `prisma migrate deploy`")
    return 1


# ---------------------------------------------------------------------------
# describe-table
# ---------------------------------------------------------------------------

def describe_table(ctx: CommandContext, args: argparse.Namespace) -> int:
    with open_database(ctx) as conn:
        repository = SchemaRepository(conn)
        columns = repository.describe_table(args.table)
        if not columns:
            print(f"❌ Table '{args.table}' not found")
            return 1

        banner(f"📋 {args.table}")
        for column in columns:
            nullable = "NULL" if column.nullable else "NOT NULL"
            default = f" DEFAULT {column.default}" if column.default else ""
            print(f"  {column.name:<30} {column.data_type:<28} {nullable}{default}")

        print(f"\nRows: {repository.count_rows(args.table)}")

        if args.sample > 0:
            names, rows = repository.sample_rows(args.table, args.sample)
            section(f"Sample ({len(rows)} rows)")
            for row in rows:
                print("  " + ", ".join(f"{k}={v!r}" for k, v in zip(names, row)))
    return 0


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------

def generate_fingerprint(environment: str) -> str:
    return f"{environment}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def check_fingerprint(ctx: CommandContext, args: argparse.Namespace) -> int:
    expected = args.expect or expected_environment(ctx.env).value
    print(f"🔍 Expected environment: {expected}")

    with open_database(ctx) as conn:
        repository = SchemaRepository(conn)
        if not repository.fingerprint_table_exists():
            print("❌ database_metadata table does not exist")
            print("💡 Run `marketplace-ops init-fingerprint <env>` on the right database")
            return 1
        fingerprint = repository.read_fingerprint()

    if fingerprint is None:
        print("❌ No fingerprint record found")
        return 1

    if fingerprint.environment != expected:
        print("🚨 CRITICAL: database environment mismatch")
        print(f"   Expected: {expected}")
        print(f"   Database: {fingerprint.environment}")
        return 1

    if len(fingerprint.fingerprint or "") < MIN_FINGERPRINT_LENGTH:
        print(f"❌ Fingerprint is shorter than {MIN_FINGERPRINT_LENGTH} characters")
        return 1

    print(f"✅ Database fingerprint matches '{expected}'")
    return 0


def init_fingerprint(ctx: CommandContext, args: argparse.Namespace) -> int:
    value = args.fingerprint or generate_fingerprint(args.environment)
    if len(value) < MIN_FINGERPRINT_LENGTH:
        print(f"❌ Fingerprint must be at least {MIN_FINGERPRINT_LENGTH} characters")
        return 1

    with open_database(ctx) as conn:
        SchemaRepository(conn).write_fingerprint(args.environment, value)

    print(f"✅ Fingerprint set for '{args.environment}': {value}")
    return 0


# ---------------------------------------------------------------------------
# fix-enums
# ---------------------------------------------------------------------------

def fix_enums(ctx: CommandContext, args: argparse.Namespace) -> int:
    banner("🔧 SCHEMA FIXUPS" + (" (DRY RUN)" if args.dry_run else ""))

    allowed, reason = is_migration_safe(ctx.env, ctx.classifier)
    if not allowed:
        print(f"❌ {reason}")
        return 1

    with open_database(ctx) as conn:
        applied = apply_schema_fixes(SchemaRepository(conn), dry_run=args.dry_run, echo=print)

    if args.dry_run:
        print("🔍 DRY RUN - no changes were made")
    else:
        print(f"\n✅ Applied {applied} fixups")
    return 0
