"""
Unit tests for failed-migration analysis and Prisma schema parsing.
"""

from datetime import datetime

from src.core.migrations import (
    FailedMigration,
    MigrationObjects,
    ObjectExistence,
    ResolutionAction,
    decide_resolution,
    dedupe_failed_migrations,
    extract_index_sql,
    make_index_idempotent,
    parse_migration_sql,
)
from src.core.schema import compare_enum_values, parse_prisma_enums

MIGRATION_SQL = '''
-- CreateEnum
CREATE TYPE "PayoutStatus" AS ENUM ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED');

-- CreateTable
CREATE TABLE "payouts" (
    "id" TEXT NOT NULL,
    "paymentId" TEXT NOT NULL,
    CONSTRAINT "payouts_pkey" PRIMARY KEY ("id")
);

-- CreateIndex
CREATE UNIQUE INDEX "payouts_paymentId_key" ON "payouts"("paymentId");

CREATE INDEX CONCURRENTLY IF NOT EXISTS "payouts_status_idx"
    ON "payouts"
    ("status");

-- AddForeignKey
ALTER TABLE "payouts" ADD CONSTRAINT "payouts_paymentId_fkey" FOREIGN KEY ("paymentId") REFERENCES "payments"("id");
'''

SCHEMA = '''
model Booking {
  id     String        @id
  status BookingStatus @default(PENDING)
}

enum BookingStatus {
  PENDING
  CONFIRMED // provider accepted
  COMPLETED @map("done")
}

enum PayoutStatus {
  PENDING
  COMPLETED
}
'''


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParseMigrationSql:
    """Tests for extracting the objects a migration creates."""

    def test_extracts_every_kind(self):
        objects = parse_migration_sql(MIGRATION_SQL)
        assert objects.enums == ["PayoutStatus"]
        assert objects.tables == ["payouts"]
        assert objects.indexes == ["payouts_paymentId_key", "payouts_status_idx"]
        assert objects.foreign_keys == ["payouts_paymentId_fkey"]
        assert not objects.is_data_only

    def test_data_only_migration(self):
        objects = parse_migration_sql("UPDATE payments SET status = 'ESCROW' WHERE status = 'HELD_IN_ESCROW';")
        assert objects.is_data_only

    def test_extract_single_line_index(self):
        statement = extract_index_sql(MIGRATION_SQL, "payouts_paymentId_key")
        assert statement == 'CREATE UNIQUE INDEX "payouts_paymentId_key" ON "payouts"("paymentId");'

    def test_extract_multi_line_index(self):
        statement = extract_index_sql(MIGRATION_SQL, "payouts_status_idx")
        assert statement == (
            'CREATE INDEX CONCURRENTLY IF NOT EXISTS "payouts_status_idx" ON "payouts" ("status");'
        )

    def test_extract_missing_index(self):
        assert extract_index_sql(MIGRATION_SQL, "nope_idx") is None

    def test_idempotent_unique_index(self):
        statement = make_index_idempotent('CREATE UNIQUE INDEX "payouts_paymentId_key" ON "payouts"("paymentId");')
        assert statement == 'CREATE UNIQUE INDEX IF NOT EXISTS "payouts_paymentId_key" ON "payouts"("paymentId");'

    def test_idempotent_plain_index(self):
        statement = make_index_idempotent('create index  "payouts_status_idx" ON "payouts"("status");')
        assert statement == 'CREATE INDEX IF NOT EXISTS "payouts_status_idx" ON "payouts"("status");'

    def test_idempotent_index_left_alone(self):
        statement = extract_index_sql(MIGRATION_SQL, "payouts_status_idx")
        assert make_index_idempotent(statement) == statement

    def test_idempotent_concurrent_index(self):
        statement = make_index_idempotent('CREATE INDEX CONCURRENTLY "a_idx" ON "a"("b");')
        assert statement == 'CREATE INDEX CONCURRENTLY IF NOT EXISTS "a_idx" ON "a"("b");'


class TestDedupe:
    """Tests for collapsing repeated failures of one migration."""

    def test_keeps_latest_attempt_newest_first(self):
        rows = [
            FailedMigration("20240101_a", datetime(2024, 1, 1)),
            FailedMigration("20240101_a", datetime(2024, 1, 3)),
            FailedMigration("20240102_b", datetime(2024, 1, 2)),
        ]
        result = dedupe_failed_migrations(rows)
        assert [(m.name, m.started_at.day) for m in result] == [("20240101_a", 3), ("20240102_b", 2)]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class TestDecideResolution:
    """Tests for choosing how a failed migration is resolved."""

    def setup_method(self):
        self.objects = parse_migration_sql(MIGRATION_SQL)

    def existence(self, **missing):
        def found(kind, names):
            return {name: name not in missing.get(kind, ()) for name in names}
        return ObjectExistence(
            enums=found("enums", self.objects.enums),
            tables=found("tables", self.objects.tables),
            indexes=found("indexes", self.objects.indexes),
            foreign_keys=found("foreign_keys", self.objects.foreign_keys),
        )

    def test_missing_file_rolls_back(self):
        assert decide_resolution(None).action == ResolutionAction.ROLLED_BACK

    def test_data_only_rolls_back(self):
        assert decide_resolution(MigrationObjects()).action == ResolutionAction.ROLLED_BACK

    def test_everything_present_is_applied(self):
        assert decide_resolution(self.objects, self.existence()).action == ResolutionAction.APPLIED

    def test_only_indexes_missing_recreates(self):
        resolution = decide_resolution(self.objects, self.existence(indexes=("payouts_status_idx",)))
        assert resolution.action == ResolutionAction.RECREATE_INDEXES
        assert resolution.missing == {"indexes": ["payouts_status_idx"]}

    def test_missing_table_needs_manual_intervention(self):
        resolution = decide_resolution(self.objects, self.existence(tables=("payouts",)))
        assert resolution.action == ResolutionAction.MANUAL_INTERVENTION
        assert "tables" in resolution.reason


# ---------------------------------------------------------------------------
# Prisma schema
# ---------------------------------------------------------------------------

class TestPrismaSchema:
    """Tests for enum parsing and comparison."""

    def test_parses_enums_ignoring_comments_and_attributes(self):
        enums = parse_prisma_enums(SCHEMA)
        assert enums == {
            "BookingStatus": ["PENDING", "CONFIRMED", "COMPLETED"],
            "PayoutStatus": ["PENDING", "COMPLETED"],
        }

    def test_compare_in_sync(self):
        diff = compare_enum_values("PayoutStatus", ["PENDING", "COMPLETED"], ["COMPLETED", "PENDING"])
        assert diff.in_sync

    def test_compare_reports_both_directions(self):
        diff = compare_enum_values("BookingStatus", ["PENDING", "DISPUTED"], ["PENDING", "LEGACY"])
        assert not diff.in_sync
        assert diff.missing_in_database == ["DISPUTED"]
        assert diff.missing_in_schema == ["LEGACY"]
        assert diff.common == ["PENDING"]
