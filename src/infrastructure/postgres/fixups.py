"""
Idempotent DDL that restores the escrow schema on databases that missed it.

Every statement can be run any number of times: enums swallow
duplicate_object, tables and indexes use IF NOT EXISTS, and constraints
are only added when pg_constraint does not already have them.
"""

import logging
from typing import Callable, Optional

from src.infrastructure.postgres.repositories.schema import SchemaRepository

logger = logging.getLogger(__name__)


def _enum(name: str, values: list[str]) -> str:
    labels = ", ".join(f"'{v}'" for v in values)
    return f"""
DO $$ BEGIN
    CREATE TYPE "{name}" AS ENUM ({labels});
EXCEPTION WHEN duplicate_object THEN null;
END $$;"""


def _constraint(table: str, name: str, definition: str) -> str:
    return f"""
DO $$ BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = '{name}') THEN
        ALTER TABLE "{table}" ADD CONSTRAINT "{name}" {definition};
    END IF;
END $$;"""


def _fk(table: str, column: str, target: str) -> str:
    return _constraint(
        table,
        f"{table}_{column}_fkey",
        f'FOREIGN KEY ("{column}") REFERENCES "{target}"("id") ON DELETE RESTRICT ON UPDATE CASCADE',
    )


ENUM_FIXES: list[tuple[str, str]] = [
    ("PaymentStatus enum", _enum("PaymentStatus", [
        "PENDING", "ESCROW", "HELD_IN_ESCROW", "PROCESSING_RELEASE", "RELEASED", "REFUNDED", "FAILED",
    ])),
    ("PayoutStatus enum", _enum("PayoutStatus", ["PENDING", "PROCESSING", "COMPLETED", "FAILED"])),
    ("DisputeStatus enum", _enum("DisputeStatus", ["PENDING", "RESOLVED", "ESCALATED"])),
]

TABLE_FIXES: list[tuple[str, str]] = [
    ("payouts table", """
CREATE TABLE IF NOT EXISTS "payouts" (
    "id" TEXT NOT NULL,
    "providerId" TEXT NOT NULL,
    "paymentId" TEXT NOT NULL,
    "amount" DOUBLE PRECISION NOT NULL,
    "status" "PayoutStatus" NOT NULL DEFAULT 'PENDING',
    "paystackTransferCode" TEXT,
    "failureReason" TEXT,
    "processedAt" TIMESTAMP(3),
    "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updatedAt" TIMESTAMP(3) NOT NULL,
    CONSTRAINT "payouts_pkey" PRIMARY KEY ("id")
);"""),
    ("payouts foreign keys", _fk("payouts", "providerId", "providers") + _fk("payouts", "paymentId", "payments")),
    ("payouts indexes", """
CREATE INDEX IF NOT EXISTS "payouts_providerId_idx" ON "payouts"("providerId");
CREATE INDEX IF NOT EXISTS "payouts_paymentId_idx" ON "payouts"("paymentId");
CREATE INDEX IF NOT EXISTS "payouts_status_idx" ON "payouts"("status");"""),
    ("payouts unique payment", _constraint("payouts", "payouts_paymentId_key", 'UNIQUE ("paymentId")')),
    ("webhook_events table", """
CREATE TABLE IF NOT EXISTS "webhook_events" (
    "id" TEXT NOT NULL,
    "eventType" TEXT NOT NULL,
    "paystackRef" TEXT,
    "payload" JSONB NOT NULL,
    "processed" BOOLEAN NOT NULL DEFAULT false,
    "error" TEXT,
    "retryCount" INTEGER NOT NULL DEFAULT 0,
    "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "processedAt" TIMESTAMP(3),
    CONSTRAINT "webhook_events_pkey" PRIMARY KEY ("id")
);
CREATE INDEX IF NOT EXISTS "webhook_events_paystackRef_idx" ON "webhook_events"("paystackRef");
CREATE INDEX IF NOT EXISTS "webhook_events_processed_idx" ON "webhook_events"("processed");"""),
    ("disputes table", """
CREATE TABLE IF NOT EXISTS "disputes" (
    "id" TEXT NOT NULL,
    "bookingId" TEXT NOT NULL,
    "raisedBy" TEXT NOT NULL,
    "reason" TEXT NOT NULL,
    "description" TEXT NOT NULL,
    "status" "DisputeStatus" NOT NULL DEFAULT 'PENDING',
    "resolvedBy" TEXT,
    "resolution" TEXT,
    "resolvedAt" TIMESTAMP(3),
    "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updatedAt" TIMESTAMP(3) NOT NULL,
    CONSTRAINT "disputes_pkey" PRIMARY KEY ("id")
);"""),
    ("disputes foreign keys",
     _fk("disputes", "bookingId", "bookings")
     + _fk("disputes", "raisedBy", "users")
     + _fk("disputes", "resolvedBy", "users")),
    ("job_proofs table", """
CREATE TABLE IF NOT EXISTS "job_proofs" (
    "id" TEXT NOT NULL,
    "bookingId" TEXT NOT NULL,
    "providerId" TEXT NOT NULL,
    "description" TEXT NOT NULL,
    "images" TEXT[],
    "notes" TEXT,
    "completedAt" TIMESTAMP(3) NOT NULL,
    "clientConfirmed" BOOLEAN,
    "confirmedAt" TIMESTAMP(3),
    "autoConfirmAt" TIMESTAMP(3) NOT NULL,
    "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updatedAt" TIMESTAMP(3) NOT NULL,
    CONSTRAINT "job_proofs_pkey" PRIMARY KEY ("id")
);"""),
    ("job_proofs foreign keys", _fk("job_proofs", "bookingId", "bookings") + _fk("job_proofs", "providerId", "providers")),
]

SCHEMA_FIXES: list[tuple[str, str]] = ENUM_FIXES + TABLE_FIXES


def apply_schema_fixes(
    repository: SchemaRepository,
    dry_run: bool = False,
    echo: Optional[Callable[[str], None]] = None,
) -> int:
    """
    Run every fix in order inside one transaction. Returns the number of
    fixes executed.

    A failure rolls back all of them. In dry-run the SQL is passed to echo
    instead of the database.
    """
    if dry_run:
        if echo:
            for label, statement in SCHEMA_FIXES:
                echo(f"-- {label}{statement}\n")
        return 0

    repository.execute_scripts([statement for _, statement in SCHEMA_FIXES])
    logger.info("Applied schema fixes", extra={"fixes": len(SCHEMA_FIXES)})
    if echo:
        for label, _ in SCHEMA_FIXES:
            echo(f"✅ {label}")
    return len(SCHEMA_FIXES)
