"""
Tests for the CLI commands.

Handlers are called with a CommandContext carrying a MockPostgresConnection,
so no database is needed. A few tests go through main() to cover argument
parsing and exit codes end to end.
"""

import subprocess
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import httpx
import pytest

from src.commands.dependencies import CommandContext, open_database
from src.commands.health import readiness
from src.commands.migrations import (
    MigrationGuardError,
    MigrationResolutionError,
    MigrationResolver,
    ensure_ci_production,
)
from src.config.settings import Settings
from src.core.migrations import FailedMigration, ResolutionAction
from src.core.safety import SecurityViolation
from src.infrastructure.postgres.client import MockPostgresConnection
from src.infrastructure.postgres.repositories.schema import SchemaRepository
from src.main import build_parser, main

PROD_REF = "qdrktzqfeewwcktgltzy"
PROD_URL = f"postgresql://postgres.{PROD_REF}:pw@aws-0-eu-west-1.pooler.supabase.com:6543/postgres"
LOCAL_URL = "postgresql://postgres:pw@localhost:5432/connectsa_dev"

MIGRATION_SQL = '''
CREATE TABLE "payouts" ("id" TEXT NOT NULL);
CREATE UNIQUE INDEX "payouts_paymentId_key" ON "payouts"("paymentId");
'''

ENV_KEYS = (
    "NODE_ENV", "DATABASE_URL", "DIRECT_URL", "DATABASE_ENV", "CI", "VERCEL", "VERCEL_ENV",
    "GITHUB_ACTIONS", "DB_MOCK_MODE", "PRODUCTION_PROJECT_REF",
)


@pytest.fixture
def clean_env(monkeypatch):
    """
    Strip variables that would change guard and connection behaviour.

    setenv first so monkeypatch records them and also undoes anything
    an env file loads during the test.
    """
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


def make_ctx(tmp_path, env=None, conn=None, transport=None, **settings):
    settings.setdefault("node_env", (env or {}).get("NODE_ENV", "development"))
    settings.setdefault("paystack_secret_key", "")
    return CommandContext(
        root=tmp_path,
        settings=Settings(_env_file=None, **settings),
        env=env or {"NODE_ENV": "development"},
        connection=conn,
        paystack_transport=transport,
    )


def run(handler_args, ctx):
    args = build_parser().parse_args(handler_args)
    return args.handler(ctx, args)


def booking_row(payment_status, booking_status="AWAITING_CONFIRMATION"):
    return (
        "bk_1", booking_status, Decimal("500"), None, "Thandi", "t@example.com",
        "Sipho", "s@example.com", "Nails", "pay_1", payment_status, Decimal("500"), Decimal("450"),
        Decimal("50"), "CS_1", datetime(2024, 1, 1), None,
    )


def paystack_transport(charge_status="success", transfer_status="success"):
    """Paystack stand-in: one R500 charge CS_1 and one transfer TRF_1."""
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/transaction/verify/CS_1":
            return httpx.Response(200, json={"status": True, "data": {
                "id": 1, "reference": "CS_1", "status": charge_status, "amount": 50000,
            }})
        if request.url.path == "/transfer":
            return httpx.Response(200, json={"status": True, "data": [
                {"id": 7, "transfer_code": "TRF_1", "amount": 45000, "status": transfer_status},
            ]})
        return httpx.Response(404, json={"status": False, "message": "Not found"})

    return httpx.MockTransport(handler)


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------

class TestMain:
    """End-to-end tests through argument parsing."""

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            main([])

    def test_guard_db_blocks_production_from_development(self, clean_env, tmp_path, capsys):
        clean_env.setenv("NODE_ENV", "development")
        clean_env.setenv("DATABASE_URL", PROD_URL)

        code = main(["--no-env-file", "--root", str(tmp_path), "guard-db"])

        assert code == 1
        assert "CRITICAL SECURITY ERROR" in capsys.readouterr().out

    def test_guard_db_blocks_local_production(self, clean_env, tmp_path):
        clean_env.setenv("NODE_ENV", "production")
        clean_env.setenv("DATABASE_URL", LOCAL_URL)
        assert main(["--no-env-file", "--root", str(tmp_path), "guard-db"]) == 1

    def test_guard_db_allows_local_development(self, clean_env, tmp_path, capsys):
        clean_env.setenv("NODE_ENV", "development")
        clean_env.setenv("DATABASE_URL", LOCAL_URL)

        assert main(["--no-env-file", "--root", str(tmp_path), "guard-db"]) == 0
        assert "Database environment validated" in capsys.readouterr().out

    def test_env_file_is_loaded(self, clean_env, tmp_path):
        (tmp_path / ".env.guard").write_text(f"NODE_ENV=development\nDATABASE_URL={PROD_URL}\n")
        code = main(["--root", str(tmp_path), "--env-file", ".env.guard", "guard-db"])
        assert code == 1

    def test_missing_env_file_is_reported(self, clean_env, tmp_path, capsys):
        code = main(["--root", str(tmp_path), "--env-file", ".env.nope", "guard-db"])
        assert code == 1
        assert "Env file not found" in capsys.readouterr().out

    def test_no_env_file_ignores_env_in_working_directory(self, clean_env, tmp_path):
        clean_env.setenv("PAYSTACK_SECRET_KEY", "")
        clean_env.delenv("PAYSTACK_SECRET_KEY")
        cwd = tmp_path / "cwd"
        cwd.mkdir()
        (cwd / ".env").write_text("DB_MOCK_MODE=true\n")
        clean_env.chdir(cwd)

        assert main(["--root", str(tmp_path), "--no-env-file", "health"]) == 1

    def test_settings_come_from_root_env_file(self, clean_env, tmp_path):
        clean_env.setenv("PAYSTACK_SECRET_KEY", "")
        clean_env.delenv("PAYSTACK_SECRET_KEY")
        project = tmp_path / "project"
        project.mkdir()
        (project / ".env").write_text("DB_MOCK_MODE=true\n")
        clean_env.chdir(tmp_path)

        assert main(["--root", str(project), "health"]) == 0

    def test_force_flag_is_not_offered(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sync-catalogue", "--force"])

    def test_mock_mode_runs_database_commands(self, clean_env, tmp_path, capsys):
        clean_env.setenv("DB_MOCK_MODE", "true")
        assert main(["--no-env-file", "--root", str(tmp_path), "diagnose-payment"]) == 0
        assert "Found 0 payments" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Shared wiring
# ---------------------------------------------------------------------------

class TestOpenDatabase:
    """Tests for the single connection a command may open."""

    def test_injected_connection_is_used(self, tmp_path):
        conn = MockPostgresConnection()
        with open_database(make_ctx(tmp_path, conn=conn)) as opened:
            assert opened is conn

    def test_development_cannot_open_production(self, tmp_path):
        ctx = make_ctx(tmp_path, env={"NODE_ENV": "development", "DATABASE_URL": PROD_URL})
        with pytest.raises(SecurityViolation):
            with open_database(ctx):
                pass


# ---------------------------------------------------------------------------
# Environment commands
# ---------------------------------------------------------------------------

class TestValidateEnv:
    """Tests for validate-env."""

    def test_missing_file(self, tmp_path, capsys):
        assert run(["validate-env", "--file", "missing.env"], make_ctx(tmp_path)) == 1
        assert "Env file not found" in capsys.readouterr().out

    def test_development_profile_flags_production_ref(self, tmp_path, capsys):
        (tmp_path / ".env.development").write_text(f"NODE_ENV=development\nDATABASE_URL={PROD_URL}\n")
        code = run(["validate-env", "--file", ".env.development", "--profile", "development"], make_ctx(tmp_path))
        out = capsys.readouterr().out
        assert code == 1
        assert "Contains production indicator" in out
        assert ":pw@" not in out


class TestHealth:
    """Tests for readiness checks."""

    def test_mock_mode_is_ready(self, tmp_path):
        response = readiness(make_ctx(tmp_path, db_mock_mode=True, paystack_secret_key=""))
        assert response.status == "ready"
        assert {c.name: c.status for c in response.checks} == {
            "configuration": "ok",
            "database": "ok",
            "paystack": "skipped",
        }

    def test_missing_database_url_is_not_ready(self, tmp_path):
        response = readiness(make_ctx(tmp_path, db_mock_mode=False, database_url="", paystack_secret_key=""))
        assert response.status == "not_ready"

    def test_database_error_is_reported(self, tmp_path):
        conn = MockPostgresConnection()
        conn.queue_error(SecurityViolation("blocked"), match="SELECT 1")
        response = readiness(make_ctx(tmp_path, conn=conn, database_url=LOCAL_URL, paystack_secret_key=""))
        database = next(c for c in response.checks if c.name == "database")
        assert database.status == "error"
        assert database.error == "blocked"


# ---------------------------------------------------------------------------
# Payment commands
# ---------------------------------------------------------------------------

class TestPaymentCommands:
    """Tests for diagnose-payment and simulate-webhook."""

    def test_diagnose_booking_that_can_release(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([(
            "bk_1", "AWAITING_CONFIRMATION", Decimal("500"), None, "Thandi", "t@example.com",
            "Sipho", "s@example.com", "Nails", "pay_1", "ESCROW", Decimal("500"), Decimal("450"),
            Decimal("50"), "CS_1", datetime(2024, 1, 1), None,
        )], match="FROM bookings b")

        assert run(["diagnose-payment", "bk_1"], make_ctx(tmp_path, conn=conn)) == 0
        assert "Payment can be released" in capsys.readouterr().out

    def test_diagnose_agrees_with_paystack(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([booking_row("ESCROW")], match="FROM bookings b")
        ctx = make_ctx(tmp_path, conn=conn, transport=paystack_transport(), paystack_secret_key="sk_test_a")

        assert run(["diagnose-payment", "bk_1"], ctx) == 0
        out = capsys.readouterr().out
        assert "Status: success (database: ESCROW)" in out
        assert "Database and Paystack agree" in out

    def test_diagnose_pending_payment_charged_on_paystack(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([booking_row("PENDING")], match="FROM bookings b")
        ctx = make_ctx(tmp_path, conn=conn, transport=paystack_transport(), paystack_secret_key="sk_test_a")

        assert run(["diagnose-payment", "bk_1"], ctx) == 1
        assert "Check webhook processing" in capsys.readouterr().out

    def test_diagnose_released_payment_with_failed_transfer(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([booking_row("RELEASED")], match="FROM bookings b")
        conn.queue_result([("po_1", "COMPLETED", Decimal("450"), "TRF_1", None)], match="FROM payouts")
        ctx = make_ctx(
            tmp_path, conn=conn, transport=paystack_transport(transfer_status="failed"),
            paystack_secret_key="sk_test_a",
        )

        assert run(["diagnose-payment", "bk_1"], ctx) == 1
        out = capsys.readouterr().out
        assert "Transfer: TRF_1 (failed)" in out
        assert "should go back to ESCROW" in out

    def test_diagnose_reports_paystack_errors(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([booking_row("ESCROW")], match="FROM bookings b")
        transport = httpx.MockTransport(
            lambda request: httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})
        )
        ctx = make_ctx(tmp_path, conn=conn, transport=transport, paystack_secret_key="sk_test_a")

        assert run(["diagnose-payment", "bk_1"], ctx) == 1
        assert "Transaction reference not found" in capsys.readouterr().out

    def test_diagnose_missing_booking(self, tmp_path, capsys):
        assert run(["diagnose-payment", "bk_x"], make_ctx(tmp_path, conn=MockPostgresConnection())) == 1
        assert "Booking not found" in capsys.readouterr().out

    def test_simulate_webhook_dry_run(self, tmp_path, capsys):
        ctx = make_ctx(tmp_path, paystack_secret_key="sk_test_a")
        code = run(["simulate-webhook", "charge.success", "--reference", "CS_1", "--dry-run"], ctx)
        out = capsys.readouterr().out
        assert code == 0
        assert "DRY RUN" in out
        assert "sk_test_a" not in out

    def test_escrow_smoke_stops_on_missing_tables(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([("bookings",), ("payments",)], match="information_schema.tables")
        code = run(["escrow-smoke"], make_ctx(tmp_path, conn=conn, paystack_secret_key="sk_test_a"))
        assert code == 1
        assert "Missing tables: payouts, job_proofs" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Catalogue and schema commands
# ---------------------------------------------------------------------------

class TestCatalogueCommands:
    """Tests for sync-catalogue and verify-services."""

    def test_sync_refused_on_production_from_development(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        ctx = make_ctx(tmp_path, env={"NODE_ENV": "development", "DATABASE_URL": PROD_URL}, conn=conn)
        assert run(["sync-catalogue"], ctx) == 1
        assert conn.executed == []
        assert "NODE_ENV=production" in capsys.readouterr().out

    def test_sync_dry_run_writes_nothing(self, tmp_path):
        conn = MockPostgresConnection()
        assert run(["sync-catalogue", "--dry-run"], make_ctx(tmp_path, conn=conn)) == 0
        assert conn.commits == 0
        assert all(q.startswith("SELECT") for q in conn.queries())

    def test_verify_services_summary(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([
            ("svc_1", "Nails", "Beauty & Personal Care", 2, 2, 1, 4, ["Glam Co"]),
            ("svc_2", "Makeup", "Beauty & Personal Care", 0, 0, 0, 0, []),
        ], match="FILTER")
        assert run(["verify-services"], make_ctx(tmp_path, conn=conn)) == 0
        out = capsys.readouterr().out
        assert "With available providers: 1 (50.0%)" in out
        assert "   - Makeup" in out


class TestSchemaCommands:
    """Tests for fingerprint and schema sync commands."""

    def test_check_fingerprint_mismatch(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([("database_metadata",)], match="pg_tables")
        conn.queue_result([("prod", "prod-1700000000000-abcd", None, None)], match="FROM database_metadata")
        assert run(["check-fingerprint", "--expect", "dev"], make_ctx(tmp_path, conn=conn)) == 1
        assert "mismatch" in capsys.readouterr().out

    def test_check_fingerprint_short_value(self, tmp_path):
        conn = MockPostgresConnection()
        conn.queue_result([("database_metadata",)], match="pg_tables")
        conn.queue_result([("dev", "dev-1", None, None)], match="FROM database_metadata")
        assert run(["check-fingerprint", "--expect", "dev"], make_ctx(tmp_path, conn=conn)) == 1

    def test_check_fingerprint_missing_table(self, tmp_path):
        assert run(["check-fingerprint"], make_ctx(tmp_path, conn=MockPostgresConnection())) == 1

    def test_init_fingerprint_generates_value(self, tmp_path):
        conn = MockPostgresConnection()
        assert run(["init-fingerprint", "staging"], make_ctx(tmp_path, conn=conn)) == 0
        _, params = next(e for e in conn.executed if e[0].startswith("INSERT INTO database_metadata"))
        assert params[1] == "staging"
        assert params[2].startswith("staging-")

    def test_fix_enums_dry_run(self, tmp_path):
        conn = MockPostgresConnection()
        assert run(["fix-enums", "--dry-run"], make_ctx(tmp_path, conn=conn)) == 0
        assert conn.executed == []

    def test_verify_schema_sync_reports_missing_value(self, tmp_path, capsys):
        (tmp_path / "prisma").mkdir()
        (tmp_path / "prisma" / "schema.prisma").write_text("enum PayoutStatus {\n  PENDING\n  FAILED\n}\n")
        conn = MockPostgresConnection()
        conn.queue_result([("PENDING",)], match="pg_enum")
        conn.queue_result([(t,) for t in ("bookings", "payments", "payouts", "job_proofs", "webhook_events")],
                          match="information_schema.tables")

        assert run(["verify-schema-sync"], make_ctx(tmp_path, conn=conn)) == 1
        assert "Missing in database: FAILED" in capsys.readouterr().out

    def test_describe_table(self, tmp_path, capsys):
        conn = MockPostgresConnection()
        conn.queue_result([("id", "text", "NO", None), ("status", "USER-DEFINED", "YES", "'PENDING'")],
                          match="information_schema.columns")
        conn.queue_result([(2,)], match='SELECT COUNT(*) FROM "payouts"')
        conn.queue_result([("po_1", "PENDING")], match='SELECT * FROM "payouts"', columns=["id", "status"])

        assert run(["describe-table", "payouts", "--sample", "1"], make_ctx(tmp_path, conn=conn)) == 0
        out = capsys.readouterr().out
        assert "Rows: 2" in out
        assert "id='po_1', status='PENDING'" in out

    def test_describe_unknown_table(self, tmp_path, capsys):
        assert run(["describe-table", "nope"], make_ctx(tmp_path, conn=MockPostgresConnection())) == 1
        assert "not found" in capsys.readouterr().out


class TestVerifyIsolation:
    """Tests for the isolation command without child processes."""

    def test_empty_project_passes_with_warnings(self, tmp_path, capsys):
        assert run(["verify-isolation", "--no-spawn"], make_ctx(tmp_path)) == 0
        assert "Production isolation verified" in capsys.readouterr().out

    def test_production_url_in_env_file_fails(self, tmp_path, capsys):
        (tmp_path / ".env.local").write_text(f"DATABASE_URL={PROD_URL}\n")
        ctx = make_ctx(tmp_path, production_project_ref=PROD_REF)

        assert run(["verify-isolation", "--no-spawn"], ctx) == 1
        assert "NOT guaranteed" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Migration resolution
# ---------------------------------------------------------------------------

class FakeRunner:
    def __init__(self, returncode=0):
        self.returncode = returncode
        self.commands = []

    def __call__(self, command, **kwargs):
        self.commands.append(command)
        return subprocess.CompletedProcess(command, self.returncode, stdout="", stderr="boom")


@pytest.fixture
def migrations_dir(tmp_path) -> Path:
    folder = tmp_path / "prisma" / "migrations" / "20240501_payouts"
    folder.mkdir(parents=True)
    (folder / "migration.sql").write_text(MIGRATION_SQL)
    return tmp_path / "prisma" / "migrations"


def resolver(conn, migrations_dir, runner):
    return MigrationResolver(
        SchemaRepository(conn),
        migrations_dir=migrations_dir,
        prisma_cli="npx prisma",
        cwd=migrations_dir,
        runner=runner,
        echo=lambda line: None,
    )


class TestMigrationResolution:
    """Tests for resolve-migrations."""

    MIGRATION = FailedMigration("20240501_payouts", datetime(2024, 5, 1))

    def test_guard_requires_ci_and_production(self):
        with pytest.raises(MigrationGuardError, match="CI"):
            ensure_ci_production({"NODE_ENV": "production"})
        with pytest.raises(MigrationGuardError, match="NODE_ENV"):
            ensure_ci_production({"CI": "true", "NODE_ENV": "development"})
        ensure_ci_production({"CI": "true", "NODE_ENV": "production"})

    def test_command_refuses_outside_ci(self, tmp_path):
        conn = MockPostgresConnection()
        assert run(["resolve-migrations"], make_ctx(tmp_path, env={"NODE_ENV": "production"}, conn=conn)) == 1
        assert conn.executed == []

    def test_all_objects_present_marks_applied(self, migrations_dir):
        conn = MockPostgresConnection()
        conn.queue_result([("payouts",)], match="pg_tables")
        conn.queue_result([("payouts_paymentId_key",)], match="pg_indexes")
        runner = FakeRunner()

        resolution = resolver(conn, migrations_dir, runner).resolve(self.MIGRATION)

        assert resolution.action == ResolutionAction.APPLIED
        assert runner.commands == [["npx", "prisma", "migrate", "resolve", "--applied", "20240501_payouts"]]

    def test_missing_index_is_recreated(self, migrations_dir):
        conn = MockPostgresConnection()
        conn.queue_result([("payouts",)], match="pg_tables")
        conn.queue_result([], match="pg_indexes")
        conn.queue_result([("payouts_paymentId_key",)], match="pg_indexes")
        runner = FakeRunner()

        resolution = resolver(conn, migrations_dir, runner).resolve(self.MIGRATION)

        assert resolution.action == ResolutionAction.RECREATE_INDEXES
        assert conn.queries("CREATE UNIQUE INDEX") == [
            'CREATE UNIQUE INDEX IF NOT EXISTS "payouts_paymentId_key" ON "payouts"("paymentId");'
        ]
        assert len(conn.queries("pg_indexes")) == 2
        assert runner.commands == [["npx", "prisma", "migrate", "resolve", "--applied", "20240501_payouts"]]

    def test_index_still_missing_after_recreation_is_not_marked_applied(self, migrations_dir):
        conn = MockPostgresConnection()
        conn.queue_result([("payouts",)], match="pg_tables")
        runner = FakeRunner()

        with pytest.raises(MigrationResolutionError) as exc_info:
            resolver(conn, migrations_dir, runner).resolve(self.MIGRATION)

        assert exc_info.value.resolution.action == ResolutionAction.MANUAL_INTERVENTION
        assert exc_info.value.resolution.missing == {"indexes": ["payouts_paymentId_key"]}
        assert "payouts_paymentId_key" in str(exc_info.value)
        assert len(conn.queries("CREATE UNIQUE INDEX IF NOT EXISTS")) == 1
        assert runner.commands == []

    def test_missing_table_needs_manual_intervention(self, migrations_dir):
        runner = FakeRunner()
        with pytest.raises(MigrationResolutionError) as exc_info:
            resolver(MockPostgresConnection(), migrations_dir, runner).resolve(self.MIGRATION)
        assert exc_info.value.resolution.action == ResolutionAction.MANUAL_INTERVENTION
        assert runner.commands == []

    def test_missing_file_marks_rolled_back(self, migrations_dir):
        runner = FakeRunner()
        missing = FailedMigration("20240601_gone", None)
        resolution = resolver(MockPostgresConnection(), migrations_dir, runner).resolve(missing)
        assert resolution.action == ResolutionAction.ROLLED_BACK
        assert runner.commands[0][-2:] == ["--rolled-back", "20240601_gone"]

    def test_prisma_failure_raises(self, migrations_dir):
        conn = MockPostgresConnection()
        conn.queue_result([("payouts",)], match="pg_tables")
        conn.queue_result([("payouts_paymentId_key",)], match="pg_indexes")
        with pytest.raises(subprocess.CalledProcessError):
            resolver(conn, migrations_dir, FakeRunner(returncode=1)).resolve(self.MIGRATION)

    def test_run_without_failures(self, migrations_dir):
        assert resolver(MockPostgresConnection(), migrations_dir, FakeRunner()).run() == []
