"""
Readiness checks for the toolkit's dependencies.

Checks that configuration is complete, the database answers, and the
Paystack API accepts our key. Output is JSON so CI jobs can parse it.
"""

import argparse
import logging

import psycopg2
from pydantic import BaseModel

from src import __version__
from src.commands.dependencies import CommandContext, create_paystack_client, open_database
from src.infrastructure.paystack.client import PaystackClientError
from src.infrastructure.postgres.client import DatabaseConnectionError
from src.infrastructure.postgres.repositories.schema import SchemaRepository
from src.core.safety import SecurityViolation

logger = logging.getLogger(__name__)


class ReadinessCheck(BaseModel):
    """Individual readiness check result."""
    name: str
    status: str  # "ok", "error" or "skipped"
    error: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response with details."""
    status: str  # "ready" or "not_ready"
    version: str
    checks: list[ReadinessCheck]


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("health", help="Check configuration, database and Paystack readiness")
    parser.set_defaults(handler=health)


def readiness(ctx: CommandContext) -> ReadinessResponse:
    checks: list[ReadinessCheck] = []

    # Configuration
    missing_fields = ctx.settings.validate_required_fields()
    if missing_fields:
        checks.append(ReadinessCheck(
            name="configuration",
            status="error",
            error=f"Missing required fields: {', '.join(missing_fields)}"
        ))
    else:
        checks.append(ReadinessCheck(name="configuration", status="ok"))

    # Database
    if ctx.settings.db_mock_mode and ctx.connection is None:
        checks.append(ReadinessCheck(name="database", status="ok", error="mock mode"))
    elif not ctx.settings.database_url and ctx.connection is None:
        checks.append(ReadinessCheck(name="database", status="error", error="DATABASE_URL not set"))
    else:
        try:
            with open_database(ctx) as conn:
                SchemaRepository(conn).ping()
            checks.append(ReadinessCheck(name="database", status="ok"))
        except (DatabaseConnectionError, SecurityViolation, psycopg2.Error) as e:
            logger.error("Database health check failed", extra={"error": str(e)})
            checks.append(ReadinessCheck(name="database", status="error", error=str(e)))

    # Paystack
    if not ctx.settings.paystack_secret_key:
        checks.append(ReadinessCheck(name="paystack", status="skipped", error="PAYSTACK_SECRET_KEY not set"))
    else:
        try:
            with create_paystack_client(ctx) as client:
                healthy = client.health_check()
        except (PaystackClientError, ValueError) as e:
            healthy = False
            logger.error("Paystack health check failed", extra={"error": str(e)})
        checks.append(
            ReadinessCheck(name="paystack", status="ok")
            if healthy
            else ReadinessCheck(name="paystack", status="error", error="Paystack API unreachable or key rejected")
        )

    all_ok = all(c.status != "error" for c in checks)
    response = ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        version=__version__,
        checks=checks,
    )

    if not all_ok:
        logger.warning(
            "Readiness check failed",
            extra={"checks": [c.model_dump() for c in checks]}
        )
    return response


def health(ctx: CommandContext, args: argparse.Namespace) -> int:
    response = readiness(ctx)
    print(response.model_dump_json(indent=2))
    return 0 if response.status == "ready" else 1
