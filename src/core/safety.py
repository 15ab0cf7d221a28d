"""
Database URL safety checks.

Prevents development and test environments from touching the production
database, and production from running against a local database.

Production is identified by its Supabase project ref only. Generic Supabase
host patterns (pooler.supabase.com, aws-0-eu-west-1) are shared by dev and
prod projects, so matching on them produces false positives.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from src.core.models import Environment, Report

logger = logging.getLogger(__name__)


DEFAULT_PRODUCTION_PROJECT_REF = "qdrktzqfeewwcktgltzy"
DEFAULT_DEVELOPMENT_INDICATORS = ("localhost", "127.0.0.1", "connectsa_dev")
DEFAULT_TEST_INDICATORS = ("connectsa_test",)
PASSWORD_PLACEHOLDERS = ("<PASSWORD>", "<password>")
CI_MARKERS = ("CI", "VERCEL", "GITHUB_ACTIONS", "VERCEL_ENV")
PASSWORD_PATTERN = re.compile(r"(://[^:/@\s]+:)[^@\s]+@")


class SecurityViolation(Exception):
    """Raised when a database connection would cross environments."""
    pass


def mask_url(url: str, length: int = 60) -> str:
    """Redact the password and truncate, so a URL can be printed."""
    if not url:
        return "(not set)"
    redacted = PASSWORD_PATTERN.sub(r"\1****@", url)
    return f"{redacted[:length]}..."


def runtime_environment(env: Mapping[str, str]) -> str:
    """Map NODE_ENV onto production, test or development."""
    node_env = (env.get("NODE_ENV") or "development").lower()
    if node_env in ("production", "prod"):
        return "production"
    if node_env == "test":
        return "test"
    return "development"


@dataclass(frozen=True)
class DatabaseUrlClassifier:
    """Classifies a connection string by the environment it points at."""
    production_indicators: tuple[str, ...] = (DEFAULT_PRODUCTION_PROJECT_REF,)
    development_indicators: tuple[str, ...] = DEFAULT_DEVELOPMENT_INDICATORS
    test_indicators: tuple[str, ...] = DEFAULT_TEST_INDICATORS

    @classmethod
    def for_project(cls, production_project_ref: str) -> "DatabaseUrlClassifier":
        return cls(production_indicators=(production_project_ref,))

    def is_production(self, url: str, database_env: Optional[str] = None) -> bool:
        """
        True when the URL contains a production indicator.

        DATABASE_ENV=development (or dev) forces False, which lets a dev
        database that shares URL patterns with production opt out.
        """
        if not url:
            return False
        if (database_env or "").lower() in ("development", "dev"):
            return False
        return any(indicator and indicator in url for indicator in self.production_indicators)

    def is_development(self, url: str) -> bool:
        return bool(url) and any(i in url for i in self.development_indicators)

    def is_test(self, url: str) -> bool:
        return bool(url) and any(i in url for i in self.test_indicators)

    def label(self, url: str, database_env: Optional[str] = None) -> str:
        return "PRODUCTION" if self.is_production(url, database_env) else "DEVELOPMENT/TEST"


@dataclass
class SafetyResult:
    """Non-blocking outcome of the database environment validation."""
    environment: str
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def is_safe(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class DatabaseConfig:
    database_url: str
    direct_url: str
    environment: str


def validate_database_environment(
    env: Mapping[str, str],
    classifier: DatabaseUrlClassifier,
) -> SafetyResult:
    """
    Validate DATABASE_URL/DIRECT_URL against NODE_ENV.

    Returns warnings and errors without raising.
    """
    environment = runtime_environment(env)
    database_url = env.get("DATABASE_URL", "")
    direct_url = env.get("DIRECT_URL", "")
    database_env = env.get("DATABASE_ENV")
    result = SafetyResult(environment=environment)

    if not database_url:
        result.errors.append("DATABASE_URL environment variable is not set")
        return result

    is_prod_url = classifier.is_production(database_url, database_env)

    if environment in ("development", "test") and is_prod_url:
        result.warnings.append(
            f"{environment} environment appears to be connecting to a production database "
            f"({mask_url(database_url)}). Use a separate development database."
        )

    if environment == "production":
        if classifier.is_development(database_url) or classifier.is_test(database_url):
            result.errors.append(
                f"Production environment is using a development/test database URL "
                f"({mask_url(database_url)}). This is BLOCKED."
            )
        if not is_prod_url:
            result.warnings.append(
                "Production environment database URL doesn't match expected production patterns. "
                "Please verify this is the correct production database."
            )

    if direct_url:
        direct_is_prod = classifier.is_production(direct_url, database_env)
        if is_prod_url != direct_is_prod:
            result.warnings.append(
                "DATABASE_URL and DIRECT_URL appear to point to different environments "
                f"(DATABASE_URL: {classifier.label(database_url, database_env)}, "
                f"DIRECT_URL: {classifier.label(direct_url, database_env)})"
            )

    if any(p in database_url for p in PASSWORD_PLACEHOLDERS):
        result.errors.append(
            "DATABASE_URL contains placeholder values (<PASSWORD>). "
            "Please replace with actual database credentials."
        )

    return result


def get_database_config(
    env: Mapping[str, str],
    classifier: DatabaseUrlClassifier,
) -> DatabaseConfig:
    """
    Resolve the connection URLs, refusing unsafe combinations.

    Development and test can never connect to production. There is no
    flag that bypasses this.
    """
    validation = validate_database_environment(env, classifier)

    for warning in validation.warnings:
        logger.warning("Database safety warning", extra={"warning": warning})

    if validation.errors:
        for error in validation.errors:
            logger.error("Database safety error", extra={"error": error})
        if validation.environment == "production":
            raise SecurityViolation(
                "Database safety check failed. Production cannot use development database."
            )

    database_url = env.get("DATABASE_URL", "")
    if not database_url:
        raise SecurityViolation("DATABASE_URL environment variable is required")

    if validation.environment in ("development", "test") and classifier.is_production(
        database_url, env.get("DATABASE_ENV")
    ):
        raise SecurityViolation(
            "SECURITY VIOLATION: Development environment cannot connect to production database. "
            "This is a hard block and cannot be bypassed."
        )

    return DatabaseConfig(
        database_url=database_url,
        direct_url=env.get("DIRECT_URL") or database_url,
        environment=validation.environment,
    )


def is_migration_safe(
    env: Mapping[str, str],
    classifier: DatabaseUrlClassifier,
    force: bool = False,
) -> tuple[bool, Optional[str]]:
    """Return (allowed, reason). Schema changes on production only run from production."""
    if force:
        return True, None

    environment = runtime_environment(env)
    if environment != "production" and classifier.is_production(
        env.get("DATABASE_URL", ""), env.get("DATABASE_ENV")
    ):
        return False, (
            f"Cannot run migrations on production database from {environment} environment. "
            "Run schema changes on production with NODE_ENV=production."
        )
    return True, None


def check_before_prisma(env: Mapping[str, str], classifier: DatabaseUrlClassifier) -> Report:
    """
    Gate run before any Prisma CLI command (generate, migrate, db push).

    Failures block the command. A Supabase host that is not the production
    project is allowed in development with a warning.
    """
    report = Report("Database safety (pre-Prisma)")
    environment = runtime_environment(env)
    database_url = env.get("DATABASE_URL", "")
    direct_url = env.get("DIRECT_URL", "")
    database_env = env.get("DATABASE_ENV")

    if not database_url:
        report.failed(
            "DATABASE_URL",
            "DATABASE_URL environment variable is not set",
            ["Please set DATABASE_URL before running Prisma commands."],
        )
        return report

    if any(p in database_url for p in PASSWORD_PLACEHOLDERS):
        report.failed(
            "DATABASE_URL",
            "DATABASE_URL contains placeholder values (<PASSWORD>)",
            [f"Database URL: {mask_url(database_url)}"],
        )
        return report

    is_prod_url = classifier.is_production(database_url, database_env)

    if environment == "production":
        if classifier.is_development(database_url) or classifier.is_test(database_url):
            report.failed(
                "Environment",
                "CRITICAL: Production environment is using a development/test database!",
                [f"Database URL: {mask_url(database_url)}", "This will cause data loss and is BLOCKED."],
            )
            return report
        if not is_prod_url:
            report.warn(
                "Environment",
                "Production database URL doesn't match expected production patterns",
                [f"Database URL: {mask_url(database_url)}"],
            )

    if environment in ("development", "test"):
        if is_prod_url:
            report.failed(
                "Environment",
                "CRITICAL SECURITY ERROR: Cannot run Prisma commands on production database",
                [
                    f"Environment: {environment.upper()}",
                    f"Database URL: {mask_url(database_url)}",
                    "Running Prisma commands on production from development is PERMANENTLY BLOCKED.",
                    "Use a separate development database; production migrations run in CI only.",
                ],
            )
            return report
        if environment == "development" and "supabase.com" in database_url:
            report.warn(
                "Environment",
                "Using Supabase database in development mode",
                ["Make sure this is a development/staging Supabase project, not production."],
            )

    if direct_url:
        direct_is_prod = classifier.is_production(direct_url, database_env)
        if is_prod_url != direct_is_prod:
            report.warn(
                "DIRECT_URL",
                "DATABASE_URL and DIRECT_URL point to different environments",
                [
                    f"DATABASE_URL: {classifier.label(database_url, database_env)}",
                    f"DIRECT_URL: {classifier.label(direct_url, database_env)}",
                ],
            )

    report.passed("Database safety", f"{environment} environment may run Prisma commands")
    return report


def block_local_production(env: Mapping[str, str]) -> Report:
    """Refuse NODE_ENV=production outside a CI or Vercel build."""
    report = Report("Local production block")
    if runtime_environment(env) != "production":
        report.passed("NODE_ENV", "Not running in production mode")
        return report

    if any(env.get(marker) for marker in CI_MARKERS):
        report.passed("NODE_ENV", "Production mode inside CI/Vercel")
        return report

    report.failed(
        "NODE_ENV",
        "Production mode is blocked on local machines",
        ["Production builds and servers only run in CI or on Vercel."],
    )
    return report


def expected_environment(env: Mapping[str, str]) -> Environment:
    """
    Environment the current database is expected to belong to.

    Known URLs take priority over NODE_ENV.
    """
    database_url = env.get("DATABASE_URL", "")
    if database_url:
        if database_url == env.get("PROD_DATABASE_URL"):
            return Environment.PROD
        if database_url == env.get("DEV_DATABASE_URL"):
            return Environment.DEV

    node_env = (env.get("NODE_ENV") or "development").lower()
    if node_env in ("production", "prod"):
        return Environment.PROD
    if node_env == "staging":
        return Environment.STAGING
    return Environment.DEV
