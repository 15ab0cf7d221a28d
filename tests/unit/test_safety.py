"""
Unit tests for database URL safety.

The one rule that matters most: development and test can never obtain
a production connection string. Everything else here is about giving
clear warnings before that line is reached.
"""

import pytest

from src.core.models import Environment
from src.core.safety import (
    DatabaseUrlClassifier,
    SecurityViolation,
    block_local_production,
    check_before_prisma,
    expected_environment,
    get_database_config,
    is_migration_safe,
    mask_url,
    runtime_environment,
    validate_database_environment,
)

PROD_REF = "qdrktzqfeewwcktgltzy"
PROD_URL = f"postgresql://postgres.{PROD_REF}:pw@aws-0-eu-west-1.pooler.supabase.com:6543/postgres"
DEV_SUPABASE_URL = "postgresql://postgres.devref:pw@aws-0-eu-west-1.pooler.supabase.com:6543/postgres"
LOCAL_URL = "postgresql://postgres:pw@localhost:5432/connectsa_dev"


@pytest.fixture
def classifier():
    return DatabaseUrlClassifier.for_project(PROD_REF)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassifier:
    """Tests for identifying which environment a URL belongs to."""

    def test_production_ref_is_production(self, classifier):
        assert classifier.is_production(PROD_URL)

    def test_shared_pooler_host_is_not_production(self, classifier):
        """Dev projects share the pooler hostname; only the ref identifies prod."""
        assert not classifier.is_production(DEV_SUPABASE_URL)

    def test_database_env_development_overrides(self, classifier):
        assert not classifier.is_production(PROD_URL, database_env="development")
        assert not classifier.is_production(PROD_URL, database_env="dev")

    def test_empty_url_is_not_production(self, classifier):
        assert not classifier.is_production("")

    def test_development_and_test_indicators(self, classifier):
        assert classifier.is_development(LOCAL_URL)
        assert classifier.is_test("postgresql://localhost/connectsa_test")
        assert not classifier.is_development("")

    def test_label(self, classifier):
        assert classifier.label(PROD_URL) == "PRODUCTION"
        assert classifier.label(LOCAL_URL) == "DEVELOPMENT/TEST"


class TestHelpers:
    """Tests for small helpers."""

    def test_mask_url_redacts_password_and_truncates(self):
        masked = mask_url(PROD_URL)
        assert ":pw@" not in masked
        assert masked.startswith(f"postgresql://postgres.{PROD_REF}:****@")
        assert len(masked) == 63

    def test_mask_url_without_password(self):
        assert mask_url("postgresql://localhost/db") == "postgresql://localhost/db..."

    def test_mask_url_empty(self):
        assert mask_url("") == "(not set)"

    @pytest.mark.parametrize("node_env,expected", [
        ("production", "production"),
        ("prod", "production"),
        ("test", "test"),
        ("development", "development"),
        (None, "development"),
    ])
    def test_runtime_environment(self, node_env, expected):
        env = {"NODE_ENV": node_env} if node_env else {}
        assert runtime_environment(env) == expected

    def test_expected_environment_prefers_known_urls(self):
        env = {"NODE_ENV": "development", "DATABASE_URL": PROD_URL, "PROD_DATABASE_URL": PROD_URL}
        assert expected_environment(env) == Environment.PROD

    def test_expected_environment_falls_back_to_node_env(self):
        assert expected_environment({"NODE_ENV": "staging"}) == Environment.STAGING
        assert expected_environment({}) == Environment.DEV


# ---------------------------------------------------------------------------
# Connection gate
# ---------------------------------------------------------------------------

class TestGetDatabaseConfig:
    """Tests for the hard block on cross-environment connections."""

    def test_development_cannot_reach_production(self, classifier):
        env = {"NODE_ENV": "development", "DATABASE_URL": PROD_URL}
        with pytest.raises(SecurityViolation, match="SECURITY VIOLATION"):
            get_database_config(env, classifier)

    def test_test_cannot_reach_production(self, classifier):
        env = {"NODE_ENV": "test", "DATABASE_URL": PROD_URL}
        with pytest.raises(SecurityViolation):
            get_database_config(env, classifier)

    def test_production_cannot_use_local_database(self, classifier):
        env = {"NODE_ENV": "production", "DATABASE_URL": LOCAL_URL}
        with pytest.raises(SecurityViolation, match="Production cannot use development database"):
            get_database_config(env, classifier)

    def test_missing_url_raises(self, classifier):
        with pytest.raises(SecurityViolation, match="DATABASE_URL"):
            get_database_config({"NODE_ENV": "development"}, classifier)

    def test_development_gets_local_config(self, classifier):
        config = get_database_config({"NODE_ENV": "development", "DATABASE_URL": LOCAL_URL}, classifier)
        assert config.database_url == LOCAL_URL
        assert config.direct_url == LOCAL_URL
        assert config.environment == "development"

    def test_production_gets_production_config(self, classifier):
        env = {"NODE_ENV": "production", "DATABASE_URL": PROD_URL, "DIRECT_URL": PROD_URL}
        config = get_database_config(env, classifier)
        assert config.environment == "production"

    def test_validation_reports_direct_url_mismatch(self, classifier):
        env = {"NODE_ENV": "production", "DATABASE_URL": PROD_URL, "DIRECT_URL": DEV_SUPABASE_URL}
        result = validate_database_environment(env, classifier)
        assert result.is_safe
        assert any("different environments" in w for w in result.warnings)

    def test_validation_rejects_placeholder_password(self, classifier):
        env = {"NODE_ENV": "development", "DATABASE_URL": "postgresql://postgres:<PASSWORD>@localhost/db"}
        result = validate_database_environment(env, classifier)
        assert not result.is_safe


class TestIsMigrationSafe:
    """Tests for gating schema changes."""

    def test_blocks_production_url_from_development(self, classifier):
        allowed, reason = is_migration_safe({"NODE_ENV": "development", "DATABASE_URL": PROD_URL}, classifier)
        assert not allowed
        assert "NODE_ENV=production" in reason

    def test_force_allows(self, classifier):
        allowed, reason = is_migration_safe(
            {"NODE_ENV": "development", "DATABASE_URL": PROD_URL}, classifier, force=True
        )
        assert allowed
        assert reason is None

    def test_allows_production_from_production(self, classifier):
        allowed, _ = is_migration_safe({"NODE_ENV": "production", "DATABASE_URL": PROD_URL}, classifier)
        assert allowed


# ---------------------------------------------------------------------------
# Pre-Prisma gate
# ---------------------------------------------------------------------------

class TestCheckBeforePrisma:
    """Tests for the gate run in front of Prisma commands."""

    def test_blocks_development_on_production(self, classifier):
        report = check_before_prisma({"NODE_ENV": "development", "DATABASE_URL": PROD_URL}, classifier)
        assert not report.ok
        assert "CRITICAL SECURITY ERROR" in report.errors[0].message

    def test_database_env_cannot_unblock_with_wrong_value(self, classifier):
        env = {"NODE_ENV": "development", "DATABASE_URL": PROD_URL, "DATABASE_ENV": "production"}
        assert not check_before_prisma(env, classifier).ok

    def test_blocks_missing_url(self, classifier):
        report = check_before_prisma({"NODE_ENV": "development"}, classifier)
        assert not report.ok

    def test_blocks_placeholder(self, classifier):
        env = {"NODE_ENV": "development", "DATABASE_URL": "postgresql://u:<PASSWORD>@localhost/db"}
        assert not check_before_prisma(env, classifier).ok

    def test_blocks_production_on_local_database(self, classifier):
        report = check_before_prisma({"NODE_ENV": "production", "DATABASE_URL": LOCAL_URL}, classifier)
        assert not report.ok

    def test_warns_for_dev_supabase_project(self, classifier):
        report = check_before_prisma({"NODE_ENV": "development", "DATABASE_URL": DEV_SUPABASE_URL}, classifier)
        assert report.ok
        assert report.warning_count == 1

    def test_local_development_passes_cleanly(self, classifier):
        report = check_before_prisma({"NODE_ENV": "development", "DATABASE_URL": LOCAL_URL}, classifier)
        assert report.ok
        assert report.warning_count == 0

    def test_secrets_are_masked(self, classifier):
        report = check_before_prisma({"NODE_ENV": "development", "DATABASE_URL": PROD_URL}, classifier)
        assert PROD_URL not in report.render()


class TestBlockLocalProduction:
    """Tests for refusing NODE_ENV=production on a developer machine."""

    def test_blocks_without_ci_markers(self):
        assert not block_local_production({"NODE_ENV": "production"}).ok

    @pytest.mark.parametrize("marker", ["CI", "VERCEL", "GITHUB_ACTIONS", "VERCEL_ENV"])
    def test_allows_in_ci(self, marker):
        assert block_local_production({"NODE_ENV": "production", marker: "1"}).ok

    def test_development_passes(self):
        assert block_local_production({"NODE_ENV": "development"}).ok
