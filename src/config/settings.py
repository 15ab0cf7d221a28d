"""
Toolkit configuration using Pydantic settings.

Configuration is loaded from environment variables and the project's .env
file. Every command reads the same Settings object, so the database URLs,
Paystack keys and environment markers are parsed in exactly one place.

Mock mode swaps the PostgreSQL connection for an in-memory stand-in so
commands can be exercised without a database.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Toolkit settings loaded from environment variables.

    For lists (like production_app_domains), use comma-separated values in env.
    """

    # Environment
    node_env: str = Field(
        default="development",
        description="Application environment (development, test, staging, production)"
    )
    database_env: Optional[str] = Field(
        default=None,
        description="Explicit database environment override. 'development' disables production URL detection."
    )
    ci: str = Field(
        default="",
        description="Set to 'true' by CI runners. Some commands only run in CI."
    )

    # Database
    database_url: str = Field(
        default="",
        description="Pooled PostgreSQL connection string used by the app"
    )
    direct_url: str = Field(
        default="",
        description="Direct (non-pooled) connection string used for migrations"
    )
    dev_database_url: str = Field(
        default="",
        description="Known development database URL, used to infer the expected environment"
    )
    prod_database_url: str = Field(
        default="",
        description="Known production database URL, used to infer the expected environment"
    )
    production_project_ref: str = Field(
        default="qdrktzqfeewwcktgltzy",
        description="Supabase project ref that identifies the production database"
    )
    production_app_domains: str = Field(
        default="app.proliinkconnect.co.za",
        description="Comma-separated production hostnames that must never appear in dev env files."
    )
    db_mock_mode: bool = Field(
        default=False,
        description="Use an in-memory mock instead of a real PostgreSQL connection."
    )
    db_connect_timeout: int = Field(
        default=15,
        description="Seconds to wait for a PostgreSQL connection"
    )

    # Paystack
    paystack_secret_key: str = Field(
        default="",
        description="Paystack secret key (sk_test_... or sk_live_...)"
    )
    paystack_public_key: str = Field(
        default="",
        description="Paystack public key (pk_test_... or pk_live_...)"
    )
    paystack_test_mode: bool = Field(
        default=True,
        description="Whether the app runs Paystack in test mode"
    )
    paystack_webhook_secret: str = Field(
        default="",
        description="Secret used to sign webhooks. Paystack signs with the secret key when unset."
    )
    paystack_base_url: str = Field(
        default="https://api.paystack.co",
        description="Paystack API base URL"
    )

    # Application
    app_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("next_public_app_url", "app_url"),
        description="Base URL of the running web app, used to deliver simulated webhooks"
    )

    # Prisma
    prisma_cli: str = Field(
        default="npx prisma",
        description="Command used to invoke the Prisma CLI"
    )
    migrations_dir: str = Field(
        default="prisma/migrations",
        description="Directory holding Prisma migration folders"
    )
    prisma_schema_path: str = Field(
        default="prisma/schema.prisma",
        description="Path to the Prisma schema file"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_production(self) -> bool:
        return self.node_env.lower() in ("production", "prod")

    @property
    def is_ci(self) -> bool:
        return self.ci.lower() in ("true", "1")

    @property
    def webhook_secret(self) -> str:
        """Secret used for x-paystack-signature. Paystack signs with the secret key."""
        return self.paystack_webhook_secret or self.paystack_secret_key

    @property
    def production_app_domains_list(self) -> list[str]:
        """Parse comma-separated production domains into a list."""
        return [d.strip() for d in self.production_app_domains.split(",") if d.strip()]

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode and environment.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode or production.
        """
        missing = []

        if not self.db_mock_mode and not self.database_url:
            missing.append("DATABASE_URL")

        if self.is_production:
            if not self.paystack_secret_key:
                missing.append("PAYSTACK_SECRET_KEY")
            if not self.paystack_public_key:
                missing.append("PAYSTACK_PUBLIC_KEY")

        return missing


@lru_cache()
def get_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Get cached settings instance.

    env_file is the file load_env resolved under the project root. With
    None, settings come from the process environment only and no .env in
    the working directory is read.

    Using lru_cache means we only load settings once per process.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings(_env_file=env_file)
