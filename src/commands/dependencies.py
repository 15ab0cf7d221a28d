"""
Shared wiring for commands.

Commands don't build their own settings, classifiers or connections.
They receive a CommandContext and ask it for what they need, which keeps
every command on the same safety checks and makes them easy to test with
a mock connection.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generator, Mapping, Optional

import httpx

from src.config.settings import Settings, get_settings
from src.core.safety import DatabaseUrlClassifier, get_database_config, mask_url
from src.infrastructure.postgres.client import (
    PostgresConfig,
    PostgresConnection,
    create_postgres_connection,
)
from src.infrastructure.paystack.client import PaystackClient, PaystackConfig

logger = logging.getLogger(__name__)


@dataclass
class CommandContext:
    """Everything a command needs from its surroundings."""
    root: Path
    settings: Settings
    env: Mapping[str, str]
    connection: Optional[PostgresConnection] = field(default=None)
    paystack_transport: Optional[httpx.BaseTransport] = field(default=None)

    @classmethod
    def from_environment(cls, root: Path, env_file: Optional[Path] = None) -> "CommandContext":
        return cls(root=Path(root), settings=get_settings(env_file), env=dict(os.environ))

    @property
    def classifier(self) -> DatabaseUrlClassifier:
        return DatabaseUrlClassifier.for_project(self.settings.production_project_ref)

    @property
    def is_production(self) -> bool:
        return self.settings.is_production


@contextmanager
def open_database(ctx: CommandContext) -> Generator[PostgresConnection, None, None]:
    """
    Open the one connection a command may use.

    The URL goes through get_database_config first, so development can
    never reach production through any command. A connection already set
    on the context (tests) is yielded as-is.
    """
    if ctx.connection is not None:
        yield ctx.connection
        return

    if ctx.settings.db_mock_mode:
        with create_postgres_connection(mock_mode=True) as conn:
            yield conn
        return

    db_config = get_database_config(ctx.env, ctx.classifier)
    logger.info(
        "Connecting to database",
        extra={"environment": db_config.environment, "url": mask_url(db_config.database_url)}
    )
    config = PostgresConfig(dsn=db_config.database_url, connect_timeout=ctx.settings.db_connect_timeout)
    with create_postgres_connection(config) as conn:
        yield conn


def create_paystack_client(ctx: CommandContext) -> PaystackClient:
    return PaystackClient(
        PaystackConfig(
            secret_key=ctx.settings.paystack_secret_key,
            base_url=ctx.settings.paystack_base_url,
        ),
        transport=ctx.paystack_transport,
    )
