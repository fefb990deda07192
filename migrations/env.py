import asyncio
import logging
from typing import Any

from alembic import context
from alembic.config import Config
from sqlalchemy import MetaData
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import create_async_engine

import models  # noqa
from src.core.database.base import Base
from src.main.config import config as app_config

config: Config = context.config
target_metadata: MetaData = Base.metadata
logger = logging.getLogger("alembic.env")

CONFIGURE_OPTIONS: dict[str, Any] = {
    "target_metadata": target_metadata,
    # Catches String length and DateTime timezone drift on the token tables
    "compare_type": True,
}


def _skip_empty_revisions(context_: Any, revision: Any, directives: list[Any]) -> None:
    if getattr(config.cmd_opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info("No schema changes detected, revision not written")


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting (``alembic upgrade --sql``)."""
    context.configure(
        url=app_config.postgres.dsn_async,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        process_revision_directives=_skip_empty_revisions,
        **CONFIGURE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    dsn = app_config.postgres.dsn_async
    logger.info("Migrating %s", make_url(dsn).render_as_string(hide_password=True))

    engine = create_async_engine(dsn)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
