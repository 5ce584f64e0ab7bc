"""Alembic environment for the billing tables.

The URL comes from modelmarket.core.database (DATABASE_URL or the SQLite
default under the data directory), so the CLI migrates the same database
the app serves.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlmodel import SQLModel, create_engine

import modelmarket.models  # noqa: F401  registers the tables
from modelmarket.core.database import DATABASE_URL

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# SQLite cannot ALTER most constraints in place
render_as_batch = DATABASE_URL.startswith("sqlite")

if context.is_offline_mode():
    context.configure(
        url=DATABASE_URL,
        target_metadata=SQLModel.metadata,
        literal_binds=True,
        render_as_batch=render_as_batch,
    )
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=SQLModel.metadata,
            render_as_batch=render_as_batch,
        )
        with context.begin_transaction():
            context.run_migrations()
