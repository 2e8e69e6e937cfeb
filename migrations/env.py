"""
Alembic environment for the analytics schema.
"""
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

import app.models.admin  # noqa: F401
import app.models.metrics  # noqa: F401
import app.models.registry  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", os.getenv("DB_URL", config.get_main_option("sqlalchemy.url")))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

# Platform tables live in the host database and are never migrated here
PLATFORM_TABLE_PREFIX = "lms_"


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table" and name.startswith(PLATFORM_TABLE_PREFIX):
        return False
    return True


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, include_object=include_object)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
