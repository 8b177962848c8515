# alembic/env.py
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from clientdesk.core.settings import settings
from clientdesk.db.base import Base
import clientdesk.models  # noqa: F401  (registra las tablas en Base.metadata)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# la URL sale de settings (DATABASE_URL normalizada), no de alembic.ini
DB_URL = settings.SQLALCHEMY_DATABASE_URL


def _common_opts() -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        # SQLite no soporta ALTER completos; batch recrea la tabla
        "render_as_batch": DB_URL.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    context.configure(
        url=DB_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_common_opts(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        {"sqlalchemy.url": DB_URL},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_common_opts())
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
