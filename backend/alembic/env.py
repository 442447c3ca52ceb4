from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context
from vpshub.core.config import settings
from vpshub.core.db import Base
from vpshub import models  # noqa: F401  (orders, ledger, renewals, server actions)

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url():
    # migrations run on sync drivers
    url = settings.DATABASE_URL
    for async_prefix, sync_prefix in (("postgresql+asyncpg://", "postgresql+psycopg://"), ("sqlite+aiosqlite://", "sqlite://")):
        url = url.replace(async_prefix, sync_prefix)
    return url


def _options(url: str) -> dict:
    # sqlite needs batch mode for ALTER; enum changes must be detected
    return {"target_metadata": target_metadata, "compare_type": True, "render_as_batch": url.startswith("sqlite")}


def run_migrations_offline():
    url = get_url()
    context.configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"}, **_options(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    url = get_url()
    engine = engine_from_config({"sqlalchemy.url": url}, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
