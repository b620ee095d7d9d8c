import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import get_settings  # noqa: E402
from database import Base  # noqa: E402
import models  # noqa: E402,F401

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

logger = logging.getLogger("alembic.env")

STORE_URL = get_settings().database_url
alembic_config.set_main_option("sqlalchemy.url", STORE_URL)


def _configure(**options) -> None:
    # Only the savings store is migrated; ledger tables live on another base.
    context.configure(
        target_metadata=Base.metadata,
        render_as_batch=STORE_URL.startswith("sqlite"),
        compare_type=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    logger.info(f"migrations_offline: url={STORE_URL}")
    _configure(
        url=STORE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def run_online() -> None:
    logger.info(f"migrations_online: url={STORE_URL}")
    connectable = engine_from_config(
        alembic_config.get_section(alembic_config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        _configure(connection=connection)


if context.is_offline_mode():
    run_offline()
else:
    run_online()
