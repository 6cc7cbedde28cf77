"""
Environnement alembic de stockflow.

L'URL vient de DATABASE_URL (settings) et écrase celle d'alembic.ini.
Le repo est importable grâce à `prepend_sys_path = .` dans alembic.ini.
"""

from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from stockflow.app.core.config import settings
from stockflow.app.db.base import Base
from stockflow.app.db.models import models_v1  # noqa: F401  (tables pour autogenerate)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", settings.database_url)

# compare_type : autogenerate détecte aussi les changements de type de colonne
COMPARE_OPTIONS = {"target_metadata": Base.metadata, "compare_type": True}


def run_migrations_offline() -> None:
    """Génère le SQL sans connexion (alembic upgrade --sql)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **COMPARE_OPTIONS,
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
        context.configure(connection=connection, **COMPARE_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
