from __future__ import annotations

import os
from logging.config import fileConfig
from alembic import context
from sqlalchemy import engine_from_config, pool

# ------------------------------------------------------------
# Configurazione Alembic
# ------------------------------------------------------------
config = context.config

# Carica file di configurazione del logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# ------------------------------------------------------------
# Metadata dei modelli (base.py importa tutti i modelli)
# ------------------------------------------------------------
from paygate.db.base import Base  # noqa: E402
from paygate.db.session import _normalize_dsn  # noqa: E402

target_metadata = Base.metadata

# Legge variabile d'ambiente DATABASE_URL (fallback: alembic.ini)
db_url = os.environ.get("DATABASE_URL")
if db_url:
    config.set_main_option("sqlalchemy.url", _normalize_dsn(db_url))
else:
    print("[alembic] ⚠️ DATABASE_URL non impostato; uso sqlalchemy.url di alembic.ini.")

# ------------------------------------------------------------
# Modalità offline (solo generazione SQL)
# ------------------------------------------------------------
def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()

# ------------------------------------------------------------
# Modalità online (connessione diretta al DB)
# ------------------------------------------------------------
def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()

# ------------------------------------------------------------
# Esecuzione principale
# ------------------------------------------------------------
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
