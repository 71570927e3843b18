import os
import sys

from alembic import context
from sqlalchemy import pool

# ------------------------------------------------------------
# Projekt-Root in sys.path eintragen, damit "epic_notes" importierbar ist
# ------------------------------------------------------------
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from epic_notes.db.database import Base, engine

# Registriert users, roles, sessions, verifications, connections
import epic_notes.models  # noqa: E402,F401

config = context.config

# kein fileConfig(): Logging kommt aus LOG_LEVEL, nicht aus alembic.ini
target_metadata = Base.metadata

# SQLite kann ALTER TABLE nur im Batch-Modus
RENDER_AS_BATCH = engine.url.get_backend_name() == "sqlite"


def run_migrations_offline() -> None:
    """Migrationen als SQL-Skript ausgeben (ohne DB-Verbindung)."""
    context.configure(
        url=str(engine.url),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=RENDER_AS_BATCH,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=RENDER_AS_BATCH,
            poolclass=pool.NullPool,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
