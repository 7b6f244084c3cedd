from logging.config import fileConfig
from pathlib import Path

from dotenv import load_dotenv
import os

from sqlalchemy import engine_from_config, pool
from alembic import context

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# DATABASE_URL / DATABASE_PATH may live in the project's .env
load_dotenv(PROJECT_ROOT / ".env")

config = context.config


def _database_url() -> str:
    """`alembic -x dburl=...` wins, then DATABASE_URL (Postgres), then the SQLite file."""
    override = context.get_x_argument(as_dictionary=True).get("dburl")
    if override:
        return override
    database_url = os.getenv("DATABASE_URL", "")
    if database_url.startswith("postgresql://"):
        return database_url
    db_path = os.getenv("DATABASE_PATH", "proctored_assessment.db")
    return f"sqlite:///{db_path}"


# app.db.database sets the URL itself before calling upgrade; keep it when it did
if not config.attributes.get("configured_by_app"):
    config.set_main_option("sqlalchemy.url", _database_url())

if config.config_file_name is not None and not config.attributes.get("configured_by_app"):
    fileConfig(config.config_file_name)

target_metadata = None


def _is_sqlite() -> bool:
    return config.get_main_option("sqlalchemy.url").startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(),
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
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=_is_sqlite(),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
