"""
Linksy Alembic Environment

Migrations run against settings.DATABASE_URL, the same URL the API uses.

The vector and geography columns and their HNSW / GIST indexes are created
in raw SQL by the migrations, and PostGIS installs its own tables; both are
hidden from autogenerate so it never proposes dropping or retyping them.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from linksy.config import settings
from linksy.db.models import Base

config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL.replace("%", "%%"))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Installed by the postgis extension
EXTENSION_TABLES = {"spatial_ref_sys", "geography_columns", "geometry_columns"}

# Managed in raw SQL
RAW_SQL_COLUMNS = {("linksy_needs", "embedding"), ("linksy_locations", "geom")}


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table" and name in EXTENSION_TABLES:
        return False
    if type_ == "column" and (obj.table.name, name) in RAW_SQL_COLUMNS:
        return False
    return True


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting (``alembic upgrade --sql``)."""
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
