"""The initial revision builds the same tables the models declare."""

import importlib

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from backend.db.models import Base

initial_schema = importlib.import_module("backend.alembic.versions.20260301_000000_001_initial_schema")


def run_revision(connection, step):
    context = MigrationContext.configure(connection)
    with Operations.context(context):
        step()


def test_upgrade_matches_models(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
    with engine.begin() as connection:
        run_revision(connection, initial_schema.upgrade)
        inspector = inspect(connection)
        tables = set(inspector.get_table_names())

        assert tables == set(Base.metadata.tables)
        for name, table in Base.metadata.tables.items():
            migrated = {column["name"] for column in inspector.get_columns(name)}
            assert migrated == {column.name for column in table.columns}, name

    engine.dispose()


def test_downgrade_drops_everything(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
    with engine.begin() as connection:
        run_revision(connection, initial_schema.upgrade)
        run_revision(connection, initial_schema.downgrade)

        assert inspect(connection).get_table_names() == []

    engine.dispose()
