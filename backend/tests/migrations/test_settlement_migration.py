"""
The settlement migration builds the same tables the ORM maps.
"""

import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
import pytest
from sqlalchemy import create_engine, inspect

from app.database import Base

MIGRATION = (
    Path(__file__).resolve().parents[2] / "alembic" / "versions" / "001_settlement_schema.py"
)
TABLES = {
    "payment_transactions",
    "payment_workflows",
    "unsettled_finances",
    "fee_policies",
    "payment_methods",
}


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("settlement_schema_001", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _run(engine, step):
    with engine.begin() as conn:
        context = MigrationContext.configure(conn)
        with Operations.context(context):
            step()


def test_upgrade_matches_models(migration):
    engine = create_engine("sqlite://")

    _run(engine, migration.upgrade)

    inspector = inspect(engine)
    assert TABLES <= set(inspector.get_table_names())
    for table in TABLES:
        migrated = {column["name"] for column in inspector.get_columns(table)}
        assert migrated == set(Base.metadata.tables[table].columns.keys()), table
    engine.dispose()


def test_downgrade_drops_everything(migration):
    engine = create_engine("sqlite://")
    _run(engine, migration.upgrade)

    _run(engine, migration.downgrade)

    assert TABLES.isdisjoint(inspect(engine).get_table_names())
    engine.dispose()


def test_revision_is_the_root(migration):
    assert migration.revision == "001_settlement_schema"
    assert migration.down_revision is None
