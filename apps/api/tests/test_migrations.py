"""Schema revisions applied against a throwaway SQLite database."""

import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
import pytest
import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from models.credential import CredentialRecord


VERSIONS_DIR = Path(__file__).resolve().parents[1] / "alembic" / "versions"


def _load_revision(name):
    spec = importlib.util.spec_from_file_location(name, VERSIONS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _run(engine, step):
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            step()


def test_credentials_revision_matches_model(tmp_path):
    revision = _load_revision("20261017_000001_create_credentials")
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'migrations.db'}")

    assert revision.down_revision is None
    _run(engine, revision.upgrade)

    inspector = sa.inspect(engine)
    columns = {column["name"]: column for column in inspector.get_columns("credentials")}
    assert set(columns) == {column.name for column in CredentialRecord.__table__.columns}
    assert columns["provider_key"]["nullable"] is False
    assert columns["display_name"]["nullable"] is True
    assert inspector.get_pk_constraint("credentials")["constrained_columns"] == ["user_id"]
    assert {index["name"] for index in inspector.get_indexes("credentials")} == {
        "ix_credentials_provider_key_id",
        "ix_credentials_created_at",
    }
    assert [check["name"] for check in inspector.get_check_constraints("credentials")] == [
        "ck_credentials_remaining_within_total"
    ]

    with engine.begin() as conn:
        conn.execute(
            sa.text(
                "INSERT INTO credentials "
                "(user_id, provider_key, provider_key_id, total_credits, remaining_credits, daily_usage_cap) "
                "VALUES ('user-1', 'sk-1', 'hash-1', 10, 10, 1)"
            )
        )
        created_at = conn.execute(sa.text("SELECT created_at FROM credentials")).scalar_one()
    assert created_at is not None

    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                sa.text(
                    "INSERT INTO credentials "
                    "(user_id, provider_key, provider_key_id, total_credits, remaining_credits, daily_usage_cap) "
                    "VALUES ('user-2', 'sk-2', 'hash-2', 10, 11, 1)"
                )
            )

    _run(engine, revision.downgrade)
    assert sa.inspect(engine).has_table("credentials") is False
    engine.dispose()
