"""Tests for engine initialization and the transactional session scope."""

import pytest
from sqlalchemy import text

from backoffice_kernel.config import KernelSettings
from backoffice_kernel.db import engine as engine_module
from backoffice_kernel.db.engine import (
    get_engine,
    get_session_factory,
    init_engine_from_settings,
    is_postgres,
    session_scope,
)
from backoffice_kernel.models.catalog import Warehouse
from backoffice_kernel.services.record_store import SqlRecordStore


def test_is_postgres_matches_dialect(db_engine):
    assert is_postgres() == (db_engine.dialect.name == "postgresql")


class TestSessionScope:
    """Real commits; ``session_factory`` removes the rows afterwards."""

    def test_commits(self, session_factory, tenant_id):
        with session_scope() as s:
            SqlRecordStore(s).create(Warehouse, tenant_id, name="Scoped")

        with session_scope() as s:
            assert SqlRecordStore(s).count(Warehouse, tenant_id) == 1

    def test_rolls_back_on_error(self, session_factory, tenant_id, captured_logs):
        with pytest.raises(RuntimeError, match="boom"):
            with session_scope() as s:
                SqlRecordStore(s).create(Warehouse, tenant_id, name="Doomed")
                s.flush()
                raise RuntimeError("boom")

        with session_scope() as s:
            assert SqlRecordStore(s).count(Warehouse, tenant_id) == 0

        messages = [r["message"] for r in captured_logs()]
        assert "transaction_rolled_back" in messages


def test_init_engine_from_settings(tmp_path, monkeypatch):
    # monkeypatch restores the suite's engine at teardown
    monkeypatch.setattr(engine_module, "_engine", None)
    monkeypatch.setattr(engine_module, "_SessionFactory", None)

    settings = KernelSettings(
        database_url=f"sqlite:///{tmp_path / 'settings.db'}",
        pool_size=2,
        max_overflow=0,
    )
    eng = init_engine_from_settings(settings)
    try:
        assert get_engine() is eng
        assert eng.pool.size() == 2
        with get_session_factory()() as s:
            assert s.execute(text("PRAGMA foreign_keys")).scalar() == 1
    finally:
        eng.dispose()
