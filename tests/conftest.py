import pytest

from thinklab.daemon.utils.config_loader import config_loader


@pytest.fixture(autouse=True)
def default_config(tmp_path, monkeypatch):
    """Point the shared config loader at an empty dir so built-in defaults apply."""
    config_dir = tmp_path / "config"
    monkeypatch.setattr(config_loader, "config_dir", config_dir)
    monkeypatch.setattr(config_loader, "config_file", config_dir / "thinklab.yaml")
    monkeypatch.setattr(config_loader, "config", None)
    yield config_loader


@pytest.fixture
def ledger_db(tmp_path, monkeypatch):
    """Fresh SQLite ledger per test."""
    db_path = tmp_path / "ledger.db"
    monkeypatch.delenv("THINKLAB_PG_DSN", raising=False)
    monkeypatch.setenv("THINKLAB_DB_PATH", str(db_path))
    from thinklab.daemon.db import init_db

    init_db()
    return db_path
