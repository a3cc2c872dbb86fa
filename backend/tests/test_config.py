import pytest
from readnote.config import AppConfig, create_store
from readnote.db.store import JsonFileStore, MemoryStore, PostgresStore


def test_defaults(monkeypatch):
    for name in ["READNOTE_STORE", "READNOTE_STORE_PATH", "DATABASE_URL", "READNOTE_CORS_ORIGINS", "READNOTE_LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.from_env()

    assert config.store == "memory"
    assert config.cors_origins == ["http://localhost:3000"]
    assert isinstance(create_store(config), MemoryStore)


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("READNOTE_STORE", "File")
    monkeypatch.setenv("READNOTE_STORE_PATH", str(tmp_path / "s.json"))
    monkeypatch.setenv("READNOTE_CORS_ORIGINS", "http://a.test, http://b.test")
    monkeypatch.setenv("READNOTE_LOG_LEVEL", "debug")

    config = AppConfig.from_env()

    assert config.store == "file"
    assert config.cors_origins == ["http://a.test", "http://b.test"]
    assert config.log_level == "DEBUG"
    store = create_store(config)
    assert isinstance(store, JsonFileStore)
    assert store.path == tmp_path / "s.json"


def test_postgres_store_per_student():
    store = create_store(AppConfig(store="postgres", database_url="postgresql://x/y"), student_id="s1")
    assert isinstance(store, PostgresStore)
    assert store.student_id == "s1"
    assert store.database_url == "postgresql://x/y"


def test_unknown_backend():
    with pytest.raises(ValueError):
        create_store(AppConfig(store="redis"))
