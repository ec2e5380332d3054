import pytest
from fastapi.testclient import TestClient

from app import db, main
from app.config import Settings, get_settings
from app.context import CurationContext


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("DATABASE_URL", "DB_URL", "ENV_PATH"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_database_url_falls_back_to_db_url(clean_env):
    clean_env.setenv("DB_URL", "sqlite:///legacy.db")
    assert Settings().database_url == "sqlite:///legacy.db"

    clean_env.setenv("DATABASE_URL", "sqlite:///current.db")
    assert Settings().database_url == "sqlite:///current.db"


def test_env_file_named_by_env_path_is_loaded(clean_env, tmp_path):
    env_file = tmp_path / "curation.env"
    env_file.write_text("DATABASE_URL=sqlite:///from-env-file.db\n")
    clean_env.setenv("ENV_PATH", str(env_file))
    # Recorded so teardown removes the value python-dotenv writes.
    clean_env.setenv("DATABASE_URL", "unset")
    clean_env.delenv("DATABASE_URL")

    assert get_settings().database_url == "sqlite:///from-env-file.db"


def test_get_engine_uses_settings(monkeypatch):
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "get_settings", lambda: Settings(database_url="sqlite://"))

    engine = db.get_engine()

    assert str(engine.url) == "sqlite://"
    assert db.get_engine() is engine
    engine.dispose()


def test_get_engine_without_url_fails_loudly(monkeypatch):
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "get_settings", lambda: Settings(database_url=None))

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        db.get_engine()


class ClosingAdapter:
    def __init__(self):
        self.closed = 0

    def close(self):
        self.closed += 1


def test_context_close_releases_adapters(engine, settings):
    store, ledger = ClosingAdapter(), ClosingAdapter()
    ctx = CurationContext(engine=engine, settings=settings, content_store=store, ledger=ledger)

    ctx.close()

    assert (store.closed, ledger.closed) == (1, 1)
    CurationContext(engine=engine, settings=settings).close()


def test_app_shutdown_closes_the_context(engine, settings, monkeypatch):
    store = ClosingAdapter()
    monkeypatch.setattr(
        main, "build_context", lambda engine_, settings_: CurationContext(engine, settings, content_store=store)
    )
    monkeypatch.setattr(main, "get_engine", lambda: engine)
    monkeypatch.setattr(main, "_context", None)

    with TestClient(main.app) as client:
        assert client.get("/readyz").json()["db"] == "ok"
        assert store.closed == 0

    assert store.closed == 1
    assert main._context is None
