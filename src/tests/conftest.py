import pytest

from engine.settings import Settings, SettingsStore


@pytest.fixture
def sqlite_settings(tmp_path):
    return Settings(dbType="sql", mysql={"dialect": "sqlite", "dbName": str(tmp_path / "report.db")})


@pytest.fixture
def settings_store(tmp_path, sqlite_settings):
    store = SettingsStore(str(tmp_path / "config.yml"))
    store.save(sqlite_settings)
    return store
