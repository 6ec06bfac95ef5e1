import pytest

from waste_rewards.core.config import Settings, get_mongodb_config

ENV_VARS = (
    "APP_ID",
    "STORE_BACKEND",
    "MONGO_URI",
    "MONGODB_URL",
    "MONGODB_URI",
    "MONGODB_NAME",
    "REDIS_URL",
    "SECRET_KEY",
    "TRANSACTION_MAX_ATTEMPTS",
    "IMAGE_MAX_WIDTH",
    "CORS_ORIGINS",
    "GEMINI_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env()
    assert settings.app_id == "local-app"
    assert settings.store_backend == "mongo"
    assert settings.mongo_uri == "mongodb://localhost:27017"
    assert settings.image_max_width == 800
    assert settings.gemini_api_key is None
    assert settings.cors_origins == ["*"]


def test_values_from_environment(monkeypatch):
    monkeypatch.setenv("APP_ID", "city-pilot")
    monkeypatch.setenv("STORE_BACKEND", " Memory ")
    monkeypatch.setenv("TRANSACTION_MAX_ATTEMPTS", "0")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
    settings = Settings.from_env()
    assert settings.app_id == "city-pilot"
    assert settings.store_backend == "memory"
    assert settings.transaction_max_attempts == 1
    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_invalid_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("IMAGE_MAX_WIDTH", "wide")
    assert Settings.from_env().image_max_width == 800


def test_unknown_backend_falls_back_to_mongo(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    assert Settings.from_env().store_backend == "mongo"


def test_mongo_uri_precedence(monkeypatch):
    monkeypatch.setenv("MONGODB_URI", "mongodb://third")
    monkeypatch.setenv("MONGODB_URL", "mongodb://second")
    assert get_mongodb_config()[0] == "mongodb://second"
    monkeypatch.setenv("MONGO_URI", "mongodb://first")
    assert get_mongodb_config()[0] == "mongodb://first"


def test_describe_hides_credentials(monkeypatch):
    monkeypatch.setenv("MONGO_URI", "mongodb+srv://user:pw@cluster.example/")
    text = Settings.from_env().describe()
    assert "pw" not in text
    assert "cluster.example" in text
