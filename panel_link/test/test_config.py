"""Configuration loading and startup checks."""

import pytest

from panel_link.config import Config


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("ENVIRONMENT", "PANEL_LINK_ENV", "PANEL_LINK_ENCRYPTION_KEY", "ENCRYPTION_KEY",
                 "PANEL_LINK_API_TOKEN", "PANEL_LINK_VERIFICATION_MODE", "PTERODACTYL_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PANEL_LINK_AUTH_ENABLED", "true")
    return monkeypatch


def test_defaults(clean_env):
    cfg = Config()
    assert cfg.ENVIRONMENT == "development"
    assert cfg.is_development()
    assert cfg.UPDATE_INTERVAL == 30
    assert cfg.SUBSCRIPTION_TTL == 3600
    assert cfg.MAX_POLL_FAILURES == 3
    assert cfg.RATE_LIMIT_MAX == 10
    assert cfg.RATE_LIMIT_WINDOW == 60
    assert cfg.effective_verification_mode == "file"


def test_database_path_from_env(clean_env, tmp_path):
    clean_env.setenv("PANEL_LINK_DATABASE_PATH", str(tmp_path / "links.db"))
    assert Config().DATABASE_PATH == tmp_path / "links.db"


def test_panel_url_trailing_slash_stripped(clean_env):
    clean_env.setenv("PTERODACTYL_URL", "https://panel.example.com/")
    assert Config().PANEL_URL == "https://panel.example.com"


def test_unknown_verification_mode_falls_back_to_file(clean_env):
    clean_env.setenv("PANEL_LINK_VERIFICATION_MODE", "yolo")
    cfg = Config()
    assert cfg.effective_verification_mode == "file"
    assert any("falling back" in w for w in cfg.validate())


@pytest.mark.parametrize("environment", ["staging", "production"])
def test_non_development_requires_secret(clean_env, environment):
    clean_env.setenv("ENVIRONMENT", environment)
    clean_env.setenv("PANEL_LINK_API_TOKEN", "bot-token")
    with pytest.raises(RuntimeError):
        Config().check_startup()

    clean_env.setenv("PANEL_LINK_ENCRYPTION_KEY", "a-real-secret")
    Config().check_startup()


def test_production_refuses_shape_mode(clean_env):
    clean_env.setenv("ENVIRONMENT", "production")
    clean_env.setenv("PANEL_LINK_ENCRYPTION_KEY", "a-real-secret")
    clean_env.setenv("PANEL_LINK_API_TOKEN", "bot-token")
    clean_env.setenv("PANEL_LINK_VERIFICATION_MODE", "shape")
    with pytest.raises(RuntimeError):
        Config().check_startup()


def test_production_requires_bot_token(clean_env):
    clean_env.setenv("ENVIRONMENT", "production")
    clean_env.setenv("PANEL_LINK_ENCRYPTION_KEY", "a-real-secret")
    with pytest.raises(RuntimeError):
        Config().check_startup()


def test_json_log_records_carry_context():
    import json
    import logging

    from panel_link.logging_config import JSONFormatter

    record = logging.LogRecord("panel_link.test", logging.INFO, __file__, 1,
                               "Verified %s", ("u1",), None)
    record.user_id = "u1"
    record.resource_id = "abc123"

    data = json.loads(JSONFormatter().format(record))

    assert data["message"] == "Verified u1"
    assert data["level"] == "INFO"
    assert data["user_id"] == "u1"
    assert data["resource_id"] == "abc123"
    assert "subscription_id" not in data
