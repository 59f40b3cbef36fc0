import pytest

from hotline.config import Settings, validate_config


class TestValidateConfig:
    def test_missing_required_var_exits(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(SystemExit):
            validate_config()

    def test_present_required_var_passes(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        validate_config()


class TestSettings:
    def test_defaults(self, monkeypatch):
        for var in ("CLASSIFIER_TIMEOUT_S", "SESSION_TTL_S", "SESSION_HIGH_WATER", "LOG_LEVEL", "PORT"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings.from_env()
        assert settings.classifier_timeout_s == 8.0
        assert settings.session_ttl_s == 3600.0
        assert settings.session_high_water == 1000
        assert settings.log_level == "INFO"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CLASSIFIER_TIMEOUT_S", "2.5")
        monkeypatch.setenv("SESSION_HIGH_WATER", "50")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = Settings.from_env()
        assert settings.classifier_timeout_s == 2.5
        assert settings.session_high_water == 50
        assert settings.log_level == "DEBUG"

    def test_non_numeric_falls_back(self, monkeypatch):
        monkeypatch.setenv("SESSION_TTL_S", "an hour")
        assert Settings.from_env().session_ttl_s == 3600.0
