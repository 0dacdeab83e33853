"""
Test environment-specific configurations
"""

from infrastructure.config.environments import get_environment_config
from infrastructure.config.environments.development import DevelopmentConfig, get_development_config
from infrastructure.config.environments.production import ProductionConfig, get_production_config
from infrastructure.config.settings import AppConfig


class TestEnvironmentConfigs:
    """Test environment-specific configuration loading"""

    def test_development_config(self, monkeypatch):
        monkeypatch.delenv("STORE_BACKEND", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        config = get_development_config()

        assert config.environment == "development"
        assert config.debug is True
        assert config.logging.level == "DEBUG"
        assert config.logging.enable_file_logging is False
        assert config.store.backend == "memory"
        assert config.resilience.failure_threshold == 3

    def test_production_config(self, monkeypatch):
        monkeypatch.delenv("STORE_BACKEND", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        config = get_production_config()

        assert config.environment == "production"
        assert config.debug is False
        assert config.logging.level == "WARNING"
        assert config.logging.log_file == "logs/prod-app.log"
        assert config.store.backend == "sqlite"
        assert config.resilience.recovery_timeout == 60

    def test_production_reads_store_from_env(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "sqlite")
        monkeypatch.setenv("STORE_NAMESPACE", "ProdApp")

        config = get_production_config()

        assert config.store.backend == "sqlite"
        assert config.store.namespace == "ProdApp"

    def test_log_level_env_wins_over_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "error")

        assert get_production_config().logging.level == "ERROR"
        assert get_development_config().logging.level == "ERROR"

    def test_environment_selection_development(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")
        assert isinstance(get_environment_config(), DevelopmentConfig)

    def test_environment_selection_production(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        config = get_environment_config()

        assert isinstance(config, ProductionConfig)
        assert config.logging.level == "WARNING"

    def test_environment_selection_other(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "staging")
        config = get_environment_config()

        assert type(config) is AppConfig
        assert config.environment == "staging"
