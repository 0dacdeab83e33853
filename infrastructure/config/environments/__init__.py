"""
Environment-specific configurations
"""

import os
from infrastructure.config.settings import AppConfig


def get_environment_config() -> AppConfig:
    """
    Get configuration based on the current environment

    This is what ``get_config()`` loads. The environment is read from APP_ENV:
    - 'development' (default) -> DevelopmentConfig
    - 'production' -> ProductionConfig
    - anything else -> AppConfig (base configuration)
    """
    env = os.getenv("APP_ENV", "development").lower()

    if env == "development":
        from .development import get_development_config
        return get_development_config()
    if env == "production":
        from .production import get_production_config
        return get_production_config()
    return AppConfig.load()
