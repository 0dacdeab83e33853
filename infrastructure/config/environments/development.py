"""
Development environment configuration overrides
"""

from dataclasses import dataclass
from infrastructure.config.settings import AppConfig


@dataclass
class DevelopmentConfig(AppConfig):
    """Development environment configuration"""

    def __post_init__(self):
        super().__post_init__()

        self.environment = "development"
        self.debug = True

        # Verbose, human-readable console output; no log file
        self.logging.level = "DEBUG"
        self.logging.enable_file_logging = False

        # Fail fast and recover quickly against a local store
        self.resilience.failure_threshold = 3
        self.resilience.recovery_timeout = 5


def get_development_config() -> DevelopmentConfig:
    """Get development-specific configuration"""
    return DevelopmentConfig.load()
