"""
Production environment configuration overrides
"""

from dataclasses import dataclass
from infrastructure.config.settings import AppConfig


@dataclass
class ProductionConfig(AppConfig):
    """Production environment configuration"""

    def __post_init__(self):
        super().__post_init__()

        self.environment = "production"
        self.debug = False

        # JSON logs, warnings and up, also written to a rotating file
        self.logging.level = "WARNING"
        self.logging.enable_file_logging = True
        self.logging.log_file = "logs/prod-app.log"

        # Persistent store unless one is configured explicitly
        if self.store.backend == "memory":
            self.store.backend = "sqlite"

        # More patient circuit breaker against a remote store
        self.resilience.failure_threshold = 5
        self.resilience.recovery_timeout = 60


def get_production_config() -> ProductionConfig:
    """Get production-specific configuration"""
    return ProductionConfig.load()
