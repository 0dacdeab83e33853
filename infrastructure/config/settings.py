"""
Unified configuration system for the consultation messaging core.

Centralizes store, consultation, resilience and logging settings, supports
environment-based overrides, and provides typed configuration access.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
import os
from pathlib import Path


@dataclass
class StoreConfig:
    """Document store configuration"""
    backend: str = "memory"  # "memory" or "sqlite"
    namespace: str = "SmartMentalHealthApplication"
    db_path: str = "infrastructure/database/store/documents.db"
    enable_circuit_breaker: bool = True

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """Load store config from environment variables"""
        return cls(
            backend=os.getenv("STORE_BACKEND", "memory").lower(),
            namespace=os.getenv("STORE_NAMESPACE", "SmartMentalHealthApplication"),
            db_path=os.getenv("STORE_DB_PATH", "infrastructure/database/store/documents.db"),
            enable_circuit_breaker=os.getenv("STORE_CIRCUIT_BREAKER", "true").lower() == "true"
        )


@dataclass
class ConsultationConfig:
    """Consultation and dashboard behaviour"""
    welcome_template: str = "Hello! I'm {name}. How can I help you today?"
    activity_window_days: int = 7
    default_client_name: str = "User"
    default_specialty: str = "General Mental Health"
    default_bio: str = "Licensed Mental Health Professional"
    default_rating: float = 5.0
    repair_stale_indexes: bool = True

    def format_welcome(self, therapist_name: str) -> str:
        """Render the first-contact greeting for a therapist"""
        return self.welcome_template.format(name=therapist_name)

    @property
    def activity_window_ms(self) -> int:
        return self.activity_window_days * 24 * 60 * 60 * 1000


@dataclass
class ResilienceConfig:
    """Retry and circuit breaker settings"""
    failure_threshold: int = 5
    recovery_timeout: int = 30
    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0


@dataclass
class LoggingConfig:
    """Logging and monitoring configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_file_logging: bool = False
    log_file: str = "logs/app.log"


@dataclass
class AppConfig:
    """Main application configuration"""
    store: StoreConfig = field(default_factory=StoreConfig)
    consultation: ConsultationConfig = field(default_factory=ConsultationConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Environment settings
    environment: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    @classmethod
    def load(cls) -> 'AppConfig':
        """
        Build the configuration from environment variables

        Environment-specific defaults come from the subclass being loaded
        (see ``infrastructure.config.environments``); an explicit LOG_LEVEL
        wins over them.
        """
        config = cls()

        if os.getenv("LOG_LEVEL"):
            config.logging.level = os.getenv("LOG_LEVEL", "INFO").upper()

        return config

    def __post_init__(self):
        # Store location always comes from the environment
        self.store = StoreConfig.from_env()

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if self.store.backend not in ("memory", "sqlite"):
            errors.append(f"Unknown store backend '{self.store.backend}'")

        if not self.store.namespace or "/" in self.store.namespace:
            errors.append("Store namespace must be a single non-empty path segment")

        if self.store.backend == "sqlite":
            db_dir = Path(self.store.db_path).parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)

        if self.consultation.activity_window_days <= 0:
            errors.append("activity_window_days must be positive")

        if "{name}" not in self.consultation.welcome_template:
            errors.append("welcome_template must contain a {name} placeholder")

        if self.logging.enable_file_logging:
            log_dir = Path(self.logging.log_file).parent
            if not log_dir.exists():
                log_dir.mkdir(parents=True, exist_ok=True)

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Flat summary used for startup logging"""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "store_backend": self.store.backend,
            "store_namespace": self.store.namespace,
            "log_level": self.logging.level
        }


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        from infrastructure.config.environments import get_environment_config
        _config = get_environment_config()

        # Validate configuration
        errors = _config.validate()
        if errors:
            import warnings
            for error in errors:
                warnings.warn(f"Configuration error: {error}")

    return _config


def reload_config() -> AppConfig:
    """Reload configuration (useful for testing)"""
    global _config
    _config = None
    return get_config()
