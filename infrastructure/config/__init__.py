"""
Configuration infrastructure.
"""

from .settings import (
    AppConfig,
    StoreConfig,
    ConsultationConfig,
    ResilienceConfig,
    LoggingConfig,
    get_config,
    reload_config
)

__all__ = [
    'AppConfig',
    'StoreConfig',
    'ConsultationConfig',
    'ResilienceConfig',
    'LoggingConfig',
    'get_config',
    'reload_config'
]
