"""docqueue core module.

Shared components used by the engine and the worker:
- Configuration management
- Cached settings accessor
"""

from docqueue.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    MongoSettings,
    QueueOptions,
    SchedulerSettings,
    Settings,
    StoreBackend,
    validate_settings,
)
from docqueue.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "MongoSettings",
    "QueueOptions",
    "SchedulerSettings",
    "Settings",
    "StoreBackend",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
    "validate_settings",
]
