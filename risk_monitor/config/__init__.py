from .models import (
    SUPPORTED_MODES,
    AccountConfig,
    HttpSettings,
    MonitorConfig,
    SchedulerSettings,
)

__all__ = [
    "AccountConfig",
    "HttpSettings",
    "MonitorConfig",
    "SUPPORTED_MODES",
    "SchedulerSettings",
]
