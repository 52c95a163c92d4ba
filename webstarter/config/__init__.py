"""
Settings models and the config loader.

`context` imports `config_validator`, which imports `models` from this
package, so the loader is imported on first call rather than at import time.
"""

from .models import (
    DEFAULT_MAXIMUM_FILE_SIZE,
    LoggingSettings,
    PathSettings,
    PipelineSettings,
    PrecacheSettings,
    ProjectSettings,
    ServerSettings,
)


def get_config_context(config_path=None):
    from .context import get_config_context as _load

    return _load(config_path)


__all__ = [
    "DEFAULT_MAXIMUM_FILE_SIZE",
    "LoggingSettings",
    "PathSettings",
    "PipelineSettings",
    "PrecacheSettings",
    "ProjectSettings",
    "ServerSettings",
    "get_config_context",
]
