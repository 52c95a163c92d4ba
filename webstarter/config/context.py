"""
Config context for one command invocation.

Pairs the raw YAML (needed by setup_logging) with the validated accessor
and remembers where the file lives, since relative paths in config.yaml
are resolved against that directory.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

from ..utils import load_config
from ..config_validator import ConfigAccessor
from .models import ProjectSettings


@dataclass(frozen=True)
class ConfigContext:
    """Raw config, its accessor and the file it was read from."""

    data: Dict[str, Any]
    accessor: ConfigAccessor
    path: Path
    _settings: Dict[str, ProjectSettings] = field(default_factory=dict, repr=False, compare=False)

    @property
    def project_root(self) -> Path:
        return self.path.resolve().parent

    @property
    def settings(self) -> ProjectSettings:
        """Validated settings, built on first access."""
        if "project" not in self._settings:
            self._settings["project"] = self.accessor.get_project_settings()
        return self._settings["project"]


def get_config_context(config_path: Optional[str] = None) -> ConfigContext:
    """
    Load config.yaml and validate its section layout.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigValidationError: If required sections are missing
    """
    path = Path(config_path or "config.yaml")
    config = load_config(str(path))
    return ConfigContext(data=config, accessor=ConfigAccessor(config), path=path)
