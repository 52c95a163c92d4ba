"""
Config Validator and Access Layer

Ensures config.yaml is the single source of truth for paths, precache
options, pipeline commands and server ports. Provides safe accessors that
validate fields exist before use and turn raw YAML into frozen settings
dataclasses.
"""

import logging
import re
import shlex
from typing import Dict, Any, Iterable, List, Tuple

from .config.models import (
    DEFAULT_MAXIMUM_FILE_SIZE,
    LoggingSettings,
    PathSettings,
    PipelineSettings,
    PrecacheSettings,
    ProjectSettings,
    ServerSettings,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_ID = "web-starter-kit"

# camelCase option -> PrecacheSettings field
PRECACHE_OPTION_FIELDS = {
    "cacheId": "cache_id",
    "staticFileGlobs": "static_file_globs",
    "stripPrefix": "strip_prefix",
    "excludeGlobs": "exclude_globs",
    "importScripts": "import_scripts",
    "replacePrefix": "replace_prefix",
    "directoryIndex": "directory_index",
    "navigateFallback": "navigate_fallback",
    "ignoreUrlParametersMatching": "ignore_url_parameters_matching",
    "maximumFileSizeToCacheInBytes": "maximum_file_size_bytes",
    "handleFetch": "handle_fetch",
    "manifestJsonPath": "manifest_json_path",
}

DELEGATED_STAGES = ("styles", "lint", "useref", "images", "scripts")


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def _string_tuple(value: Any, path: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ConfigValidationError(f"{path} must be a list of strings.")
    return tuple(value)


def parse_precache_options(
    options: Dict[str, Any],
    *,
    default_cache_id: str = DEFAULT_CACHE_ID,
) -> PrecacheSettings:
    """
    Build PrecacheSettings from a camelCase options object.

    Unknown keys are rejected so that a typo such as `staticFilesGlobs`
    fails loudly instead of producing an empty manifest.

    Raises:
        ConfigValidationError: On unknown keys or malformed values
    """
    if not isinstance(options, dict):
        raise ConfigValidationError("precache options must be a mapping.")

    unknown = sorted(set(options) - set(PRECACHE_OPTION_FIELDS))
    if unknown:
        raise ConfigValidationError(
            f"Unknown precache option(s): {', '.join(unknown)}"
        )

    globs = _string_tuple(options.get("staticFileGlobs"), "precache.staticFileGlobs")
    if not globs:
        raise ConfigValidationError("precache.staticFileGlobs must list at least one glob.")

    patterns = _string_tuple(
        options.get("ignoreUrlParametersMatching", ["^utm_"]),
        "precache.ignoreUrlParametersMatching",
    )
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ConfigValidationError(
                f"Invalid regex in precache.ignoreUrlParametersMatching '{pattern}': {exc}"
            )

    max_size = options.get("maximumFileSizeToCacheInBytes", DEFAULT_MAXIMUM_FILE_SIZE)
    try:
        max_size = int(max_size)
    except (TypeError, ValueError):
        raise ConfigValidationError("precache.maximumFileSizeToCacheInBytes must be an integer.")
    if max_size <= 0:
        raise ConfigValidationError("precache.maximumFileSizeToCacheInBytes must be greater than zero.")

    handle_fetch = options.get("handleFetch", True)
    if not isinstance(handle_fetch, bool):
        raise ConfigValidationError("precache.handleFetch must be true or false.")

    return PrecacheSettings(
        cache_id=str(options.get("cacheId") or default_cache_id),
        static_file_globs=globs,
        strip_prefix=str(options.get("stripPrefix", "")),
        exclude_globs=_string_tuple(options.get("excludeGlobs"), "precache.excludeGlobs"),
        import_scripts=_string_tuple(options.get("importScripts"), "precache.importScripts"),
        replace_prefix=str(options.get("replacePrefix", "")),
        directory_index=options.get("directoryIndex", "index.html") or None,
        navigate_fallback=options.get("navigateFallback") or None,
        ignore_url_parameters_matching=patterns,
        maximum_file_size_bytes=max_size,
        handle_fetch=handle_fetch,
        manifest_json_path=options.get("manifestJsonPath") or None,
    )


class ConfigAccessor:
    """
    Safe config accessor that validates fields exist before use.

    All build paths, globs and ports come from config; nothing downstream
    invents its own defaults for them.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize config accessor.

        Args:
            config: Configuration dictionary from load_config()
        """
        self.config = config
        self._validate_structure()
        self._validate_ports()

    def _validate_structure(self):
        """Validate that required top-level sections exist."""
        required_sections = [
            "paths",
            "precache",
        ]

        missing = [section for section in required_sections if section not in self.config]
        if missing:
            raise ConfigValidationError(
                f"Missing required config sections: {', '.join(missing)}"
            )

    def _validate_ports(self) -> None:
        server_cfg = self.config.get("server") or {}
        for key in ("port", "dist_port", "fixture_port"):
            value = server_cfg.get(key)
            if value is None:
                continue
            try:
                port = int(value)
            except (TypeError, ValueError):
                raise ConfigValidationError(f"server.{key} must be an integer.")
            if not 0 <= port <= 65535:
                raise ConfigValidationError(f"server.{key} must be between 0 and 65535.")

    def get(self, path: str, default: Any = None, required: bool = False) -> Any:
        """
        Safely get a config value by dot-separated path.

        Args:
            path: Dot-separated path (e.g., "paths.dist")
            default: Default value if path doesn't exist
            required: If True, raise error if path doesn't exist

        Returns:
            Config value or default

        Raises:
            ConfigValidationError: If required=True and path doesn't exist
        """
        parts = path.split(".")
        value = self.config

        for part in parts:
            if not isinstance(value, dict) or part not in value:
                if required:
                    raise ConfigValidationError(
                        f"Required config path not found: {path}"
                    )
                return default
            value = value[part]

        return value

    def get_project_name(self) -> str:
        return str(self.get("project.name") or DEFAULT_CACHE_ID)

    def get_path_settings(self) -> PathSettings:
        return PathSettings(
            app=str(self.get("paths.app", required=True)),
            dist=str(self.get("paths.dist", required=True)),
            tmp=str(self.get("paths.tmp", ".tmp")),
        )

    def get_precache_settings(self) -> PrecacheSettings:
        """
        Get validated precache options.

        `cacheId` falls back to `project.name`, then to the kit default.
        """
        options = self.get("precache", required=True)
        return parse_precache_options(options, default_cache_id=self.get_project_name())

    def get_pipeline_settings(self) -> PipelineSettings:
        max_workers = self.get("pipeline.max_workers", 4)
        try:
            max_workers = int(max_workers)
        except (TypeError, ValueError):
            raise ConfigValidationError("pipeline.max_workers must be an integer.")
        if max_workers <= 0:
            raise ConfigValidationError("pipeline.max_workers must be greater than zero.")

        raw_commands = self.get("pipeline.commands", {}) or {}
        commands: Dict[str, List[str]] = {}
        for stage, command in raw_commands.items():
            if stage not in DELEGATED_STAGES:
                raise ConfigValidationError(
                    f"pipeline.commands.{stage} is not a delegated stage. "
                    f"Expected one of: {', '.join(DELEGATED_STAGES)}."
                )
            if not command:
                logger.debug(f"[CONFIG] No command for stage {stage}; it will be a no-op")
                continue
            commands[stage] = list(_split_command(command, f"pipeline.commands.{stage}"))

        return PipelineSettings(
            max_workers=max_workers,
            commands=commands,
            copy_globs=list(_string_tuple(self.get("pipeline.copy_globs"), "pipeline.copy_globs")),
            sw_scripts=list(_string_tuple(self.get("pipeline.sw_scripts"), "pipeline.sw_scripts")),
        )

    def get_server_settings(self) -> ServerSettings:
        return ServerSettings(
            host=str(self.get("server.host", "127.0.0.1")),
            port=int(self.get("server.port", 8009)),
            dist_port=int(self.get("server.dist_port", 8010)),
            fixture_port=int(self.get("server.fixture_port", 3000)),
            log_prefix=str(self.get("server.log_prefix", "DEV")),
        )

    def get_logging_settings(self) -> LoggingSettings:
        return LoggingSettings(
            level=str(self.get("logging.level", "INFO")).upper(),
            file=self.get("logging.file"),
        )

    def get_project_settings(self) -> ProjectSettings:
        """
        Get every settings bundle a pipeline run needs.

        Raises:
            ConfigValidationError: If any section is invalid
        """
        return ProjectSettings(
            name=self.get_project_name(),
            paths=self.get_path_settings(),
            precache=self.get_precache_settings(),
            pipeline=self.get_pipeline_settings(),
            server=self.get_server_settings(),
            logging=self.get_logging_settings(),
        )


def _split_command(command: Any, path: str) -> Iterable[str]:
    if isinstance(command, str):
        return shlex.split(command)
    if isinstance(command, list) and all(isinstance(part, str) for part in command):
        return command
    raise ConfigValidationError(f"{path} must be a string or a list of strings.")
