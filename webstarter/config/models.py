"""
Typed configuration models for individual build domains.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


DEFAULT_MAXIMUM_FILE_SIZE = 2 * 1024 * 1024


@dataclass(frozen=True)
class PathSettings:
    app: str
    dist: str
    tmp: str


@dataclass(frozen=True)
class PrecacheSettings:
    """
    Options for the precache manifest builder and the generated installer.

    Field names are the snake_case forms of the camelCase keys accepted in
    the `precache` config section (`cacheId`, `staticFileGlobs`, ...).
    """

    cache_id: str
    static_file_globs: Tuple[str, ...]
    strip_prefix: str = ""
    exclude_globs: Tuple[str, ...] = ()
    import_scripts: Tuple[str, ...] = ()
    replace_prefix: str = ""
    directory_index: Optional[str] = "index.html"
    navigate_fallback: Optional[str] = None
    ignore_url_parameters_matching: Tuple[str, ...] = ("^utm_",)
    maximum_file_size_bytes: int = DEFAULT_MAXIMUM_FILE_SIZE
    handle_fetch: bool = True
    manifest_json_path: Optional[str] = None


@dataclass(frozen=True)
class PipelineSettings:
    max_workers: int
    commands: Dict[str, List[str]]
    copy_globs: List[str]
    sw_scripts: List[str]


@dataclass(frozen=True)
class ServerSettings:
    host: str
    port: int
    dist_port: int
    fixture_port: int
    log_prefix: str = "DEV"


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    file: Optional[str] = None


@dataclass(frozen=True)
class ProjectSettings:
    """Everything one pipeline run needs, resolved up front."""

    name: str
    paths: PathSettings
    precache: PrecacheSettings
    pipeline: PipelineSettings
    server: ServerSettings
    logging: LoggingSettings = field(default_factory=lambda: LoggingSettings(level="INFO"))
