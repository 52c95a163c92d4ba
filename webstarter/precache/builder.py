"""
Precache builder: scan, fingerprint, render and atomically write.

Typical usage:

    settings = parse_precache_options({
        "cacheId": "web-starter-kit",
        "staticFileGlobs": ["dist/images/**/*", "dist/*.{html,json}"],
        "stripPrefix": "dist/",
    })
    result = PrecacheBuilder(settings, root=".").write("dist/service-worker.js")
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from ..config.models import PrecacheSettings
from .errors import GlobResolutionError, ManifestWriteError
from .manifest import Manifest, ManifestBuild, ManifestDiff, build_manifest
from .template import render_service_worker

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _output_mode(path: Path) -> int:
    """Mode of the file being replaced, or the umask default for a new one."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def atomic_write_text(path: Path, text: str) -> None:
    """
    Write `text` to `path` through a temporary sibling file.

    The target is replaced only after the full payload is on disk, so readers
    never observe a truncated file.

    Raises:
        ManifestWriteError: If the directory or file cannot be written. The
            temporary file is removed before raising.
    """
    path = Path(path)
    tmp_name: Optional[str] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="\n",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            tmp_name = handle.name
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, _output_mode(path))
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise ManifestWriteError(f"Cannot write {path}: {exc}", path=str(path)) from exc
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass


@dataclass(frozen=True)
class PrecacheResult:
    """Immutable outcome of one service worker generation."""

    output_path: Path
    manifest: Manifest
    warnings: Tuple[GlobResolutionError, ...]
    skipped_oversize: Tuple[str, ...]
    diff: Optional[ManifestDiff] = None
    manifest_json_path: Optional[Path] = None


class PrecacheBuilder:
    """Builds the manifest for a tree and writes the service worker for it."""

    def __init__(self, settings: PrecacheSettings, root: PathLike = ".", *, max_workers: int = 8):
        self.settings = settings
        self.root = Path(root)
        self.max_workers = max_workers

    def build(self) -> ManifestBuild:
        """Scan and fingerprint without writing anything."""
        return build_manifest(
            self.root,
            self.settings.static_file_globs,
            self.settings.exclude_globs,
            strip_prefix=self.settings.strip_prefix,
            replace_prefix=self.settings.replace_prefix,
            maximum_file_size_bytes=self.settings.maximum_file_size_bytes,
            max_workers=self.max_workers,
        )

    def render(self, manifest: Manifest) -> str:
        return render_service_worker(self.settings, manifest)

    def write(self, output_path: PathLike) -> PrecacheResult:
        """
        Build the manifest and write the service worker to `output_path`.

        When `manifest_json_path` is configured, the previous JSON manifest
        (if any) is diffed against the new one and then replaced.

        Raises:
            FileReadError: If a matched file cannot be read
            ManifestWriteError: If an output file cannot be written
        """
        output_path = Path(output_path)
        build = self.build()

        json_path = self._manifest_json_path()
        diff = None
        if json_path is not None:
            diff = build.manifest.diff(self._load_previous(json_path))

        # Write the manifest record last so a failed script write leaves the
        # previous record in place for the next diff.
        atomic_write_text(output_path, self.render(build.manifest))
        if json_path is not None:
            atomic_write_text(json_path, build.manifest.to_json())

        if diff is not None:
            logger.info(
                "[PRECACHE] Changes since last build: %d added, %d changed, %d removed",
                len(diff.added),
                len(diff.changed),
                len(diff.removed),
            )
        logger.info(
            "[PRECACHE] Wrote %s (%d entries, cache id '%s')",
            output_path,
            len(build.manifest),
            self.settings.cache_id,
        )
        return PrecacheResult(
            output_path=output_path,
            manifest=build.manifest,
            warnings=build.warnings,
            skipped_oversize=build.skipped_oversize,
            diff=diff,
            manifest_json_path=json_path,
        )

    def _manifest_json_path(self) -> Optional[Path]:
        if not self.settings.manifest_json_path:
            return None
        path = Path(self.settings.manifest_json_path)
        return path if path.is_absolute() else self.root / path

    def _load_previous(self, json_path: Path) -> Optional[Manifest]:
        if not json_path.exists():
            return None
        try:
            return Manifest.from_json(json_path.read_text(encoding="utf-8"))
        except (ValueError, KeyError, OSError) as exc:
            logger.warning("[PRECACHE] Ignoring unreadable previous manifest %s: %s", json_path, exc)
            return None


def write_service_worker(
    output_path: PathLike,
    settings: PrecacheSettings,
    *,
    root: PathLike = ".",
    max_workers: int = 8,
) -> PrecacheResult:
    """One-call form: build, render and write the service worker."""
    return PrecacheBuilder(settings, root, max_workers=max_workers).write(output_path)
