"""
Precache manifest: served URL -> content fingerprint.

A manifest is built fresh from the file tree on every build and never
merged with a previous one. Entries are ordered by served path so that two
builds of the same tree serialize to identical bytes.
"""

from __future__ import annotations

import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import FileReadError, GlobResolutionError
from .globbing import resolve_globs

logger = logging.getLogger(__name__)

CACHE_BUST_PARAM = "_precache"
READ_CHUNK_SIZE = 64 * 1024


def fingerprint_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fingerprint_file(path: Path) -> Tuple[str, int]:
    """
    Hash a file's full contents.

    Returns:
        (hex digest, size in bytes)

    Raises:
        FileReadError: If the file cannot be opened or read
    """
    digest = hashlib.sha256()
    size = 0
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(READ_CHUNK_SIZE), b""):
                digest.update(chunk)
                size += len(chunk)
    except OSError as exc:
        raise FileReadError(f"Cannot read {path}: {exc}", path=str(path)) from exc
    return digest.hexdigest(), size


def served_path_for(relative_path: str, strip_prefix: str = "", replace_prefix: str = "") -> str:
    """Map a root-relative file path to the URL path it is served from."""
    path = relative_path.replace("\\", "/")
    if strip_prefix and path.startswith(strip_prefix):
        path = path[len(strip_prefix):]
    return replace_prefix + path


@dataclass(frozen=True)
class ManifestEntry:
    served_path: str
    fingerprint: str
    size: int = 0

    @property
    def cache_key(self) -> str:
        """Fingerprinted URL; new content gets a new key instead of overwriting."""
        separator = "&" if "?" in self.served_path else "?"
        return f"{self.served_path}{separator}{CACHE_BUST_PARAM}={self.fingerprint}"


@dataclass(frozen=True)
class ManifestDiff:
    added: Tuple[str, ...]
    removed: Tuple[str, ...]
    changed: Tuple[str, ...]
    unchanged: Tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


class Manifest(Mapping[str, ManifestEntry]):
    """Immutable, served-path-ordered mapping of manifest entries."""

    def __init__(self, entries: Iterable[ManifestEntry] = ()):
        ordered: Dict[str, ManifestEntry] = {}
        for entry in sorted(entries, key=lambda item: item.served_path):
            if entry.served_path in ordered:
                raise ValueError(f"Duplicate served path in manifest: {entry.served_path}")
            ordered[entry.served_path] = entry
        self._entries = ordered

    def __getitem__(self, served_path: str) -> ManifestEntry:
        return self._entries[served_path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return list(self.entries()) == list(other.entries())

    def __hash__(self) -> int:
        return hash(tuple(self.entries()))

    def __repr__(self) -> str:
        return f"Manifest({len(self)} entries)"

    def entries(self) -> List[ManifestEntry]:
        return list(self._entries.values())

    def cache_keys(self) -> List[str]:
        return [entry.cache_key for entry in self._entries.values()]

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self._entries.values())

    def diff(self, previous: Optional["Manifest"]) -> ManifestDiff:
        """Compare against the manifest of a previous build."""
        previous = previous or Manifest()
        added, changed, unchanged = [], [], []
        for served_path, entry in self._entries.items():
            old = previous.get(served_path)
            if old is None:
                added.append(served_path)
            elif old.fingerprint != entry.fingerprint:
                changed.append(served_path)
            else:
                unchanged.append(served_path)
        removed = [path for path in previous if path not in self._entries]
        return ManifestDiff(tuple(added), tuple(removed), tuple(changed), tuple(unchanged))

    def as_pairs(self) -> List[List[str]]:
        return [[entry.served_path, entry.fingerprint] for entry in self._entries.values()]

    def to_json(self) -> str:
        """Canonical JSON; identical manifests produce identical text."""
        payload = {
            "version": 1,
            "entries": [
                {"url": entry.served_path, "revision": entry.fingerprint, "size": entry.size}
                for entry in self._entries.values()
            ],
        }
        return json.dumps(payload, indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_json(cls, text: str) -> "Manifest":
        payload = json.loads(text)
        return cls(
            ManifestEntry(item["url"], item["revision"], int(item.get("size", 0)))
            for item in payload.get("entries", [])
        )


@dataclass(frozen=True)
class ManifestBuild:
    """Result of scanning a tree: the manifest plus non-fatal warnings."""

    manifest: Manifest
    warnings: Tuple[GlobResolutionError, ...]
    skipped_oversize: Tuple[str, ...] = ()


def build_manifest(
    root: Path,
    include_globs: Sequence[str],
    exclude_globs: Sequence[str] = (),
    *,
    strip_prefix: str = "",
    replace_prefix: str = "",
    maximum_file_size_bytes: Optional[int] = None,
    max_workers: int = 8,
) -> ManifestBuild:
    """
    Scan `root` and fingerprint every file selected by the globs.

    Files are hashed on a thread pool; the manifest is assembled only after
    every hash has completed.

    Raises:
        FileReadError: If any selected file cannot be read
    """
    root = Path(root)
    relative_paths, counts = resolve_globs(root, include_globs, exclude_globs)

    warnings: List[GlobResolutionError] = []
    for pattern, count in counts.items():
        if count == 0:
            warning = GlobResolutionError(
                f"Glob '{pattern}' did not match any files under {root}",
                pattern=pattern,
            )
            logger.warning("[PRECACHE] %s", warning)
            warnings.append(warning)

    skipped: List[str] = []
    if maximum_file_size_bytes is not None:
        kept = []
        for relative in relative_paths:
            try:
                size = (root / relative).stat().st_size
            except OSError as exc:
                raise FileReadError(f"Cannot stat {root / relative}: {exc}", path=str(root / relative)) from exc
            if size > maximum_file_size_bytes:
                logger.warning(
                    "[PRECACHE] Skipping %s (%d bytes > maximum %d bytes)",
                    relative,
                    size,
                    maximum_file_size_bytes,
                )
                skipped.append(relative)
            else:
                kept.append(relative)
        relative_paths = kept

    workers = max(1, min(max_workers, len(relative_paths) or 1))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        # map() re-raises the first FileReadError in submission order
        hashes = list(executor.map(lambda rel: fingerprint_file(root / rel), relative_paths))

    entries = []
    for relative, (fingerprint, size) in zip(relative_paths, hashes):
        served_path = served_path_for(relative, strip_prefix, replace_prefix)
        entries.append(ManifestEntry(served_path, fingerprint, size))

    manifest = Manifest(entries)
    logger.info(
        "[PRECACHE] Manifest built: %d entries, %d bytes from %s",
        len(manifest),
        manifest.total_size,
        root,
    )
    return ManifestBuild(manifest=manifest, warnings=tuple(warnings), skipped_oversize=tuple(skipped))
