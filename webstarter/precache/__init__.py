"""
Static asset precaching: manifest building, service worker generation and
the runtime installer.
"""

from .builder import PrecacheBuilder, PrecacheResult, atomic_write_text, write_service_worker
from .errors import (
    CacheStoreOpenError,
    CacheWriteError,
    FileReadError,
    GlobResolutionError,
    ManifestWriteError,
    PrecacheError,
)
from .installer import (
    CachedResponse,
    HttpxFetcher,
    InMemoryCacheStorage,
    InstallReport,
    InstallerState,
    PrecacheInstaller,
)
from .manifest import Manifest, ManifestEntry, build_manifest, fingerprint_bytes

__all__ = [
    "CachedResponse",
    "CacheStoreOpenError",
    "CacheWriteError",
    "FileReadError",
    "GlobResolutionError",
    "HttpxFetcher",
    "InMemoryCacheStorage",
    "InstallReport",
    "InstallerState",
    "Manifest",
    "ManifestEntry",
    "ManifestWriteError",
    "PrecacheBuilder",
    "PrecacheError",
    "PrecacheInstaller",
    "PrecacheResult",
    "atomic_write_text",
    "build_manifest",
    "fingerprint_bytes",
    "write_service_worker",
]
