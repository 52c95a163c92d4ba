"""
Error taxonomy for the precache builder and the runtime installer.
"""

from typing import Optional


class PrecacheError(Exception):
    """Base class for precache build and runtime failures."""

    def __init__(self, message: str, *, path: Optional[str] = None, pattern: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.pattern = pattern


class GlobResolutionError(PrecacheError):
    """An include glob matched no files. Reported as a warning, never raised by the builder."""


class FileReadError(PrecacheError):
    """A matched file could not be read. Aborts the build."""


class ManifestWriteError(PrecacheError):
    """The service worker or manifest file could not be written. Aborts the build."""


class CacheStoreOpenError(PrecacheError):
    """The runtime could not open its cache store. Aborts the install."""


class CacheWriteError(PrecacheError):
    """A single entry could not be fetched or stored during install."""
