"""
Runtime cache installer.

Python counterpart of the generated service worker: the same manifest, the
same cache keys and the same install / activate / fetch flow, expressed as an
explicit state machine over a pluggable cache storage and an async fetcher.
Used to keep offline mirrors of a built site and to exercise the caching
policy in tests.

States:

    uninstalled -> installing -> active -> updating -> active (new version)
                              \\-> failed

Runtime failures are contained: a store that cannot be opened aborts the
install and leaves the previous version serving; an entry that cannot be
fetched or stored is logged and skipped; fetch interception never raises.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit

import httpx

from ..config.models import PrecacheSettings
from .errors import CacheStoreOpenError, CacheWriteError
from .manifest import Manifest, ManifestEntry
from .template import PRECACHE_VERSION

logger = logging.getLogger(__name__)


class InstallerState(str, Enum):
    UNINSTALLED = "uninstalled"
    INSTALLING = "installing"
    ACTIVE = "active"
    UPDATING = "updating"
    FAILED = "failed"


@dataclass(frozen=True)
class CachedResponse:
    url: str
    status_code: int
    content: bytes
    headers: Tuple[Tuple[str, str], ...] = ()

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


Fetcher = Callable[[str], Awaitable[CachedResponse]]


class CacheStore:
    """One named cache: fingerprinted key -> response."""

    async def keys(self) -> List[str]:
        raise NotImplementedError

    async def match(self, key: str) -> Optional[CachedResponse]:
        raise NotImplementedError

    async def put(self, key: str, response: CachedResponse) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError


class CacheStorage:
    """Opens named cache stores."""

    async def open(self, name: str) -> CacheStore:
        raise NotImplementedError


class InMemoryCacheStore(CacheStore):
    def __init__(self):
        self._entries: Dict[str, CachedResponse] = {}

    async def keys(self) -> List[str]:
        return sorted(self._entries)

    async def match(self, key: str) -> Optional[CachedResponse]:
        return self._entries.get(key)

    async def put(self, key: str, response: CachedResponse) -> None:
        self._entries[key] = response

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None


class InMemoryCacheStorage(CacheStorage):
    def __init__(self):
        self.stores: Dict[str, InMemoryCacheStore] = {}

    async def open(self, name: str) -> CacheStore:
        return self.stores.setdefault(name, InMemoryCacheStore())


class HttpxFetcher:
    """Fetch served paths from a site with httpx."""

    def __init__(self, base_url: str, *, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/") + "/"
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def __call__(self, url: str) -> CachedResponse:
        response = await self._client.get(url.lstrip("/"))
        return CachedResponse(
            url=str(response.url),
            status_code=response.status_code,
            content=response.content,
            headers=tuple(response.headers.items()),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


@dataclass(frozen=True)
class InstallReport:
    """What one install/update pass did to the cache store."""

    version: int
    state: InstallerState
    cached: Tuple[str, ...] = ()
    reused: Tuple[str, ...] = ()
    evicted: Tuple[str, ...] = ()
    failures: Tuple[CacheWriteError, ...] = ()
    error: Optional[CacheStoreOpenError] = None

    @property
    def installed(self) -> bool:
        return self.error is None


@dataclass
class _Snapshot:
    version: int
    manifest: Manifest
    lookup: Dict[str, ManifestEntry] = field(default_factory=dict)


class PrecacheInstaller:
    """
    Precache runtime for one client.

    `register()` must run first: it loads the import scripts in order, and
    nothing else is accepted until it has.
    """

    def __init__(
        self,
        settings: PrecacheSettings,
        storage: CacheStorage,
        fetcher: Fetcher,
        *,
        scope: str = "",
        script_loader: Optional[Callable[[str], None]] = None,
        fill_on_miss: bool = False,
    ):
        self.settings = settings
        self.storage = storage
        self.fetcher = fetcher
        self.scope = scope
        self.script_loader = script_loader
        self.fill_on_miss = fill_on_miss
        self.cache_name = f"{PRECACHE_VERSION}-{settings.cache_id}-{scope}"

        self.state = InstallerState.UNINSTALLED
        self.state_history: List[InstallerState] = [self.state]
        self.loaded_scripts: List[str] = []
        self.registered = False

        self._ignored_params = [re.compile(p) for p in settings.ignore_url_parameters_matching]
        self._active: Optional[_Snapshot] = None
        self._version = 0
        self._update_lock = asyncio.Lock()
        self._in_flight: Dict[int, int] = {}
        self._drained = asyncio.Condition()
        self._gate = asyncio.Event()
        self._gate.set()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def register(self) -> None:
        """Load import scripts in their configured order, then accept work."""
        if self.registered:
            return
        for url in self.settings.import_scripts:
            if self.script_loader is not None:
                self.script_loader(url)
            self.loaded_scripts.append(url)
            logger.debug("[INSTALLER] Imported %s", url)
        self.registered = True
        logger.info(
            "[INSTALLER] Registered cache '%s' (%d import scripts)",
            self.cache_name,
            len(self.loaded_scripts),
        )

    @property
    def manifest(self) -> Optional[Manifest]:
        return self._active.manifest if self._active else None

    @property
    def version(self) -> int:
        return self._active.version if self._active else 0

    async def update(self, manifest: Manifest) -> Optional[InstallReport]:
        """
        Install `manifest` and activate it.

        Returns None when the manifest matches the active one.
        """
        self._require_registered()
        async with self._update_lock:
            if self._active is not None and self._active.manifest == manifest:
                logger.info("[INSTALLER] Manifest unchanged; version %d stays active", self._active.version)
                return None

            previous = self._active
            self._transition(InstallerState.UPDATING if previous else InstallerState.INSTALLING)
            version = self._version + 1

            try:
                store = await self._open_store()
            except CacheStoreOpenError as exc:
                logger.error("[INSTALLER] %s", exc)
                self._transition(InstallerState.ACTIVE if previous else InstallerState.FAILED)
                return InstallReport(version=self.version, state=self.state, error=exc)

            cached, reused, failures = await self._install(store, manifest)
            evicted = await self._activate(store, manifest, version)
            report = InstallReport(
                version=version,
                state=self.state,
                cached=cached,
                reused=reused,
                evicted=evicted,
                failures=failures,
            )
            logger.info(
                "[INSTALLER] Version %d active: %d cached, %d reused, %d evicted, %d failed",
                version,
                len(cached),
                len(reused),
                len(evicted),
                len(failures),
            )
            return report

    async def _open_store(self) -> CacheStore:
        try:
            return await self.storage.open(self.cache_name)
        except Exception as exc:
            raise CacheStoreOpenError(
                f"Cannot open cache store '{self.cache_name}': {exc}",
                path=self.cache_name,
            ) from exc

    async def _install(
        self, store: CacheStore, manifest: Manifest
    ) -> Tuple[Tuple[str, ...], Tuple[str, ...], Tuple[CacheWriteError, ...]]:
        stored = set(await store.keys())
        reused = tuple(entry.served_path for entry in manifest.entries() if entry.cache_key in stored)
        pending = [entry for entry in manifest.entries() if entry.cache_key not in stored]

        results = await asyncio.gather(*(self._precache_entry(store, entry) for entry in pending))
        cached = tuple(entry.served_path for entry, error in zip(pending, results) if error is None)
        failures = tuple(error for error in results if error is not None)
        return cached, reused, failures

    async def _precache_entry(self, store: CacheStore, entry: ManifestEntry) -> Optional[CacheWriteError]:
        try:
            response = await self.fetcher(entry.served_path)
            if not response.ok:
                raise CacheWriteError(
                    f"Request for {entry.served_path} returned status {response.status_code}",
                    path=entry.served_path,
                )
            await store.put(entry.cache_key, response)
        except CacheWriteError as exc:
            logger.warning("[INSTALLER] Skipping %s: %s", entry.served_path, exc)
            return exc
        except Exception as exc:
            error = CacheWriteError(f"Cannot cache {entry.served_path}: {exc}", path=entry.served_path)
            logger.warning("[INSTALLER] Skipping %s: %s", entry.served_path, error)
            return error
        return None

    async def _activate(self, store: CacheStore, manifest: Manifest, version: int) -> Tuple[str, ...]:
        """Wait for old-version fetches to drain, evict stale keys, then switch."""
        self._gate.clear()
        try:
            if self._active is not None:
                old_version = self._active.version
                async with self._drained:
                    await self._drained.wait_for(lambda: self._in_flight.get(old_version, 0) == 0)

            expected = set(manifest.cache_keys())
            evicted = []
            for key in await store.keys():
                if key not in expected:
                    await store.delete(key)
                    evicted.append(key)

            self._version = version
            self._active = _Snapshot(
                version=version,
                manifest=manifest,
                lookup={entry.served_path.lstrip("/"): entry for entry in manifest.entries()},
            )
            self._transition(InstallerState.ACTIVE)
            return tuple(evicted)
        finally:
            self._gate.set()

    # ------------------------------------------------------------------ #
    # Fetch interception
    # ------------------------------------------------------------------ #
    async def handle_fetch(self, url: str, *, navigate: bool = False) -> Optional[CachedResponse]:
        """
        Answer a GET for `url`.

        Manifest URLs are served cache-first from the active version; other
        URLs go to the network. Returns None when neither cache nor network
        can answer.
        """
        self._require_registered()
        await self._gate.wait()
        snapshot = self._active
        if snapshot is None or not self.settings.handle_fetch:
            return await self._network(url)

        async with self._track(snapshot.version):
            entry = self._lookup(snapshot, url)
            if entry is None and navigate and self.settings.navigate_fallback:
                entry = snapshot.lookup.get(self.settings.navigate_fallback.lstrip("/"))
            if entry is None:
                return await self._network(url)

            try:
                store = await self.storage.open(self.cache_name)
                cached = await store.match(entry.cache_key)
            except Exception as exc:
                logger.warning("[INSTALLER] Cache read failed for %s: %s", entry.served_path, exc)
                store, cached = None, None
            if cached is not None:
                return cached

            logger.info("[INSTALLER] Cache miss for %s; using network", entry.served_path)
            response = await self._network(url)
            if response is not None and response.ok and self.fill_on_miss and store is not None:
                try:
                    await store.put(entry.cache_key, response)
                except Exception as exc:
                    logger.warning("[INSTALLER] Could not fill %s: %s", entry.cache_key, exc)
            return response

    def _lookup(self, snapshot: _Snapshot, url: str) -> Optional[ManifestEntry]:
        parts = urlsplit(url)
        path = unquote(parts.path).lstrip("/")
        kept = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if not any(pattern.search(key) for pattern in self._ignored_params)
        ]
        if kept:
            path = f"{path}?{urlencode(kept)}"
        entry = snapshot.lookup.get(path)
        if entry is None and self.settings.directory_index and (path == "" or path.endswith("/")):
            entry = snapshot.lookup.get(path + self.settings.directory_index)
        return entry

    async def _network(self, url: str) -> Optional[CachedResponse]:
        try:
            return await self.fetcher(url)
        except Exception as exc:
            logger.warning("[INSTALLER] Network request for %s failed: %s", url, exc)
            return None

    @asynccontextmanager
    async def _track(self, version: int):
        self._in_flight[version] = self._in_flight.get(version, 0) + 1
        try:
            yield
        finally:
            async with self._drained:
                self._in_flight[version] -= 1
                if not self._in_flight[version]:
                    del self._in_flight[version]
                self._drained.notify_all()

    def _transition(self, state: InstallerState) -> None:
        logger.debug("[INSTALLER] %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)

    def _require_registered(self) -> None:
        if not self.registered:
            raise RuntimeError("PrecacheInstaller.register() must run before install or fetch handling")
