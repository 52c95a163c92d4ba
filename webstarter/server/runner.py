"""
Start and stop uvicorn servers from code.

A `StaticServer` owns at most one running server. Starting it again closes
the previous one first; there is no module-level server handle.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI

from ..utils import log_url_banner

logger = logging.getLogger(__name__)


class _ThreadedServer(uvicorn.Server):
    def install_signal_handlers(self) -> None:
        # Signals belong to the main thread's owner, not to a background server
        pass


class StaticServer:
    """Run a FastAPI app on a background thread."""

    def __init__(self, app: FastAPI, *, host: str = "127.0.0.1", log_prefix: str = "DEV", log_level: str = "warning"):
        self.app = app
        self.host = host
        self.log_prefix = log_prefix
        self.log_level = log_level
        self._server: Optional[_ThreadedServer] = None
        self._thread: Optional[threading.Thread] = None
        self.port: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def url(self) -> Optional[str]:
        if self.port is None:
            return None
        return f"http://{self.host}:{self.port}"

    def start(self, port: int = 0, *, timeout: float = 10.0) -> int:
        """
        Start serving and return the bound port (useful with port 0).

        Raises:
            RuntimeError: If the server does not come up within `timeout`
        """
        if self._server is not None:
            self.stop()

        config = uvicorn.Config(self.app, host=self.host, port=port, log_level=self.log_level)
        server = _ThreadedServer(config)
        thread = threading.Thread(target=server.run, name=f"{self.log_prefix.lower()}-server", daemon=True)
        thread.start()

        deadline = time.monotonic() + timeout
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                server.should_exit = True
                thread.join(timeout=1.0)
                raise RuntimeError(f"[SERVER] Could not start server on {self.host}:{port}")
            time.sleep(0.05)

        self._server = server
        self._thread = thread
        self.port = server.servers[0].sockets[0].getsockname()[1]
        logger.info("[SERVER] %s listening at %s", self.log_prefix, self.url)
        return self.port

    def stop(self, *, timeout: float = 5.0) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        logger.info("[SERVER] %s stopped", self.log_prefix)
        self._server = None
        self._thread = None
        self.port = None

    def serve_forever(self, port: int) -> None:
        """Serve in the foreground until interrupted."""
        log_url_banner(f"|   Your web app is currently available on http://{self.host}:{port}   |", logger)
        uvicorn.run(self.app, host=self.host, port=port, log_level=self.log_level)

    def __enter__(self) -> "StaticServer":
        if self._server is None:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
