"""
FastAPI apps for the browser-test fixture server and the dist preview.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

logger = logging.getLogger(__name__)

BROWSER_TESTS_PREFIX = "/test/browser-tests"
SERVICE_WORKER_NAMES = {"service-worker.js", "sw.js"}


class ServiceWorkerAllowedFiles(StaticFiles):
    """Static files that may register a service worker scoped to `/`."""

    async def get_response(self, path, scope):
        response = await super().get_response(path, scope)
        response.headers["Service-Worker-Allowed"] = "/"
        return response


class PreviewFiles(StaticFiles):
    """Static files with the service worker script never served from HTTP cache."""

    async def get_response(self, path, scope):
        response = await super().get_response(path, scope)
        if Path(path).name in SERVICE_WORKER_NAMES:
            response.headers["Cache-Control"] = "no-cache"
        return response


def create_fixture_app(project_root: Union[str, Path]) -> FastAPI:
    """
    Fixture server for browser tests.

    `/` redirects to the browser-test page, `/test/browser-tests/` carries the
    Service-Worker-Allowed header, and everything else in the project is
    served as-is so tests can load the project's own scripts.
    """
    project_root = Path(project_root).resolve()
    app = FastAPI(title="webstarter fixtures", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/", include_in_schema=False)
    async def redirect_to_browser_tests():
        return RedirectResponse(url=f"{BROWSER_TESTS_PREFIX}/")

    app.mount(
        BROWSER_TESTS_PREFIX,
        ServiceWorkerAllowedFiles(
            directory=project_root / "test" / "browser-tests",
            html=True,
            check_dir=False,
        ),
        name="browser-tests",
    )
    app.mount("/", StaticFiles(directory=project_root, html=True), name="project")
    return app


def create_preview_app(directory: Union[str, Path]) -> FastAPI:
    """Serve a built site (usually `dist`) from the root path."""
    directory = Path(directory).resolve()
    app = FastAPI(title="webstarter preview", docs_url=None, redoc_url=None, openapi_url=None)
    app.mount("/", PreviewFiles(directory=directory, html=True), name="site")
    return app
