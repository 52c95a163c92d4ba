"""
Static servers: browser-test fixtures and built-site preview.
"""

from .app import create_fixture_app, create_preview_app
from .runner import StaticServer

__all__ = ["StaticServer", "create_fixture_app", "create_preview_app"]
