"""
Web Starter Kit build tooling.

Precache manifest generation, the build stage graph, and the static servers
used for previews and browser-test fixtures.
"""

__version__ = "0.1.0"
