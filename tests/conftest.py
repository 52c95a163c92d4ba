"""
Pytest configuration and fixtures for test environment.

This file provides:
- Pytest configuration
- Common fixtures for test setup
- A small starter-kit project tree and matching config
"""

import pytest
import sys
import tempfile
import shutil
from pathlib import Path

import yaml

# Add parent directory to path
BASE_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BASE_DIR))


@pytest.fixture(scope="function")
def temp_dir():
    """Provide temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


def write_file(root: Path, relative: str, content) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def make_file():
    """Write a file (text or bytes) under a root, creating parents."""
    return write_file


@pytest.fixture(scope="function")
def app_tree(temp_dir):
    """Project tree with an `app` source dir and the two vendor scripts."""
    files = {
        "app/index.html": "<html><body>home</body></html>",
        "app/manifest.json": '{"name": "kit"}',
        "app/humans.txt": "humans",
        "app/.nojekyll": "",
        "app/fonts/kit.woff": b"\x00font",
        "app/images/a.png": b"X",
        "app/images/icons/b.svg": "<svg/>",
        "app/styles/main.css": "Y",
        "app/scss/main.scss": "$c: red;",
        "app/scripts/main.js": "console.log('hi');",
        "app/scripts/sw/runtime-caching.js": "// runtime caching",
        "node_modules/sw-toolbox/sw-toolbox.js": "// toolbox",
        "node_modules/apache-server-configs/dist/.htaccess": "# apache",
    }
    for relative, content in files.items():
        write_file(temp_dir, relative, content)
    return temp_dir


@pytest.fixture(scope="function")
def test_config():
    """Minimal config matching the app_tree layout."""
    return {
        "project": {"name": "kit-under-test"},
        "paths": {"app": "app", "dist": "dist", "tmp": ".tmp"},
        "precache": {
            "cacheId": "kit-under-test",
            "importScripts": ["scripts/sw/sw-toolbox.js", "scripts/sw/runtime-caching.js"],
            "staticFileGlobs": [
                "dist/images/**/*",
                "dist/scripts/**/*.js",
                "dist/styles/**/*.css",
                "dist/*.{html,json}",
            ],
            "stripPrefix": "dist/",
        },
        "pipeline": {
            "max_workers": 2,
            "commands": {},
            "copy_globs": [
                "app/**/*",
                "!app/scss",
                "node_modules/apache-server-configs/dist/.htaccess",
            ],
            "sw_scripts": [
                "node_modules/sw-toolbox/sw-toolbox.js",
                "app/scripts/sw/runtime-caching.js",
            ],
        },
        "server": {"host": "127.0.0.1", "port": 8009, "dist_port": 8010, "fixture_port": 3000},
        "logging": {"level": "INFO"},
    }


@pytest.fixture(scope="function")
def config_file(app_tree, test_config):
    """Write test_config next to app_tree and return its path."""
    path = app_tree / "config.yaml"
    with path.open("w") as handle:
        yaml.safe_dump(test_config, handle)
    return path


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    for item in items:
        # Auto-mark tests based on file location
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
