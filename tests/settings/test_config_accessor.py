from pathlib import Path

import pytest
import yaml

from webstarter.config import get_config_context
from webstarter.config_validator import ConfigAccessor, ConfigValidationError, parse_precache_options
from webstarter.config.models import DEFAULT_MAXIMUM_FILE_SIZE
from webstarter.utils import format_bytes, load_config


def _write_config(tmp_path: Path, payload) -> Path:
    config_path = tmp_path / "config.yaml"
    with config_path.open("w") as handle:
        yaml.safe_dump(payload, handle)
    return config_path


def test_load_config_expands_environment(tmp_path: Path, monkeypatch, test_config):
    monkeypatch.setenv("KIT_CACHE_ID", "from-env")
    test_config["precache"]["cacheId"] = "${KIT_CACHE_ID}"
    config_path = _write_config(tmp_path, test_config)

    config = load_config(str(config_path))

    assert config["precache"]["cacheId"] == "from-env"


def test_load_config_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_config_context_builds_project_settings(tmp_path: Path, test_config):
    context = get_config_context(str(_write_config(tmp_path, test_config)))
    settings = context.accessor.get_project_settings()

    assert settings.name == "kit-under-test"
    assert settings.paths.dist == "dist"
    assert settings.precache.cache_id == "kit-under-test"
    assert settings.precache.import_scripts == (
        "scripts/sw/sw-toolbox.js",
        "scripts/sw/runtime-caching.js",
    )
    assert settings.pipeline.max_workers == 2
    assert settings.server.fixture_port == 3000


def test_precache_defaults():
    settings = parse_precache_options({"staticFileGlobs": ["dist/**/*"]}, default_cache_id="my-app")

    assert settings.cache_id == "my-app"
    assert settings.strip_prefix == ""
    assert settings.directory_index == "index.html"
    assert settings.ignore_url_parameters_matching == ("^utm_",)
    assert settings.maximum_file_size_bytes == DEFAULT_MAXIMUM_FILE_SIZE
    assert settings.handle_fetch is True


@pytest.mark.parametrize(
    "options, message",
    [
        ({"staticFilesGlobs": ["dist/**/*"]}, "Unknown precache option"),
        ({"staticFileGlobs": []}, "at least one glob"),
        ({"staticFileGlobs": ["a"], "ignoreUrlParametersMatching": ["("]}, "Invalid regex"),
        ({"staticFileGlobs": ["a"], "maximumFileSizeToCacheInBytes": 0}, "greater than zero"),
        ({"staticFileGlobs": ["a"], "handleFetch": "yes"}, "true or false"),
        ({"staticFileGlobs": ["a"], "importScripts": [1, 2]}, "list of strings"),
    ],
)
def test_precache_option_errors(options, message):
    with pytest.raises(ConfigValidationError, match=message):
        parse_precache_options(options)


def test_missing_sections_are_rejected():
    with pytest.raises(ConfigValidationError, match="paths, precache"):
        ConfigAccessor({"server": {}})


def test_ports_are_validated(test_config):
    test_config["server"]["port"] = 70000
    with pytest.raises(ConfigValidationError, match="server.port"):
        ConfigAccessor(test_config)


def test_pipeline_commands(test_config):
    test_config["pipeline"]["commands"] = {"styles": "sass app/scss/main.scss app/styles/main.css", "lint": ""}
    settings = ConfigAccessor(test_config).get_pipeline_settings()

    assert settings.commands == {"styles": ["sass", "app/scss/main.scss", "app/styles/main.css"]}

    test_config["pipeline"]["commands"] = {"scripts": ["babel", "app/scripts"]}
    assert ConfigAccessor(test_config).get_pipeline_settings().commands == {"scripts": ["babel", "app/scripts"]}

    test_config["pipeline"]["commands"] = {"deploy": "rsync"}
    with pytest.raises(ConfigValidationError, match="not a delegated stage"):
        ConfigAccessor(test_config).get_pipeline_settings()


def test_dot_path_get(test_config):
    accessor = ConfigAccessor(test_config)

    assert accessor.get("paths.app") == "app"
    assert accessor.get("paths.missing", "fallback") == "fallback"
    with pytest.raises(ConfigValidationError):
        accessor.get("paths.missing", required=True)


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(1000) == "1 kB"
    assert format_bytes(1536) == "1.5 kB"
    assert format_bytes(2_500_000) == "2.5 MB"
