import json
import os
import stat

import pytest

from webstarter.config_validator import parse_precache_options
from webstarter.precache import builder as builder_module
from webstarter.precache.builder import PrecacheBuilder, atomic_write_text, write_service_worker
from webstarter.precache.errors import FileReadError, ManifestWriteError
from webstarter.precache.template import PRECACHE_VERSION


def _settings(**overrides):
    options = {
        "cacheId": "kit",
        "importScripts": ["scripts/sw/sw-toolbox.js", "scripts/sw/runtime-caching.js"],
        "staticFileGlobs": ["dist/images/**/*", "dist/styles/**/*.css", "dist/*.{html,json}"],
        "stripPrefix": "dist/",
    }
    options.update(overrides)
    return parse_precache_options(options)


@pytest.fixture
def dist_tree(temp_dir, make_file):
    make_file(temp_dir, "dist/index.html", "<html></html>")
    make_file(temp_dir, "dist/images/a.png", b"X")
    make_file(temp_dir, "dist/styles/main.css", "Y")
    return temp_dir


def test_service_worker_embeds_manifest_and_import_order(dist_tree):
    output = dist_tree / "dist" / "service-worker.js"
    result = write_service_worker(output, _settings(), root=dist_tree)

    source = output.read_text(encoding="utf-8")
    toolbox = source.index('"scripts/sw/sw-toolbox.js"')
    runtime = source.index('"scripts/sw/runtime-caching.js"')
    assert source.index("importScripts(") < toolbox < runtime < source.index("var precacheConfig")

    for entry in result.manifest.entries():
        assert json.dumps([entry.served_path, entry.fingerprint]) in source
    assert json.dumps(PRECACHE_VERSION) in source
    assert '"kit"' in source
    assert "addEventListener('install'" in source
    assert "addEventListener('activate'" in source
    assert "addEventListener('fetch'" in source


def test_service_worker_output_is_reproducible(dist_tree):
    output = dist_tree / "dist" / "service-worker.js"
    write_service_worker(output, _settings(), root=dist_tree)
    first = output.read_bytes()
    write_service_worker(output, _settings(), root=dist_tree)

    assert output.read_bytes() == first


def test_generated_worker_is_not_part_of_its_own_manifest(dist_tree):
    output = dist_tree / "dist" / "service-worker.js"
    write_service_worker(output, _settings(), root=dist_tree)
    result = write_service_worker(output, _settings(), root=dist_tree)

    assert "service-worker.js" not in result.manifest


def test_handle_fetch_false_disables_interception(dist_tree):
    builder = PrecacheBuilder(_settings(handleFetch=False), dist_tree)
    source = builder.render(builder.build().manifest)
    assert "if (false) {" in source


def test_unwritable_target_raises_manifest_write_error(dist_tree):
    blocker = dist_tree / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(ManifestWriteError) as excinfo:
        write_service_worker(blocker / "service-worker.js", _settings(), root=dist_tree)

    assert "service-worker.js" in excinfo.value.path


def test_failed_replace_keeps_previous_file_and_removes_temp(dist_tree, monkeypatch):
    output = dist_tree / "dist" / "service-worker.js"
    output.write_text("previous build")

    def failing_replace(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(builder_module.os, "replace", failing_replace)
    with pytest.raises(ManifestWriteError):
        atomic_write_text(output, "new build")
    monkeypatch.undo()

    assert output.read_text() == "previous build"
    leftovers = [name for name in os.listdir(output.parent) if name.endswith(".tmp")]
    assert leftovers == []


def test_read_failure_leaves_existing_worker_untouched(dist_tree, monkeypatch):
    output = dist_tree / "dist" / "service-worker.js"
    output.write_text("previous build")

    def failing_fingerprint(path):
        raise FileReadError(f"Cannot read {path}", path=str(path))

    monkeypatch.setattr("webstarter.precache.manifest.fingerprint_file", failing_fingerprint)
    with pytest.raises(FileReadError):
        write_service_worker(output, _settings(), root=dist_tree)

    assert output.read_text() == "previous build"


def test_manifest_record_reports_changes_between_builds(dist_tree):
    output = dist_tree / "dist" / "service-worker.js"
    settings = _settings(manifestJsonPath=".precache-manifest.json")

    first = write_service_worker(output, settings, root=dist_tree)
    assert set(first.diff.added) == set(first.manifest)
    assert (dist_tree / ".precache-manifest.json").exists()

    (dist_tree / "dist/images/a.png").write_bytes(b"X2")
    second = write_service_worker(output, settings, root=dist_tree)

    assert second.diff.changed == ("images/a.png",)
    assert set(second.diff.unchanged) == {"index.html", "styles/main.css"}


def test_placeholder_named_files_are_embedded_verbatim(dist_tree, make_file):
    make_file(dist_tree, "dist/__CACHE_ID__.html", "<html>odd name</html>")
    make_file(dist_tree, "dist/__HANDLE_FETCH__.json", "{}")
    output = dist_tree / "dist" / "service-worker.js"

    write_service_worker(output, _settings(), root=dist_tree)

    source = output.read_text(encoding="utf-8")
    assert '["__CACHE_ID__.html", ' in source
    assert '["__HANDLE_FETCH__.json", ' in source
    assert '""kit"' not in source


def test_written_files_are_readable_by_the_web_server(dist_tree):
    output = dist_tree / "dist" / "service-worker.js"
    previous = os.umask(0o022)
    try:
        write_service_worker(output, _settings(manifestJsonPath="dist-manifest.json"), root=dist_tree)
    finally:
        os.umask(previous)

    assert stat.S_IMODE(output.stat().st_mode) == 0o644
    assert stat.S_IMODE((dist_tree / "dist-manifest.json").stat().st_mode) == 0o644


def test_rewrite_keeps_existing_file_mode(dist_tree):
    output = dist_tree / "dist" / "service-worker.js"
    output.write_text("previous build")
    os.chmod(output, 0o640)

    atomic_write_text(output, "new build")

    assert output.read_text() == "new build"
    assert stat.S_IMODE(output.stat().st_mode) == 0o640
