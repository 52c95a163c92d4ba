import builtins
import hashlib

import pytest

from webstarter.precache import manifest as manifest_module
from webstarter.precache.errors import FileReadError
from webstarter.precache.manifest import (
    CACHE_BUST_PARAM,
    Manifest,
    ManifestEntry,
    build_manifest,
    fingerprint_bytes,
    served_path_for,
)


def _sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.fixture
def site(temp_dir, make_file):
    make_file(temp_dir, "app/images/a.png", b"X")
    make_file(temp_dir, "app/styles/main.css", b"Y")
    return temp_dir


GLOBS = ["app/images/**/*", "app/styles/**/*.css"]


def test_scenario_two_entries_with_stripped_prefix(site):
    build = build_manifest(site, GLOBS, strip_prefix="app/")

    assert list(build.manifest) == ["images/a.png", "styles/main.css"]
    assert build.manifest["images/a.png"].fingerprint == _sha(b"X")
    assert build.manifest["styles/main.css"].fingerprint == _sha(b"Y")
    assert build.warnings == ()


def test_identical_content_has_identical_fingerprint(temp_dir, make_file):
    make_file(temp_dir, "one/first.txt", b"same bytes")
    make_file(temp_dir, "two/deeper/second.bin", b"same bytes")

    manifest = build_manifest(temp_dir, ["**/*"]).manifest

    assert manifest["one/first.txt"].fingerprint == manifest["two/deeper/second.bin"].fingerprint


def test_one_byte_difference_changes_fingerprint():
    assert fingerprint_bytes(b"abc") != fingerprint_bytes(b"abd")
    assert fingerprint_bytes(b"abc") == _sha(b"abc")


def test_rebuilding_unchanged_tree_is_byte_identical(site):
    first = build_manifest(site, GLOBS, strip_prefix="app/").manifest
    second = build_manifest(site, GLOBS, strip_prefix="app/").manifest

    assert first == second
    assert first.to_json() == second.to_json()


def test_changing_one_file_changes_only_its_entry(site):
    before = build_manifest(site, GLOBS, strip_prefix="app/").manifest
    (site / "app/images/a.png").write_bytes(b"X2")
    after = build_manifest(site, GLOBS, strip_prefix="app/").manifest

    diff = after.diff(before)
    assert diff.changed == ("images/a.png",)
    assert diff.unchanged == ("styles/main.css",)
    assert diff.added == () and diff.removed == ()
    assert after["images/a.png"].fingerprint == _sha(b"X2")
    assert after["styles/main.css"] == before["styles/main.css"]


def test_exclude_glob_wins_over_include(site, make_file):
    make_file(site, "app/images/b.png", b"B")

    manifest = build_manifest(site, GLOBS, ["app/images/b.png"], strip_prefix="app/").manifest

    assert "images/b.png" not in manifest
    assert "images/a.png" in manifest


def test_glob_without_matches_is_a_warning(site):
    build = build_manifest(site, GLOBS + ["app/scripts/**/*.min.js"], strip_prefix="app/")

    assert len(build.manifest) == 2
    assert [warning.pattern for warning in build.warnings] == ["app/scripts/**/*.min.js"]


def test_unreadable_file_aborts_with_its_path(site, monkeypatch):
    real_open = builtins.open

    def guarded_open(path, *args, **kwargs):
        if str(path).endswith("main.css"):
            raise PermissionError(13, "Permission denied", str(path))
        return real_open(path, *args, **kwargs)

    monkeypatch.setattr(manifest_module, "open", guarded_open, raising=False)

    with pytest.raises(FileReadError) as excinfo:
        build_manifest(site, GLOBS, strip_prefix="app/")

    assert excinfo.value.path.endswith("main.css")
    assert "main.css" in str(excinfo.value)


def test_files_over_size_limit_are_skipped(site, make_file):
    make_file(site, "app/images/huge.png", b"0" * 2048)

    build = build_manifest(site, GLOBS, strip_prefix="app/", maximum_file_size_bytes=1024)

    assert "images/huge.png" not in build.manifest
    assert build.skipped_oversize == ("app/images/huge.png",)


def test_served_path_mapping():
    assert served_path_for("dist/images/a.png", "dist/") == "images/a.png"
    assert served_path_for("dist/index.html", "dist/", "/kit/") == "/kit/index.html"
    assert served_path_for("other/a.png", "dist/") == "other/a.png"
    assert served_path_for("dist\\styles\\main.css", "dist/") == "styles/main.css"


def test_manifest_orders_entries_and_rejects_duplicates():
    manifest = Manifest([ManifestEntry("b.css", "2"), ManifestEntry("a.css", "1")])
    assert list(manifest) == ["a.css", "b.css"]

    with pytest.raises(ValueError):
        Manifest([ManifestEntry("a.css", "1"), ManifestEntry("a.css", "2")])


def test_cache_key_includes_fingerprint():
    entry = ManifestEntry("images/a.png", "abc123")
    assert entry.cache_key == f"images/a.png?{CACHE_BUST_PARAM}=abc123"


def test_json_round_trip_keeps_entries(site):
    manifest = build_manifest(site, GLOBS, strip_prefix="app/").manifest
    assert Manifest.from_json(manifest.to_json()) == manifest
