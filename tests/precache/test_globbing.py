from webstarter.precache.globbing import expand_braces, resolve_glob, resolve_globs, split_negations


def test_expand_braces():
    assert expand_braces("dist/*.{html,json}") == ["dist/*.html", "dist/*.json"]
    assert expand_braces("a/{b,c/{d,e}}.js") == ["a/b.js", "a/c/d.js", "a/c/e.js"]
    assert expand_braces("no-braces/**/*") == ["no-braces/**/*"]
    assert expand_braces("broken/{a,b") == ["broken/{a,b"]


def test_split_negations():
    includes, excludes = split_negations(["app/**/*", "!app/scss", "!app/index.html", "x.txt"])
    assert includes == ["app/**/*", "x.txt"]
    assert excludes == ["app/scss", "app/index.html"]


def test_dotfiles_only_match_when_requested(app_tree):
    plain = resolve_glob(app_tree, "app/*")
    dotted = resolve_glob(app_tree, "app/*", include_dot=True)

    assert "app/.nojekyll" not in plain
    assert "app/.nojekyll" in dotted
    assert "app/index.html" in plain
    # directories are never results on their own
    assert "app/images" not in dotted


def test_double_star_spans_directories(app_tree):
    hits = resolve_glob(app_tree, "app/images/**/*")
    assert hits == {"app/images/a.png", "app/images/icons/b.svg"}


def test_directory_exclude_removes_everything_beneath(app_tree):
    paths, counts = resolve_globs(app_tree, ["app/**/*"], ["app/scripts", "app/scss"])

    assert not any(path.startswith("app/scripts/") for path in paths)
    assert not any(path.startswith("app/scss/") for path in paths)
    assert "app/styles/main.css" in paths
    assert counts["app/**/*"] > len(paths)


def test_results_are_sorted_and_counted_per_pattern(app_tree):
    paths, counts = resolve_globs(app_tree, ["app/*.{html,json}", "app/*.md"])

    assert paths == ["app/index.html", "app/manifest.json"]
    assert counts == {"app/*.{html,json}": 2, "app/*.md": 0}
