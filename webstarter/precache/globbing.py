"""
Glob resolution relative to a root directory.

Patterns follow the node-glob dialect used by front-end build files:
`**` spans directories, `{a,b}` expands to alternatives, and a leading `!`
marks an exclude when patterns are given as a single mixed list.
Results are POSIX-style paths relative to the root.
"""

from __future__ import annotations

import glob
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Set, Tuple


def expand_braces(pattern: str) -> List[str]:
    """
    Expand `{a,b}` alternation, including nested groups.

    >>> expand_braces("*.{html,json}")
    ['*.html', '*.json']
    """
    start = pattern.find("{")
    if start == -1:
        return [pattern]

    depth = 0
    options: List[str] = []
    current_start = start + 1
    for index in range(start, len(pattern)):
        char = pattern[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                options.append(pattern[current_start:index])
                prefix, suffix = pattern[:start], pattern[index + 1:]
                expanded: List[str] = []
                for option in options:
                    for item in expand_braces(prefix + option + suffix):
                        if item not in expanded:
                            expanded.append(item)
                return expanded
        elif char == "," and depth == 1:
            options.append(pattern[current_start:index])
            current_start = index + 1

    # Unbalanced brace: treat literally
    return [pattern]


def split_negations(patterns: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Split a mixed gulp-style list into (includes, excludes)."""
    includes: List[str] = []
    excludes: List[str] = []
    for pattern in patterns:
        if pattern.startswith("!"):
            excludes.append(pattern[1:])
        else:
            includes.append(pattern)
    return includes, excludes


def _normalize_pattern(pattern: str) -> str:
    pattern = pattern.replace("\\", "/")
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern


def resolve_glob(
    root: Path,
    pattern: str,
    *,
    include_dot: bool = False,
    expand_dirs: bool = False,
) -> Set[str]:
    """
    Return files under `root` matching `pattern`, as root-relative POSIX paths.

    With `expand_dirs`, a directory matched by the pattern stands for every
    file beneath it (used for excludes such as `!app/scripts`).
    """
    root = Path(root)
    matches: Set[str] = set()
    for expanded in expand_braces(_normalize_pattern(pattern)):
        for hit in glob.glob(expanded, root_dir=root, recursive=True, include_hidden=include_dot):
            candidate = root / hit
            if candidate.is_file():
                matches.add(Path(hit).as_posix())
            elif expand_dirs and candidate.is_dir():
                for child in candidate.rglob("*"):
                    if child.is_file() and (include_dot or not _has_hidden_part(child.relative_to(root))):
                        matches.add(child.relative_to(root).as_posix())
    return matches


def _has_hidden_part(relative: Path) -> bool:
    return any(part.startswith(".") for part in relative.parts)


def resolve_globs(
    root: Path,
    include_globs: Sequence[str],
    exclude_globs: Sequence[str] = (),
    *,
    include_dot: bool = False,
) -> Tuple[List[str], Dict[str, int]]:
    """
    Resolve include globs minus exclude globs.

    Returns:
        (sorted relative paths, {include pattern: match count before excludes})
        The per-pattern counts let callers warn about globs that matched nothing.
    """
    root = Path(root)
    included: Set[str] = set()
    counts: Dict[str, int] = {}
    for pattern in include_globs:
        hits = resolve_glob(root, pattern, include_dot=include_dot)
        counts[pattern] = len(hits)
        included |= hits

    excluded: Set[str] = set()
    for pattern in exclude_globs:
        # Excludes always see dotfiles so `!**/.DS_Store` works with dot-enabled includes
        excluded |= resolve_glob(root, pattern, include_dot=True, expand_dirs=True)

    return sorted(included - excluded), counts
