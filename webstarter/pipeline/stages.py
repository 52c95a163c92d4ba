"""
Build stages for the starter kit and the default stage graph.

Only file plumbing and precaching run in-process. Styles, lint, HTML asset
rewriting and image optimisation are external tools; their stages run the
command configured under `pipeline.commands` and are no-ops when none is set.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from ..config.models import ProjectSettings
from ..precache import PrecacheBuilder
from ..precache.globbing import resolve_glob, split_negations
from ..utils import format_bytes
from .graph import Pipeline, PipelineGraphError, Stage, StageFailedError, StageOutput

logger = logging.getLogger(__name__)

SERVICE_WORKER_FILENAME = "service-worker.js"
SW_SCRIPTS_DIR = "scripts/sw"

DEFAULT_COPY_GLOBS = [
    "app/**/*",
    "!app/index.html",
    "!app/scripts",
    "!app/images",
    "!app/scss",
    "!app/styles",
    "node_modules/apache-server-configs/dist/.htaccess",
]

DEFAULT_SW_SCRIPTS = [
    "node_modules/sw-toolbox/sw-toolbox.js",
    "app/scripts/sw/runtime-caching.js",
]


def _tree_size(paths: Sequence[Path]) -> int:
    total = 0
    for path in paths:
        if path.is_file():
            total += path.stat().st_size
        elif path.is_dir():
            total += sum(child.stat().st_size for child in path.rglob("*") if child.is_file())
    return total


def glob_base(pattern: str) -> str:
    """
    Leading directory of a glob that contains no wildcard.

    >>> glob_base("app/fonts/**/*")
    'app/fonts'
    """
    base: List[str] = []
    parts = pattern.replace("\\", "/").split("/")
    for part in parts[:-1]:
        if any(char in part for char in "*?[{"):
            break
        base.append(part)
    return "/".join(base)


def clean_outputs(project_root: Path, dist: str, tmp: str) -> StageOutput:
    """Remove the temp dir and everything in dist except `dist/.git`."""
    removed = 0
    tmp_dir = project_root / tmp
    if tmp_dir.exists():
        shutil.rmtree(tmp_dir)
        removed += 1

    dist_dir = project_root / dist
    if dist_dir.exists():
        for child in dist_dir.iterdir():
            if child.name == ".git":
                continue
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
            removed += 1
    return StageOutput(note=f"removed {removed} entries")


def copy_globs(project_root: Path, patterns: Sequence[str], dest: Path) -> StageOutput:
    """
    Copy files selected by a gulp-style glob list (`!` excludes, dotfiles
    included), keeping each file's path relative to its glob base.
    """
    includes, excludes = split_negations(patterns)
    excluded = set()
    for pattern in excludes:
        excluded |= resolve_glob(project_root, pattern, include_dot=True, expand_dirs=True)

    copied: List[Path] = []
    seen = set()
    for pattern in includes:
        base = glob_base(pattern)
        for relative in sorted(resolve_glob(project_root, pattern, include_dot=True)):
            if relative in excluded or relative in seen:
                continue
            seen.add(relative)
            target_relative = relative[len(base):].lstrip("/") if base else relative
            target = dest / target_relative
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                shutil.copy2(project_root / relative, target)
            except OSError as exc:
                raise StageFailedError("copy", f"Cannot copy {relative}: {exc}", path=relative) from exc
            copied.append(target)

    size = _tree_size(copied)
    return StageOutput(bytes_written=size, note=f"{len(copied)} files, {format_bytes(size)}")


def copy_sw_scripts(project_root: Path, scripts: Sequence[str], dest: Path) -> StageOutput:
    """Copy the service worker import scripts next to the generated worker."""
    dest.mkdir(parents=True, exist_ok=True)
    copied: List[Path] = []
    for script in scripts:
        source = project_root / script
        if not source.is_file():
            raise StageFailedError("copy-sw-scripts", f"Import script not found: {script}", path=script)
        target = dest / source.name
        shutil.copy2(source, target)
        copied.append(target)
    size = _tree_size(copied)
    return StageOutput(bytes_written=size, note=f"{len(copied)} scripts")


def generate_service_worker(project_root: Path, settings: ProjectSettings, max_workers: int) -> StageOutput:
    output_path = project_root / settings.paths.dist / SERVICE_WORKER_FILENAME
    builder = PrecacheBuilder(settings.precache, project_root, max_workers=max_workers)
    result = builder.write(output_path)
    return StageOutput(
        bytes_written=output_path.stat().st_size,
        artifact=result,
        note=f"{len(result.manifest)} precached files, {format_bytes(result.manifest.total_size)}",
    )


def run_external(stage: str, command: Optional[Sequence[str]], project_root: Path) -> StageOutput:
    """Run a delegated tool; a non-zero exit fails the stage."""
    if not command:
        logger.info("[PIPELINE] No command configured for '%s'; skipping", stage)
        return StageOutput(note="no command configured")

    logger.info("[PIPELINE] %s: %s", stage, " ".join(command))
    try:
        completed = subprocess.run(
            list(command),
            cwd=project_root,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise StageFailedError(stage, f"Cannot run {command[0]}: {exc}", path=command[0]) from exc

    for line in completed.stdout.splitlines():
        logger.debug("[PIPELINE] %s | %s", stage, line)
    if completed.returncode != 0:
        tail = "\n".join(completed.stderr.strip().splitlines()[-10:])
        raise StageFailedError(stage, f"{command[0]} exited with status {completed.returncode}: {tail}")
    return StageOutput(note=f"{command[0]} ok")


DELEGATED_DESCRIPTIONS = {
    "styles": "Compile and prefix stylesheets",
    "lint": "Lint JavaScript",
    "useref": "Rewrite and minify HTML assets",
    "images": "Optimize images",
    "scripts": "Transpile and concatenate scripts",
}


def delegated_stage(
    name: str,
    command: Optional[Sequence[str]],
    project_root: Path,
    deps: Sequence[str] = (),
    inputs: Sequence[str] = (),
    outputs: Sequence[str] = (),
    description: str = "",
) -> Stage:
    return Stage(
        name=name,
        action=lambda: run_external(name, command, project_root),
        deps=tuple(deps),
        inputs=tuple(inputs),
        outputs=tuple(outputs),
        description=description or DELEGATED_DESCRIPTIONS.get(name, ""),
    )


def delegated_pipeline(settings: ProjectSettings, project_root: Path, names: Sequence[str]) -> Pipeline:
    """
    Independent delegated stages run side by side, e.g. `styles` and
    `scripts` before serving the app. `scripts` is not part of the default
    build.
    """
    unknown = [name for name in names if name not in DELEGATED_DESCRIPTIONS]
    if unknown:
        raise PipelineGraphError(f"Not a delegated stage: {', '.join(unknown)}")
    commands = settings.pipeline.commands
    return Pipeline(
        [delegated_stage(name, commands.get(name), Path(project_root)) for name in names],
        max_workers=settings.pipeline.max_workers,
    )


def build_default_pipeline(settings: ProjectSettings, project_root: Path) -> Pipeline:
    """
    clean -> styles -> (lint | useref | images) -> copy -> copy-sw-scripts
    -> generate-service-worker
    """
    project_root = Path(project_root)
    paths = settings.paths
    pipeline_settings = settings.pipeline
    commands = pipeline_settings.commands
    dist = project_root / paths.dist
    copy_patterns = pipeline_settings.copy_globs or DEFAULT_COPY_GLOBS
    sw_scripts = pipeline_settings.sw_scripts or DEFAULT_SW_SCRIPTS

    def delegated(name: str, deps, inputs, outputs, description: str) -> Stage:
        return delegated_stage(name, commands.get(name), project_root, deps, inputs, outputs, description)

    stages = [
        Stage(
            name="clean",
            action=lambda: clean_outputs(project_root, paths.dist, paths.tmp),
            outputs=(paths.tmp, paths.dist),
            description="Clean output directory",
        ),
        delegated(
            "styles", ["clean"], [f"{paths.app}/scss/**/*.scss"], [f"{paths.app}/styles"],
            "Compile and prefix stylesheets",
        ),
        delegated(
            "lint", ["styles"], [f"{paths.app}/scripts/**/*.js"], [],
            "Lint JavaScript",
        ),
        delegated(
            "useref", ["styles"], [f"{paths.app}/**/*.html"], [paths.dist],
            "Rewrite and minify HTML assets",
        ),
        delegated(
            "images", ["styles"], [f"{paths.app}/images/**/*"], [f"{paths.dist}/images"],
            "Optimize images",
        ),
        Stage(
            name="copy",
            action=lambda: copy_globs(project_root, copy_patterns, dist),
            deps=("lint", "useref", "images"),
            inputs=tuple(copy_patterns),
            outputs=(paths.dist,),
            description="Copy root-level app files",
        ),
        Stage(
            name="copy-sw-scripts",
            action=lambda: copy_sw_scripts(project_root, sw_scripts, dist / SW_SCRIPTS_DIR),
            deps=("copy",),
            inputs=tuple(sw_scripts),
            outputs=(f"{paths.dist}/{SW_SCRIPTS_DIR}",),
            description="Copy service worker import scripts",
        ),
        Stage(
            name="generate-service-worker",
            action=lambda: generate_service_worker(project_root, settings, pipeline_settings.max_workers),
            deps=("copy-sw-scripts",),
            inputs=tuple(settings.precache.static_file_globs),
            outputs=(f"{paths.dist}/{SERVICE_WORKER_FILENAME}",),
            description="Generate the precaching service worker",
        ),
    ]
    return Pipeline(stages, max_workers=pipeline_settings.max_workers)
