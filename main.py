#!/usr/bin/env python3
"""
Web Starter Kit - build command line

Builds the production site, generates the precaching service worker and
serves the app, the built site or the browser-test fixtures.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from webstarter.config import get_config_context
from webstarter.config_validator import DELEGATED_STAGES, ConfigValidationError
from webstarter.config.models import ProjectSettings
from webstarter.pipeline import Pipeline, PipelineResult, Stage, build_default_pipeline, delegated_pipeline
from webstarter.pipeline.stages import (
    DEFAULT_SW_SCRIPTS,
    SW_SCRIPTS_DIR,
    clean_outputs,
    copy_sw_scripts,
    generate_service_worker,
)
from webstarter.precache import PrecacheError
from webstarter.server import StaticServer, create_fixture_app, create_preview_app
from webstarter.ui import BuildReporter
from webstarter.utils import setup_logging


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Web Starter Kit build tooling.")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to the project config file.",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Project root (defaults to the config file's directory).",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Override logging.file from config.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("build", help="Build production files (the default task).")
    subparsers.add_parser(
        "generate-service-worker",
        help="Copy import scripts and regenerate dist/service-worker.js.",
    )
    subparsers.add_parser("clean", help="Clean the output directory.")

    run_stage = subparsers.add_parser("run-stage", help="Run delegated tool stages on their own.")
    run_stage.add_argument("stages", nargs="+", choices=DELEGATED_STAGES)

    serve = subparsers.add_parser("serve", help="Serve the app (or the built site with --dist).")
    serve.add_argument("--dist", action="store_true", help="Serve the built site instead of the app.")
    serve.add_argument("--port", type=int, default=None)

    fixtures = subparsers.add_parser("serve-fixtures", help="Serve browser-test fixtures.")
    fixtures.add_argument("--port", type=int, default=None)

    return parser.parse_args(argv)


def precache_pipeline(settings: ProjectSettings, project_root: Path) -> Pipeline:
    """copy-sw-scripts -> generate-service-worker, without the rest of the build."""
    dist = project_root / settings.paths.dist
    sw_scripts = settings.pipeline.sw_scripts or DEFAULT_SW_SCRIPTS
    return Pipeline(
        [
            Stage(
                name="copy-sw-scripts",
                action=lambda: copy_sw_scripts(project_root, sw_scripts, dist / SW_SCRIPTS_DIR),
            ),
            Stage(
                name="generate-service-worker",
                action=lambda: generate_service_worker(project_root, settings, settings.pipeline.max_workers),
                deps=("copy-sw-scripts",),
            ),
        ],
        max_workers=1,
    )


def _report(result: PipelineResult, reporter: BuildReporter) -> int:
    reporter.show_pipeline_result(result)
    if result.succeeded:
        return EXIT_OK
    failed = result.failed_stage
    reporter.show_error(f"{failed.name}: {failed.error}" if failed else "Build failed")
    return EXIT_BUILD_FAILED


def main(argv: Optional[List[str]] = None, reporter: Optional[BuildReporter] = None) -> int:
    """Command line entry point; returns the process exit status."""
    args = parse_args(argv)
    reporter = reporter or BuildReporter()

    try:
        context = get_config_context(str(args.config))
        settings = context.settings
    except FileNotFoundError as exc:
        reporter.show_error(str(exc))
        return EXIT_CONFIG_ERROR
    except ConfigValidationError as exc:
        reporter.show_error(f"Invalid config {args.config}: {exc}")
        return EXIT_CONFIG_ERROR

    setup_logging(context.data, log_file=args.log_file)
    project_root = (args.root or context.project_root).resolve()
    logger.info("Running '%s' in %s", args.command, project_root)

    try:
        if args.command == "build":
            return _report(build_default_pipeline(settings, project_root).run(), reporter)

        if args.command == "generate-service-worker":
            return _report(precache_pipeline(settings, project_root).run(), reporter)

        if args.command == "run-stage":
            return _report(delegated_pipeline(settings, project_root, args.stages).run(), reporter)

        if args.command == "clean":
            output = clean_outputs(project_root, settings.paths.dist, settings.paths.tmp)
            reporter.show_message(f"Cleaned: {output.note}", style="cyan")
            return EXIT_OK

        if args.command == "serve":
            server_settings = settings.server
            if args.dist:
                directory = project_root / settings.paths.dist
                port = args.port if args.port is not None else server_settings.dist_port
                prefix = "DIST"
            else:
                directory = project_root / settings.paths.app
                port = args.port if args.port is not None else server_settings.port
                prefix = server_settings.log_prefix
                prepared = delegated_pipeline(settings, project_root, ["styles", "scripts"]).run()
                if not prepared.succeeded:
                    return _report(prepared, reporter)
            if not directory.is_dir():
                reporter.show_error(f"Nothing to serve: {directory} does not exist")
                return EXIT_BUILD_FAILED
            server = StaticServer(create_preview_app(directory), host=server_settings.host, log_prefix=prefix)
            server.serve_forever(port)
            return EXIT_OK

        if args.command == "serve-fixtures":
            port = args.port if args.port is not None else settings.server.fixture_port
            server = StaticServer(create_fixture_app(project_root), host=settings.server.host, log_prefix="FIXTURES")
            server.serve_forever(port)
            return EXIT_OK
    except PrecacheError as exc:
        logger.error("Precache failed: %s", exc, exc_info=True)
        reporter.show_error(str(exc))
        return EXIT_BUILD_FAILED
    except OSError as exc:
        logger.error("Command '%s' failed: %s", args.command, exc, exc_info=True)
        reporter.show_error(str(exc))
        return EXIT_BUILD_FAILED

    reporter.show_error(f"Unknown command: {args.command}")
    return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
