"""
cli.py

Responsibility: CLI entrypoint for servicegen.

High-level flow (single command `new`):
1) Build a ProjectDescriptor from arguments and/or a descriptor file
2) Check required tools (git, unless skipped)
3) Create the project directory
4) Fetch the boilerplate into a scratch directory (always cleaned up)
5) Materialize the project
6) Initialize git; optionally create a virtualenv and install dependencies

This module should orchestrate behavior but keep concerns isolated:
- Descriptor parsing/validation: `descriptor.py`
- Files, templates, subprocesses: `materializer.py`
"""

from __future__ import annotations

import argparse
import sys
import tempfile
from pathlib import Path

from loguru import logger

from servicegen import materializer
from servicegen.descriptor import DescriptorError, ProjectDescriptor, build_descriptor, load_descriptor
from servicegen.materializer import MaterializeError, TemplateSource


class CLIError(RuntimeError):
    pass


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format="{message}", colorize=False)


def _descriptor(args: argparse.Namespace) -> ProjectDescriptor:
    if args.descriptor:
        return load_descriptor(
            args.descriptor,
            project_path=args.project_path,
            project_name=args.project_name,
            app_name=args.app_name,
            port=args.port,
        )
    if not (args.project_path and args.project_name and args.app_name):
        raise CLIError("usage: servicegen new PROJECT_PATH PROJECT_NAME APP_NAME (or --descriptor FILE)")
    return build_descriptor(args.project_path, args.project_name, args.app_name, port=args.port)


def _template_source(args: argparse.Namespace) -> TemplateSource:
    if args.template_repo:
        return TemplateSource(kind="git", location=args.template_repo, subdir=args.template_subdir)
    if args.template_archive:
        return TemplateSource(kind="archive", location=args.template_archive, subdir=args.template_subdir)
    return TemplateSource(kind="bundled", subdir=args.template_subdir)


def new_cmd(args: argparse.Namespace) -> int:
    descriptor = _descriptor(args)
    source = _template_source(args)
    project_dir = descriptor.project_dir.resolve()

    tools: list[str] = []
    if source.kind == "git" or not args.skip_git:
        tools.append("git")
    logger.info("checking prerequisites...")
    materializer.check_tools(tools)

    logger.info("creating project {}...", project_dir)
    materializer.create_project(project_dir, overwrite=bool(args.overwrite))

    logger.info("initializing project...")
    with tempfile.TemporaryDirectory(prefix="servicegen-") as scratch:
        template_dir = materializer.fetch_template(source, Path(scratch))
        result = materializer.materialize(descriptor, template_dir)
    logger.debug("{} files copied, {} rendered", result.copied_files, result.rendered_files)

    if not args.skip_git:
        materializer.git_init(project_dir, deterministic=bool(args.deterministic_git))

    if args.venv:
        logger.info("installing dependencies...")
        materializer.install_dependencies(project_dir)

    logger.info("project {} created at {}", descriptor.project_name, project_dir)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="servicegen", description="servicegen - scaffold a logged FastAPI service")
    p.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    sub = p.add_subparsers(dest="command", required=True)

    n = sub.add_parser("new", help="Create a new service project")
    n.add_argument("project_path", nargs="?", default=None, help="Directory to create the project in")
    n.add_argument("project_name", nargs="?", default=None, help="Project name (also the directory name)")
    n.add_argument("app_name", nargs="?", default=None, help="Application name (log paths, URL prefix)")
    n.add_argument("--descriptor", default=None, help="YAML (or markdown frontmatter) project descriptor")
    n.add_argument("--port", type=int, default=None, help="Service port written to conf.yaml (default: 8080)")

    src = n.add_mutually_exclusive_group()
    src.add_argument("--template-repo", default=None, help="Clone the boilerplate from this git URL")
    src.add_argument("--template-archive", default=None, help="Download the boilerplate as a .tar.gz from this URL")
    n.add_argument("--template-subdir", default="", help="Boilerplate directory inside the repo/archive")

    n.add_argument("--overwrite", action="store_true", help="Allow a non-empty project directory")
    n.add_argument("--skip-git", action="store_true", help="Do not initialize a git repository")
    n.add_argument("--venv", action="store_true", help="Create .venv and install requirements")
    n.add_argument(
        "--no-deterministic-git",
        dest="deterministic_git",
        action="store_false",
        default=True,
        help="Use real timestamps for the initial commit",
    )

    n.set_defaults(func=new_cmd)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(bool(args.verbose))
    try:
        return int(args.func(args))
    except (CLIError, DescriptorError, MaterializeError) as e:
        logger.error("failed: {}", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
