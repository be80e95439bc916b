"""
materializer.py

Responsibility: Lay out a new service project on disk.

Steps (driven by `cli.py`):
1) Check that external tools exist (`check_tools`)
2) Create the project directory (`create_project`)
3) Fetch the boilerplate (`fetch_template`): bundled, git clone, or tarball
4) Copy boilerplate modules and render config/entry point (`materialize`)
5) Initialize git and, optionally, a virtualenv with dependencies

Copied modules are byte-for-byte; only `conf.yaml`, `main.py` and
`requirements.txt` are rendered, with jinja2 over the ProjectDescriptor
context. Nothing is patched by string replacement.

This module intentionally does NOT parse CLI arguments.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests
from jinja2 import Environment, StrictUndefined
from loguru import logger

from servicegen.descriptor import ProjectDescriptor

BUNDLED_TEMPLATE_DIR = Path(__file__).resolve().parent / "service"

BOILERPLATE_FILES = (
    "__init__.py",
    "log.py",
    "config.py",
    "middlewares.py",
    "handlers.py",
    "app.py",
)
CONF_TEMPLATE = "conf.yaml.j2"

ENTRYPOINT_TEMPLATE = '''\
"""
Entry point for the {{ package }} service.

Run with `python main.py`; set envID to select the environment (default: dev).
"""

from __future__ import annotations

import uvicorn

from {{ package }} import log
from {{ package }}.app import create_app
from {{ package }}.config import load_config

config = load_config("conf.yaml")
log.new_logger(config.log)

app = create_app(config)


def main() -> None:
    log.info("starting", app=config.app, env=config.env, port=config.port)
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_config=None)


if __name__ == "__main__":
    main()
'''

REQUIREMENTS_TEMPLATE = """\
fastapi
uvicorn
loguru
PyYAML
"""

GITIGNORE = """\
__pycache__/
*.log
*.log.gz
.venv/
"""

_GIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "servicegen",
    "GIT_AUTHOR_EMAIL": "servicegen@example.invalid",
    "GIT_COMMITTER_NAME": "servicegen",
    "GIT_COMMITTER_EMAIL": "servicegen@example.invalid",
}
_GIT_EPOCH = {
    "GIT_AUTHOR_DATE": "1970-01-01T00:00:00Z",
    "GIT_COMMITTER_DATE": "1970-01-01T00:00:00Z",
}


class MaterializeError(RuntimeError):
    pass


@dataclass(frozen=True)
class TemplateSource:
    """
    Where the boilerplate comes from.

    kind: "bundled" (this installation), "git" (clone URL) or "archive"
    (URL of a .tar.gz). `subdir` points at the boilerplate inside a fetched
    repository or archive.
    """

    kind: str = "bundled"
    location: str | None = None
    subdir: str = ""


@dataclass(frozen=True)
class MaterializeResult:
    project_dir: Path
    package_dir: Path
    copied_files: int
    rendered_files: int


def run(cmd: list[str], *, cwd: Path | None = None, env: dict[str, str] | None = None) -> str:
    """
    Run a subprocess command, raising a MaterializeError on failure.
    Returns the combined stdout/stderr.
    """
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=env,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except FileNotFoundError as e:
        raise MaterializeError(f"Command not found: {cmd[0]}") from e
    except subprocess.CalledProcessError as e:
        raise MaterializeError(f"Command failed: {' '.join(cmd)}\n\n{e.stdout}") from e
    return proc.stdout


def check_tools(tools: list[str]) -> None:
    for tool in tools:
        logger.debug("checking {}", tool)
        try:
            run([tool, "--version"])
        except MaterializeError as e:
            raise MaterializeError(f"{tool} is not installed or not on PATH") from e


def create_project(project_dir: Path, *, overwrite: bool = False) -> None:
    if project_dir.exists():
        if not project_dir.is_dir():
            raise MaterializeError(f"Project path exists and is not a directory: {project_dir}")
        if any(project_dir.iterdir()) and not overwrite:
            raise MaterializeError(f"Project directory already exists: {project_dir} (use --overwrite to allow)")
    try:
        project_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MaterializeError(f"Cannot create project directory {project_dir}: {e}") from e


# ---------- template sources ----------


def _clone(url: str, dest: Path) -> Path:
    run(["git", "clone", "--depth", "1", url, str(dest)])
    return dest


def _download_archive(url: str, dest: Path) -> Path:
    dest.mkdir(parents=True, exist_ok=True)
    archive = dest.with_suffix(".tar.gz")
    try:
        with requests.get(url, stream=True, timeout=30) as r:
            if r.status_code >= 400:
                raise MaterializeError(f"Template download failed: HTTP {r.status_code} GET {url}")
            with archive.open("wb") as fh:
                for chunk in r.iter_content(chunk_size=65536):
                    fh.write(chunk)
    except requests.RequestException as e:
        raise MaterializeError(f"Template download failed: {url}") from e

    try:
        with tarfile.open(archive, "r:*") as tar:
            tar.extractall(dest, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise MaterializeError(f"Template archive is not a readable tarball: {url}") from e
    finally:
        archive.unlink(missing_ok=True)

    # GitHub/GitLab archives wrap everything in one top-level directory.
    entries = list(dest.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return dest


def fetch_template(source: TemplateSource, workdir: Path) -> Path:
    """
    Make the boilerplate available and return the directory that holds it.
    `workdir` is scratch space owned by the caller.
    """
    if source.kind == "bundled":
        root = BUNDLED_TEMPLATE_DIR
    elif source.kind in ("git", "archive"):
        if not source.location:
            raise MaterializeError(f"Template source '{source.kind}' needs a location.")
        dest = workdir / "template"
        fetch = _clone if source.kind == "git" else _download_archive
        logger.info("fetching template from {}", source.location)
        root = fetch(source.location, dest)
    else:
        raise MaterializeError(f"Unknown template source: {source.kind}")

    template_dir = root / source.subdir if source.subdir else root
    if not template_dir.is_dir():
        raise MaterializeError(f"Template directory not found: {template_dir}")
    return template_dir


# ---------- rendering ----------


def _environment() -> Environment:
    return Environment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


def _render(env: Environment, source: str, context: dict[str, Any], label: str) -> str:
    try:
        return env.from_string(source).render(**context)
    except Exception as e:  # noqa: BLE001 - surface as MaterializeError
        raise MaterializeError(f"Failed rendering {label}") from e


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def materialize(descriptor: ProjectDescriptor, template_dir: Path) -> MaterializeResult:
    """
    Copy the boilerplate package into <project>/<package>/ and render the
    project-level files. The project directory must already exist.
    """
    project_dir = descriptor.project_dir
    package_dir = project_dir / descriptor.package

    missing = [name for name in (*BOILERPLATE_FILES, CONF_TEMPLATE) if not (template_dir / name).is_file()]
    if missing:
        raise MaterializeError(f"Template {template_dir} is missing: {', '.join(missing)}")

    package_dir.mkdir(parents=True, exist_ok=True)
    copied = 0
    for name in BOILERPLATE_FILES:
        shutil.copy2(template_dir / name, package_dir / name)
        logger.debug("copied {}", package_dir / name)
        copied += 1

    env = _environment()
    context = descriptor.context()
    rendered = {
        project_dir / "conf.yaml": _render(
            env, (template_dir / CONF_TEMPLATE).read_text(encoding="utf-8"), context, CONF_TEMPLATE
        ),
        project_dir / "main.py": _render(env, ENTRYPOINT_TEMPLATE, context, "entry point"),
        project_dir / "requirements.txt": _render(env, REQUIREMENTS_TEMPLATE, context, "requirements.txt"),
    }
    for path, text in rendered.items():
        _write(path, text)
        logger.debug("rendered {}", path)

    gitignore = project_dir / ".gitignore"
    if not gitignore.exists():
        _write(gitignore, GITIGNORE)

    return MaterializeResult(
        project_dir=project_dir,
        package_dir=package_dir,
        copied_files=copied,
        rendered_files=len(rendered),
    )


# ---------- post steps ----------


def git_env(base_env: dict[str, str], *, deterministic: bool) -> dict[str, str]:
    """
    Commit identity for the initial commit; with `deterministic`, also pin the
    dates so that identical inputs give identical commits.
    """
    env = dict(base_env)
    for key, value in _GIT_IDENTITY.items():
        env.setdefault(key, value)
    if deterministic:
        for key, value in _GIT_EPOCH.items():
            env.setdefault(key, value)
    return env


def git_init(project_dir: Path, *, deterministic: bool = True) -> None:
    env = git_env(os.environ.copy(), deterministic=deterministic)
    if not (project_dir / ".git").exists():
        run(["git", "init"], cwd=project_dir, env=env)
    run(["git", "checkout", "-B", "main"], cwd=project_dir, env=env)
    run(["git", "add", "-A"], cwd=project_dir, env=env)
    run(["git", "commit", "-m", "Initial commit"], cwd=project_dir, env=env)


def _venv_python(venv_dir: Path) -> Path:
    if sys.platform == "win32":
        return venv_dir / "Scripts" / "python.exe"
    return venv_dir / "bin" / "python"


def install_dependencies(project_dir: Path) -> None:
    """
    Create .venv and install requirements.txt into it. pip output goes
    straight to the console since downloads can take a while.
    """
    venv_dir = project_dir / ".venv"
    run([sys.executable, "-m", "venv", str(venv_dir)], cwd=project_dir)
    cmd = [str(_venv_python(venv_dir)), "-m", "pip", "install", "-r", "requirements.txt"]
    try:
        subprocess.run(cmd, cwd=str(project_dir), check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        raise MaterializeError(f"Dependency install failed: {' '.join(cmd)}") from e
