"""
descriptor.py

Responsibility: Describe the project to generate as a typed, validated value.

Every name that ends up inside generated files comes from a ProjectDescriptor
and is substituted through the template context, never by find/replace over
file contents.

Descriptors can be built from CLI arguments or loaded from a file:
- markdown with YAML frontmatter (delimited by '---'), or
- a plain YAML mapping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_PORT = 8080

_NON_IDENT_RE = re.compile(r"[^0-9a-zA-Z_]+")


class DescriptorError(ValueError):
    pass


@dataclass(frozen=True)
class ProjectDescriptor:
    """Everything the materializer needs to lay out one project."""

    project_name: str
    app_name: str
    project_path: Path
    package: str
    port: int = DEFAULT_PORT
    description: str = ""

    @property
    def project_dir(self) -> Path:
        return self.project_path / self.project_name

    def context(self) -> dict[str, Any]:
        # Keys templates may reference.
        return {
            "project_name": self.project_name,
            "app_name": self.app_name,
            "package": self.package,
            "port": self.port,
            "description": self.description,
        }


def package_name(name: str) -> str:
    """
    Turn a project name into an importable package name.

    >>> package_name("My-Service.v2")
    'my_service_v2'
    """
    pkg = _NON_IDENT_RE.sub("_", name.strip()).strip("_").lower()
    if not pkg:
        raise DescriptorError(f"Cannot derive a package name from {name!r}")
    if pkg[0].isdigit():
        pkg = f"_{pkg}"
    return pkg


def _check_name(label: str, value: str) -> str:
    value = value.strip()
    if not value:
        raise DescriptorError(f"{label} must not be empty.")
    if "/" in value or "\\" in value or value in (".", ".."):
        raise DescriptorError(f"{label} must be a single path component, got {value!r}")
    return value


def build_descriptor(
    project_path: str | Path,
    project_name: str,
    app_name: str,
    *,
    package: str | None = None,
    port: int | None = None,
    description: str = "",
) -> ProjectDescriptor:
    project_name = _check_name("project name", project_name)
    app_name = _check_name("app name", app_name)

    pkg = str(package).strip() if package else package_name(project_name)
    if not pkg.isidentifier():
        raise DescriptorError(f"package must be a valid Python identifier, got {pkg!r}")

    try:
        port_value = DEFAULT_PORT if port is None else int(port)
    except (TypeError, ValueError) as e:
        raise DescriptorError(f"port must be an integer, got {port!r}") from e
    if not 0 < port_value < 65536:
        raise DescriptorError(f"port out of range: {port_value}")

    return ProjectDescriptor(
        project_name=project_name,
        app_name=app_name,
        project_path=Path(project_path or "."),
        package=pkg,
        port=port_value,
        description=description.strip(),
    )


def _split_frontmatter(text: str) -> str:
    """Return the YAML part of `text`: the frontmatter if present, else all of it."""
    if not text.startswith("---\n"):
        return text
    end = text.find("\n---\n", 4)
    if end == -1:
        raise DescriptorError("YAML frontmatter starts with '---' but no closing '---' was found.")
    return text[4:end]


def load_descriptor(path: str | Path, **overrides: Any) -> ProjectDescriptor:
    """
    Load a descriptor file. Non-None `overrides` (CLI flags) win over the file.

    Recognised keys: project_path, project_name, app_name, package, port,
    description.
    """
    p = Path(path)
    if not p.exists():
        raise DescriptorError(f"Descriptor file does not exist: {p}")

    try:
        data = yaml.safe_load(_split_frontmatter(p.read_text(encoding="utf-8"))) or {}
    except yaml.YAMLError as e:
        raise DescriptorError(f"Descriptor file {p} is not valid YAML") from e
    if not isinstance(data, dict):
        raise DescriptorError("Descriptor must be a mapping/object at the top level.")

    merged = {**data, **{k: v for k, v in overrides.items() if v is not None}}
    return build_descriptor(
        merged.get("project_path") or ".",
        str(merged.get("project_name") or ""),
        str(merged.get("app_name") or ""),
        package=merged.get("package"),
        port=merged.get("port"),
        description=str(merged.get("description") or ""),
    )
