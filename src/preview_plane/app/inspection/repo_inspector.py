"""Repository inspection: classify a flat file listing into a runtime type.

Type detection walks a fixed priority list of marker files, top to bottom,
first match wins. When no marker is present, conventional entry-point file
names are consulted; otherwise the project is ``other``.

Package-manager detection is an independent lockfile lookup.

Everything here is a pure function of the listing: no network, no disk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

logger = logging.getLogger(__name__)


class ProjectType(str, Enum):
    """Runtime types understood by the contract builder."""

    NODE = "node"
    PYTHON = "python"
    RUBY = "ruby"
    GO = "go"
    JAVA = "java"
    PHP = "php"
    RUST = "rust"
    OTHER = "other"


# Evaluated in order; first match wins.
TYPE_MARKERS: tuple[tuple[ProjectType, frozenset[str]], ...] = (
    (ProjectType.NODE, frozenset({"package.json"})),
    (ProjectType.PYTHON, frozenset({"requirements.txt", "pyproject.toml", "setup.py"})),
    (ProjectType.RUBY, frozenset({"gemfile", "gemfile.lock"})),
    (ProjectType.GO, frozenset({"go.mod", "go.sum"})),
    (ProjectType.JAVA, frozenset({"pom.xml", "build.gradle", "build.gradle.kts"})),
    (ProjectType.PHP, frozenset({"composer.json", "composer.lock"})),
    (ProjectType.RUST, frozenset({"cargo.toml", "cargo.lock"})),
)

ENTRY_POINT_MARKERS: tuple[tuple[ProjectType, frozenset[str]], ...] = (
    (ProjectType.PYTHON, frozenset({"main.py", "app.py"})),
    (ProjectType.GO, frozenset({"main.go"})),
    (ProjectType.RUST, frozenset({"main.rs", "lib.rs"})),
)

# Lockfile -> package manager, checked in order.
PACKAGE_MANAGER_MARKERS: tuple[tuple[str, str], ...] = (
    ("package-lock.json", "npm"),
    ("yarn.lock", "yarn"),
    ("pnpm-lock.yaml", "pnpm"),
    ("pipenv", "pipenv"),
    ("pipfile", "pipenv"),
    ("poetry.lock", "poetry"),
)

DOCKERFILE_MARKERS = frozenset({"dockerfile", ".dockerfile"})
ENV_FILE_MARKERS = frozenset({".env", ".env.example"})


@dataclass(frozen=True, slots=True)
class Inspection:
    """Read-only result of scanning a repository file listing."""

    type: ProjectType
    package_manager: str | None
    has_dockerfile: bool
    has_env_file: bool
    file_count: int


def normalize_paths(paths: Iterable[str]) -> frozenset[str]:
    """Case-fold repository-relative paths and strip leading ``./`` and ``/``."""
    normalized: set[str] = set()
    for path in paths:
        if not path:
            continue
        value = path.strip().replace("\\", "/")
        while value.startswith("./"):
            value = value[2:]
        value = value.lstrip("/")
        if value:
            normalized.add(value.casefold())
    return frozenset(normalized)


def detect_type(paths: Iterable[str]) -> ProjectType:
    """Return the project type for a file listing."""
    lookup = normalize_paths(paths)

    for project_type, markers in TYPE_MARKERS:
        if lookup & markers:
            return project_type

    for project_type, markers in ENTRY_POINT_MARKERS:
        if lookup & markers:
            return project_type

    return ProjectType.OTHER


def detect_package_manager(paths: Iterable[str]) -> str | None:
    """Return the package manager implied by lockfiles, or None."""
    lookup = normalize_paths(paths)
    for marker, manager in PACKAGE_MANAGER_MARKERS:
        if marker in lookup:
            return manager
    return None


def inspect(paths: Iterable[str]) -> Inspection:
    """Classify a repository file listing.

    Args:
        paths: Repository-relative file paths. Matching is case-insensitive
            and only considers files at the repository root.

    Raises:
        TypeError: If ``paths`` is a bare string rather than a collection.
    """
    if isinstance(paths, (str, bytes)):
        raise TypeError("paths must be a collection of file paths, not a string")

    lookup = normalize_paths(paths)
    inspection = Inspection(
        type=detect_type(lookup),
        package_manager=detect_package_manager(lookup),
        has_dockerfile=bool(lookup & DOCKERFILE_MARKERS),
        has_env_file=bool(lookup & ENV_FILE_MARKERS),
        file_count=len(lookup),
    )

    logger.info(
        "Repository inspected: type=%s package_manager=%s files=%d",
        inspection.type.value,
        inspection.package_manager,
        inspection.file_count,
        extra={
            "project_type": inspection.type.value,
            "package_manager": inspection.package_manager,
        },
    )
    return inspection
