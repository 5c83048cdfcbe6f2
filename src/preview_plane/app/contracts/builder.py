"""Build a validated runtime contract from an inspection.

Resolution order, field by field:
  1. Explicit caller overrides.
  2. Package-manager-specific install command (when a lockfile was found).
  3. Per-type defaults.

The result always passes through ``validate_contract`` before it is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from ..inspection.repo_inspector import Inspection, ProjectType
from .runtime_contract import RuntimeContract, validate_contract

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ContractDefaults:
    install: str
    dev: str
    port: int
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


_DEFAULTS: Mapping[ProjectType, ContractDefaults] = MappingProxyType(
    {
        ProjectType.NODE: ContractDefaults(
            install="npm install",
            dev="npm run dev || npm start",
            port=3000,
            env=MappingProxyType({"NODE_ENV": "development"}),
        ),
        ProjectType.PYTHON: ContractDefaults(
            install="pip install -r requirements.txt",
            dev="uvicorn app:app --host 0.0.0.0 --port 8000",
            port=8000,
            env=MappingProxyType({"PYTHONUNBUFFERED": "1"}),
        ),
        ProjectType.RUBY: ContractDefaults(
            install="bundle install",
            dev="rails server -b 0.0.0.0 -p 3000",
            port=3000,
            env=MappingProxyType({"RAILS_ENV": "development"}),
        ),
        ProjectType.GO: ContractDefaults(
            install="go mod download",
            dev="go run main.go",
            port=8080,
        ),
        ProjectType.JAVA: ContractDefaults(
            install="mvn install",
            dev="mvn spring-boot:run",
            port=8080,
        ),
        ProjectType.PHP: ContractDefaults(
            install="composer install",
            dev="php -S 0.0.0.0:8000",
            port=8000,
        ),
        ProjectType.RUST: ContractDefaults(
            install="cargo build",
            dev="cargo run",
            port=8000,
        ),
        ProjectType.OTHER: ContractDefaults(
            install='echo "Please configure install command"',
            dev='echo "Please configure dev command"',
            port=8000,
        ),
    }
)

_INSTALL_BY_PACKAGE_MANAGER: Mapping[ProjectType, Mapping[str, str]] = MappingProxyType(
    {
        ProjectType.NODE: MappingProxyType(
            {
                "npm": "npm install",
                "yarn": "yarn install",
                "pnpm": "pnpm install",
            }
        ),
        ProjectType.PYTHON: MappingProxyType(
            {
                "poetry": "poetry install",
                "pipenv": "pipenv install",
                "pip": "pip install -r requirements.txt",
            }
        ),
    }
)


@dataclass(frozen=True, slots=True)
class ContractOverrides:
    """Caller-supplied values that win over generated ones."""

    install: str | None = None
    dev: str | None = None
    port: int | None = None
    build: str | None = None
    setup_script: str | None = None
    env: Mapping[str, str] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ContractOverrides:
        if not data:
            return cls()
        return cls(
            install=data.get("install"),
            dev=data.get("dev"),
            port=data.get("port"),
            build=data.get("build"),
            setup_script=data.get("setupScript", data.get("setup_script")),
            env=data.get("env"),
        )


def defaults_for(project_type: ProjectType | str) -> ContractDefaults:
    """Return the fixed defaults for a project type (``other`` if unknown)."""
    try:
        key = ProjectType(project_type)
    except ValueError:
        key = ProjectType.OTHER
    return _DEFAULTS[key]


def install_command_for(project_type: ProjectType, package_manager: str | None) -> str:
    """Return the install command for a type, honouring a detected package manager."""
    by_manager = _INSTALL_BY_PACKAGE_MANAGER.get(project_type)
    if by_manager and package_manager and package_manager in by_manager:
        return by_manager[package_manager]
    return defaults_for(project_type).install


def build_contract(
    inspection: Inspection,
    overrides: ContractOverrides | Mapping[str, Any] | None = None,
) -> RuntimeContract:
    """Produce a validated contract for an inspected repository.

    Raises:
        ContractValidationError: If the merged result is not a valid contract
            (for example an override port outside 1-65535).
    """
    if not isinstance(overrides, ContractOverrides):
        overrides = ContractOverrides.from_mapping(overrides)

    project_type = inspection.type
    defaults = defaults_for(project_type)

    env: Any = dict(defaults.env)
    if isinstance(overrides.env, Mapping):
        env.update(overrides.env)
    elif overrides.env is not None:
        # Rejected by validate_contract below.
        env = overrides.env

    candidate: dict[str, Any] = {
        "type": project_type.value,
        "install": overrides.install or install_command_for(
            project_type, inspection.package_manager,
        ),
        "dev": overrides.dev or defaults.dev,
        "port": overrides.port if overrides.port is not None else defaults.port,
        "env": env,
        "build": overrides.build,
        "setupScript": overrides.setup_script,
    }

    contract = validate_contract(candidate)
    logger.info(
        "Runtime contract built: type=%s port=%d",
        contract.type.value,
        contract.port,
        extra={
            "project_type": contract.type.value,
            "install": contract.install,
            "dev": contract.dev,
        },
    )
    return contract
