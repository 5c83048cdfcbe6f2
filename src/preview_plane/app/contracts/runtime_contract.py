"""Runtime contract: the declarative recipe for booting a repository.

A contract names the project type, how to install dependencies, how to run the
long-lived dev process, which port it listens on, and which environment to
export. It is produced by the builder from an inspection, or committed by a
project at ``.roseram/preview.json``. Both paths pass through
``validate_contract``, which is the only validation gate.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import ContractValidationError
from ..inspection.repo_inspector import ProjectType

CONTRACT_FILE_PATH = ".roseram/preview.json"

VALID_TYPES: frozenset[str] = frozenset(t.value for t in ProjectType)

# Keys are exported by the boot script, so they must be shell identifiers.
_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Set by the boot script from the contract port; the proxy routes to that port.
RESERVED_ENV_KEYS: frozenset[str] = frozenset({"PORT", "HOST", "BIND_ADDR"})

MIN_PORT = 1
MAX_PORT = 65535


@dataclass(frozen=True, slots=True)
class RuntimeContract:
    """Validated, immutable execution recipe."""

    type: ProjectType
    install: str
    dev: str
    port: int
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    build: str | None = None
    setup_script: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the contract-file JSON shape."""
        payload: dict[str, Any] = {
            "type": self.type.value,
            "install": self.install,
            "dev": self.dev,
            "port": self.port,
            "env": dict(self.env),
        }
        if self.build:
            payload["build"] = self.build
        if self.setup_script:
            payload["setupScript"] = self.setup_script
        return payload


def validate_contract(data: Mapping[str, Any] | RuntimeContract | None) -> RuntimeContract:
    """Validate raw contract data and return a ``RuntimeContract``.

    Accepts either a mapping (contract-file shape; ``setupScript`` and
    ``setup_script`` are both accepted) or an existing ``RuntimeContract``,
    which is re-checked.

    Raises:
        ContractValidationError: On unknown type, missing or empty
            ``install``/``dev``, a missing, non-numeric or out-of-range
            ``port``, or malformed ``env``/``build``/``setupScript``.
    """
    if data is None:
        raise ContractValidationError("preview contract is required")
    if isinstance(data, RuntimeContract):
        data = data.to_dict()
    if not isinstance(data, Mapping):
        raise ContractValidationError(
            f"preview contract must be an object, got {type(data).__name__}"
        )

    raw_type = data.get("type")
    if isinstance(raw_type, ProjectType):
        raw_type = raw_type.value
    if not raw_type:
        raise ContractValidationError('preview contract must specify "type"', field="type")
    if raw_type not in VALID_TYPES:
        raise ContractValidationError(
            f'invalid type {raw_type!r}; must be one of: '
            f'{", ".join(t.value for t in ProjectType)}',
            field="type",
        )

    install = _require_command(data, "install")
    dev = _require_command(data, "dev")
    port = _require_port(data.get("port"))
    env = _validate_env(data.get("env"))
    build = _optional_command(data, "build")
    setup_script = _optional_command(data, "setupScript", "setup_script")

    return RuntimeContract(
        type=ProjectType(raw_type),
        install=install,
        dev=dev,
        port=port,
        env=MappingProxyType(env),
        build=build,
        setup_script=setup_script,
    )


def parse_contract_file(text: str) -> RuntimeContract:
    """Parse and validate the content of a ``.roseram/preview.json`` file."""
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise ContractValidationError(
            f"{CONTRACT_FILE_PATH} is not valid JSON: {exc}"
        ) from exc
    return validate_contract(payload)


def render_contract_json(contract: RuntimeContract) -> str:
    """Render a contract as a committed ``.roseram/preview.json`` document."""
    return json.dumps(contract.to_dict(), indent=2, sort_keys=False) + "\n"


# ── Field validators ─────────────────────────────────────────────────


def _require_command(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ContractValidationError(
            f'preview contract must specify "{key}" command (non-empty string)',
            field=key,
        )
    return value.strip()


def _optional_command(data: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        if key not in data or data[key] is None:
            continue
        value = data[key]
        if not isinstance(value, str):
            raise ContractValidationError(
                f'"{key}" must be a string when present', field=keys[0]
            )
        return value.strip() or None
    return None


def _require_port(value: Any) -> int:
    # bool is an int subclass; "port": true is not a port.
    if value is None or isinstance(value, bool):
        raise ContractValidationError(
            'preview contract must specify "port" (number between 1-65535)',
            field="port",
        )
    if isinstance(value, float):
        if not value.is_integer():
            raise ContractValidationError(
                f"port must be a whole number, got {value!r}", field="port"
            )
        value = int(value)
    if not isinstance(value, int):
        raise ContractValidationError(
            f"port must be a number, got {type(value).__name__}", field="port"
        )
    if value < MIN_PORT or value > MAX_PORT:
        raise ContractValidationError(
            f"port must be between {MIN_PORT} and {MAX_PORT}, got {value}",
            field="port",
        )
    return value


def _validate_env(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ContractValidationError('"env" must be an object', field="env")
    env: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(key, str) or not _ENV_KEY_RE.match(key):
            raise ContractValidationError(
                f"env key {key!r} is not a valid variable name", field="env"
            )
        if key in RESERVED_ENV_KEYS:
            raise ContractValidationError(
                f"env key {key!r} is reserved; set \"port\" instead", field="env"
            )
        if not isinstance(item, str):
            raise ContractValidationError(
                f"env value for {key!r} must be a string", field="env"
            )
        env[key] = item
    return env
