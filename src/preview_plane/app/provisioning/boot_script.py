"""Boot script and machine configuration for preview machines.

The boot script implements the long-running dev-server model:

  1. Shallow-clone the branch into ``/app``.
  2. Prefer install/dev/port from a committed ``.roseram/preview.json``.
  3. Export PORT, HOST and the contract env.
  4. Install dependencies (abort on failure).
  5. Run the optional setup script and build (abort on failure).
  6. Run the dev server unbuffered; keep the machine alive if it exits.

Output is a pure function of ``(repo, branch, contract)`` so repeated calls
for the same inputs produce byte-identical scripts.
"""

from __future__ import annotations

import base64
import logging
import re
import shlex
from types import MappingProxyType
from typing import Any, Mapping

from ..contracts.runtime_contract import (
    CONTRACT_FILE_PATH,
    RuntimeContract,
    validate_contract,
)
from ..contracts.server_config import environment_setup_script
from ..errors import PreviewRequestError
from ..inspection.repo_inspector import ProjectType

logger = logging.getLogger(__name__)

APP_DIR = '/app'
BOOT_SCRIPT_PATH = '/start.sh'
BOOT_COMMAND = ('/bin/bash', BOOT_SCRIPT_PATH)

DEFAULT_MEMORY_MB = 1024
DEFAULT_CPUS = 1
DEFAULT_CPU_KIND = 'shared'
RESTART_MAX_RETRIES = 3

BASE_IMAGES: Mapping[ProjectType, str] = MappingProxyType(
    {
        ProjectType.NODE: 'node:20-alpine',
        ProjectType.PYTHON: 'python:3.11-slim',
        ProjectType.RUBY: 'ruby:3.2-alpine',
        ProjectType.GO: 'golang:1.21-alpine',
        ProjectType.JAVA: 'openjdk:21-slim',
        ProjectType.PHP: 'php:8.2-cli-alpine',
        ProjectType.RUST: 'rust:latest',
        ProjectType.OTHER: 'ubuntu:latest',
    }
)

_REPO_RE = re.compile(r'^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$')
# git ref names: no whitespace, quotes, or shell expansion characters.
_BRANCH_RE = re.compile(r'^[A-Za-z0-9._/+@-]+$')

# Shell variable <- contract file key.
_CONTRACT_FILE_FIELDS = (
    ('INSTALL_CMD', 'install'),
    ('DEV_CMD', 'dev'),
    ('CONTRACT_PORT', 'port'),
)


def base_image_for(project_type: ProjectType | str) -> str:
    """Return the base image for a project type (``other`` if unknown)."""
    try:
        return BASE_IMAGES[ProjectType(project_type)]
    except ValueError:
        return BASE_IMAGES[ProjectType.OTHER]


def build(repo: str, branch: str, contract: RuntimeContract) -> str:
    """Render the boot script for ``owner/repo`` at ``branch``.

    Raises:
        ContractValidationError: If ``contract`` is invalid.
        PreviewRequestError: If ``repo`` or ``branch`` is malformed.
    """
    contract = validate_contract(contract)
    check_owner_repo(repo)
    check_branch(branch)

    sections = [
        _header(repo, branch, contract),
        _clone_section(repo, branch),
        _contract_section(contract),
        _environment_section(contract),
        _install_section(),
        _setup_section(contract),
        _build_section(contract),
        _run_section(),
    ]
    script = '\n\n'.join(sections) + '\n'
    logger.debug(
        'Boot script rendered for %s@%s',
        repo,
        branch,
        extra={'repo': repo, 'branch': branch, 'project_type': contract.type.value},
    )
    return script


def build_machine_config(
    boot_script: str,
    contract: RuntimeContract,
    *,
    region: str | None = None,
    memory_mb: int = DEFAULT_MEMORY_MB,
    cpus: int = DEFAULT_CPUS,
    cpu_kind: str = DEFAULT_CPU_KIND,
    extra_env: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Build a Machines API create payload that runs ``boot_script``."""
    env = dict(contract.env)
    if extra_env:
        env.update(extra_env)
    env['PORT'] = str(contract.port)

    payload: dict[str, Any] = {
        'config': {
            'image': base_image_for(contract.type),
            'env': env,
            'files': [
                {
                    'guest_path': BOOT_SCRIPT_PATH,
                    'raw_value': base64.b64encode(
                        boot_script.encode('utf-8')
                    ).decode('ascii'),
                },
            ],
            'init': {'cmd': list(BOOT_COMMAND)},
            'services': [
                {
                    'protocol': 'tcp',
                    'internal_port': contract.port,
                    'ports': [
                        {'port': 80, 'handlers': ['http']},
                        {'port': 443, 'handlers': ['tls', 'http']},
                    ],
                },
            ],
            'restart': {
                'policy': 'on-failure',
                'max_retries': RESTART_MAX_RETRIES,
            },
            'guest': {
                'cpu_kind': cpu_kind,
                'cpus': cpus,
                'memory_mb': memory_mb,
            },
        },
    }
    if region:
        payload['region'] = region
    return payload


# ── Script sections ──────────────────────────────────────────────────


def _header(repo: str, branch: str, contract: RuntimeContract) -> str:
    return '\n'.join(
        [
            '#!/bin/bash',
            'set -e',
            '',
            "RED='\\033[0;31m'",
            "GREEN='\\033[0;32m'",
            "YELLOW='\\033[1;33m'",
            "NC='\\033[0m'",
            '',
            'echo -e "${GREEN}[preview] Starting dev environment${NC}"',
            f'echo "Repository: {repo}"',
            f'echo "Branch: {branch}"',
            f'echo "Type: {contract.type.value}"',
            f'echo "Port: {contract.port}"',
        ]
    )


def _clone_section(repo: str, branch: str) -> str:
    return '\n'.join(
        [
            'echo -e "${YELLOW}[1/6] Cloning repository...${NC}"',
            f'git clone --depth 1 --branch "{branch}" '
            f'"https://github.com/{repo}.git" {APP_DIR}',
            f'cd {APP_DIR}',
        ]
    )


def _contract_section(contract: RuntimeContract) -> str:
    lines = [
        f'INSTALL_CMD={shlex.quote(contract.install)}',
        f'DEV_CMD={shlex.quote(contract.dev)}',
        "CONTRACT_PORT=''",
        f'if [ -f "{CONTRACT_FILE_PATH}" ]; then',
        f'  echo -e "${{YELLOW}}[2/6] Found preview contract ({CONTRACT_FILE_PATH})${{NC}}"',
    ]
    for variable, key in _CONTRACT_FILE_FIELDS:
        lines.extend(
            [
                f"  VALUE=$(jq -r '.{key} // empty' {CONTRACT_FILE_PATH} 2>/dev/null || true)",
                f'  if [ -n "$VALUE" ]; then {variable}="$VALUE"; fi',
            ]
        )
    lines.extend(
        [
            'else',
            '  echo -e "${YELLOW}[2/6] No preview contract found, using defaults${NC}"',
            'fi',
            'echo "Install: $INSTALL_CMD"',
            'echo "Dev: $DEV_CMD"',
        ]
    )
    return '\n'.join(lines)


def _environment_section(contract: RuntimeContract) -> str:
    return '\n'.join(
        [
            f'export PORT={contract.port}',
            'if [ -n "$CONTRACT_PORT" ]; then export PORT="$CONTRACT_PORT"; fi',
            'export HOST=0.0.0.0',
            '',
            environment_setup_script(contract),
        ]
    )


def _install_section() -> str:
    return '\n'.join(
        [
            'echo -e "${YELLOW}[3/6] Installing dependencies...${NC}"',
            'eval "$INSTALL_CMD" || {',
            '  echo -e "${RED}[ERROR] Failed to install dependencies${NC}"',
            '  exit 1',
            '}',
        ]
    )


def _setup_section(contract: RuntimeContract) -> str:
    if not contract.setup_script:
        return 'echo -e "${YELLOW}[4/6] Skipping setup (not required)${NC}"'
    return '\n'.join(
        [
            'echo -e "${YELLOW}[4/6] Running setup script...${NC}"',
            f'SETUP_CMD={shlex.quote(contract.setup_script)}',
            'eval "$SETUP_CMD" || {',
            '  echo -e "${RED}[ERROR] Setup script failed${NC}"',
            '  exit 1',
            '}',
        ]
    )


def _build_section(contract: RuntimeContract) -> str:
    if not contract.build:
        return 'echo -e "${YELLOW}[5/6] Skipping build (not required)${NC}"'
    return '\n'.join(
        [
            'echo -e "${YELLOW}[5/6] Building project...${NC}"',
            f'BUILD_CMD={shlex.quote(contract.build)}',
            'eval "$BUILD_CMD" || {',
            '  echo -e "${RED}[ERROR] Build failed${NC}"',
            '  exit 1',
            '}',
        ]
    )


def _run_section() -> str:
    # Not exec'd: the fallback must keep the machine alive for log inspection.
    return '\n'.join(
        [
            'echo -e "${YELLOW}[6/6] Starting development server on 0.0.0.0:$PORT${NC}"',
            'export PYTHONUNBUFFERED=1',
            'export PYTHONDONTWRITEBYTECODE=1',
            'bash -c "$DEV_CMD" 2>&1 || {',
            '  echo -e "${RED}[ERROR] Dev server exited with code $?${NC}"',
            '  sleep infinity',
            '}',
        ]
    )


def check_owner_repo(repo: str) -> None:
    if not isinstance(repo, str) or not _REPO_RE.match(repo):
        raise PreviewRequestError(f'repository must be in owner/repo form, got {repo!r}')


def check_branch(branch: str) -> None:
    if not isinstance(branch, str) or not _BRANCH_RE.match(branch):
        raise PreviewRequestError(f'invalid branch name {branch!r}')
