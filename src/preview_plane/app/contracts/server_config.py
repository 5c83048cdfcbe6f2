"""Advisory checks for dev-server runtime binding.

A preview is only reachable when the dev server listens on ``$PORT`` and binds
all interfaces. These checks look at a contract and report likely problems with
suggested snippets. They never modify the contract.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import Literal, Mapping

from ..inspection.repo_inspector import ProjectType
from .runtime_contract import RuntimeContract

logger = logging.getLogger(__name__)

Severity = Literal["warning", "info"]

NODE_PORT_AWARE_COMMANDS: tuple[str, ...] = (
    "next dev",
    "vite",
    "npm run dev",
    "npm start",
)

PYTHON_PORT_AWARE_COMMANDS: tuple[str, ...] = (
    "uvicorn",
    "flask",
    "gunicorn",
    "python -m",
)


@dataclass(frozen=True, slots=True)
class Advisory:
    """One advisory finding for a contract."""

    severity: Severity
    message: str
    file: str | None = None
    suggestion: str | None = None
    code: str | Mapping[str, str] | None = None

    def to_dict(self) -> dict:
        payload: dict = {"severity": self.severity, "message": self.message}
        if self.file is not None:
            payload["file"] = self.file
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion
        if self.code is not None:
            payload["code"] = dict(self.code) if isinstance(self.code, Mapping) else self.code
        return payload


def advise(contract: RuntimeContract) -> list[Advisory]:
    """Return binding advisories for a contract (empty for unsupported types)."""
    advisor = _ADVISORS.get(contract.type)
    if advisor is None:
        logger.debug(
            "No server-config advice for type %s",
            contract.type.value,
            extra={"project_type": contract.type.value},
        )
        return []
    return advisor(contract)


def _node_advisories(contract: RuntimeContract) -> list[Advisory]:
    advisories: list[Advisory] = []

    if not _mentions_any(contract.dev, NODE_PORT_AWARE_COMMANDS):
        logger.warning(
            "Dev command may not respect PORT: %s",
            contract.dev,
            extra={"dev_command": contract.dev},
        )
        advisories.append(
            Advisory(
                severity="warning",
                file="package.json",
                message="Dev command may need modification to support PORT environment variable",
                suggestion="Ensure your server listens on process.env.PORT",
            )
        )

    advisories.append(
        Advisory(
            severity="info",
            file="src/server.js or similar",
            message="Ensure server binds to 0.0.0.0 and uses PORT env var",
            code={
                "express": "app.listen(process.env.PORT || 3000, '0.0.0.0')",
                "fastify": "await app.listen({ port: process.env.PORT || 3000, host: '0.0.0.0' })",
                "koa": "app.listen(process.env.PORT || 3000, '0.0.0.0')",
            },
        )
    )
    advisories.append(
        Advisory(
            severity="info",
            file="next.config.js",
            message="For Next.js projects, use output: 'standalone' for a self-contained server",
            code="module.exports = { output: 'standalone' }",
        )
    )
    return advisories


def _python_advisories(contract: RuntimeContract) -> list[Advisory]:
    advisories: list[Advisory] = []

    if not _mentions_any(contract.dev, PYTHON_PORT_AWARE_COMMANDS):
        logger.warning(
            "Python dev command may not respect PORT: %s",
            contract.dev,
            extra={"dev_command": contract.dev},
        )
        advisories.append(
            Advisory(
                severity="warning",
                message="Python server needs to bind to 0.0.0.0 and use PORT env var",
                suggestion="Use uvicorn with: uvicorn app:app --host 0.0.0.0 --port $PORT",
            )
        )

    advisories.append(
        Advisory(
            severity="info",
            message="Python app should read PORT from environment",
            code={
                "fastapi": (
                    "import os\n"
                    "port = int(os.environ.get('PORT', 8000))\n"
                    "uvicorn.run(app, host='0.0.0.0', port=port)"
                ),
                "flask": (
                    "import os\n"
                    "port = int(os.environ.get('PORT', 8000))\n"
                    "app.run(host='0.0.0.0', port=port)"
                ),
            },
        )
    )
    return advisories


def _ruby_advisories(contract: RuntimeContract) -> list[Advisory]:
    return [
        Advisory(
            severity="info",
            message="Rails server command should bind to 0.0.0.0 and use PORT",
            code="rails server -b 0.0.0.0 -p $PORT",
        ),
        Advisory(
            severity="info",
            file="config/puma.rb",
            message="Ensure Puma config allows binding to 0.0.0.0",
            code="bind \"tcp://0.0.0.0:#{ENV['PORT'] || 3000}\"",
        ),
    ]


_ADVISORS = {
    ProjectType.NODE: _node_advisories,
    ProjectType.PYTHON: _python_advisories,
    ProjectType.RUBY: _ruby_advisories,
}


def environment_setup_script(contract: RuntimeContract) -> str:
    """Shell preamble exporting PORT, the bind address, and contract env.

    ``PORT`` keeps any value already present in the environment and falls back
    to the contract port.
    """
    lines = [
        "# Ensure PORT is set",
        f"export PORT=${{PORT:-{contract.port}}}",
        "",
        "# Ensure we can bind to 0.0.0.0",
        'export BIND_ADDR="0.0.0.0"',
        "",
        'echo "Starting dev server on $BIND_ADDR:$PORT"',
        f"echo {shlex.quote('Dev command: ' + contract.dev)}",
    ]
    if contract.env:
        lines.append("")
        lines.append("# Additional environment variables from contract")
        for key in sorted(contract.env):
            lines.append(f"export {key}={shlex.quote(contract.env[key])}")
    return "\n".join(lines)


def _mentions_any(command: str, candidates: tuple[str, ...]) -> bool:
    return any(candidate in command for candidate in candidates)
