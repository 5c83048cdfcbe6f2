"""Unit tests for boot script rendering and machine configuration."""

from __future__ import annotations

import base64

import pytest

from preview_plane.app.contracts import validate_contract
from preview_plane.app.contracts.builder import build_contract
from preview_plane.app.errors import ContractValidationError, PreviewRequestError
from preview_plane.app.inspection.repo_inspector import inspect
from preview_plane.app.provisioning import boot_script


def _contract(**overrides):
    data = {
        "type": "node",
        "install": "npm ci",
        "dev": "npm run dev -- --host 0.0.0.0",
        "port": 3000,
        "env": {"NODE_ENV": "development"},
    }
    data.update(overrides)
    return validate_contract(data)


class TestBuild:
    def test_deterministic(self):
        first = boot_script.build("acme/web", "main", _contract())
        second = boot_script.build("acme/web", "main", _contract())
        assert first == second

    def test_starts_with_shebang_and_set_e(self):
        script = boot_script.build("acme/web", "main", _contract())
        assert script.startswith("#!/bin/bash\nset -e\n")
        assert script.endswith("\n")

    def test_clones_branch(self):
        script = boot_script.build("acme/web", "feature/login", _contract())
        assert (
            'git clone --depth 1 --branch "feature/login" '
            '"https://github.com/acme/web.git" /app'
        ) in script
        assert "cd /app" in script

    def test_steps_in_order(self):
        script = boot_script.build(
            "acme/web", "main", _contract(build="npm run build", setupScript="./seed.sh"),
        )
        markers = ["[1/6]", "[2/6]", "[3/6]", "[4/6]", "[5/6]", "[6/6]"]
        positions = [script.index(marker) for marker in markers]
        assert positions == sorted(positions)

    def test_contract_file_consulted(self):
        script = boot_script.build("acme/web", "main", _contract())
        assert 'if [ -f ".roseram/preview.json" ]; then' in script
        assert "jq -r '.install // empty'" in script
        assert "jq -r '.dev // empty'" in script
        assert "jq -r '.port // empty'" in script

    def test_commands_are_shell_quoted(self):
        script = boot_script.build("acme/web", "main", _contract())
        assert "INSTALL_CMD='npm ci'" in script
        assert "DEV_CMD='npm run dev -- --host 0.0.0.0'" in script

    def test_port_and_env_exported(self):
        script = boot_script.build("acme/web", "main", _contract(port=5173))
        assert "export PORT=5173\n" in script
        assert 'if [ -n "$CONTRACT_PORT" ]; then export PORT="$CONTRACT_PORT"; fi' in script
        assert "export HOST=0.0.0.0" in script
        assert "export NODE_ENV=development" in script

    def test_committed_port_overrides_after_default(self):
        script = boot_script.build("acme/web", "main", _contract(port=5173))
        default = script.index("export PORT=5173\n")
        override = script.index('export PORT="$CONTRACT_PORT"')
        read = script.index("jq -r '.port // empty'")
        assert read < default < override

    def test_reserved_env_key_rejected(self):
        with pytest.raises(ContractValidationError, match="reserved"):
            boot_script.build(
                "acme/web", "main", {**_contract().to_dict(), "env": {"PORT": "5000"}},
            )

    def test_install_failure_aborts(self):
        script = boot_script.build("acme/web", "main", _contract())
        install = script[script.index("[3/6]"):script.index("[4/6]")]
        assert 'eval "$INSTALL_CMD" || {' in install
        assert "exit 1" in install

    def test_optional_steps_skipped(self):
        script = boot_script.build("acme/web", "main", _contract())
        assert "Skipping setup" in script
        assert "Skipping build" in script
        assert "BUILD_CMD" not in script

    def test_build_and_setup_included(self):
        script = boot_script.build(
            "acme/web", "main", _contract(build="npm run build", setupScript="./seed.sh"),
        )
        assert "BUILD_CMD='npm run build'" in script
        assert "SETUP_CMD=./seed.sh" in script

    def test_dev_server_kept_alive_on_exit(self):
        script = boot_script.build("acme/web", "main", _contract())
        run = script[script.index("[6/6]"):]
        assert "export PYTHONUNBUFFERED=1" in run
        assert 'bash -c "$DEV_CMD" 2>&1 || {' in run
        assert "sleep infinity" in run
        assert "exec " not in run

    @pytest.mark.parametrize("repo", ["acme", "acme/web/extra", "acme/$(id)", ""])
    def test_bad_repo_rejected(self, repo):
        with pytest.raises(PreviewRequestError):
            boot_script.build(repo, "main", _contract())

    @pytest.mark.parametrize("branch", ["", "main; rm -rf /", 'a"b', "$(id)"])
    def test_bad_branch_rejected(self, branch):
        with pytest.raises(PreviewRequestError):
            boot_script.build("acme/web", branch, _contract())

    def test_invalid_contract_rejected(self):
        with pytest.raises(ContractValidationError):
            boot_script.build("acme/web", "main", {"type": "node"})


class TestBaseImage:
    def test_known_types(self):
        assert boot_script.base_image_for("node") == "node:20-alpine"
        assert boot_script.base_image_for("python") == "python:3.11-slim"
        assert boot_script.base_image_for("go") == "golang:1.21-alpine"

    def test_unknown_type_falls_back(self):
        assert boot_script.base_image_for("cobol") == "ubuntu:latest"


class TestMachineConfig:
    def test_payload_shape(self):
        contract = _contract(port=5173)
        script = boot_script.build("acme/web", "main", contract)
        payload = boot_script.build_machine_config(script, contract, region="ams")
        config = payload["config"]

        assert payload["region"] == "ams"
        assert config["image"] == "node:20-alpine"
        assert config["init"]["cmd"] == ["/bin/bash", "/start.sh"]
        assert config["env"] == {"PORT": "5173", "NODE_ENV": "development"}
        assert config["restart"] == {"policy": "on-failure", "max_retries": 3}
        assert config["guest"] == {"cpu_kind": "shared", "cpus": 1, "memory_mb": 1024}

        service = config["services"][0]
        assert service["internal_port"] == 5173
        assert service["ports"] == [
            {"port": 80, "handlers": ["http"]},
            {"port": 443, "handlers": ["tls", "http"]},
        ]

    def test_script_embedded_as_file(self):
        contract = _contract()
        script = boot_script.build("acme/web", "main", contract)
        files = boot_script.build_machine_config(script, contract)["config"]["files"]

        assert files[0]["guest_path"] == "/start.sh"
        assert base64.b64decode(files[0]["raw_value"]).decode("utf-8") == script

    def test_region_omitted_when_unset(self):
        contract = _contract()
        payload = boot_script.build_machine_config("#!/bin/bash\n", contract)
        assert "region" not in payload

    def test_resources_and_extra_env(self):
        contract = _contract()
        payload = boot_script.build_machine_config(
            "#!/bin/bash\n", contract, memory_mb=2048, cpus=2, extra_env={"X": "1"},
        )
        config = payload["config"]
        assert config["guest"]["memory_mb"] == 2048
        assert config["guest"]["cpus"] == 2
        assert config["env"]["X"] == "1"

    def test_extra_env_cannot_move_port(self):
        contract = _contract(port=3000)
        config = boot_script.build_machine_config(
            "#!/bin/bash\n", contract, extra_env={"PORT": "5000"},
        )["config"]
        assert config["env"]["PORT"] == "3000"
        assert config["services"][0]["internal_port"] == 3000


class TestInspectedNodeProject:
    def test_default_node_project_boots_on_3000(self):
        contract = build_contract(inspect(["package.json", "src/index.tsx"]))
        script = boot_script.build("acme/web", "main", contract)

        assert (
            'git clone --depth 1 --branch "main" '
            '"https://github.com/acme/web.git" /app'
        ) in script
        assert "export PORT=3000\n" in script
        assert "INSTALL_CMD='npm install'" in script
        assert boot_script.build_machine_config(script, contract)["config"]["image"] == (
            "node:20-alpine"
        )
